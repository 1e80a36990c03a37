# sources.py - manga sources: search / info / chapter page discovery

import logging
import re
from typing import Awaitable, Callable, Dict, List, Optional
from urllib.parse import quote, urljoin, urlparse

from bs4 import BeautifulSoup
from fastapi import HTTPException
from jsbeautifier.unpackers import packer

import config
from fetch import fetch_html
from models import ChapterPage, ChapterRef, MangaInfo, SearchPage, SearchResult, parse_status

logger = logging.getLogger("mangahere_api.sources")

Fetcher = Callable[..., Awaitable[str]]

PACKED_MARKER = "eval(function(p,a,c,k,e,d)"
ADULT_COOKIE = {"Cookie": "isAdult=1"}


class ScraperError(Exception):
    pass


class ChapterBlockedError(ScraperError):
    pass


class ChapterNotFoundError(ScraperError):
    pass


def try_soup(html: str):
    try:
        return BeautifulSoup(html, "lxml")
    except Exception:
        return BeautifulSoup(html, "html.parser")


def absolute_url(src: Optional[str], base: str) -> Optional[str]:
    if not src:
        return None
    src = src.strip()
    if src.startswith("//"):
        return "https:" + src
    if src.startswith("http"):
        return src
    return urljoin(base + "/", src)


def _text(el) -> str:
    return el.get_text(strip=True) if el else ""


def unpack_script(source: str) -> str:
    """Decode a Dean Edwards ``eval(function(p,a,c,k,e,d)...)`` packed script."""
    if not packer.detect(source):
        raise ScraperError("script is not P.A.C.K.E.R encoded")
    try:
        return packer.unpack(source)
    except packer.UnpackingError as e:
        raise ScraperError(f"could not unpack script: {e}") from e


def find_packed_script(html: str) -> Optional[str]:
    start = html.find(PACKED_MARKER)
    if start == -1:
        return None
    end = html.find("</script>", start)
    return html[start:end if end != -1 else len(html)]


class MangaSource:
    """A site backend. Every source answers the same three questions."""

    name: str = "base"

    async def search(self, query: str, page: int = 1) -> SearchPage:
        raise NotImplementedError

    async def fetch_info(self, manga_id: str) -> MangaInfo:
        raise NotImplementedError

    async def fetch_pages(self, chapter_id: str) -> List[ChapterPage]:
        raise NotImplementedError


class MangaHere(MangaSource):
    name = "mangahere"

    def __init__(self, base: str = config.BASE, fetch: Optional[Fetcher] = None):
        self.base = base.rstrip("/")
        self._fetch = fetch or fetch_html

    # ---------- search ----------
    async def search(self, query: str, page: int = 1) -> SearchPage:
        url = f"{self.base}/search?title={quote(query)}&page={page}"
        html = await self._fetch(url)
        return self.parse_search(html, page)

    def parse_search(self, html: str, page: int) -> SearchPage:
        soup = try_soup(html)
        items = soup.select("ul.manga-list-4-list > li") or soup.select("div.container > div > div > ul > li")

        results = []
        for li in items:
            link = li.select_one("a[href]")
            href = link.get("href") if link else ""
            parts = urlparse(href).path.split("/")
            manga_id = parts[2] if len(parts) > 2 and parts[1] == "manga" else ""
            title = _text(li.select_one("p.manga-list-4-item-title > a"))
            if not manga_id or not title:
                continue
            img = li.select_one("a > img")
            paragraphs = li.select("p")
            results.append(SearchResult(
                id=manga_id,
                title=title,
                image=absolute_url(img.get("src"), self.base) if img else None,
                description=_text(paragraphs[-1]) if paragraphs else "",
                status=parse_status(_text(li.select_one("p.manga-list-4-show-tag-list-2 > a"))),
            ))

        has_next = False
        active = soup.select_one("div.pager-list-left > a.active")
        if active:
            nxt = active.find_next_sibling("a")
            has_next = nxt is not None and _text(nxt) != ">"

        return SearchPage(current_page=page, has_next_page=has_next, results=results)

    # ---------- info ----------
    async def fetch_info(self, manga_id: str) -> MangaInfo:
        html = await self._fetch(f"{self.base}/manga/{manga_id}/", headers=ADULT_COOKIE)
        return self.parse_info(html, manga_id)

    def parse_info(self, html: str, manga_id: str) -> MangaInfo:
        soup = try_soup(html)
        cover = soup.select_one("div.detail-info-cover > img") or soup.select_one("img.detail-info-cover-img")

        rating = 0.0
        stars = soup.select("span.detail-info-right-title-star > span")
        if stars:
            try:
                rating = float(_text(stars[-1]))
            except ValueError:
                rating = 0.0

        chapters = []
        for li in soup.select("ul.detail-main-list > li"):
            a = li.select_one("a[href]")
            if not a or "/manga/" not in a.get("href"):
                continue
            chapter_id = a.get("href").split("/manga/", 1)[1]
            if chapter_id.endswith("/1.html"):
                chapter_id = chapter_id[:-len("/1.html")]
            chapter_id = chapter_id.strip("/")
            if not chapter_id:
                continue
            chapters.append(ChapterRef(
                id=chapter_id,
                title=_text(a.select_one("div > p.title3")),
                released_date=_text(a.select_one("div > p.title2")),
            ))

        return MangaInfo(
            id=manga_id,
            title=_text(soup.select_one("span.detail-info-right-title-font")) or manga_id,
            description=_text(soup.select_one("div.detail-info-right > p.fullcontent")),
            image=absolute_url(cover.get("src"), self.base) if cover else None,
            genres=[(a.get("title") or a.get_text()).strip() for a in soup.select("p.detail-info-right-tag-list > a")],
            status=parse_status(_text(soup.select_one("span.detail-info-right-title-tip"))),
            rating=rating,
            authors=[a.get("title") or _text(a) for a in soup.select("p.detail-info-right-say > a")],
            chapters=chapters,
        )

    # ---------- chapter pages ----------
    async def fetch_pages(self, chapter_id: str) -> List[ChapterPage]:
        url = f"{self.base}/manga/{chapter_id.strip('/')}/1.html"
        html = await self._fetch(url, headers=ADULT_COOKIE)
        soup = try_soup(html)

        notice = _text(soup.select_one("p.detail-block-content"))
        if "Dear user" in notice or "blocked" in notice:
            raise ChapterBlockedError(f"Chapter {chapter_id} is blocked due to copyright")

        pages: List[ChapterPage] = []
        if soup.select_one("script[src*=chapter_bar]"):
            try:
                pages = self.pages_from_inline_script(html, url)
            except ScraperError as e:
                logger.warning("inline script strategy failed for %s: %s", chapter_id, e)
        else:
            try:
                pages = await self.pages_from_chapterfun(html, soup, url)
            except ScraperError as e:
                logger.warning("chapterfun strategy failed for %s: %s", chapter_id, e)

        if not pages:
            raise ChapterNotFoundError(f"No pages found for chapter {chapter_id}")
        logger.info("found %s pages for %s", len(pages), chapter_id)
        return pages

    def pages_from_inline_script(self, html: str, chapter_url: str) -> List[ChapterPage]:
        script = find_packed_script(html)
        if not script:
            raise ScraperError("packed image script not found")
        decoded = unpack_script(script)
        if "['" not in decoded:
            raise ScraperError("image list missing from unpacked script")
        raw = decoded.split("['", 1)[1].split("']", 1)[0]
        return [
            ChapterPage(page=i, img=absolute_url(src, self.base), headers={"Referer": chapter_url})
            for i, src in enumerate(raw.split("','"))
            if src
        ]

    def extract_key(self, html: str) -> str:
        script = find_packed_script(html)
        if not script:
            return ""
        try:
            decoded = unpack_script(script)
        except ScraperError as e:
            logger.warning("key extraction failed: %s", e)
            return ""
        start, end = decoded.find("'"), decoded.find(";")
        if start == -1 or end <= start:
            return ""
        # the key is a chain of quoted fragments: ''+'a'+'b'...
        return "".join(re.findall(r"'([^']*)'", decoded[start:end]))

    @staticmethod
    def page_count(html: str, soup) -> int:
        m = re.search(r"imagecount\s*=\s*(\d+)", html)
        if m:
            return int(m.group(1))
        numbers = [int(a.get("data-page")) for a in soup.select("a[data-page]") if a.get("data-page", "").isdigit()]
        return max(numbers) if numbers else 0

    async def pages_from_chapterfun(self, html: str, soup, chapter_url: str,
                                    attempts: int = 3) -> List[ChapterPage]:
        key = self.extract_key(html)
        m = re.search(r"chapterid\s*=\s*(\d+)", html)
        if not m:
            raise ScraperError("chapterid not found")
        cid = m.group(1)
        total = self.page_count(html, soup)
        page_base = chapter_url.rsplit("/", 1)[0]
        headers: Dict[str, str] = {
            "Referer": chapter_url,
            "X-Requested-With": "XMLHttpRequest",
            **ADULT_COOKIE,
        }

        pages = []
        for i in range(1, total + 1):
            link = f"{page_base}/chapterfun.ashx?cid={cid}&page={i}&key={key}"
            last_error = None
            for attempt in range(1, attempts + 1):
                try:
                    decoded = unpack_script(await self._fetch(link, headers=headers))
                    pix = re.search(r'pix\s*=\s*"([^"]*)"', decoded)
                    pvalue = re.search(r'pvalue\s*=\s*\[\s*"([^"]*)"', decoded)
                    if not pix or not pvalue:
                        raise ScraperError("pix/pvalue missing from chapterfun response")
                    img = absolute_url(pix.group(1) + pvalue.group(1), self.base)
                    pages.append(ChapterPage(page=i - 1, img=img, headers={"Referer": chapter_url}))
                    break
                except (ScraperError, HTTPException) as e:
                    last_error = e.detail if isinstance(e, HTTPException) else e
                    logger.warning("chapterfun page %s attempt %s failed: %s", i, attempt, last_error)
            else:
                raise ScraperError(f"page {i} could not be resolved: {last_error}")
        return pages


SOURCES: Dict[str, MangaSource] = {MangaHere.name: MangaHere()}


def get_source(name: str = MangaHere.name) -> MangaSource:
    try:
        return SOURCES[name]
    except KeyError:
        raise ScraperError(f"unknown source {name!r}") from None
