"""Tests for turning chapter pages into archive entries."""

import asyncio

import pytest
from fastapi import HTTPException

from cbz import build_archive
from downloader import NoPagesDownloadedError, download_entries
from models import ChapterPage


class FakeImages:
    def __init__(self, images, failing=()):
        self.images = images
        self.failing = set(failing)
        self.calls = []

    async def __call__(self, url, headers=None):
        self.calls.append((url, headers))
        if url in self.failing:
            raise HTTPException(status_code=502, detail=f"Upstream fetch failed for {url}")
        return self.images[url]


def _pages(*urls):
    return [ChapterPage(page=i, img=u, headers={"Referer": "https://www.mangahere.cc/manga/x/c001/1.html"})
            for i, u in enumerate(urls)]


class TestDownloadEntries:
    """Tests for download_entries()."""

    def test_names_follow_page_order(self):
        pages = _pages("https://img/a.jpg", "https://img/b.png?t=1", "https://img/c")
        fetch = FakeImages({"https://img/a.jpg": b"A", "https://img/b.png?t=1": b"B", "https://img/c": b"C"})

        entries = asyncio.run(download_entries(pages, fetch=fetch, delay=0))

        assert [e.name for e in entries] == ["001.jpg", "002.png", "003.jpg"]
        assert [e.data for e in entries] == [b"A", b"B", b"C"]

    def test_passes_page_headers(self):
        pages = _pages("https://img/a.jpg")
        fetch = FakeImages({"https://img/a.jpg": b"A"})
        asyncio.run(download_entries(pages, fetch=fetch, delay=0))
        assert fetch.calls == [("https://img/a.jpg", {"Referer": "https://www.mangahere.cc/manga/x/c001/1.html"})]

    def test_failed_page_is_skipped(self):
        pages = _pages("https://img/1.jpg", "https://img/2.jpg", "https://img/3.jpg")
        fetch = FakeImages({"https://img/1.jpg": b"1", "https://img/3.jpg": b"3"}, failing={"https://img/2.jpg"})

        entries = asyncio.run(download_entries(pages, fetch=fetch, delay=0))

        # names keep their original position
        assert [e.name for e in entries] == ["001.jpg", "003.jpg"]
        assert len(build_archive(entries)) > 0

    def test_all_pages_failing_raises(self):
        pages = _pages("https://img/1.jpg", "https://img/2.jpg")
        fetch = FakeImages({}, failing={"https://img/1.jpg", "https://img/2.jpg"})
        with pytest.raises(NoPagesDownloadedError):
            asyncio.run(download_entries(pages, fetch=fetch, delay=0))

    def test_no_pages_raises(self):
        with pytest.raises(NoPagesDownloadedError):
            asyncio.run(download_entries([], fetch=FakeImages({}), delay=0))
