# fetch.py - upstream HTTP helpers (with anti-block protections)
# - retry loop with exponential backoff
# - rotating User-Agents
# - optional proxy support (env: HTTP_PROXIES or HTTP_PROXY)
# - cloudscraper fallback when httpx keeps getting 403 (Cloudflare)

import asyncio
import logging
import random
from typing import Dict, Optional

import httpx
from fastapi import HTTPException

import config

# optional cloudscraper (blocking) - used via asyncio.to_thread
try:
    import cloudscraper
    _HAS_CLOUDSCRAPER = True
except Exception:
    _HAS_CLOUDSCRAPER = False

logger = logging.getLogger("mangahere_api.fetch")


def choose_proxy_for_request() -> Optional[str]:
    if config.SINGLE_PROXY:
        return config.SINGLE_PROXY
    if config.PROXY_LIST:
        return random.choice(config.PROXY_LIST)
    return None


def build_headers(extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    headers = {**config.DEFAULT_HEADERS, "User-Agent": random.choice(config.UA_POOL)}
    if extra:
        headers.update(extra)
    return headers


async def _request(url: str, headers: Optional[Dict[str, str]], max_retries: int, timeout: int,
                   min_length: int, transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.Response:
    last_exc = None
    for attempt in range(1, max_retries + 1):
        req_headers = build_headers(headers)
        proxy = choose_proxy_for_request()
        try:
            logger.info("httpx try %s -> %s (proxy=%s)", attempt, url, proxy)
            async with httpx.AsyncClient(timeout=httpx.Timeout(timeout), follow_redirects=True, proxy=proxy,
                                         transport=transport) as client:
                resp = await client.get(url, headers=req_headers)
                # Cloudflare-ish responses: retry, maybe through another proxy
                if resp.status_code in (403, 429):
                    last_exc = httpx.HTTPStatusError(f"{resp.status_code} for {url}", request=resp.request, response=resp)
                    logger.warning("httpx got %s for %s (attempt %s)", resp.status_code, url, attempt)
                    await asyncio.sleep(1 + attempt)
                    continue
                resp.raise_for_status()
                if len(resp.content) >= min_length:
                    return resp
                last_exc = Exception("Empty or too short response")
        except Exception as e:
            last_exc = e
            logger.warning("httpx request error for %s: %s (attempt %s)", url, str(e), attempt)
        if attempt < max_retries:
            await asyncio.sleep(min(4, 1.5 ** attempt))
    raise HTTPException(status_code=502, detail=f"Upstream fetch failed (httpx). last_error={str(last_exc)}")


async def fetch_page_httpx(url: str, headers: Optional[Dict[str, str]] = None,
                           max_retries: int = config.FETCH_RETRIES, timeout: int = config.FETCH_TIMEOUT,
                           transport: Optional[httpx.AsyncBaseTransport] = None) -> str:
    resp = await _request(url, headers, max_retries, timeout, min_length=50, transport=transport)
    return resp.text


def fetch_page_cloudscraper_sync(url: str, headers: Optional[Dict[str, str]] = None,
                                 timeout: int = config.FETCH_TIMEOUT) -> str:
    if not _HAS_CLOUDSCRAPER:
        raise RuntimeError("cloudscraper not installed")
    scr = cloudscraper.create_scraper()
    proxy = choose_proxy_for_request()
    if proxy:
        scr.proxies.update({"http": proxy, "https": proxy})
    r = scr.get(url, headers=build_headers(headers), timeout=timeout)
    r.raise_for_status()
    return r.text


async def fetch_html(url: str, headers: Optional[Dict[str, str]] = None, timeout: int = config.FETCH_TIMEOUT,
                     transport: Optional[httpx.AsyncBaseTransport] = None) -> str:
    # Try httpx first; if it keeps failing fall back to cloudscraper (blocking)
    try:
        return await fetch_page_httpx(url, headers=headers, max_retries=2, timeout=timeout, transport=transport)
    except HTTPException as e:
        logger.warning("httpx failed; trying cloudscraper for %s; reason=%s", url, e.detail)
        if not _HAS_CLOUDSCRAPER:
            raise
        try:
            return await asyncio.to_thread(fetch_page_cloudscraper_sync, url, headers, timeout)
        except Exception as ce:
            logger.exception("cloudscraper also failed for %s", url)
            raise HTTPException(status_code=502, detail=f"Both httpx and cloudscraper failed. last={str(ce)}")


async def fetch_bytes(url: str, headers: Optional[Dict[str, str]] = None,
                      max_retries: int = config.FETCH_RETRIES, timeout: int = config.FETCH_TIMEOUT,
                      transport: Optional[httpx.AsyncBaseTransport] = None) -> bytes:
    resp = await _request(url, headers, max_retries, timeout, min_length=1, transport=transport)
    return resp.content
