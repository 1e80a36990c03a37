# app.py - MangaHere CBZ API
# Endpoints:
# - /search, /info, /pages: scraped MangaHere data as JSON (TTL cached)
# - /cbz: downloads a chapter, packs it into a CBZ and hands it to the archive store
# - /rename, /download: serve stored archives under a readable file name
# Rate limited with slowapi, CORS open for browser clients.

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timezone
from urllib.parse import quote, unquote, urlparse

from cachetools import TTLCache
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse, Response

# slowapi
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

import config
from cbz import ArchiveError, EmptyInputError, archive_size, build_archive
from downloader import NoPagesDownloadedError, download_entries
from fetch import fetch_bytes
from sources import ChapterBlockedError, ChapterNotFoundError, ScraperError, get_source
from storage import (InvalidFileNameError, LocalStore, StorageError, UploadError, format_file_size,
                     make_store, safe_file_name)

# ---------- logging ----------
logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s [%(levelname)s] %(message)s")
logger = logging.getLogger("mangahere_api")

# ---------- collaborators ----------
source = get_source()
store = make_store()

# caching
cache = TTLCache(maxsize=2000, ttl=config.CACHE_TTL)
# file name -> StoredArchive, so repeated /cbz calls reuse the upload
archive_cache = TTLCache(maxsize=500, ttl=config.CBZ_CACHE_TTL)


async def _cleanup_loop(local: LocalStore):
    while True:
        try:
            removed = await asyncio.to_thread(local.cleanup_expired)
            if removed:
                logger.info("cleanup removed %s expired archives", removed)
        except Exception:
            logger.exception("Error during cleanup")
        await asyncio.sleep(config.CLEANUP_INTERVAL)


@asynccontextmanager
async def lifespan(app: FastAPI):
    task = None
    if isinstance(store, LocalStore):
        task = asyncio.create_task(_cleanup_loop(store))
    yield
    if task:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task


# ---------- app & limiter ----------
app = FastAPI(title=config.SERVICE_NAME, version=config.VERSION, lifespan=lifespan)
limiter = Limiter(key_func=get_remote_address)
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "OPTIONS"],
    allow_headers=["*"],
)


# ---------- error mapping ----------
ERROR_STATUS = [
    (ChapterBlockedError, 451, "Chapter blocked"),
    (ChapterNotFoundError, 404, "No pages found for this chapter"),
    (ScraperError, 502, "Failed to scrape MangaHere"),
    (NoPagesDownloadedError, 502, "Failed to download chapter pages"),
    (EmptyInputError, 502, "Nothing to archive"),
    (ArchiveError, 500, "Failed to build CBZ file"),
    (InvalidFileNameError, 400, "Invalid filename"),
    (UploadError, 502, "Failed to upload CBZ file"),
    (StorageError, 500, "Failed to store CBZ file"),
]


@app.exception_handler(RateLimitExceeded)
async def _rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(status_code=429, content={"detail": "Too many requests, slow down."})


async def _domain_error_handler(request: Request, exc: Exception):
    for cls, status, label in ERROR_STATUS:
        if isinstance(exc, cls):
            break
    else:
        status, label = 500, "Internal server error"
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content={"error": label, "message": str(exc)})


for _exc in (ScraperError, NoPagesDownloadedError, ArchiveError, StorageError):
    app.add_exception_handler(_exc, _domain_error_handler)


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# -------------------- Endpoints --------------------

DOCS_HTML = """<!DOCTYPE html>
<html lang="en">
<head><meta charset="UTF-8"><title>MangaHere CBZ API</title>
<style>body{font-family:Arial,sans-serif;max-width:900px;margin:0 auto;padding:20px;line-height:1.6}
code{background:#eee;padding:2px 5px;border-radius:3px}</style></head>
<body>
<h1>MangaHere CBZ API</h1>
<ul>
<li><code>GET /search/{query}?page=1</code> search manga by title</li>
<li><code>GET /info/{mangaId}</code> manga details and chapter list</li>
<li><code>GET /pages/{mangaId}/{chapterId}</code> page image URLs of a chapter</li>
<li><code>GET /cbz/{mangaId}/{chapterId}</code> build a CBZ of the chapter and return a download link</li>
<li><code>GET /rename?url=&amp;filename=</code> download a hosted CBZ under a readable name</li>
<li><code>GET /download/{fileName}</code> download a locally stored CBZ</li>
<li><code>GET /health</code> service status</li>
</ul>
<p>Chapter IDs look like <code>c001</code>; example: <a href="/pages/jigokuraku_kaku_yuuji/c001">/pages/jigokuraku_kaku_yuuji/c001</a>.
Interactive docs: <a href="/docs">/docs</a>.</p>
</body>
</html>"""


@app.get("/", response_class=HTMLResponse)
async def documentation():
    return DOCS_HTML


@app.get("/health")
async def health():
    return {"status": "healthy", "service": config.SERVICE_NAME, "version": config.VERSION,
            "storage": store.name, "timestamp": _utcnow_iso()}


@app.get("/search/{query}")
@limiter.limit(config.RATE_LIMIT)
async def search(request: Request, query: str, page: int = Query(1, ge=1)):
    query = query.strip()
    if not query:
        raise HTTPException(status_code=400, detail="Query parameter is required")

    cache_key = f"search::{query}::{page}"
    if cache_key in cache:
        return cache[cache_key]

    result = await source.search(query, page)
    cache[cache_key] = result
    return result


@app.get("/info/{manga_id}")
@limiter.limit(config.RATE_LIMIT)
async def info(request: Request, manga_id: str):
    manga_id = manga_id.strip()
    if not manga_id:
        raise HTTPException(status_code=400, detail="Manga ID is required")

    cache_key = f"info::{manga_id}"
    if cache_key in cache:
        return cache[cache_key]

    result = await source.fetch_info(manga_id)
    cache[cache_key] = result
    return result


async def _chapter_pages(manga_id: str, chapter_id: str):
    cache_key = f"pages::{manga_id}::{chapter_id}"
    if cache_key in cache:
        return cache[cache_key]
    pages = await source.fetch_pages(f"{manga_id}/{chapter_id}")
    cache[cache_key] = pages
    return pages


@app.get("/pages/{manga_id}/{chapter_id}")
@limiter.limit(config.RATE_LIMIT)
async def pages(request: Request, manga_id: str, chapter_id: str):
    found = await _chapter_pages(manga_id, chapter_id)
    return {
        "success": True,
        "message": "Chapter pages retrieved successfully",
        "manga_id": manga_id,
        "chapter_id": chapter_id,
        "total_pages": len(found),
        "pages": found,
    }


def _archive_payload(request: Request, stored, total_pages, cached: bool):
    return {
        "success": True,
        "message": "CBZ file already exists" if cached else f"CBZ file created and stored ({store.name})",
        "cached": cached,
        "download_url": store.public_url(stored, str(request.base_url)),
        "storage_url": stored.url if store.name != LocalStore.name else None,
        "file_name": stored.file_name,
        "file_size": format_file_size(stored.size),
        "total_pages": total_pages,
        "created_at": stored.created_at.isoformat(),
        "expires_at": stored.expires_at.isoformat() if stored.expires_at else None,
    }


@app.get("/cbz/{manga_id}/{chapter_id}")
@limiter.limit(config.RATE_LIMIT)
async def cbz(request: Request, manga_id: str, chapter_id: str):
    file_name = safe_file_name(f"{manga_id}_{chapter_id}.cbz")

    if config.REUSE_ARCHIVES:
        hit = archive_cache.get(file_name)
        if hit is None and isinstance(store, LocalStore):
            hit = store.find(file_name)
        if hit is not None:
            return _archive_payload(request, hit, None, cached=True)

    found = await _chapter_pages(manga_id, chapter_id)
    logger.info("Creating CBZ for %s/%s with %s pages", manga_id, chapter_id, len(found))
    entries = await download_entries(found, delay=config.PAGE_DELAY)
    logger.info("Packing %s entries into %s (expected %s)", len(entries), file_name,
                format_file_size(archive_size(entries)))
    # CPU bound; keep it off the event loop
    data = await asyncio.to_thread(build_archive, entries)
    logger.info("Built %s: %s", file_name, format_file_size(len(data)))

    stored = await store.save(data, file_name)
    archive_cache[file_name] = stored
    return _archive_payload(request, stored, len(entries), cached=False)


@app.get("/rename")
@limiter.limit(config.RATE_LIMIT)
async def rename(request: Request, url: str = Query(""), filename: str = Query("")):
    if not url or not filename:
        raise HTTPException(status_code=400, detail="Missing url or filename parameter")
    decoded = unquote(url)
    parsed = urlparse(decoded)
    if parsed.scheme != "https" or parsed.netloc != config.CATBOX_FILES_HOST:
        raise HTTPException(status_code=400, detail=f"Only {config.CATBOX_FILES_HOST} URLs allowed")
    filename = safe_file_name(filename)

    data = await fetch_bytes(decoded)
    return Response(
        content=data,
        media_type="application/octet-stream",
        headers={"Content-Disposition": _content_disposition(filename)},
    )


def _content_disposition(filename: str) -> str:
    # same rule as starlette's FileResponse: RFC 6266 form for anything quote() changes
    quoted = quote(filename)
    if quoted != filename:
        return f"attachment; filename*=utf-8''{quoted}"
    return f'attachment; filename="{filename}"'


@app.get("/download/{file_name}")
async def download(file_name: str):
    if not isinstance(store, LocalStore):
        raise HTTPException(status_code=404, detail="Local downloads are not enabled")
    path = store.path_for(file_name)
    if not path.is_file():
        raise HTTPException(status_code=404, detail="File not found or has expired")
    if store.is_expired(path):
        path.unlink(missing_ok=True)
        raise HTTPException(status_code=410, detail="File has expired and been removed")

    logger.info("Serving download: %s", file_name)
    return FileResponse(path, media_type="application/zip", filename=path.name)
