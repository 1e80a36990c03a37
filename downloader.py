# downloader.py - turns a chapter's page list into archive entries

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from fastapi import HTTPException

import config
from cbz import ArchiveEntry, page_file_name
from fetch import fetch_bytes
from models import ChapterPage

logger = logging.getLogger("mangahere_api.downloader")

ByteFetcher = Callable[..., Awaitable[bytes]]


class NoPagesDownloadedError(Exception):
    pass


async def download_entries(pages: Sequence[ChapterPage], fetch: Optional[ByteFetcher] = None,
                           delay: float = config.PAGE_DELAY) -> List[ArchiveEntry]:
    """
    Download every page in order and name it after its position in the chapter.

    A page that still fails after the fetcher's own retries is skipped; the
    chapter only fails when nothing at all could be downloaded.
    """
    fetch = fetch or fetch_bytes
    total = len(pages)
    entries = []
    failed: Dict[int, str] = {}

    for index, page in enumerate(pages, start=1):
        if index > 1 and delay > 0:
            # pace requests to the image host
            await asyncio.sleep(delay)
        logger.info("Downloading page %s/%s: %s", index, total, page.img)
        try:
            data = await fetch(page.img, headers=page.headers or None)
        except HTTPException as e:
            failed[index] = str(e.detail)
            logger.warning("Failed to download page %s: %s", index, e.detail)
            continue
        entries.append(ArchiveEntry(name=page_file_name(index, page.img, total), data=data))

    if not entries:
        raise NoPagesDownloadedError(f"None of the {total} pages could be downloaded")
    if failed:
        logger.warning("Skipped %s of %s pages: %s", len(failed), total, sorted(failed))
    return entries
