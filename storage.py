# storage.py - where finished CBZ archives go (Catbox upload or local disk)

import asyncio
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from urllib.parse import quote, urlencode

import httpx
from pydantic import BaseModel

import config

logger = logging.getLogger("mangahere_api.storage")

# in-progress writes; never served
PARTIAL_SUFFIX = ".part"


class StorageError(Exception):
    pass


class UploadError(StorageError):
    pass


class InvalidFileNameError(StorageError, ValueError):
    pass


class StoredArchive(BaseModel):
    file_name: str
    url: str
    size: int
    created_at: datetime
    expires_at: Optional[datetime] = None


def format_file_size(size: int) -> str:
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    i = 0
    value = float(size)
    while value >= 1024 and i < len(units) - 1:
        value /= 1024
        i += 1
    return f"{round(value, 2):g} {units[i]}"


def safe_file_name(name: str) -> str:
    if not name or ".." in name or any(c in name for c in '/\\"'):
        raise InvalidFileNameError(f"Invalid filename: {name!r}")
    if any(ord(c) < 32 or ord(c) == 127 for c in name):
        raise InvalidFileNameError(f"Invalid filename: {name!r}")
    return name


def _utcfromtimestamp(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)


class ArchiveStore:
    name = "base"

    async def save(self, data: bytes, file_name: str) -> StoredArchive:
        raise NotImplementedError

    def public_url(self, stored: StoredArchive, base_url: str) -> str:
        return stored.url


class CatboxStore(ArchiveStore):
    """Uploads archives to catbox.moe under a user hash."""

    name = "catbox"

    def __init__(self, user_hash: str = config.CATBOX_USER_HASH, upload_url: str = config.CATBOX_UPLOAD_URL,
                 timeout: int = 120, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.user_hash = user_hash
        self.upload_url = upload_url
        self.timeout = timeout
        self._transport = transport

    async def save(self, data: bytes, file_name: str) -> StoredArchive:
        form = {"reqtype": "fileupload"}
        if self.user_hash:
            form["userhash"] = self.user_hash
        files = {"fileToUpload": (file_name, data, "application/zip")}
        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout), transport=self._transport) as client:
                resp = await client.post(self.upload_url, data=form, files=files)
        except httpx.HTTPError as e:
            raise UploadError(f"Catbox upload failed: {e}") from e

        result = resp.text.strip()
        if resp.status_code != 200 or not result.startswith(f"https://{config.CATBOX_FILES_HOST}/"):
            raise UploadError(f"Catbox upload failed: {result[:200] or resp.status_code}")
        logger.info("uploaded %s (%s) -> %s", file_name, format_file_size(len(data)), result)
        return StoredArchive(file_name=file_name, url=result, size=len(data),
                             created_at=datetime.now(timezone.utc))

    def public_url(self, stored: StoredArchive, base_url: str) -> str:
        # catbox renames uploads; /rename serves them back under the chapter's name
        query = urlencode({"url": stored.url, "filename": stored.file_name})
        return f"{base_url.rstrip('/')}/rename?{query}"


class LocalStore(ArchiveStore):
    """Keeps archives in a downloads directory and expires them after ``ttl`` seconds."""

    name = "local"

    def __init__(self, directory: str = config.DOWNLOADS_DIR, ttl: float = config.FILE_TTL_HOURS * 3600):
        self.directory = Path(directory)
        self.ttl = ttl

    def path_for(self, file_name: str) -> Path:
        if file_name.endswith(PARTIAL_SUFFIX):
            raise InvalidFileNameError(f"Invalid filename: {file_name!r}")
        return self.directory / safe_file_name(file_name)

    def is_expired(self, path: Path, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return now - path.stat().st_mtime > self.ttl

    def _describe(self, path: Path) -> StoredArchive:
        st = path.stat()
        return StoredArchive(
            file_name=path.name,
            url=str(path),
            size=st.st_size,
            created_at=_utcfromtimestamp(st.st_mtime),
            expires_at=_utcfromtimestamp(st.st_mtime + self.ttl),
        )

    def _write(self, path: Path, data: bytes) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + PARTIAL_SUFFIX)
        try:
            tmp.write_bytes(data)
            tmp.replace(path)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise StorageError(f"could not write {path.name}: {e}") from e

    async def save(self, data: bytes, file_name: str) -> StoredArchive:
        path = self.path_for(file_name)
        await asyncio.to_thread(self._write, path, data)
        logger.info("stored %s (%s) in %s", file_name, format_file_size(len(data)), self.directory)
        return self._describe(path)

    def find(self, file_name: str) -> Optional[StoredArchive]:
        path = self.path_for(file_name)
        if not path.is_file():
            return None
        if self.is_expired(path):
            path.unlink(missing_ok=True)
            return None
        return self._describe(path)

    def cleanup_expired(self) -> int:
        if not self.directory.is_dir():
            return 0
        removed = 0
        now = time.time()
        for path in self.directory.iterdir():
            if path.is_file() and self.is_expired(path, now):
                path.unlink(missing_ok=True)
                logger.info("Deleted old file: %s", path.name)
                removed += 1
        return removed

    def public_url(self, stored: StoredArchive, base_url: str) -> str:
        return f"{base_url.rstrip('/')}/download/{quote(stored.file_name)}"


def make_store(backend: str = config.STORAGE_BACKEND) -> ArchiveStore:
    if backend == LocalStore.name:
        return LocalStore()
    if backend == CatboxStore.name:
        return CatboxStore()
    raise StorageError(f"unknown storage backend {backend!r}")
