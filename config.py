# config.py - environment-driven settings for the MangaHere CBZ API

import os


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


# ---------- upstream ----------
BASE = os.getenv("MANGAHERE_BASE", "https://www.mangahere.cc").rstrip("/")
UA_POOL = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 13_6) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/16.6 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120 Safari/537.36",
]
DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Referer": BASE + "/",
}
FETCH_RETRIES = int(os.getenv("FETCH_RETRIES", "3"))
FETCH_TIMEOUT = int(os.getenv("FETCH_TIMEOUT", "30"))

# proxies: can supply HTTP_PROXIES as comma-separated list or HTTP_PROXY/HTTPS_PROXY single
PROXIES_ENV = os.getenv("HTTP_PROXIES", "")
PROXY_LIST = [p.strip() for p in PROXIES_ENV.split(",") if p.strip()]
SINGLE_PROXY = os.getenv("HTTP_PROXY") or os.getenv("HTTPS_PROXY") or None

# ---------- api ----------
SERVICE_NAME = "MangaHere CBZ API"
VERSION = "2.0.0"
RATE_LIMIT = os.getenv("RATE_LIMIT", "20/minute")
CACHE_TTL = int(os.getenv("CACHE_TTL", "900"))
CBZ_CACHE_TTL = int(os.getenv("CBZ_CACHE_TTL", str(48 * 3600)))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# ---------- archives ----------
# seconds to wait between two page downloads
PAGE_DELAY = float(os.getenv("PAGE_DELAY", "0.5"))
STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "catbox").lower()
CATBOX_USER_HASH = os.getenv("CATBOX_USER_HASH", "")
CATBOX_UPLOAD_URL = os.getenv("CATBOX_UPLOAD_URL", "https://catbox.moe/user/api.php")
CATBOX_FILES_HOST = "files.catbox.moe"
DOWNLOADS_DIR = os.getenv("DOWNLOADS_DIR", os.path.join(os.getcwd(), "downloads"))
FILE_TTL_HOURS = float(os.getenv("FILE_TTL_HOURS", "48"))
CLEANUP_INTERVAL = int(os.getenv("CLEANUP_INTERVAL", "3600"))

# if true, serve a stale cached archive link instead of rebuilding on every request
REUSE_ARCHIVES = _flag("REUSE_ARCHIVES", "true")
