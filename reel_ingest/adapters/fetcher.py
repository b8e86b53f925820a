"""Source metadata fetch: reel URL -> MediaInfo via yt-dlp (no download, no files)."""
import asyncio
import logging
import re
from typing import Any, Dict, Optional
from urllib.parse import urlsplit, urlunsplit

import yt_dlp
from yt_dlp.utils import DownloadError, ExtractorError

from reel_ingest.core.config import settings
from reel_ingest.core.errors import (
    AppError,
    InvalidSourceUrlError,
    MediaNotFoundError,
    PrivateMediaError,
    SourceFetchError,
    UnsupportedMediaError,
)
from reel_ingest.pipeline.models import MediaInfo
from reel_ingest.utils.retry import with_retry_async

logger = logging.getLogger(__name__)

REEL_URL_RE = re.compile(r"^https?://(www\.)?instagram\.com/(reel|reels|p|tv|stories)/[\w-]+/?", re.IGNORECASE)


def clean_source_url(url: str) -> str:
    """Validate a reel/post/tv/story URL and strip query string and fragment. Raises InvalidSourceUrlError."""
    url = (url or "").strip()
    if not REEL_URL_RE.match(url):
        raise InvalidSourceUrlError("Invalid Instagram URL. Expected a reel, post, tv or story link.")
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


def classify_extractor_error(message: str) -> AppError:
    """Map a yt-dlp error message onto the fetch error taxonomy."""
    msg = message or ""
    low = msg.lower()
    if "unsupported url" in low:
        return InvalidSourceUrlError("Invalid Instagram URL format")
    if "private" in low or "login" in low:
        return PrivateMediaError("Cannot access private Instagram content")
    if "unavailable" in low or "not available" in low or "removed" in low or "deleted" in low:
        return MediaNotFoundError("Media not found or has been removed")
    return SourceFetchError(f"yt-dlp error: {msg}")


def _pick_media_url(info: Dict[str, Any]) -> str:
    url = info.get("url")
    if url:
        return url
    formats = [f for f in (info.get("formats") or []) if f.get("url") and f.get("vcodec") not in (None, "none")]
    if not formats:
        formats = [f for f in (info.get("formats") or []) if f.get("url")]
    if not formats:
        return ""
    # yt-dlp sorts formats worst -> best
    return formats[-1]["url"]


def _extract_info(url: str) -> Dict[str, Any]:
    ydl_opts = {
        "quiet": True,
        "no_warnings": True,
        "skip_download": True,
        "noplaylist": True,
        "format": "best[ext=mp4]/best",
        "socket_timeout": settings.fetch_timeout_s,
    }
    with yt_dlp.YoutubeDL(ydl_opts) as ydl:
        info = ydl.extract_info(url, download=False)
    if info is None:
        raise MediaNotFoundError(f"yt-dlp returned no info for {url}")
    if info.get("_type") == "playlist":
        entries = [e for e in (info.get("entries") or []) if e]
        if not entries:
            raise MediaNotFoundError("No video found in post")
        info = entries[0]
    return info


def _media_info_from(source_url: str, info: Dict[str, Any]) -> MediaInfo:
    media_url = _pick_media_url(info)
    if not media_url:
        raise UnsupportedMediaError("No downloadable video found for this post")
    duration = info.get("duration")
    return MediaInfo(
        source_url=source_url,
        media_url=media_url,
        title=info.get("title") or None,
        description=info.get("description") or None,
        duration_seconds=float(duration) if duration else None,
    )


async def fetch_media_info(source_url: str, retries: Optional[int] = None) -> MediaInfo:
    """Resolve a reel URL into its binary media URL, title and caption. Transient failures are retried with backoff;
    private, removed and malformed sources fail on the first attempt."""
    url = clean_source_url(source_url)

    async def attempt() -> MediaInfo:
        try:
            info = await asyncio.wait_for(asyncio.to_thread(_extract_info, url), timeout=settings.fetch_timeout_s)
        except asyncio.TimeoutError as e:
            # the extractor thread cannot be cancelled; retrying would stack another one beside it
            raise SourceFetchError(
                f"Metadata fetch timed out after {settings.fetch_timeout_s}s", transient=False
            ) from e
        except (DownloadError, ExtractorError) as e:
            raise classify_extractor_error(str(e)) from e
        return _media_info_from(url, info)

    info = await with_retry_async(
        attempt,
        retries=settings.fetch_retries if retries is None else retries,
        backoff_seconds=0.5,
        retry_on=(AppError,),
        should_retry=lambda e: getattr(e, "transient", False),
    )
    logger.info("media_fetched", extra={"source_url": url, "has_title": bool(info.title)})
    return info
