"""Binary download: media URL -> local video file, with a hard size cap and an overall timeout."""
import asyncio
import logging
import os
from typing import Optional

import httpx

from reel_ingest.core.config import settings
from reel_ingest.core.errors import AppError, FileSystemError, PayloadTooLargeError, VideoDownloadError
from reel_ingest.pipeline.models import DownloadedVideo
from reel_ingest.pipeline.resources import ScopedAllocator

logger = logging.getLogger(__name__)

_USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0 Safari/537.36"


def _too_large(size: int, limit: int) -> PayloadTooLargeError:
    return PayloadTooLargeError(
        f"Video too large: {size / (1024 * 1024):.1f}MB (max {limit // (1024 * 1024)}MB)"
    )


async def _stream_to_file(client: httpx.AsyncClient, url: str, path: str, max_bytes: int) -> int:
    async with client.stream("GET", url) as resp:
        if resp.status_code != 200:
            raise VideoDownloadError(
                f"HTTP {resp.status_code}: failed to download video",
                transient=resp.status_code >= 500 or resp.status_code == 429,
            )

        clen_hdr = resp.headers.get("Content-Length")
        if clen_hdr and clen_hdr.isdigit() and int(clen_hdr) > max_bytes:
            raise _too_large(int(clen_hdr), max_bytes)

        written = 0
        try:
            with open(path, "wb") as f:
                async for chunk in resp.aiter_bytes():
                    if not chunk:
                        continue
                    written += len(chunk)
                    if written > max_bytes:
                        # abort mid-stream; the partial file is already a registered asset
                        raise _too_large(written, max_bytes)
                    f.write(chunk)
        except OSError as e:
            raise FileSystemError(f"Failed to write video file: {e}") from e
        return written


async def download_video(
    media_url: str,
    allocator: ScopedAllocator,
    client: Optional[httpx.AsyncClient] = None,
) -> DownloadedVideo:
    """Stream media_url into a Resource Manager asset. Rejects an oversized Content-Length before reading the body
    and aborts as soon as the streamed byte count passes MAX_DOWNLOAD_MB."""
    if not media_url:
        raise VideoDownloadError("No media URL to download", transient=False)

    max_bytes = settings.max_download_mb * 1024 * 1024
    timeout = settings.download_timeout_s
    path = allocator.allocate("video", ".mp4")

    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(
            follow_redirects=True,
            timeout=httpx.Timeout(timeout, connect=15.0),
            headers={"User-Agent": _USER_AGENT},
        )
    try:
        size = await asyncio.wait_for(_stream_to_file(client, media_url, path, max_bytes), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise VideoDownloadError(f"Download timed out after {timeout}s") from e
    except AppError:
        raise
    except httpx.TimeoutException as e:
        raise VideoDownloadError(f"Network timeout while downloading video: {e}") from e
    except httpx.HTTPError as e:
        raise VideoDownloadError(f"Network error while downloading video: {e}") from e
    finally:
        if owns_client:
            await client.aclose()

    if size == 0 or not os.path.exists(path):
        raise VideoDownloadError("Downloaded video is empty", transient=False)

    logger.info("video_downloaded", extra={"job_id": allocator.job_id, "bytes": size})
    return DownloadedVideo(path=path, size_bytes=size)
