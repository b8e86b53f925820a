"""Thumbnail capture + upload: local video -> hosted JPEG URL and storage id."""
import asyncio
import logging
import os
import uuid
from datetime import timedelta
from typing import Optional, Tuple

from minio import Minio
from minio.error import S3Error

from reel_ingest.core.config import settings
from reel_ingest.core.errors import StorageUploadError, ThumbnailGenerationError
from reel_ingest.pipeline.models import Thumbnail
from reel_ingest.pipeline.resources import ScopedAllocator
from reel_ingest.utils.ffmpeg import run_command
from reel_ingest.utils.retry import with_retry

logger = logging.getLogger(__name__)

FRAME_OFFSETS_S = (2.0, 1.0)
FRAME_SIZE = (720, 1280)  # 9:16
PRESIGN_TTL = timedelta(days=7)


class ThumbnailStore:
    """MinIO-backed image host. Uploads are blocking calls, so callers run them off the event loop.
    Why available: Keeps the storage client and bucket bootstrap in one place; tests swap in a fake with the same upload()."""

    def __init__(self, client: Optional[Minio] = None, bucket: Optional[str] = None, public_base_url: Optional[str] = None):
        self.client = client or Minio(
            settings.minio_endpoint,
            access_key=settings.minio_access_key,
            secret_key=settings.minio_secret_key,
            secure=settings.minio_secure,
        )
        self.bucket = bucket or settings.minio_bucket
        self.public_base_url = (settings.public_media_base_url if public_base_url is None else public_base_url).rstrip("/")
        self._bucket_ready = False

    def _ensure_bucket(self) -> None:
        if self._bucket_ready:
            return
        if not self.client.bucket_exists(self.bucket):
            self.client.make_bucket(self.bucket)
        self._bucket_ready = True

    def upload(self, local_path: str, object_name: str) -> Tuple[str, str]:
        """Upload a JPEG and return (url, storage_id). Raises StorageUploadError."""
        try:
            with_retry(self._ensure_bucket, retries=2, backoff_seconds=0.5, retry_on=(S3Error, OSError))
            self.client.fput_object(self.bucket, object_name, local_path, content_type="image/jpeg")
            if self.public_base_url:
                url = f"{self.public_base_url}/{self.bucket}/{object_name}"
            else:
                url = self.client.presigned_get_object(self.bucket, object_name, expires=PRESIGN_TTL)
        except (S3Error, OSError, ValueError) as e:
            raise StorageUploadError(f"Thumbnail upload failed: {e}") from e
        return url, f"{self.bucket}/{object_name}"


_default_store: Optional[ThumbnailStore] = None


def get_thumbnail_store() -> ThumbnailStore:
    global _default_store
    if _default_store is None:
        _default_store = ThumbnailStore()
    return _default_store


async def _capture_frame(video_path: str, out_path: str, offset_s: float) -> bool:
    """Write one scaled JPEG frame at offset_s. False when ffmpeg produced no image (e.g. offset past the end)."""
    width, height = FRAME_SIZE
    args = [
        settings.ffmpeg_path, "-y",
        "-ss", f"{offset_s:.2f}",
        "-i", video_path,
        "-frames:v", "1",
        "-vf", f"scale={width}:{height}:force_original_aspect_ratio=decrease",
        "-q:v", "3",
        out_path,
    ]
    try:
        result = await run_command(args, timeout=30.0)
    except (OSError, asyncio.TimeoutError) as e:
        raise ThumbnailGenerationError(f"Failed to capture frame from video: {e}") from e
    if not result.ok:
        logger.info("frame_capture_failed", extra={"offset_s": offset_s, "stderr": result.stderr_tail()})
        return False
    return os.path.exists(out_path) and os.path.getsize(out_path) > 0


async def capture_thumbnail(
    video_path: str,
    allocator: ScopedAllocator,
    store: Optional[ThumbnailStore] = None,
) -> Thumbnail:
    """Capture a frame at 2s (falling back to 1s) and upload it. A video with no capturable frame yields the empty
    Thumbnail; ffmpeg or upload faults raise and are degraded by the orchestrator."""
    if not os.path.exists(video_path):
        raise ThumbnailGenerationError(f"Video file not found: {video_path}")

    frame_path = allocator.allocate("thumbnail", ".jpg")
    captured = False
    for offset in FRAME_OFFSETS_S:
        if await _capture_frame(video_path, frame_path, offset):
            captured = True
            break
    if not captured:
        logger.info("thumbnail_no_frame", extra={"job_id": allocator.job_id})
        return Thumbnail()

    store = store or get_thumbnail_store()
    object_name = f"thumbnails/{allocator.job_id}/{uuid.uuid4().hex}.jpg"
    url, storage_id = await asyncio.to_thread(store.upload, frame_path, object_name)
    logger.info("thumbnail_uploaded", extra={"job_id": allocator.job_id, "storage_id": storage_id})
    return Thumbnail(url=url, storage_id=storage_id)
