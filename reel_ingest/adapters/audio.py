"""Audio extraction: local video -> local audio file plus duration."""
import asyncio
import logging
import os

from reel_ingest.core.config import settings
from reel_ingest.core.errors import AudioExtractionError, InvalidMediaError
from reel_ingest.pipeline.models import ExtractedAudio
from reel_ingest.pipeline.resources import ScopedAllocator
from reel_ingest.utils.ffmpeg import probe_duration, run_command

logger = logging.getLogger(__name__)


async def _copy_audio_stream(video_path: str, out_path: str) -> bool:
    """Fast path: remux the existing AAC stream without re-encoding. False on any failure or timeout."""
    args = [settings.ffmpeg_path, "-y", "-i", video_path, "-vn", "-acodec", "copy", out_path]
    try:
        result = await run_command(args, timeout=settings.audio_copy_timeout_s)
    except asyncio.TimeoutError:
        logger.info("audio_copy_timeout", extra={"timeout_s": settings.audio_copy_timeout_s})
        return False
    if not result.ok:
        logger.info("audio_copy_failed", extra={"stderr": result.stderr_tail()})
        return False
    return os.path.exists(out_path) and os.path.getsize(out_path) > 0


async def _reencode_mp3(video_path: str, out_path: str) -> None:
    args = [
        settings.ffmpeg_path, "-y", "-i", video_path,
        "-vn", "-ac", "1", "-ar", "16000", "-b:a", "64k", "-threads", "0",
        "-f", "mp3", out_path,
    ]
    result = await run_command(args)
    if not result.ok:
        raise AudioExtractionError(f"Audio extraction failed: {result.stderr_tail()}")


async def extract_audio(video_path: str, allocator: ScopedAllocator) -> ExtractedAudio:
    """Pull the audio track out of video_path. Tries a stream copy to .m4a first, then re-encodes to mono 64 kbps MP3.
    Both candidate files are allocated up front so cleanup covers whichever was written."""
    if not os.path.exists(video_path):
        raise InvalidMediaError(f"Video file not found: {video_path}")

    duration = await probe_duration(video_path)
    if duration is None:
        logger.warning("audio_duration_unknown", extra={"job_id": allocator.job_id})

    copy_path = allocator.allocate("audio", ".m4a")
    mp3_path = allocator.allocate("audio", ".mp3")

    try:
        if await _copy_audio_stream(video_path, copy_path):
            out_path = copy_path
        else:
            await _reencode_mp3(video_path, mp3_path)
            out_path = mp3_path
    except OSError as e:
        raise AudioExtractionError(f"Failed to run ffmpeg: {e}") from e

    if not os.path.exists(out_path) or os.path.getsize(out_path) == 0:
        raise AudioExtractionError("Extracted audio file is empty")

    logger.info(
        "audio_extracted",
        extra={"job_id": allocator.job_id, "format": os.path.splitext(out_path)[1], "bytes": os.path.getsize(out_path)},
    )
    return ExtractedAudio(path=out_path, duration_seconds=duration)
