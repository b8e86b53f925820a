"""Transcription: local audio file -> transcript text via OpenAI audio transcriptions."""
import logging
import os

from openai import OpenAIError

from reel_ingest.core.config import settings
from reel_ingest.core.errors import TranscriptionError
from reel_ingest.core.openai_client import classify_openai_error, get_openai_client
from reel_ingest.pipeline.models import Transcript

logger = logging.getLogger(__name__)


def check_audio_size(audio_path: str) -> int:
    """Return the audio size in bytes, enforcing the non-empty and MAX_AUDIO_MB guards before any remote call."""
    try:
        size = os.path.getsize(audio_path)
    except OSError as e:
        raise TranscriptionError(f"Failed to check audio file size: {e}") from e
    if size == 0:
        raise TranscriptionError("Audio file is empty")
    max_bytes = settings.max_audio_mb * 1024 * 1024
    if size > max_bytes:
        raise TranscriptionError(
            f"Audio file too large: {size / (1024 * 1024):.2f}MB (max {settings.max_audio_mb}MB)"
        )
    return size


async def transcribe_audio(audio_path: str) -> Transcript:
    size = check_audio_size(audio_path)
    logger.info("transcription_started", extra={"bytes": size, "model": settings.transcription_model})

    client = get_openai_client()
    try:
        with open(audio_path, "rb") as f:
            resp = await client.audio.transcriptions.create(
                model=settings.transcription_model,
                file=f,
            )
    except OpenAIError as e:
        raise classify_openai_error(e, TranscriptionError, "Transcription") from e

    text = (getattr(resp, "text", None) or "").strip()
    if not text:
        raise TranscriptionError("Transcription returned empty text. The audio may not contain speech.")
    return Transcript(text=text)
