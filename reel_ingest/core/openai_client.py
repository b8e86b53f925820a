"""OpenAI client for transcription, vision OCR and summarization (api_key from config)."""
from typing import Any, Type

from reel_ingest.core.config import settings
from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    AuthenticationError,
    RateLimitError,
)

from reel_ingest.core.errors import AppError

_openai_client: Any = None


def get_openai_client() -> AsyncOpenAI:
    """Return a singleton AsyncOpenAI client configured with api_key from settings. Used for audio transcriptions, vision chat and JSON summaries.
    Why available: Single place to get the OpenAI client so transcriber, ocr and summarizer adapters share one connection pool and config."""
    global _openai_client
    if _openai_client is None:
        _openai_client = AsyncOpenAI(api_key=settings.openai_api_key)
    return _openai_client


def classify_openai_error(err: Exception, error_cls: Type[AppError], service: str) -> AppError:
    """Map an OpenAI SDK exception onto one of our AppError types, marking quota/rate-limit/connection faults transient.
    Why available: Transcriber, OCR and summarizer adapters report provider failures the same way."""
    if isinstance(err, AuthenticationError):
        return error_cls(f"Invalid OpenAI API key ({service})", transient=False)
    if isinstance(err, RateLimitError):
        return error_cls(f"OpenAI quota or rate limit exceeded ({service}). Please try again later.", transient=True)
    if isinstance(err, APITimeoutError):
        return error_cls(f"{service} request timed out", transient=True)
    if isinstance(err, APIConnectionError):
        return error_cls(f"Could not reach OpenAI ({service}): {err}", transient=True)
    if isinstance(err, APIStatusError):
        return error_cls(f"{service} failed: {err}", transient=err.status_code >= 500)
    return error_cls(f"{service} failed: {err}")
