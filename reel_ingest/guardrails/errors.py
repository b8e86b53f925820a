import logging
from typing import Any, Dict

from fastapi import HTTPException

from reel_ingest.core.config import settings
from reel_ingest.core.errors import AppError, DuplicateReelError, ReelProcessingError
from reel_ingest.models.schemas import ProcessingErrorResponse

logger = logging.getLogger(__name__)


def as_http_500(e: Exception) -> HTTPException:
    """Log exception and return a generic 500 HTTPException (no internal details leaked).
    Why available: Centralized error handling so API never leaks stack traces or internal state to clients."""
    logger.error("unhandled_error", exc_info=e)
    return HTTPException(status_code=500, detail="Internal server error")


def processing_error_body(e: ReelProcessingError, debug: bool = False) -> Dict[str, Any]:
    """Diagnostic body naming the failed step. The underlying cause is included only in debug mode."""
    cause = e.root_cause
    body = ProcessingErrorResponse(
        message=e.message,
        step=e.step,
        code=cause.code if isinstance(cause, AppError) else None,
        cause=str(cause) if debug else None,
    )
    return body.model_dump(exclude_none=True)


def as_http_error(e: Exception) -> HTTPException:
    """Map pipeline errors to HTTPException: ReelProcessingError and AppError keep their status code; anything else is a generic 500.
    Why available: One mapping for /reels/extract and the async job runner so both report failures the same way."""
    if isinstance(e, ReelProcessingError):
        return HTTPException(status_code=e.status_code, detail=processing_error_body(e, debug=settings.debug))
    if isinstance(e, AppError):
        detail: Dict[str, Any] = {"message": e.message, "code": e.code}
        if isinstance(e, DuplicateReelError):
            detail["reel_id"] = e.reel_id
        return HTTPException(status_code=e.status_code, detail=detail)
    return as_http_500(e)
