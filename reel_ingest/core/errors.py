"""Error taxonomy for reel ingestion.

Every stage adapter raises a subclass of AppError. `transient` separates network/timeout/quota
faults (worth retrying) from content faults (private media, oversized payloads, empty audio).
The orchestrator wraps critical failures in ReelProcessingError carrying the failed step label.
"""
from typing import Optional


class AppError(Exception):
    """Base error: machine-readable code, HTTP status for the API layer, and the transient flag."""

    code = "APP_ERROR"
    status_code = 500
    transient = False

    def __init__(
        self,
        message: str = "",
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        transient: Optional[bool] = None,
    ):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        if transient is not None:
            self.transient = transient


# Fetch


class InvalidSourceUrlError(AppError):
    code = "INVALID_SOURCE_URL"
    status_code = 400


class MediaNotFoundError(AppError):
    code = "MEDIA_NOT_FOUND"
    status_code = 404


class PrivateMediaError(AppError):
    code = "PRIVATE_MEDIA"
    status_code = 403


class UnsupportedMediaError(AppError):
    code = "UNSUPPORTED_MEDIA"
    status_code = 400


class SourceFetchError(AppError):
    code = "SOURCE_FETCH_ERROR"
    status_code = 502
    transient = True


# Download


class VideoDownloadError(AppError):
    code = "VIDEO_DOWNLOAD_ERROR"
    status_code = 502
    transient = True


class PayloadTooLargeError(VideoDownloadError):
    code = "PAYLOAD_TOO_LARGE"
    status_code = 413
    transient = False


class FileSystemError(AppError):
    code = "FILE_SYSTEM_ERROR"
    status_code = 500


# Audio


class AudioExtractionError(AppError):
    code = "AUDIO_EXTRACTION_ERROR"
    status_code = 500


class InvalidMediaError(AppError):
    code = "INVALID_MEDIA"
    status_code = 400


# Thumbnail


class ThumbnailGenerationError(AppError):
    code = "THUMBNAIL_GENERATION_ERROR"
    status_code = 500


class StorageUploadError(AppError):
    code = "STORAGE_UPLOAD_ERROR"
    status_code = 502
    transient = True


# AI services


class TranscriptionError(AppError):
    code = "TRANSCRIPTION_ERROR"
    status_code = 502


class SummarizationError(AppError):
    code = "SUMMARIZATION_ERROR"
    status_code = 502


class OcrError(AppError):
    code = "OCR_ERROR"
    status_code = 502


# Orchestration


class ReelProcessingError(AppError):
    """A critical stage failed. `step` is a diagnostic label for logs and API responses only."""

    code = "REEL_PROCESSING_ERROR"

    def __init__(self, step: str, root_cause: BaseException):
        status = root_cause.status_code if isinstance(root_cause, AppError) else 500
        transient = root_cause.transient if isinstance(root_cause, AppError) else False
        super().__init__(
            f"Reel processing failed at step: {step}",
            status_code=status,
            transient=transient,
        )
        self.step = step
        self.root_cause = root_cause


# Storage


class DuplicateReelError(AppError):
    """The same source URL is already saved, or being processed, for this key. `reel_id` is set once saved."""

    code = "DUPLICATE_REEL"
    status_code = 409

    def __init__(self, message: str, reel_id: Optional[str] = None):
        super().__init__(message)
        self.reel_id = reel_id
