import os
from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

load_dotenv()

PIPELINE_POLICIES = ("sequential", "concurrent", "pipelined")


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    """Application settings loaded from environment: model names, stage size/time guards, ffmpeg and object storage locations, admission queue sizing, and the pipeline scheduling policy.
    Why available: Single source of configuration so every stage adapter and the queue enforce the same limits."""
    openai_api_key: str = os.getenv("OPENAI_API_KEY", "")
    chat_model: str = os.getenv("CHAT_MODEL", "gpt-4o-mini")
    vision_model: str = os.getenv("VISION_MODEL", "gpt-4o-mini")
    transcription_model: str = os.getenv("TRANSCRIPTION_MODEL", "whisper-1")
    prompt_version: str = os.getenv("PROMPT_VERSION", "v1")

    temp_dir: str = os.getenv("TEMP_DIR", os.path.join(os.getcwd(), "temp"))

    fetch_timeout_s: float = float(os.getenv("FETCH_TIMEOUT_S", "60"))
    fetch_retries: int = int(os.getenv("FETCH_RETRIES", "3"))
    max_download_mb: int = int(os.getenv("MAX_DOWNLOAD_MB", "200"))
    download_timeout_s: float = float(os.getenv("DOWNLOAD_TIMEOUT_S", "120"))
    max_audio_mb: int = int(os.getenv("MAX_AUDIO_MB", "20"))  # remote transcription input cap
    audio_copy_timeout_s: float = float(os.getenv("AUDIO_COPY_TIMEOUT_S", "10"))
    ocr_image_timeout_s: float = float(os.getenv("OCR_IMAGE_TIMEOUT_S", "30"))
    max_transcript_chars: int = int(os.getenv("MAX_TRANSCRIPT_CHARS", "50000"))
    summary_input_chars: int = int(os.getenv("SUMMARY_INPUT_CHARS", "10000"))

    ffmpeg_path: str = os.getenv("FFMPEG_PATH", "ffmpeg")
    ffprobe_path: str = os.getenv("FFPROBE_PATH", "ffprobe")

    minio_endpoint: str = os.getenv("MINIO_ENDPOINT", "localhost:9000")
    minio_access_key: str = os.getenv("MINIO_ACCESS_KEY", "minioadmin")
    minio_secret_key: str = os.getenv("MINIO_SECRET_KEY", "minioadmin")
    minio_bucket: str = os.getenv("MINIO_BUCKET", "reel-thumbnails")
    minio_secure: bool = _env_bool("MINIO_SECURE")
    public_media_base_url: str = os.getenv("PUBLIC_MEDIA_BASE_URL", "")

    queue_capacity: int = int(os.getenv("QUEUE_CAPACITY", "1"))  # sized for a 512 MB host
    queue_settle_seconds: float = float(os.getenv("QUEUE_SETTLE_SECONDS", "1.0"))
    pipeline_policy: str = os.getenv("PIPELINE_POLICY", "concurrent")

    keepalive_enabled: bool = _env_bool("KEEPALIVE_ENABLED")
    keepalive_url: str = os.getenv("KEEPALIVE_URL", "http://localhost:8000/health")
    keepalive_interval_s: float = float(os.getenv("KEEPALIVE_INTERVAL_S", "1800"))

    debug: bool = _env_bool("DEBUG")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    @field_validator(
        "max_download_mb",
        "max_audio_mb",
        "max_transcript_chars",
        "summary_input_chars",
        "queue_capacity",
        "fetch_timeout_s",
        "download_timeout_s",
        "audio_copy_timeout_s",
        "ocr_image_timeout_s",
        "keepalive_interval_s",
    )
    @classmethod
    def must_be_positive(cls, v):
        """Ensure size limits, timeouts, and queue capacity are positive. Prevents invalid config from env."""
        if v <= 0:
            raise ValueError("must be > 0")
        return v

    @field_validator("fetch_retries", "queue_settle_seconds")
    @classmethod
    def must_not_be_negative(cls, v):
        if v < 0:
            raise ValueError("must be >= 0")
        return v

    @field_validator("pipeline_policy")
    @classmethod
    def must_be_known_policy(cls, v):
        """Reject scheduling policies the orchestrator does not implement."""
        v = (v or "").strip().lower()
        if v not in PIPELINE_POLICIES:
            raise ValueError(f"must be one of {', '.join(PIPELINE_POLICIES)}")
        return v


settings = Settings()
