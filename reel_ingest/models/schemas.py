from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any


class ExtractRequest(BaseModel):
    """Request body for /reels/extract and /reels/extract_async. Why available: Carries the reel URL to ingest."""

    source_url: str = Field(..., min_length=1, description="Instagram reel/post URL")


class ReelMetadata(BaseModel):
    duration_seconds: Optional[float] = None
    original_title: Optional[str] = None
    description: Optional[str] = None


class ReelResponse(BaseModel):
    """A stored reel: processing result plus store fields (reel_id, folder). Why available: Standard shape so clients render one reel the same way from every endpoint."""

    reel_id: str
    folder: str
    source_url: str
    video_url: str
    title: str
    thumbnail_url: str = ""
    transcript: str
    summary: str
    detailed_explanation: str = ""
    key_points: List[str] = Field(default_factory=list)
    examples: List[str] = Field(default_factory=list)
    related_topics: List[str] = Field(default_factory=list)
    actionable_checklist: List[str] = Field(default_factory=list)
    quiz_questions: List[Dict[str, Any]] = Field(default_factory=list)
    quick_reference_card: Dict[str, Any] = Field(default_factory=dict)
    learning_path: List[str] = Field(default_factory=list)
    common_pitfalls: List[Dict[str, Any]] = Field(default_factory=list)
    glossary: List[Dict[str, Any]] = Field(default_factory=list)
    interactive_prompt_suggestions: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    suggested_folder: str
    ocr_text: str = ""
    merged_text: str = ""
    entities: List[Dict[str, Any]] = Field(default_factory=list)
    metadata: ReelMetadata = Field(default_factory=ReelMetadata)
    degraded_steps: List[str] = Field(default_factory=list, description="Non-critical stages that fell back to empty output")


class ExtractResponse(BaseModel):
    """Response for /reels/extract: the stored reel plus per-stage timings in ms."""

    reel: ReelResponse
    timings: Dict[str, float] = Field(default_factory=dict)


class ProcessingErrorResponse(BaseModel):
    message: str
    step: Optional[str] = Field(None, description="Pipeline step that failed (diagnostic only)")
    code: Optional[str] = None
    cause: Optional[str] = Field(None, description="Underlying cause; only when DEBUG is on")


class ExtractAsyncResponse(BaseModel):
    job_id: str


class JobStatusResponse(BaseModel):
    """Status of an async extraction job. Why available: Lets clients poll after POST /reels/extract_async."""

    job_id: str
    status: str  # queued | running | done | failed
    source_url: str
    failed_step: Optional[str] = None
    error: Optional[str] = None
    reel_id: Optional[str] = None


class QueueEntry(BaseModel):
    id: int
    key: str
    label: Optional[str] = None


class QueueStatusResponse(BaseModel):
    capacity: int = Field(..., ge=1)
    in_flight: int = Field(..., ge=0)
    waiting: int = Field(..., ge=0)
    running: List[QueueEntry] = Field(default_factory=list)


class LimitsResponse(BaseModel):
    """API and pipeline limits. Why available: Lets clients show limits (video/audio size, queue capacity) before submitting."""

    max_download_mb: int
    download_timeout_s: float
    max_audio_mb: int
    max_transcript_chars: int
    queue_capacity: int
    pipeline_policy: str
    rate_limit_requests: int
    rate_limit_window_seconds: int
