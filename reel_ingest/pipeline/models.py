"""Data model for one reel ingestion: stage payloads, per-stage outcomes, the job, and the final result."""
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from reel_ingest.pipeline.resources import ResourceManager


# -------------------------
# Stage payloads
# -------------------------

@dataclass(frozen=True)
class MediaInfo:
    """Source metadata fetch output."""

    source_url: str
    media_url: str
    title: Optional[str] = None
    description: Optional[str] = None
    duration_seconds: Optional[float] = None


@dataclass(frozen=True)
class DownloadedVideo:
    path: str
    size_bytes: int


@dataclass(frozen=True)
class ExtractedAudio:
    path: str
    duration_seconds: Optional[float] = None


@dataclass(frozen=True)
class Thumbnail:
    """Hosted thumbnail. Empty url/storage_id is the placeholder for a failed or frameless capture."""

    url: str = ""
    storage_id: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.url


@dataclass(frozen=True)
class Transcript:
    text: str


@dataclass(frozen=True)
class VisualText:
    text: str = ""


@dataclass(frozen=True)
class QuizQuestion:
    question: str
    options: Tuple[str, ...] = ()
    answer: str = ""


@dataclass(frozen=True)
class Pitfall:
    pitfall: str
    solution: str = ""


@dataclass(frozen=True)
class GlossaryEntry:
    term: str
    definition: str = ""


@dataclass(frozen=True)
class QuickReferenceCard:
    facts: Tuple[str, ...] = ()
    definitions: Tuple[str, ...] = ()
    formulas: Tuple[str, ...] = ()


@dataclass(frozen=True)
class SummaryResult:
    """Summarization/entity extraction output: summary plus structured learning content."""

    summary: str
    tags: Tuple[str, ...]
    suggested_folder: str
    title: str = ""
    detailed_explanation: str = ""
    key_points: Tuple[str, ...] = ()
    examples: Tuple[str, ...] = ()
    related_topics: Tuple[str, ...] = ()
    actionable_checklist: Tuple[str, ...] = ()
    quiz_questions: Tuple[QuizQuestion, ...] = ()
    quick_reference_card: QuickReferenceCard = field(default_factory=QuickReferenceCard)
    learning_path: Tuple[str, ...] = ()
    common_pitfalls: Tuple[Pitfall, ...] = ()
    glossary: Tuple[GlossaryEntry, ...] = ()
    interactive_prompt_suggestions: Tuple[str, ...] = ()


@dataclass(frozen=True)
class VisualEntity:
    kind: str  # url | handle | hashtag | number
    value: str
    source: str  # visual | metadata | audio


@dataclass(frozen=True)
class MergedContent:
    """One prioritized text view over audio, on-screen text and caption metadata."""

    merged_text: str
    has_audio_transcript: bool
    has_visual_text: bool
    has_metadata: bool
    entities: Tuple[VisualEntity, ...] = ()


# -------------------------
# Outcomes and job state
# -------------------------

class StageStatus(str, Enum):
    SUCCESS = "success"
    DEGRADED = "degraded"
    FATAL = "fatal"


@dataclass(frozen=True)
class StageOutcome:
    step: str
    status: StageStatus
    payload: Any
    duration_ms: float
    detail: Optional[str] = None


@dataclass
class ProcessingJob:
    """One ingestion attempt once admitted past the queue. Owns its assets, outcomes and timings exclusively."""

    job_id: str
    key: str
    source_url: str
    resources: ResourceManager
    timings: Dict[str, float] = field(default_factory=dict)
    outcomes: Dict[str, StageOutcome] = field(default_factory=dict)

    def payload(self, step: str) -> Any:
        return self.outcomes[step].payload


# -------------------------
# Final artifact
# -------------------------

@dataclass(frozen=True)
class ResultMetadata:
    duration_seconds: Optional[float] = None
    original_title: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class ProcessingResult:
    """Terminal artifact handed to the persistence collaborator. Immutable once produced."""

    source_url: str
    video_url: str
    title: str
    thumbnail_url: str
    thumbnail_storage_id: str
    transcript: str
    summary: SummaryResult
    ocr_text: str
    merged: MergedContent
    metadata: ResultMetadata
    degraded_steps: Tuple[str, ...] = ()
    timings: Dict[str, float] = field(default_factory=dict, compare=False)

    @property
    def tags(self) -> List[str]:
        return list(self.summary.tags)

    @property
    def suggested_folder(self) -> str:
        return self.summary.suggested_folder

    def content(self) -> Dict[str, Any]:
        """The result as plain data without timings; equal for every scheduling policy given equal stage outputs."""
        data = asdict(self)
        data.pop("timings", None)
        return data
