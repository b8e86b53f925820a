"""One orchestrator for every scheduling policy: timing, criticality, early release and the exit guard."""
import logging
import time
from typing import Any, Dict, Optional, Sequence, Set

from reel_ingest.core.config import settings
from reel_ingest.core.errors import ReelProcessingError
from reel_ingest.pipeline.models import (
    ExtractedAudio,
    MediaInfo,
    MergedContent,
    ProcessingJob,
    ProcessingResult,
    ResultMetadata,
    StageOutcome,
    StageStatus,
    SummaryResult,
    Thumbnail,
    Transcript,
    VisualText,
)
from reel_ingest.pipeline.policies import SchedulingPolicy, get_policy
from reel_ingest.pipeline.resources import ResourceManager
from reel_ingest.pipeline.stages import (
    AUDIO_EXTRACTION,
    FETCH,
    MERGE,
    OCR,
    STAGE_GRAPH,
    SUMMARIZATION,
    THUMBNAIL,
    TRANSCRIPTION,
    StageAdapters,
    StageSkipped,
    StageSpec,
    default_adapters,
    dependents_of,
)

logger = logging.getLogger(__name__)

UNTITLED = "Untitled Reel"


def _ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000.0, 3)


def build_result(
    source_url: str,
    payloads: Dict[str, Any],
    degraded_steps: Sequence[str] = (),
    timings: Optional[Dict[str, float]] = None,
) -> ProcessingResult:
    """Assemble the terminal artifact from stage payloads. Pure, so every policy yields the same content."""
    info: MediaInfo = payloads[FETCH]
    audio: ExtractedAudio = payloads[AUDIO_EXTRACTION]
    thumb: Thumbnail = payloads[THUMBNAIL]
    transcript: Transcript = payloads[TRANSCRIPTION]
    summary: SummaryResult = payloads[SUMMARIZATION]
    visual: VisualText = payloads[OCR]
    merged: MergedContent = payloads[MERGE]

    title = (summary.title or "").strip() or (info.title or "").strip() or UNTITLED
    return ProcessingResult(
        source_url=info.source_url or source_url,
        video_url=info.media_url,
        title=title,
        thumbnail_url=thumb.url,
        thumbnail_storage_id=thumb.storage_id,
        transcript=transcript.text,
        summary=summary,
        ocr_text=visual.text,
        merged=merged,
        metadata=ResultMetadata(
            duration_seconds=audio.duration_seconds if audio.duration_seconds is not None else info.duration_seconds,
            original_title=info.title,
            description=info.description,
        ),
        degraded_steps=tuple(degraded_steps),
        timings=dict(timings or {}),
    )


class _JobRun:
    """Per-job bookkeeping for one orchestrator invocation; never shared between jobs."""

    def __init__(self, job: ProcessingJob, graph: Sequence[StageSpec], early_release: bool):
        self.job = job
        self.graph = graph
        self.early_release = early_release
        self.settled: Set[str] = set()
        self.released: Set[str] = set()

    def settle(self, step: str) -> None:
        self.settled.add(step)
        if not self.early_release:
            return
        for spec in self.graph:
            name = spec.name
            if name in self.released or name not in self.settled:
                continue
            deps = dependents_of(name, self.graph)
            if deps and all(d in self.settled for d in deps):
                self.released.add(name)
                self.job.resources.release_owned_by(name)


class ReelOrchestrator:
    """Runs the stage graph for one source URL under a scheduling policy.
    Critical failures raise ReelProcessingError carrying the step label; non-critical failures degrade to
    placeholders. ResourceManager.cleanup() runs on every exit path."""

    def __init__(
        self,
        adapters: Optional[StageAdapters] = None,
        policy: Optional[SchedulingPolicy] = None,
        *,
        temp_dir: Optional[str] = None,
        graph: Sequence[StageSpec] = STAGE_GRAPH,
    ):
        self.adapters = adapters or default_adapters()
        self.policy = policy or get_policy(settings.pipeline_policy)
        self.temp_dir = temp_dir or settings.temp_dir
        self.graph = graph

    async def run(self, source_url: str, key: str = "anonymous") -> ProcessingResult:
        resources = ResourceManager(self.temp_dir)
        job = ProcessingJob(job_id=resources.job_id, key=key, source_url=source_url, resources=resources)
        state = _JobRun(job, self.graph, self.policy.early_release)
        logger.info(
            "job_started",
            extra={"job_id": job.job_id, "key": key, "source_url": source_url, "policy": self.policy.name},
        )
        start = time.perf_counter()

        async def run_stage(spec: StageSpec) -> None:
            await self._run_stage(state, spec)

        try:
            await self.policy.execute(self.graph, run_stage)
            job.timings["total_ms"] = _ms(start)
            degraded = [s.name for s in self.graph if job.outcomes[s.name].status == StageStatus.DEGRADED]
            result = build_result(
                source_url,
                {name: outcome.payload for name, outcome in job.outcomes.items()},
                degraded_steps=degraded,
                timings=job.timings,
            )
            logger.info(
                "job_finished",
                extra={"job_id": job.job_id, "total_ms": job.timings["total_ms"], "degraded": degraded},
            )
            return result
        except ReelProcessingError as e:
            logger.error(
                "job_failed",
                extra={"job_id": job.job_id, "step": e.step, "total_ms": _ms(start)},
            )
            raise
        finally:
            resources.cleanup()

    async def _run_stage(self, state: _JobRun, spec: StageSpec) -> None:
        job = state.job
        start = time.perf_counter()
        detail = None
        try:
            payload = await spec.run(job, self.adapters)
            status = StageStatus.SUCCESS
        except StageSkipped as e:
            payload = spec.placeholder() if spec.placeholder else None
            status = StageStatus.DEGRADED
            detail = str(e)
            logger.info("stage_skipped", extra={"job_id": job.job_id, "step": spec.name, "reason": detail})
        except Exception as e:
            duration = _ms(start)
            job.timings[f"{spec.name}_ms"] = duration
            if spec.critical or spec.placeholder is None:
                job.outcomes[spec.name] = StageOutcome(spec.name, StageStatus.FATAL, None, duration, detail=str(e))
                logger.error(
                    "stage_failed",
                    exc_info=True,
                    extra={"job_id": job.job_id, "step": spec.name, "duration_ms": duration},
                )
                state.settle(spec.name)
                raise ReelProcessingError(spec.name, e) from e
            payload = spec.placeholder()
            status = StageStatus.DEGRADED
            detail = str(e)
            logger.warning(
                "stage_degraded",
                exc_info=True,
                extra={"job_id": job.job_id, "step": spec.name, "error": detail},
            )

        duration = _ms(start)
        job.timings[f"{spec.name}_ms"] = duration
        job.outcomes[spec.name] = StageOutcome(spec.name, status, payload, duration, detail=detail)
        logger.info(
            "stage_done",
            extra={"job_id": job.job_id, "step": spec.name, "status": status.value, "duration_ms": duration},
        )
        state.settle(spec.name)
