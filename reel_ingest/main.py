import logging
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Callable, Optional

from fastapi import BackgroundTasks, FastAPI, Header, HTTPException, Request

from reel_ingest.adapters.fetcher import clean_source_url
from reel_ingest.core.config import settings
from reel_ingest.core.errors import AppError, DuplicateReelError, ReelProcessingError
from reel_ingest.guardrails.errors import as_http_error
from reel_ingest.guardrails.rate_limit import SimpleRateLimiter
from reel_ingest.ingest.jobs import JOBS, Job
from reel_ingest.models.schemas import (
    ExtractAsyncResponse,
    ExtractRequest,
    ExtractResponse,
    JobStatusResponse,
    LimitsResponse,
    QueueStatusResponse,
    ReelMetadata,
    ReelResponse,
)
from reel_ingest.observability.middleware import RequestTimingMiddleware, get_request_id
from reel_ingest.pipeline.orchestrator import ReelOrchestrator
from reel_ingest.pipeline.queue import AdmissionQueue
from reel_ingest.services.keepalive import KeepAliveService
from reel_ingest.storage.reels import ReelStore, StoredReel

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)


# -------------------------
# App setup
# -------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Owns process-wide components: admission queue, orchestrator, reel store and the keep-alive pinger."""
    app.state.queue = AdmissionQueue(
        capacity=settings.queue_capacity,
        settle_seconds=settings.queue_settle_seconds,
    )
    app.state.orchestrator = ReelOrchestrator()
    app.state.store = ReelStore()
    app.state.keepalive = KeepAliveService(
        url=settings.keepalive_url,
        interval_s=settings.keepalive_interval_s,
        enabled=settings.keepalive_enabled,
    )
    app.state.keepalive.start()
    logger.info(
        "app_started",
        extra={"policy": app.state.orchestrator.policy.name, "queue_capacity": settings.queue_capacity},
    )
    try:
        yield
    finally:
        await app.state.keepalive.stop()


app = FastAPI(title="Reel Ingest", lifespan=lifespan)
app.add_middleware(RequestTimingMiddleware)


RATE_LIMIT_REQUESTS = 20
RATE_LIMIT_WINDOW_SECONDS = 60
rate_limiter = SimpleRateLimiter(max_requests=RATE_LIMIT_REQUESTS, window_seconds=RATE_LIMIT_WINDOW_SECONDS)

ANONYMOUS_KEY = "anonymous"


def _admission_key(x_user_id: Optional[str]) -> str:
    return (x_user_id or "").strip() or ANONYMOUS_KEY


def _clean_url_or_400(source_url: str) -> str:
    try:
        return clean_source_url(source_url)
    except AppError as e:
        raise as_http_error(e) from e


def _reel_response(reel: StoredReel) -> ReelResponse:
    """Flatten a stored ProcessingResult into the API shape."""
    r = reel.result
    s = r.summary
    return ReelResponse(
        reel_id=reel.reel_id,
        folder=reel.folder,
        source_url=r.source_url,
        video_url=r.video_url,
        title=r.title,
        thumbnail_url=r.thumbnail_url,
        transcript=r.transcript,
        summary=s.summary,
        detailed_explanation=s.detailed_explanation,
        key_points=list(s.key_points),
        examples=list(s.examples),
        related_topics=list(s.related_topics),
        actionable_checklist=list(s.actionable_checklist),
        quiz_questions=[asdict(q) for q in s.quiz_questions],
        quick_reference_card=asdict(s.quick_reference_card),
        learning_path=list(s.learning_path),
        common_pitfalls=[asdict(p) for p in s.common_pitfalls],
        glossary=[asdict(g) for g in s.glossary],
        interactive_prompt_suggestions=list(s.interactive_prompt_suggestions),
        tags=list(s.tags),
        suggested_folder=s.suggested_folder,
        ocr_text=r.ocr_text,
        merged_text=r.merged.merged_text,
        entities=[asdict(e) for e in r.merged.entities],
        metadata=ReelMetadata(**asdict(r.metadata)),
        degraded_steps=list(r.degraded_steps),
    )


async def _process(
    app: FastAPI, key: str, source_url: str, on_admitted: Optional[Callable[[], None]] = None
) -> StoredReel:
    """Run one ingestion through the admission queue and persist the result.
    The caller must hold the store claim for (key, source_url); it is released whatever the outcome."""
    orchestrator: ReelOrchestrator = app.state.orchestrator
    queue: AdmissionQueue = app.state.queue

    async def _admitted():
        if on_admitted is not None:
            on_admitted()
        return await orchestrator.run(source_url, key)

    try:
        result = await queue.add(key, _admitted, label=source_url)
        return app.state.store.save(key, result)
    finally:
        app.state.store.release(key, source_url)


def _claim_or_409(app: FastAPI, key: str, source_url: str) -> None:
    try:
        app.state.store.claim(key, source_url)
    except DuplicateReelError as e:
        raise as_http_error(e) from e


# -------------------------
# Root
# -------------------------

@app.get("/")
def root():
    """Returns a minimal welcome payload with app name and docs URL."""
    return {"app": "Reel Ingest", "docs": "/docs"}


@app.get("/health")
def health():
    """Returns 200 OK with status. Used by load balancers, probes and the keep-alive pinger.
    Why available: Standard endpoint for uptime checks and orchestration."""
    return {"status": "ok"}


# -------------------------
# Limits and queue (for clients)
# -------------------------

@app.get("/limits", response_model=LimitsResponse)
def limits(request: Request):
    """Returns current pipeline limits (video/audio size, transcript length, queue capacity, policy, rate limit).
    Why available: Lets clients display or enforce limits before submitting a reel."""
    rate_limiter.check(request)
    return LimitsResponse(
        max_download_mb=settings.max_download_mb,
        download_timeout_s=settings.download_timeout_s,
        max_audio_mb=settings.max_audio_mb,
        max_transcript_chars=settings.max_transcript_chars,
        queue_capacity=request.app.state.queue.capacity,
        pipeline_policy=request.app.state.orchestrator.policy.name,
        rate_limit_requests=RATE_LIMIT_REQUESTS,
        rate_limit_window_seconds=RATE_LIMIT_WINDOW_SECONDS,
    )


@app.get("/queue", response_model=QueueStatusResponse)
def queue_status(request: Request):
    """Admission queue snapshot: capacity, in-flight and waiting counts, running entries."""
    return QueueStatusResponse(**request.app.state.queue.status())


# -------------------------
# Sync extract
# -------------------------

@app.post("/reels/extract", response_model=ExtractResponse)
async def extract(req: ExtractRequest, request: Request, x_user_id: Optional[str] = Header(None)):
    """Ingests one reel (fetch, download, audio, thumbnail, transcript, summary, OCR, merge) through the admission queue and stores it. Duplicate URL for the same user returns 409.
    Why available: Primary way to turn a reel link into study notes."""
    rate_limiter.check(request)
    key = _admission_key(x_user_id)
    source_url = _clean_url_or_400(req.source_url)

    _claim_or_409(request.app, key, source_url)

    logger.info("extract_requested", extra={"request_id": get_request_id(request), "key": key, "source_url": source_url})
    try:
        reel = await _process(request.app, key, source_url)
    except Exception as e:
        raise as_http_error(e) from e

    return ExtractResponse(reel=_reel_response(reel), timings=dict(reel.result.timings))


# -------------------------
# Async extract
# -------------------------

@app.post("/reels/extract_async", response_model=ExtractAsyncResponse)
async def extract_async(
    req: ExtractRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    x_user_id: Optional[str] = Header(None),
):
    """Registers a job and runs the ingestion in the background. Client polls GET /jobs/{job_id} for status (queued / running / done / failed).
    Why available: Ingestion can take minutes behind the queue; clients should not hold a request open for it."""
    rate_limiter.check(request)
    key = _admission_key(x_user_id)
    source_url = _clean_url_or_400(req.source_url)

    _claim_or_409(request.app, key, source_url)

    job_id = str(uuid.uuid4())
    JOBS[job_id] = Job(
        job_id=job_id,
        key=key,
        source_url=source_url,
        status="queued",
        created_at=time.time(),
    )
    app_ref = request.app
    logger.info("extract_job_queued", extra={"request_id": get_request_id(request), "job_id": job_id, "key": key})

    async def _runner():
        """Background task: run the ingestion and update job status."""
        j = JOBS[job_id]

        def _mark_running():
            j.status = "running"
            j.started_at = time.time()

        try:
            reel = await _process(app_ref, key, source_url, on_admitted=_mark_running)
            j.reel_id = reel.reel_id
            j.status = "done"
        except ReelProcessingError as e:
            j.status = "failed"
            j.failed_step = e.step
            j.error = str(e.root_cause) if settings.debug else e.message
        except Exception as e:
            logger.error("async_job_failed", exc_info=True, extra={"job_id": job_id})
            j.status = "failed"
            j.error = e.message if isinstance(e, AppError) else "Internal error"
        finally:
            j.finished_at = time.time()

    background_tasks.add_task(_runner)

    return ExtractAsyncResponse(job_id=job_id)


# -------------------------
# Job Status / reels
# -------------------------

@app.get("/jobs/{job_id}", response_model=JobStatusResponse)
def job_status(job_id: str, request: Request):
    """Returns the status of an async extraction job (queued / running / done / failed), plus the failed step or stored reel id."""
    rate_limiter.check(request)

    job = JOBS.get(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")

    return JobStatusResponse(
        job_id=job.job_id,
        status=job.status,
        source_url=job.source_url,
        failed_step=job.failed_step,
        error=job.error,
        reel_id=job.reel_id,
    )


@app.get("/reels/{reel_id}", response_model=ReelResponse)
def get_reel(reel_id: str, request: Request):
    reel = request.app.state.store.get(reel_id)
    if reel is None:
        raise HTTPException(status_code=404, detail="Reel not found")
    return _reel_response(reel)
