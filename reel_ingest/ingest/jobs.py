"""In-memory job store for async extraction: track status (queued / running / done / failed) and results."""
from dataclasses import dataclass
from typing import Dict, Optional


@dataclass
class Job:
    """A single async extraction job: job_id, admission key, source URL, status (queued | running | done | failed), timestamps, and the failed step or stored reel id.
    Why available: In-memory store for /reels/extract_async so clients can poll /jobs/{job_id} until the job completes or fails."""

    job_id: str
    key: str
    source_url: str
    status: str  # queued | running | done | failed
    created_at: float
    started_at: Optional[float] = None
    finished_at: Optional[float] = None
    error: Optional[str] = None
    failed_step: Optional[str] = None
    reel_id: Optional[str] = None

# In-memory store (MVP). In production: Redis/DB.
JOBS: Dict[str, Job] = {}
