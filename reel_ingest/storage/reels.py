"""In-memory persistence collaborator for finished reels."""
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Dict, Optional, Set, Tuple

from reel_ingest.core.errors import DuplicateReelError
from reel_ingest.pipeline.models import ProcessingResult


@dataclass(frozen=True)
class StoredReel:
    reel_id: str
    key: str
    folder: str
    created_at: float
    result: ProcessingResult


class ReelStore:
    """Stores ProcessingResults per admission key (user). Folder comes from the suggested category.
    (key, source_url) is unique: claim() reserves the pair before processing, save() rejects a second copy.
    Why available: Stand-in for the document store; the pipeline only hands it a finished result. In production: a DB."""

    def __init__(self):
        self._reels: Dict[str, StoredReel] = {}
        self._pending: Set[Tuple[str, str]] = set()
        self._lock = threading.Lock()

    def claim(self, key: str, source_url: str) -> None:
        """Reserve (key, source_url) for one in-flight ingestion. Raises DuplicateReelError if saved or already claimed."""
        with self._lock:
            existing = self._find(key, source_url)
            if existing is not None:
                raise DuplicateReelError("Reel already saved", reel_id=existing.reel_id)
            if (key, source_url) in self._pending:
                raise DuplicateReelError("Reel is already being processed")
            self._pending.add((key, source_url))

    def release(self, key: str, source_url: str) -> None:
        with self._lock:
            self._pending.discard((key, source_url))

    def save(self, key: str, result: ProcessingResult) -> StoredReel:
        reel = StoredReel(
            reel_id=uuid.uuid4().hex,
            key=key,
            folder=(result.suggested_folder or "uncategorized").strip().lower(),
            created_at=time.time(),
            result=result,
        )
        with self._lock:
            existing = self._find(key, result.source_url)
            if existing is not None:
                raise DuplicateReelError("Reel already saved", reel_id=existing.reel_id)
            self._reels[reel.reel_id] = reel
            self._pending.discard((key, result.source_url))
        return reel

    def get(self, reel_id: str) -> Optional[StoredReel]:
        return self._reels.get(reel_id)

    def _find(self, key: str, source_url: str) -> Optional[StoredReel]:
        # caller holds the lock
        for reel in self._reels.values():
            if reel.key == key and reel.result.source_url == source_url:
                return reel
        return None
