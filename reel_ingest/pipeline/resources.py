"""Resource Manager: the only code allowed to delete a job's ephemeral files."""
import logging
import os
import shutil
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class EphemeralAsset:
    """A temporary on-disk byproduct (video, audio, thumbnail image) owned by exactly one job."""

    asset_id: str
    path: str
    kind: str
    owner: str  # step that allocated it
    released: bool = False


class ResourceManager:
    """Tracks every file a job allocates and removes each one exactly once.
    Paths are registered before anything is written to them, so partially written files are covered too.
    Deletion failures other than "already gone" leave the asset pending so the exit cleanup retries it."""

    def __init__(self, root: str, job_id: Optional[str] = None):
        self.job_id = job_id or uuid.uuid4().hex
        self.job_dir = os.path.join(root, self.job_id)
        self._assets: Dict[str, EphemeralAsset] = {}
        self.created = 0
        self.deleted = 0
        self.failed = 0
        self._closed = False

    def allocate(self, kind: str, suffix: str, owner: str) -> str:
        """Reserve a fresh path under the job directory and register it as an asset of `owner`."""
        if self._closed:
            raise RuntimeError("resource manager already cleaned up")
        os.makedirs(self.job_dir, exist_ok=True)
        asset_id = uuid.uuid4().hex
        path = os.path.join(self.job_dir, f"{kind}_{asset_id[:12]}{suffix}")
        self._assets[asset_id] = EphemeralAsset(asset_id=asset_id, path=path, kind=kind, owner=owner)
        self.created += 1
        return path

    def scoped(self, owner: str) -> "ScopedAllocator":
        return ScopedAllocator(self, owner)

    def pending(self) -> List[EphemeralAsset]:
        return [a for a in self._assets.values() if not a.released]

    def release(self, asset: EphemeralAsset) -> bool:
        """Delete one asset. Returns True when it is gone (deleted now or already missing)."""
        if asset.released:
            return True
        try:
            os.remove(asset.path)
            logger.debug("asset_deleted", extra={"job_id": self.job_id, "path": asset.path, "kind": asset.kind})
        except FileNotFoundError:
            logger.debug("asset_already_gone", extra={"job_id": self.job_id, "path": asset.path})
        except OSError:
            self.failed += 1
            logger.warning("asset_delete_failed", exc_info=True, extra={"job_id": self.job_id, "path": asset.path})
            return False
        asset.released = True
        self.deleted += 1
        return True

    def release_owned_by(self, owner: str) -> int:
        """Early release of everything a step allocated. Never raises."""
        count = 0
        for asset in self.pending():
            if asset.owner == owner and self.release(asset):
                count += 1
        if count:
            logger.info("assets_released_early", extra={"job_id": self.job_id, "owner": owner, "count": count})
        return count

    def cleanup(self) -> None:
        """Exit guard: release every pending asset and remove the job directory. Never raises."""
        for asset in self.pending():
            self.release(asset)
        self._closed = True
        if os.path.isdir(self.job_dir):
            shutil.rmtree(self.job_dir, ignore_errors=True)
        logger.info(
            "job_cleanup_done",
            extra={"job_id": self.job_id, "created": self.created, "deleted": self.deleted, "failed": self.failed},
        )


class ScopedAllocator:
    """Allocation handle given to one stage adapter; every path it hands out is owned by that stage."""

    def __init__(self, manager: ResourceManager, owner: str):
        self._manager = manager
        self.owner = owner

    @property
    def job_id(self) -> str:
        return self._manager.job_id

    def allocate(self, kind: str, suffix: str) -> str:
        return self._manager.allocate(kind, suffix, owner=self.owner)
