"""Thin async wrappers around the ffmpeg/ffprobe binaries."""
import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from reel_ingest.core.config import settings

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    returncode: int
    stdout: bytes
    stderr: bytes

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def stderr_tail(self, limit: int = 300) -> str:
        return self.stderr.decode("utf-8", errors="replace")[-limit:].strip()


async def run_command(args: Sequence[str], timeout: Optional[float] = None) -> CommandResult:
    """Run a binary and collect its output. On timeout the process is killed and reaped before asyncio.TimeoutError propagates.
    Raises FileNotFoundError when the binary is missing."""
    process = await asyncio.create_subprocess_exec(
        *args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise
    return CommandResult(process.returncode or 0, stdout or b"", stderr or b"")


async def probe_duration(path: str, timeout: float = 30.0) -> Optional[float]:
    """Container duration in seconds via ffprobe; None when unknown, unreadable or not positive."""
    args = [
        settings.ffprobe_path,
        "-v", "error",
        "-show_entries", "format=duration",
        "-of", "json",
        path,
    ]
    try:
        result = await run_command(args, timeout=timeout)
    except (OSError, asyncio.TimeoutError):
        logger.warning("ffprobe_failed", exc_info=True, extra={"path": path})
        return None
    if not result.ok:
        logger.warning("ffprobe_failed", extra={"path": path, "stderr": result.stderr_tail()})
        return None
    try:
        duration = float(json.loads(result.stdout or b"{}").get("format", {}).get("duration"))
    except (TypeError, ValueError):
        return None
    return duration if duration > 0 else None
