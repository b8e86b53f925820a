"""Periodic self-ping so an idle free-tier host is not spun down."""
import asyncio
import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class KeepAliveService:
    """Pings `url` every `interval_s` seconds on an asyncio task. Never raises from the loop.
    Why available: Lifecycle is owned by the process entry point (FastAPI lifespan) through start()/stop()."""

    def __init__(
        self,
        url: str,
        interval_s: float = 1800.0,
        enabled: bool = True,
        timeout_s: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.interval_s = interval_s
        self.enabled = enabled
        self.timeout_s = timeout_s
        self._transport = transport
        self._task: Optional["asyncio.Task[None]"] = None
        self.pings_ok = 0
        self.pings_failed = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the ping loop. No-op when disabled or already running. Must be called inside a running loop."""
        if not self.enabled:
            logger.info("keepalive_disabled")
            return
        if self.running:
            logger.info("keepalive_already_running")
            return
        self._task = asyncio.get_running_loop().create_task(self._loop())
        logger.info("keepalive_started", extra={"url": self.url, "interval_s": self.interval_s})

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("keepalive_stopped", extra={"ok": self.pings_ok, "failed": self.pings_failed})

    async def ping_once(self, client: httpx.AsyncClient) -> bool:
        try:
            resp = await client.get(self.url)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            self.pings_failed += 1
            logger.warning("keepalive_ping_failed", extra={"url": self.url, "error": str(e)})
            return False
        self.pings_ok += 1
        logger.info("keepalive_ping_ok", extra={"url": self.url, "status": resp.status_code})
        return True

    async def _loop(self) -> None:
        async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport) as client:
            while True:
                await asyncio.sleep(self.interval_s)
                await self.ping_once(client)
