import asyncio

import httpx
import pytest

from reel_ingest.services.keepalive import KeepAliveService


def _transport(statuses):
    hits = []

    def handler(request):
        hits.append(str(request.url))
        status = statuses[min(len(hits) - 1, len(statuses) - 1)]
        return httpx.Response(status, json={"status": "ok"})

    return httpx.MockTransport(handler), hits


@pytest.mark.asyncio
async def test_ping_once_counts_success_and_failure():
    transport, hits = _transport([200, 503])
    svc = KeepAliveService("http://app.local/health", transport=transport)

    async with httpx.AsyncClient(transport=transport) as client:
        assert await svc.ping_once(client) is True
        assert await svc.ping_once(client) is False

    assert (svc.pings_ok, svc.pings_failed) == (1, 1)
    assert hits == ["http://app.local/health"] * 2


@pytest.mark.asyncio
async def test_loop_pings_until_stopped_and_survives_errors():
    transport, hits = _transport([500, 200])
    svc = KeepAliveService("http://app.local/health", interval_s=0.01, transport=transport)

    svc.start()
    assert svc.running
    await asyncio.sleep(0.1)
    await svc.stop()

    assert not svc.running
    assert svc.pings_failed == 1
    assert svc.pings_ok >= 1
    count = len(hits)
    await asyncio.sleep(0.03)
    assert len(hits) == count


@pytest.mark.asyncio
async def test_disabled_service_never_starts():
    transport, hits = _transport([200])
    svc = KeepAliveService("http://app.local/health", interval_s=0.01, enabled=False, transport=transport)

    svc.start()
    await asyncio.sleep(0.03)

    assert not svc.running
    assert hits == []
    await svc.stop()


@pytest.mark.asyncio
async def test_start_twice_keeps_one_loop():
    transport, _ = _transport([200])
    svc = KeepAliveService("http://app.local/health", interval_s=10, transport=transport)

    svc.start()
    first = svc._task
    svc.start()
    assert svc._task is first
    await svc.stop()
    await svc.stop()
