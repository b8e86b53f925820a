import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient

from reel_ingest.core.errors import AudioExtractionError, PrivateMediaError
from reel_ingest.ingest.jobs import JOBS
from reel_ingest.main import app, rate_limiter
from reel_ingest.pipeline.orchestrator import ReelOrchestrator
from reel_ingest.pipeline.policies import get_policy
from reel_ingest.pipeline.queue import AdmissionQueue

REEL_URL = "https://www.instagram.com/reel/Cabc123/"
OTHER_URL = "https://www.instagram.com/reel/Cxyz789/"


@pytest.fixture
def client():
    rate_limiter.reset()
    JOBS.clear()
    with TestClient(app) as c:
        c.app.state.queue = AdmissionQueue(capacity=1)
        yield c
    JOBS.clear()


@pytest.fixture
def install(client, stub_pipeline, temp_root):
    """install(**stub_kwargs) swaps the app's orchestrator for one driven by StubPipeline and returns the stub."""

    def _install(policy="concurrent", **kwargs):
        stub = stub_pipeline(**kwargs)
        client.app.state.orchestrator = ReelOrchestrator(stub.bundle(), get_policy(policy), temp_dir=str(temp_root))
        return stub

    return _install


def _asgi_client():
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")


def _log(item, title: str, request: dict, response):
    """
    Store logs on the test item so conftest can attach to pytest-html report.
    """
    logs = getattr(item, "_api_logs", [])
    logs.append({"title": title, "request": request, "response": {"status_code": response.status_code, "json": response.json()}})
    item._api_logs = logs


def test_root_and_health(client):
    assert client.get("/").json()["app"] == "Reel Ingest"
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}
    assert r.headers.get("x-request-id")


def test_request_id_is_echoed(client):
    r = client.get("/health", headers={"x-request-id": "req-123"})
    assert r.headers["x-request-id"] == "req-123"


def test_limits_report_queue_and_policy(client, install):
    install(policy="pipelined")
    data = client.get("/limits").json()

    assert data["queue_capacity"] == 1
    assert data["pipeline_policy"] == "pipelined"
    assert data["max_download_mb"] > 0
    assert data["rate_limit_requests"] == 20


def test_queue_status_when_idle(client):
    assert client.get("/queue").json() == {"capacity": 1, "in_flight": 0, "waiting": 0, "running": []}


def test_extract_returns_stored_reel_and_timings(client, install, temp_root, request):
    install()
    body = {"source_url": REEL_URL + "?igsh=abc"}
    r = client.post("/reels/extract", json=body, headers={"x-user-id": "user-1"})
    _log(request.node, "POST /reels/extract", body, r)

    assert r.status_code == 200, r.text
    data = r.json()
    reel = data["reel"]
    assert reel["source_url"] == REEL_URL
    assert reel["title"] == "Python Tips"
    assert reel["tags"] == ["python", "tips"]
    assert reel["folder"] == "programming"
    assert reel["thumbnail_url"].endswith("t.jpg")
    assert "SAVE20" in reel["ocr_text"]
    assert reel["metadata"]["duration_seconds"] == 30.5
    assert reel["degraded_steps"] == []
    assert data["timings"]["total_ms"] >= 0
    assert list(temp_root.iterdir()) == []

    fetched = client.get(f"/reels/{reel['reel_id']}")
    assert fetched.status_code == 200
    assert fetched.json()["summary"] == reel["summary"]


def test_duplicate_url_for_same_user_is_409(client, install):
    install()
    headers = {"x-user-id": "user-1"}
    first = client.post("/reels/extract", json={"source_url": REEL_URL}, headers=headers)
    assert first.status_code == 200

    again = client.post("/reels/extract", json={"source_url": REEL_URL + "?utm=x"}, headers=headers)
    assert again.status_code == 409
    assert again.json()["detail"]["reel_id"] == first.json()["reel"]["reel_id"]

    other_user = client.post("/reels/extract", json={"source_url": REEL_URL}, headers={"x-user-id": "user-2"})
    assert other_user.status_code == 200


def test_invalid_url_is_400(client, install):
    stub = install()
    r = client.post("/reels/extract", json={"source_url": "https://example.com/video"})

    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "INVALID_SOURCE_URL"
    assert stub.events == []


def test_critical_failure_names_the_step(client, install, temp_root, request):
    install(fail={"audio_extraction": AudioExtractionError("Extracted audio file is empty")})
    r = client.post("/reels/extract", json={"source_url": REEL_URL})
    _log(request.node, "POST /reels/extract (audio fails)", {"source_url": REEL_URL}, r)

    assert r.status_code == 500
    detail = r.json()["detail"]
    assert detail["step"] == "audio_extraction"
    assert detail["message"] == "Reel processing failed at step: audio_extraction"
    assert detail["code"] == "AUDIO_EXTRACTION_ERROR"
    assert "cause" not in detail
    assert list(temp_root.iterdir()) == []


def test_private_reel_maps_to_403(client, install):
    install(fail={"fetch": PrivateMediaError("Cannot access private Instagram content")})
    r = client.post("/reels/extract", json={"source_url": REEL_URL})

    assert r.status_code == 403
    assert r.json()["detail"]["step"] == "fetch"


def test_degraded_thumbnail_still_saves(client, install):
    install(no_frame=True)
    r = client.post("/reels/extract", json={"source_url": REEL_URL})

    assert r.status_code == 200
    reel = r.json()["reel"]
    assert reel["thumbnail_url"] == ""
    assert reel["degraded_steps"] == ["ocr"]


def test_async_extract_job_completes(client, install):
    install()
    r = client.post("/reels/extract_async", json={"source_url": REEL_URL}, headers={"x-user-id": "user-9"})
    assert r.status_code == 200
    job_id = r.json()["job_id"]

    # TestClient runs background tasks before returning the response
    status = client.get(f"/jobs/{job_id}").json()
    assert status["status"] == "done"
    assert status["failed_step"] is None
    assert client.get(f"/reels/{status['reel_id']}").status_code == 200


def test_async_extract_job_reports_failed_step(client, install):
    install(fail={"transcription": RuntimeError("whisper down")})
    job_id = client.post("/reels/extract_async", json={"source_url": REEL_URL}).json()["job_id"]

    status = client.get(f"/jobs/{job_id}").json()
    assert status["status"] == "failed"
    assert status["failed_step"] == "transcription"
    assert status["reel_id"] is None


def test_unknown_job_and_reel_are_404(client):
    assert client.get("/jobs/nope").status_code == 404
    assert client.get("/reels/nope").status_code == 404


def test_rate_limit_returns_429_with_retry_after(client):
    for _ in range(20):
        assert client.get("/limits").status_code == 200
    r = client.get("/limits")
    assert r.status_code == 429
    assert int(r.headers["retry-after"]) >= 1


@pytest.mark.asyncio
async def test_concurrent_duplicate_extract_runs_once(client, install):
    stub = install(delays={"transcription": 0.1})
    headers = {"x-user-id": "user-1"}

    async with _asgi_client() as ac:
        first, second = await asyncio.gather(
            ac.post("/reels/extract", json={"source_url": REEL_URL}, headers=headers),
            ac.post("/reels/extract", json={"source_url": REEL_URL}, headers=headers),
        )

    assert sorted([first.status_code, second.status_code]) == [200, 409]
    rejected = first if first.status_code == 409 else second
    assert rejected.json()["detail"]["code"] == "DUPLICATE_REEL"
    assert stub.events.count(("fetch", "start")) == 1


def test_failed_extract_releases_the_url(client, install):
    install(fail={"transcription": RuntimeError("whisper down")})
    assert client.post("/reels/extract", json={"source_url": REEL_URL}).status_code == 500
    assert client.post("/reels/extract", json={"source_url": REEL_URL}).status_code == 500


@pytest.mark.asyncio
async def test_async_job_reports_queued_until_admitted(client, install):
    install(delays={"transcription": 0.2})
    queue = client.app.state.queue

    async with _asgi_client() as ac:

        async def observe():
            await asyncio.sleep(0.05)
            statuses = {}
            for job in list(JOBS.values()):
                statuses[job.source_url] = (await ac.get(f"/jobs/{job.job_id}")).json()["status"]
            return statuses, queue.status()

        _, _, (statuses, snapshot) = await asyncio.gather(
            ac.post("/reels/extract_async", json={"source_url": REEL_URL}),
            ac.post("/reels/extract_async", json={"source_url": OTHER_URL}),
            observe(),
        )

    assert sorted(statuses.values()) == ["queued", "running"]
    assert snapshot["in_flight"] == 1
    assert snapshot["waiting"] == 1
    assert [j.status for j in JOBS.values()] == ["done", "done"]
    assert all(j.started_at is not None and j.started_at >= j.created_at for j in JOBS.values())
