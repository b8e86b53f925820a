"""Orchestrator behaviour under every scheduling policy, driven by file-writing stub adapters."""
from pathlib import Path

import pytest

from reel_ingest.core.errors import (
    AudioExtractionError,
    PrivateMediaError,
    ReelProcessingError,
    StorageUploadError,
    TranscriptionError,
)
from reel_ingest.pipeline.orchestrator import UNTITLED, ReelOrchestrator, build_result
from reel_ingest.pipeline.policies import ConcurrentPolicy, PipelinedPolicy, SequentialPolicy, get_policy
from reel_ingest.pipeline.models import MediaInfo, SummaryResult
from reel_ingest.pipeline.stages import STAGE_GRAPH, check_order

REEL_URL = "https://www.instagram.com/reel/Cabc123/"

POLICIES = ["sequential", "concurrent", "pipelined"]
CRITICAL_STEPS = ["fetch", "download", "audio_extraction", "transcription", "summarization"]


def _files_under(root: Path):
    return [p for p in root.rglob("*") if p.is_file()]


def _orchestrator(stub, policy_name, temp_root):
    return ReelOrchestrator(stub.bundle(), get_policy(policy_name), temp_dir=str(temp_root))


@pytest.mark.asyncio
@pytest.mark.parametrize("policy", POLICIES)
async def test_all_stages_succeed(policy, stub_pipeline, temp_root):
    stub = stub_pipeline()
    result = await _orchestrator(stub, policy, temp_root).run(REEL_URL, key="user-1")

    assert result.transcript.strip()
    assert result.summary.summary.strip()
    assert isinstance(result.tags, list) and result.tags == ["python", "tips"]
    assert isinstance(result.suggested_folder, str) and result.suggested_folder
    assert result.thumbnail_url.endswith("t.jpg")
    assert "SAVE20" in result.ocr_text
    assert result.title == "Python Tips"
    assert result.metadata.original_title == "Fetched title"
    assert result.metadata.duration_seconds == 30.5
    assert result.degraded_steps == ()
    assert "AUDIO TRANSCRIPT:" in result.merged.merged_text
    assert _files_under(temp_root) == []


@pytest.mark.asyncio
@pytest.mark.parametrize("policy", POLICIES)
async def test_audio_failure_fails_job_with_step_label(policy, stub_pipeline, temp_root):
    stub = stub_pipeline(fail={"audio_extraction": AudioExtractionError("Extracted audio file is empty")})

    with pytest.raises(ReelProcessingError) as ei:
        await _orchestrator(stub, policy, temp_root).run(REEL_URL)

    err = ei.value
    assert err.step == "audio_extraction"
    assert str(err) == "Reel processing failed at step: audio_extraction"
    assert isinstance(err.root_cause, AudioExtractionError)
    assert err.__cause__ is err.root_cause
    assert not stub.started("transcription")
    assert not stub.started("summarization")
    assert _files_under(temp_root) == []


@pytest.mark.asyncio
@pytest.mark.parametrize("policy", POLICIES)
async def test_thumbnail_failure_degrades_and_skips_ocr(policy, stub_pipeline, temp_root):
    stub = stub_pipeline(fail={"thumbnail": StorageUploadError("bucket unreachable")})
    result = await _orchestrator(stub, policy, temp_root).run(REEL_URL)

    assert result.thumbnail_url == ""
    assert result.thumbnail_storage_id == ""
    assert result.ocr_text == ""
    assert not stub.started("ocr")
    assert result.degraded_steps == ("thumbnail", "ocr")
    assert result.transcript and result.summary.summary
    assert _files_under(temp_root) == []


@pytest.mark.asyncio
@pytest.mark.parametrize("policy", POLICIES)
async def test_no_capturable_frame_skips_ocr(policy, stub_pipeline, temp_root):
    stub = stub_pipeline(no_frame=True)
    result = await _orchestrator(stub, policy, temp_root).run(REEL_URL)

    assert result.thumbnail_url == ""
    assert result.ocr_text == ""
    assert not stub.started("ocr")
    assert result.degraded_steps == ("ocr",)


@pytest.mark.asyncio
@pytest.mark.parametrize("policy", POLICIES)
async def test_ocr_failure_is_non_critical(policy, stub_pipeline, temp_root):
    stub = stub_pipeline(fail={"ocr": RuntimeError("vision model down")})
    result = await _orchestrator(stub, policy, temp_root).run(REEL_URL)

    assert result.ocr_text == ""
    assert result.thumbnail_url
    assert result.degraded_steps == ("ocr",)


@pytest.mark.asyncio
@pytest.mark.parametrize("policy", POLICIES)
async def test_private_source_fails_at_fetch_without_assets(policy, stub_pipeline, temp_root):
    stub = stub_pipeline(fail={"fetch": PrivateMediaError("Cannot access private Instagram content")})

    with pytest.raises(ReelProcessingError) as ei:
        await _orchestrator(stub, policy, temp_root).run(REEL_URL)

    assert ei.value.step == "fetch"
    assert ei.value.status_code == 403
    assert stub.paths == []
    assert list(temp_root.iterdir()) == []


@pytest.mark.asyncio
@pytest.mark.parametrize("policy", POLICIES)
@pytest.mark.parametrize("failing_step", CRITICAL_STEPS + ["thumbnail", "ocr", "merge"])
async def test_no_asset_outlives_the_job(policy, failing_step, stub_pipeline, temp_root):
    stub = stub_pipeline(fail={failing_step: RuntimeError(f"{failing_step} failed")})
    orch = _orchestrator(stub, policy, temp_root)

    try:
        await orch.run(REEL_URL)
    except ReelProcessingError as e:
        assert e.step == failing_step

    if failing_step != "fetch":
        assert stub.paths
    for path in stub.paths:
        assert not Path(path).exists(), path
    assert list(temp_root.iterdir()) == []


@pytest.mark.asyncio
async def test_identical_content_across_policies(stub_pipeline, temp_root):
    contents = []
    for policy in POLICIES:
        stub = stub_pipeline(delays={"thumbnail": 0.01, "ocr": 0.02})
        result = await _orchestrator(stub, policy, temp_root).run(REEL_URL, key="same")
        contents.append(result.content())

    assert contents[0] == contents[1] == contents[2]
    assert "timings" not in contents[0]


@pytest.mark.asyncio
@pytest.mark.parametrize("policy", ["sequential", "concurrent"])
async def test_timings_non_negative_and_total_covers_critical_stages(policy, stub_pipeline, temp_root):
    stub = stub_pipeline(delays={"download": 0.01, "transcription": 0.01})
    result = await _orchestrator(stub, policy, temp_root).run(REEL_URL)

    timings = result.timings
    assert all(v >= 0 for v in timings.values())
    for step in [s.name for s in STAGE_GRAPH]:
        assert f"{step}_ms" in timings
    critical_sum = sum(timings[f"{s}_ms"] for s in CRITICAL_STEPS)
    assert timings["total_ms"] + 0.01 >= critical_sum


@pytest.mark.asyncio
async def test_pipelined_summarization_does_not_wait_for_ocr(stub_pipeline, temp_root):
    stub = stub_pipeline(delays={"ocr": 0.2})
    result = await _orchestrator(stub, "pipelined", temp_root).run(REEL_URL)

    assert stub.events.index(("summarization", "end")) < stub.events.index(("ocr", "end"))
    # the join still waited for OCR
    assert "SAVE20" in result.ocr_text


@pytest.mark.asyncio
async def test_concurrent_runs_audio_and_thumbnail_together(stub_pipeline, temp_root):
    stub = stub_pipeline(delays={"audio_extraction": 0.05, "thumbnail": 0.05})
    await _orchestrator(stub, "concurrent", temp_root).run(REEL_URL)

    audio_start = stub.events.index(("audio_extraction", "start"))
    thumb_start = stub.events.index(("thumbnail", "start"))
    audio_end = stub.events.index(("audio_extraction", "end"))
    thumb_end = stub.events.index(("thumbnail", "end"))
    assert max(audio_start, thumb_start) < min(audio_end, thumb_end)


@pytest.mark.asyncio
@pytest.mark.parametrize("policy,expected", [("sequential", True), ("concurrent", False), ("pipelined", False)])
async def test_video_released_early_once_consumers_settle(policy, expected, stub_pipeline, temp_root):
    stub = stub_pipeline(delays={"transcription": 0.02})
    await _orchestrator(stub, policy, temp_root).run(REEL_URL)
    assert stub.video_present_at_transcription is expected


@pytest.mark.asyncio
async def test_critical_failure_waits_for_in_flight_sibling(stub_pipeline, temp_root):
    # audio fails fast while the thumbnail is still writing; cleanup must run after the thumbnail settles
    stub = stub_pipeline(
        fail={"audio_extraction": AudioExtractionError("boom")},
        delays={"thumbnail": 0.05},
    )
    with pytest.raises(ReelProcessingError):
        await _orchestrator(stub, "pipelined", temp_root).run(REEL_URL)

    assert ("thumbnail", "end") in stub.events
    assert _files_under(temp_root) == []


@pytest.mark.asyncio
async def test_transient_cause_is_reported(stub_pipeline, temp_root):
    stub = stub_pipeline(fail={"transcription": TranscriptionError("rate limited", transient=True)})
    with pytest.raises(ReelProcessingError) as ei:
        await _orchestrator(stub, "concurrent", temp_root).run(REEL_URL)
    assert ei.value.transient is True
    assert ei.value.status_code == 502


def test_policy_orders_respect_the_graph():
    check_order(SequentialPolicy.order)
    check_order([n for wave in ConcurrentPolicy.waves for n in wave])
    with pytest.raises(ValueError):
        check_order(["download", "fetch", "audio_extraction", "thumbnail", "transcription", "summarization", "ocr", "merge"])


def test_get_policy_rejects_unknown():
    assert isinstance(get_policy("Pipelined"), PipelinedPolicy)
    with pytest.raises(ValueError):
        get_policy("turbo")


def test_title_falls_back_to_fetched_title_then_placeholder():
    from reel_ingest.adapters.merger import merge_multimodal
    from reel_ingest.pipeline.models import ExtractedAudio, Thumbnail, Transcript, VisualText

    payloads = {
        "fetch": MediaInfo(source_url=REEL_URL, media_url="https://cdn/v.mp4", title="Caption title"),
        "audio_extraction": ExtractedAudio(path="/tmp/a.m4a"),
        "thumbnail": Thumbnail(),
        "transcription": Transcript("hello"),
        "summarization": SummaryResult(summary="s", tags=("a",), suggested_folder="f"),
        "ocr": VisualText(),
        "merge": merge_multimodal(transcript="hello"),
    }
    assert build_result(REEL_URL, payloads).title == "Caption title"

    payloads["fetch"] = MediaInfo(source_url=REEL_URL, media_url="https://cdn/v.mp4")
    result = build_result(REEL_URL, payloads)
    assert result.title == UNTITLED
    assert result.metadata.original_title is None
