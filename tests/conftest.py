import asyncio
import json
import sys
from pathlib import Path
from types import SimpleNamespace
from typing import Dict, List, Optional, Tuple

import pytest

# Ensure repo root is on sys.path so `import reel_ingest...` works in tests
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from reel_ingest.adapters.merger import merge_multimodal  # noqa: E402
from reel_ingest.pipeline.models import (  # noqa: E402
    DownloadedVideo,
    ExtractedAudio,
    MediaInfo,
    SummaryResult,
    Thumbnail,
    Transcript,
    VisualText,
)
from reel_ingest.pipeline.stages import StageAdapters  # noqa: E402


class StubPipeline:
    """Deterministic stage adapters that write real files through the allocator they are given.

    fail:   step -> exception raised by that stage (after it wrote its files)
    delays: step -> seconds slept before the stage does its work
    """

    def __init__(
        self,
        fail: Optional[Dict[str, BaseException]] = None,
        delays: Optional[Dict[str, float]] = None,
        no_frame: bool = False,
    ):
        self.fail = fail or {}
        self.delays = delays or {}
        self.no_frame = no_frame
        self.events: List[Tuple[str, str]] = []
        self.paths: List[str] = []
        self.video_path: Optional[str] = None
        self.video_present_at_transcription: Optional[bool] = None

    def started(self, step: str) -> bool:
        return (step, "start") in self.events

    async def _start(self, step: str) -> None:
        self.events.append((step, "start"))
        delay = self.delays.get(step, 0)
        if delay:
            await asyncio.sleep(delay)

    def _finish(self, step: str) -> None:
        if step in self.fail:
            self.events.append((step, "fail"))
            raise self.fail[step]
        self.events.append((step, "end"))

    def _write(self, allocator, kind: str, suffix: str, data: bytes) -> str:
        path = allocator.allocate(kind, suffix)
        with open(path, "wb") as f:
            f.write(data)
        self.paths.append(path)
        return path

    async def fetch(self, source_url: str) -> MediaInfo:
        await self._start("fetch")
        self._finish("fetch")
        return MediaInfo(
            source_url=source_url,
            media_url="https://cdn.example.com/video.mp4",
            title="Fetched title",
            description="Full guide at docs.example.com #python",
            duration_seconds=31.0,
        )

    async def download(self, media_url: str, allocator) -> DownloadedVideo:
        await self._start("download")
        self.video_path = self._write(allocator, "video", ".mp4", b"\x00" * 2048)
        self._finish("download")
        return DownloadedVideo(path=self.video_path, size_bytes=2048)

    async def extract_audio(self, video_path: str, allocator) -> ExtractedAudio:
        await self._start("audio_extraction")
        path = self._write(allocator, "audio", ".m4a", b"\x01" * 512)
        self._finish("audio_extraction")
        return ExtractedAudio(path=path, duration_seconds=30.5)

    async def capture_thumbnail(self, video_path: str, allocator) -> Thumbnail:
        await self._start("thumbnail")
        if self.no_frame:
            self._finish("thumbnail")
            return Thumbnail()
        self._write(allocator, "thumbnail", ".jpg", b"\xff\xd8\xff")
        self._finish("thumbnail")
        return Thumbnail(url="https://media.example.com/thumbnails/t.jpg", storage_id="reel-thumbnails/t.jpg")

    async def transcribe(self, audio_path: str) -> Transcript:
        await self._start("transcription")
        if self.video_path is not None:
            self.video_present_at_transcription = Path(self.video_path).exists()
        self._finish("transcription")
        return Transcript(text="Today we look at three Python tips. Check docs.example.com for more.")

    async def summarize(self, transcript: str) -> SummaryResult:
        await self._start("summarization")
        self._finish("summarization")
        return SummaryResult(
            summary="Three quick Python tips.",
            tags=("python", "tips"),
            suggested_folder="programming",
            title="Python Tips",
            key_points=("use f-strings", "prefer pathlib"),
        )

    async def extract_visual_text(self, image_urls) -> VisualText:
        await self._start("ocr")
        self._finish("ocr")
        return VisualText(text="Use code SAVE20 at shop.example.com - $19.99")

    def merge(self, **kwargs):
        self.events.append(("merge", "start"))
        self._finish("merge")
        return merge_multimodal(**kwargs)

    def bundle(self) -> StageAdapters:
        return StageAdapters(
            fetch=self.fetch,
            download=self.download,
            extract_audio=self.extract_audio,
            capture_thumbnail=self.capture_thumbnail,
            transcribe=self.transcribe,
            summarize=self.summarize,
            extract_visual_text=self.extract_visual_text,
            merge=self.merge,
        )


class FakeOpenAI:
    """Stands in for AsyncOpenAI: records every create() call and answers with canned text or raises."""

    def __init__(self, text: str = "", error: Optional[BaseException] = None):
        self.text = text
        self.error = error
        self.calls: List[dict] = []
        self.audio = SimpleNamespace(transcriptions=SimpleNamespace(create=self._transcribe))
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._chat))

    async def _transcribe(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(text=self.text)

    async def _chat(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=self.text))])


@pytest.fixture
def fake_openai():
    """Factory fixture: fake_openai(text=..., error=...)."""
    return FakeOpenAI


@pytest.fixture
def allocator(tmp_path):
    from reel_ingest.pipeline.resources import ResourceManager

    manager = ResourceManager(str(tmp_path / "temp"), job_id="job-test")
    yield manager.scoped("test")
    manager.cleanup()


@pytest.fixture
def stub_pipeline():
    """Factory fixture: stub_pipeline(fail=..., delays=..., no_frame=...)."""
    return StubPipeline


@pytest.fixture
def temp_root(tmp_path) -> Path:
    root = tmp_path / "temp"
    root.mkdir()
    return root


def pretty_json(obj) -> str:
    return json.dumps(obj, indent=2, ensure_ascii=False, sort_keys=True)


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_makereport(item, call):
    """
    Attach request/response payloads into pytest-html report.

    In tests, store payloads like:
      item._api_logs = [{"title": "...", "request": ..., "response": ...}, ...]
    """
    outcome = yield
    rep = outcome.get_result()

    if rep.when != "call":
        return

    api_logs = getattr(item, "_api_logs", None)
    if not api_logs:
        return

    # Only attach if pytest-html is installed/enabled
    extras = getattr(rep, "extras", [])

    try:
        from pytest_html import extras as html_extras
    except ImportError:
        return

    for entry in api_logs:
        title = entry.get("title", "API Call")
        html = f"""
        <div style="font-family: ui-monospace, Menlo, Consolas, monospace;">
          <h4 style="margin:8px 0;">{title}</h4>
          <details><summary><b>Request</b></summary><pre>{pretty_json(entry.get("request", {}))}</pre></details>
          <details><summary><b>Response</b></summary><pre>{pretty_json(entry.get("response", {}))}</pre></details>
        </div>
        """
        extras.append(html_extras.html(html))

    rep.extras = extras
