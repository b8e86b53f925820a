"""The shared stage-dependency graph and the bundle of stage adapters every scheduling policy runs."""
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Tuple

from reel_ingest.pipeline.models import (
    DownloadedVideo,
    ExtractedAudio,
    MediaInfo,
    MergedContent,
    ProcessingJob,
    SummaryResult,
    Thumbnail,
    Transcript,
    VisualText,
)
from reel_ingest.pipeline.resources import ScopedAllocator

FETCH = "fetch"
DOWNLOAD = "download"
AUDIO_EXTRACTION = "audio_extraction"
THUMBNAIL = "thumbnail"
TRANSCRIPTION = "transcription"
SUMMARIZATION = "summarization"
OCR = "ocr"
MERGE = "merge"


class StageSkipped(Exception):
    """Raised by a stage runner whose input is a placeholder; the stage degrades without being attempted."""


@dataclass
class StageAdapters:
    """One callable per stage. Swapping any of them (tests, alternative providers) never touches the orchestrator.
    Why available: Keeps adapters pure input->output contracts; the graph below decides how they are wired."""

    fetch: Callable[[str], Awaitable[MediaInfo]]
    download: Callable[[str, ScopedAllocator], Awaitable[DownloadedVideo]]
    extract_audio: Callable[[str, ScopedAllocator], Awaitable[ExtractedAudio]]
    capture_thumbnail: Callable[[str, ScopedAllocator], Awaitable[Thumbnail]]
    transcribe: Callable[[str], Awaitable[Transcript]]
    summarize: Callable[[str], Awaitable[SummaryResult]]
    extract_visual_text: Callable[[Sequence[str]], Awaitable[VisualText]]
    merge: Callable[..., MergedContent]


def default_adapters() -> StageAdapters:
    """Production wiring: yt-dlp, httpx, ffmpeg, MinIO and OpenAI backed adapters."""
    from reel_ingest.adapters import audio, downloader, fetcher, merger, ocr, summarizer, thumbnail, transcriber

    return StageAdapters(
        fetch=fetcher.fetch_media_info,
        download=downloader.download_video,
        extract_audio=audio.extract_audio,
        capture_thumbnail=thumbnail.capture_thumbnail,
        transcribe=transcriber.transcribe_audio,
        summarize=summarizer.summarize_transcript,
        extract_visual_text=ocr.extract_visual_text,
        merge=merger.merge_multimodal,
    )


# -------------------------
# Stage runners: read upstream payloads from the job, call one adapter
# -------------------------

async def _run_fetch(job: ProcessingJob, adapters: StageAdapters) -> MediaInfo:
    return await adapters.fetch(job.source_url)


async def _run_download(job: ProcessingJob, adapters: StageAdapters) -> DownloadedVideo:
    info: MediaInfo = job.payload(FETCH)
    return await adapters.download(info.media_url, job.resources.scoped(DOWNLOAD))


async def _run_audio(job: ProcessingJob, adapters: StageAdapters) -> ExtractedAudio:
    video: DownloadedVideo = job.payload(DOWNLOAD)
    return await adapters.extract_audio(video.path, job.resources.scoped(AUDIO_EXTRACTION))


async def _run_thumbnail(job: ProcessingJob, adapters: StageAdapters) -> Thumbnail:
    video: DownloadedVideo = job.payload(DOWNLOAD)
    return await adapters.capture_thumbnail(video.path, job.resources.scoped(THUMBNAIL))


async def _run_transcription(job: ProcessingJob, adapters: StageAdapters) -> Transcript:
    audio: ExtractedAudio = job.payload(AUDIO_EXTRACTION)
    return await adapters.transcribe(audio.path)


async def _run_summarization(job: ProcessingJob, adapters: StageAdapters) -> SummaryResult:
    transcript: Transcript = job.payload(TRANSCRIPTION)
    return await adapters.summarize(transcript.text)


async def _run_ocr(job: ProcessingJob, adapters: StageAdapters) -> VisualText:
    thumb: Thumbnail = job.payload(THUMBNAIL)
    if thumb.is_empty:
        raise StageSkipped("no thumbnail")
    return await adapters.extract_visual_text([thumb.url])


async def _run_merge(job: ProcessingJob, adapters: StageAdapters) -> MergedContent:
    info: MediaInfo = job.payload(FETCH)
    transcript: Transcript = job.payload(TRANSCRIPTION)
    visual: VisualText = job.payload(OCR)
    return adapters.merge(
        transcript=transcript.text,
        visual_text=visual.text,
        caption=info.title or "",
        description=info.description or "",
    )


@dataclass(frozen=True)
class StageSpec:
    name: str
    critical: bool
    requires: Tuple[str, ...]
    run: Callable[[ProcessingJob, StageAdapters], Awaitable[Any]]
    placeholder: Optional[Callable[[], Any]] = None


STAGE_GRAPH: Tuple[StageSpec, ...] = (
    StageSpec(FETCH, True, (), _run_fetch),
    StageSpec(DOWNLOAD, True, (FETCH,), _run_download),
    StageSpec(AUDIO_EXTRACTION, True, (DOWNLOAD,), _run_audio),
    StageSpec(THUMBNAIL, False, (DOWNLOAD,), _run_thumbnail, placeholder=Thumbnail),
    StageSpec(TRANSCRIPTION, True, (AUDIO_EXTRACTION,), _run_transcription),
    StageSpec(SUMMARIZATION, True, (TRANSCRIPTION,), _run_summarization),
    StageSpec(OCR, False, (THUMBNAIL,), _run_ocr, placeholder=VisualText),
    StageSpec(MERGE, True, (FETCH, TRANSCRIPTION, OCR), _run_merge),
)


def dependents_of(name: str, graph: Sequence[StageSpec] = STAGE_GRAPH) -> List[str]:
    return [s.name for s in graph if name in s.requires]


def check_order(order: Sequence[str], graph: Sequence[StageSpec] = STAGE_GRAPH) -> None:
    """Raise ValueError unless `order` names every stage once, each after all of its requirements."""
    by_name = {s.name: s for s in graph}
    names = set(by_name)
    if sorted(order) != sorted(names):
        raise ValueError(f"order must name every stage exactly once: {list(order)}")
    seen = set()
    for name in order:
        missing = [r for r in by_name[name].requires if r not in seen]
        if missing:
            raise ValueError(f"{name} scheduled before {', '.join(missing)}")
        seen.add(name)
