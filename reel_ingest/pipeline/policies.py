"""Scheduling policies over the shared stage graph.

A policy only decides *when* each stage starts. Running a stage, recording its outcome and
degrading non-critical failures is the orchestrator's `run_stage` callback, which raises
ReelProcessingError for a critical failure. Every policy waits for stages it already started
before propagating that error, so no stage is still writing files when cleanup runs.
"""
import asyncio
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from reel_ingest.pipeline.stages import (
    AUDIO_EXTRACTION,
    DOWNLOAD,
    FETCH,
    MERGE,
    OCR,
    SUMMARIZATION,
    THUMBNAIL,
    TRANSCRIPTION,
    StageSpec,
    check_order,
)

RunStage = Callable[[StageSpec], Awaitable[None]]


def _first_error(results: Sequence[object]) -> Optional[BaseException]:
    for r in results:
        if isinstance(r, BaseException):
            return r
    return None


class SchedulingPolicy:
    name = "base"
    early_release = False

    async def execute(self, graph: Sequence[StageSpec], run_stage: RunStage) -> None:
        raise NotImplementedError


class SequentialPolicy(SchedulingPolicy):
    """Baseline: one stage at a time in a fixed linear order."""

    name = "sequential"
    early_release = False
    order = (FETCH, DOWNLOAD, AUDIO_EXTRACTION, THUMBNAIL, TRANSCRIPTION, SUMMARIZATION, OCR, MERGE)

    async def execute(self, graph: Sequence[StageSpec], run_stage: RunStage) -> None:
        check_order(self.order, graph)
        by_name = {s.name: s for s in graph}
        for name in self.order:
            await run_stage(by_name[name])


class ConcurrentPolicy(SchedulingPolicy):
    """Independent stages run together in fixed waves; each wave is joined before the next starts."""

    name = "concurrent"
    early_release = True
    waves = (
        (FETCH,),
        (DOWNLOAD,),
        (AUDIO_EXTRACTION, THUMBNAIL),
        (TRANSCRIPTION, OCR),
        (SUMMARIZATION,),
        (MERGE,),
    )

    async def execute(self, graph: Sequence[StageSpec], run_stage: RunStage) -> None:
        check_order([name for wave in self.waves for name in wave], graph)
        by_name = {s.name: s for s in graph}
        for wave in self.waves:
            results = await asyncio.gather(*(run_stage(by_name[n]) for n in wave), return_exceptions=True)
            err = _first_error(results)
            if err is not None:
                raise err


class PipelinedPolicy(SchedulingPolicy):
    """Each stage starts as soon as its own requirements settle. Summarization may finish while OCR is
    still running; the join still waits for every stage."""

    name = "pipelined"
    early_release = True

    async def execute(self, graph: Sequence[StageSpec], run_stage: RunStage) -> None:
        check_order([s.name for s in graph], graph)
        tasks: Dict[str, "asyncio.Task[None]"] = {}
        aborted = asyncio.Event()

        async def run_after(spec: StageSpec) -> None:
            if spec.requires:
                # raises the upstream failure, so this stage never starts
                await asyncio.gather(*(tasks[r] for r in spec.requires))
            if aborted.is_set():
                return
            try:
                await run_stage(spec)
            except BaseException:
                aborted.set()
                raise

        for spec in graph:
            tasks[spec.name] = asyncio.ensure_future(run_after(spec))

        results: List[object] = await asyncio.gather(*tasks.values(), return_exceptions=True)
        err = _first_error(results)
        if err is not None:
            raise err


_POLICIES = {
    SequentialPolicy.name: SequentialPolicy,
    ConcurrentPolicy.name: ConcurrentPolicy,
    PipelinedPolicy.name: PipelinedPolicy,
}


def get_policy(name: str) -> SchedulingPolicy:
    """Build a policy by name (sequential | concurrent | pipelined)."""
    try:
        return _POLICIES[(name or "").strip().lower()]()
    except KeyError:
        raise ValueError(f"unknown pipeline policy: {name!r}") from None


