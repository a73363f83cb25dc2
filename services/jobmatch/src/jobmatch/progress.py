from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable

from jobmatch.models import ProgressDetails, ProgressEvent, RecommendationBundle

LOGGER = logging.getLogger("jobmatch.progress")

STAGE_RANGES: dict[str, tuple[int, int]] = {
    "auth": (0, 5),
    "analyzing": (5, 25),
    "detecting": (25, 35),
    "searching": (35, 65),
    "inserting": (65, 80),
    "scoring": (80, 95),
    "complete": (100, 100),
}

ProgressSink = Callable[[ProgressEvent], Awaitable[None]]


async def null_sink(event: ProgressEvent) -> None:
    return None


def format_sse(event: ProgressEvent) -> str:
    return f"data: {json.dumps(event.to_wire())}\n\n"


def searching_progress(completed: int, total: int) -> int:
    low, high = STAGE_RANGES["searching"]
    if total <= 0:
        return high
    return low + round(completed / total * (high - low))


class ProgressStreamer:
    """Ordered progress events for one pipeline run.

    Progress never decreases, and the stream ends with exactly one terminal
    event. A sink that raises is logged and otherwise ignored.
    """

    def __init__(self, sink: ProgressSink = null_sink) -> None:
        self.sink = sink
        self.current = 0
        self.finished = False
        self.failure: Exception | None = None
        self.result: RecommendationBundle | None = None

    async def emit(self, event: ProgressEvent) -> ProgressEvent | None:
        if self.finished:
            LOGGER.warning(
                json.dumps({"event": "progress_after_terminal", "stage": event.stage})
            )
            return None

        if event.stage == "error":
            progress = self.current
        else:
            progress = max(event.progress, self.current)
        if progress != event.progress:
            event = event.model_copy(update={"progress": progress})
        self.current = progress
        if event.is_terminal:
            self.finished = True
            self.result = event.data

        try:
            await self.sink(event)
        except Exception as exc:
            LOGGER.warning(
                json.dumps({"event": "progress_sink_failed", "stage": event.stage, "error": str(exc)})
            )
        return event

    async def update(
        self,
        stage: str,
        message: str,
        progress: int,
        **details: int | bool,
    ) -> ProgressEvent | None:
        return await self.emit(
            ProgressEvent(
                stage=stage,
                message=message,
                progress=progress,
                details=ProgressDetails(**details) if details else None,
            )
        )

    async def complete(
        self, message: str, bundle: RecommendationBundle, **details: int | bool
    ) -> ProgressEvent | None:
        return await self.emit(
            ProgressEvent(
                stage="complete",
                message=message,
                progress=100,
                details=ProgressDetails(**details) if details else None,
                data=bundle,
            )
        )

    async def fail(self, exc: Exception) -> ProgressEvent | None:
        self.failure = exc
        message = str(exc) or "Failed to generate recommendations"
        return await self.emit(
            ProgressEvent(stage="error", message=message, progress=self.current, error=message)
        )


class QueueSink:
    """Buffers events for a streaming response; iteration stops after a terminal event."""

    def __init__(self) -> None:
        self.queue: asyncio.Queue[ProgressEvent] = asyncio.Queue()

    async def __call__(self, event: ProgressEvent) -> None:
        self.queue.put_nowait(event)

    async def stream(self) -> AsyncIterator[str]:
        while True:
            event = await self.queue.get()
            yield format_sse(event)
            if event.is_terminal:
                return
