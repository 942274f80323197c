"""Typed progress events and the bounded channel that carries them."""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, AsyncIterator, ClassVar

_logging = logging.getLogger(__name__)


@dataclass(frozen=True, kw_only=True)
class ProgressEvent:
    run_id: str
    sequence: int
    progress: float
    timestamp: float

    kind: ClassVar[str] = "event"
    terminal: ClassVar[bool] = False

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind
        return data


@dataclass(frozen=True, kw_only=True)
class StageStarted(ProgressEvent):
    kind: ClassVar[str] = "stage_started"
    stage: int
    services: tuple[str, ...]


@dataclass(frozen=True, kw_only=True)
class ServiceStatusChanged(ProgressEvent):
    kind: ClassVar[str] = "service_status_changed"
    service: str
    profile: str
    status: str
    error: str | None = None


@dataclass(frozen=True, kw_only=True)
class FallbackApplied(ProgressEvent):
    kind: ClassVar[str] = "fallback_applied"
    service: str
    profile: str
    strategy: str
    message: str


@dataclass(frozen=True, kw_only=True)
class StageCompleted(ProgressEvent):
    kind: ClassVar[str] = "stage_completed"
    stage: int


@dataclass(frozen=True, kw_only=True)
class RunCompleted(ProgressEvent):
    kind: ClassVar[str] = "run_completed"
    terminal: ClassVar[bool] = True


@dataclass(frozen=True, kw_only=True)
class RunFailed(ProgressEvent):
    kind: ClassVar[str] = "run_failed"
    terminal: ClassVar[bool] = True
    error_kind: str
    message: str
    internal: bool = False
    service: str | None = None


@dataclass(frozen=True, kw_only=True)
class RunCancelled(ProgressEvent):
    kind: ClassVar[str] = "run_cancelled"
    terminal: ClassVar[bool] = True
    reason: str


class EventChannel:
    """Bounded queue of progress events drained by a single consumer.

    Publishing never blocks: when the queue is full the oldest queued event
    is dropped. The terminal event is always the last one published, so it
    is never the one dropped. Iteration stops after the terminal event.
    """

    def __init__(self, maxsize: int = 256):
        self._queue: asyncio.Queue[ProgressEvent] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, event: ProgressEvent) -> None:
        if self._closed:
            raise RuntimeError(f"event channel closed, cannot publish {event.kind}")
        if self._queue.full():
            dropped = self._queue.get_nowait()
            self.dropped += 1
            _logging.warning(
                f"Event queue full, dropped {dropped.kind} #{dropped.sequence}"
            )
        self._queue.put_nowait(event)
        if event.terminal:
            self._closed = True

    async def get(self) -> ProgressEvent:
        return await self._queue.get()

    def get_nowait(self) -> ProgressEvent:
        return self._queue.get_nowait()

    def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        return self._drain()

    async def _drain(self) -> AsyncIterator[ProgressEvent]:
        while True:
            event = await self._queue.get()
            yield event
            if event.terminal:
                return


class EventFactory:
    """Stamps events for one run with its ID, sequence number and time."""

    def __init__(self, run_id: str):
        self.run_id = run_id
        self._sequence = 0

    def make(self, event_type: type[ProgressEvent], progress: float, **fields: Any) -> ProgressEvent:
        self._sequence += 1
        return event_type(
            run_id=self.run_id,
            sequence=self._sequence,
            progress=progress,
            timestamp=time.time(),
            **fields,
        )


__all__ = [
    "ProgressEvent",
    "StageStarted",
    "ServiceStatusChanged",
    "FallbackApplied",
    "StageCompleted",
    "RunCompleted",
    "RunFailed",
    "RunCancelled",
    "EventChannel",
    "EventFactory",
]
