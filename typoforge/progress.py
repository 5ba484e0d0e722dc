from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Tuple

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    SESSION_STARTED = "session"
    STATUS = "status"
    REFERENCE_READY = "dna"
    ITERATION_STARTED = "iteration_start"
    CANDIDATE_READY = "iteration_image"
    ITERATION_EVALUATED = "iteration_eval"
    ITERATION_FAILED = "iteration_error"
    COLOR_VARIATION = "color_variation"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def terminal(self) -> bool:
        return self in (EventKind.COMPLETE, EventKind.ERROR)


@dataclass(frozen=True)
class ProgressEvent:
    seq: int
    kind: EventKind
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind.value, "seq": self.seq, **self.payload}

    def to_sse(self) -> str:
        return f"data: {json.dumps(self.to_dict(), ensure_ascii=False, default=str)}\n\n"


_END = object()


class ProgressChannel:
    """Append-only, ordered event stream with one writer and one reader.

    Once the reader disconnects every ``emit`` is a no-op returning False;
    the writer is expected to poll ``disconnected`` at its own check points.
    """

    def __init__(self) -> None:
        self._events: List[ProgressEvent] = []
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self._closed = False
        self._disconnected = False
        self._reader_attached = False

    @property
    def events(self) -> Tuple[ProgressEvent, ...]:
        return tuple(self._events)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def disconnected(self) -> bool:
        return self._disconnected

    def kinds(self) -> List[EventKind]:
        return [e.kind for e in self._events]

    def emit(self, kind: EventKind, **payload: Any) -> bool:
        if self._disconnected or self._closed:
            return False
        event = ProgressEvent(seq=len(self._events) + 1, kind=kind, payload=payload, timestamp=time.time())
        self._events.append(event)
        self._queue.put_nowait(event)
        logger.debug("event #%d %s", event.seq, kind.value)
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_END)

    def disconnect(self) -> None:
        """Called by the reader when it goes away."""
        if not self._disconnected:
            logger.info("progress reader disconnected after %d events", len(self._events))
        self._disconnected = True
        self.close()

    def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        if self._reader_attached:
            raise RuntimeError("ProgressChannel supports exactly one reader")
        self._reader_attached = True
        return self._read()

    async def _read(self) -> AsyncIterator[ProgressEvent]:
        while True:
            item = await self._queue.get()
            if item is _END:
                return
            yield item
