from __future__ import annotations

import time
from dataclasses import dataclass, field
from queue import Empty, Full, Queue
from typing import List, Optional, Protocol, Union

from .matcher import MatchResult

Detection = Union[MatchResult, str]


class ResultSink(Protocol):
    def publish(self, result: Detection) -> None:
        ...


def put_latest(queue_obj: Queue, item) -> None:
    """Enqueue without blocking; when full, the oldest item makes room."""
    try:
        queue_obj.put_nowait(item)
        return
    except Full:
        pass

    try:
        queue_obj.get_nowait()
    except Empty:
        pass

    try:
        queue_obj.put_nowait(item)
    except Full:
        pass


@dataclass
class SinkEvent:
    payload: Detection
    published_at: float = field(default_factory=time.time)

    @property
    def kind(self) -> str:
        return "face" if isinstance(self.payload, MatchResult) else "qr"

    def to_dict(self) -> dict:
        body = {"kind": self.kind, "published_at": self.published_at}
        if isinstance(self.payload, MatchResult):
            body.update(self.payload.to_dict())
        else:
            body["text"] = self.payload
        return body


class QueueResultSink:
    """Bounded, drop-oldest buffer between the scheduler and presentation."""

    def __init__(self, maxsize: int = 32):
        self._queue: Queue = Queue(maxsize=max(1, int(maxsize)))
        self.latest: Optional[SinkEvent] = None

    def publish(self, result: Detection) -> None:
        event = SinkEvent(payload=result)
        self.latest = event
        put_latest(self._queue, event)

    def get(self, timeout: Optional[float] = None) -> Optional[SinkEvent]:
        try:
            return self._queue.get(timeout=timeout)
        except Empty:
            return None

    def drain(self, limit: Optional[int] = None) -> List[SinkEvent]:
        events: List[SinkEvent] = []
        while limit is None or len(events) < limit:
            try:
                events.append(self._queue.get_nowait())
            except Empty:
                break
        return events
