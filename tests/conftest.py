from concurrent.futures import Executor, Future
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

import numpy as np
import pytest

from face_gate.gallery import EnrollmentRecord, GalleryStore, StoredEnrollment
from face_gate.matcher import Matcher
from face_gate.modes import Facing, Mode
from face_gate.pipelines import FacePipeline, QRPipeline
from face_gate.scheduler import CaptureScheduler


class ManualTimer:
    def __init__(self, interval_seconds: float, callback: Callable[[], None]):
        self.interval_seconds = interval_seconds
        self.callback = callback
        self.active = True
        self.elapsed = 0.0

    def cancel(self) -> None:
        self.active = False


class ManualTimerFactory:
    """Timers that only fire when the test advances the clock."""

    def __init__(self):
        self.timers: List[ManualTimer] = []

    def schedule(self, interval_seconds, callback):
        timer = ManualTimer(interval_seconds, callback)
        self.timers.append(timer)
        return timer

    @property
    def active_timers(self) -> List[ManualTimer]:
        return [t for t in self.timers if t.active]

    def advance(self, seconds: float) -> None:
        for timer in list(self.timers):
            if not timer.active:
                continue
            timer.elapsed += seconds
            while timer.active and timer.elapsed >= timer.interval_seconds:
                timer.elapsed -= timer.interval_seconds
                timer.callback()

    def tick(self, times: int = 1) -> None:
        for _ in range(times):
            for timer in list(self.timers):
                if timer.active:
                    timer.callback()


@dataclass
class DeferredJob:
    future: Future
    fn: Callable
    args: tuple

    def begin(self) -> "DeferredJob":
        assert self.future.set_running_or_notify_cancel()
        return self

    def finish(self) -> None:
        if not self.future.running():
            self.begin()
        try:
            result = self.fn(*self.args)
        except Exception as exc:
            self.future.set_exception(exc)
        else:
            self.future.set_result(result)


class DeferredExecutor(Executor):
    """Holds submitted work until the test runs it."""

    def __init__(self):
        self.jobs: List[DeferredJob] = []

    def submit(self, fn, /, *args, **kwargs):
        future: Future = Future()
        self.jobs.append(DeferredJob(future=future, fn=fn, args=args))
        return future

    @property
    def pending(self) -> List[DeferredJob]:
        return [job for job in self.jobs if not job.future.done()]

    def run_all(self) -> None:
        for job in list(self.jobs):
            if job.future.done():
                continue
            if job.future.running() or job.future.set_running_or_notify_cancel():
                job.finish()


class FakeStream:
    def __init__(self, facing: Facing, frames: List[Any]):
        self.facing = facing
        self.frames = list(frames)
        self.reads = 0
        self.stopped = False

    def read(self):
        if self.stopped:
            raise AssertionError("read from a stopped stream")
        item = self.frames[self.reads % len(self.frames)]
        self.reads += 1
        if isinstance(item, Exception):
            raise item
        return item

    def stop(self) -> None:
        self.stopped = True


class FakeCameraProvider:
    def __init__(self, frames: Optional[List[Any]] = None):
        self.frames = frames or [np.array([1.0, 0.0, 0.0])]
        self.error: Optional[Exception] = None
        self.streams: List[FakeStream] = []

    def open(self, facing: Facing) -> FakeStream:
        if self.error is not None:
            raise self.error
        stream = FakeStream(facing, self.frames)
        self.streams.append(stream)
        return stream

    @property
    def live_streams(self) -> List[FakeStream]:
        return [s for s in self.streams if not s.stopped]


class EchoExtractor:
    """Treats the frame itself as the embedding; empty frames mean no face."""

    def __init__(self):
        self.error: Optional[Exception] = None

    def extract(self, frame):
        if self.error is not None:
            raise self.error
        vector = np.asarray(frame, dtype=np.float64)
        return vector if vector.size else None


class FakeDecoder:
    def __init__(self, text: Optional[str] = "https://example.org/ticket/42"):
        self.text = text
        self.running = False

    def start(self) -> None:
        self.running = True

    def stop(self) -> None:
        self.running = False

    def decode(self, frame):
        return self.text


@dataclass
class RecordingSink:
    published: List[Any] = field(default_factory=list)

    def publish(self, result) -> None:
        self.published.append(result)


class MemoryRepository:
    def __init__(self, records: Optional[List[EnrollmentRecord]] = None):
        self.records = list(records or [])
        self.saved: List[StoredEnrollment] = []
        self.error: Optional[Exception] = None

    def list_enrollments(self):
        if self.error is not None:
            raise self.error
        return list(self.records)

    def save_enrollment(self, identity, embedding):
        if self.error is not None:
            raise self.error
        row_id = len(self.saved) + 1
        stored = StoredEnrollment(
            id=row_id,
            identity=identity if identity is not None else f"user_{row_id}",
            descriptor=[float(v) for v in embedding],
        )
        self.saved.append(stored)
        return stored


@pytest.fixture
def alice_bob_records():
    return [
        EnrollmentRecord.build("alice", [[1.0, 0.0, 0.0]]),
        EnrollmentRecord.build("bob", [[0.0, 1.0, 0.0]]),
    ]


@pytest.fixture
def store(alice_bob_records):
    gallery_store = GalleryStore()
    gallery_store.load(alice_bob_records)
    return gallery_store


@pytest.fixture
def timers():
    return ManualTimerFactory()


@pytest.fixture
def executor():
    return DeferredExecutor()


@pytest.fixture
def camera():
    return FakeCameraProvider()


@pytest.fixture
def extractor():
    return EchoExtractor()


@pytest.fixture
def decoder():
    return FakeDecoder()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def scheduler(store, camera, extractor, decoder, sink, timers, executor):
    return CaptureScheduler(
        camera=camera,
        pipelines={
            Mode.FACE: FacePipeline(extractor, Matcher(store)),
            Mode.QR: QRPipeline(decoder),
        },
        sink=sink,
        timer_factory=timers,
        executor=executor,
        interval_seconds=0.1,
        max_read_failures=3,
    )


@pytest.fixture
def memory_engine():
    from sqlalchemy.pool import StaticPool

    from face_gate.database import create_db_engine

    engine = create_db_engine("sqlite://", poolclass=StaticPool)
    yield engine
    engine.dispose()
