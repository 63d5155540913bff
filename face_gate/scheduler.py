"""Periodic capture loop with one detection in flight at a time.

Every tick reads a frame from the active stream and hands it to the pipeline
of the current mode on the executor. A tick that arrives while a detection is
still running is dropped. Stopping or switching modes bumps a generation
counter so a detection that completes afterwards is discarded instead of
published.
"""
from __future__ import annotations

import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from functools import partial
from typing import Any, Dict, Mapping, Optional, Protocol

import numpy as np

from .exceptions import CaptureError, ValidationError
from .logger import setup_logger
from .modes import Facing, Mode, ModeController, SessionState, SessionStatus, Transition, facing_for
from .pipelines import DetectionPipeline
from .result_sink import ResultSink
from .timers import ThreadTimerFactory, TimerFactory, TimerHandle


class FrameStream(Protocol):
    def read(self) -> np.ndarray:
        ...

    def stop(self) -> None:
        ...


class CameraProvider(Protocol):
    def open(self, facing: Facing) -> FrameStream:
        ...


class CaptureScheduler:
    def __init__(
        self,
        camera: CameraProvider,
        pipelines: Mapping[Mode, DetectionPipeline],
        sink: ResultSink,
        timer_factory: Optional[TimerFactory] = None,
        executor: Optional[Executor] = None,
        interval_seconds: float = 0.1,
        mode_controller: Optional[ModeController] = None,
        max_read_failures: int = 4,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive.")
        missing = [mode.value for mode in Mode if mode not in pipelines]
        if missing:
            raise ValueError(f"Missing detection pipeline for mode(s): {', '.join(missing)}")

        self.camera = camera
        self.pipelines = dict(pipelines)
        self.sink = sink
        self.timer_factory = timer_factory or ThreadTimerFactory()
        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="detect")
        self.interval_seconds = float(interval_seconds)
        self.modes = mode_controller or ModeController()
        self.max_read_failures = max(1, int(max_read_failures))

        self.state = SessionState(mode=self.modes.mode)
        self._lock = threading.RLock()
        self._session = 0
        self._generation = 0
        self._inflight: Optional[Future] = None
        self._active_pipeline: Optional[DetectionPipeline] = None
        self._read_failures = 0
        self._published = 0
        self.logger = setup_logger(self.__class__.__name__)

    @property
    def status(self) -> SessionStatus:
        return self.state.status

    @property
    def mode(self) -> Mode:
        return self.modes.mode

    @property
    def running(self) -> bool:
        return self.state.active_timer is not None

    def start(self, mode: Optional[Mode] = None) -> None:
        """Open the camera for `mode` (default: current mode) and begin ticking.

        Raises CaptureError (or a subclass) when the camera cannot be opened;
        the session is left in ERROR with the failure message.
        """
        with self._lock:
            self.stop()
            target = Mode(mode) if mode is not None else self.modes.mode
            self.modes.commit(target)
            self.state.mode = target
            self.state.status = SessionStatus.LOADING
            self.state.error = None
            self._read_failures = 0

            try:
                stream = self.camera.open(facing_for(target))
            except CaptureError as exc:
                self._fail(str(exc))
                raise

            pipeline = self.pipelines[target]
            try:
                pipeline.start()
            except Exception as exc:
                stream.stop()
                self._fail(str(exc))
                raise

            self.state.active_stream = stream
            self._active_pipeline = pipeline
            self.state.status = SessionStatus.READY

            session = self._session
            self.state.active_timer = self.timer_factory.schedule(
                self.interval_seconds, partial(self._tick, session)
            )
        self.logger.info("Capture session started in %s mode", target.value)

    def stop(self) -> None:
        """Release the timer, camera tracks and pipeline. Safe to call repeatedly."""
        with self._lock:
            self._session += 1
            self._generation += 1
            timer: Optional[TimerHandle] = self.state.active_timer
            stream = self.state.active_stream
            pipeline = self._active_pipeline
            inflight = self._inflight

            self.state.active_timer = None
            self.state.active_stream = None
            self._active_pipeline = None
            self._inflight = None
            self.modes.cancel_pending()
            if self.state.status is not SessionStatus.ERROR:
                self.state.status = SessionStatus.READY

            if timer is not None:
                timer.cancel()
            if inflight is not None:
                inflight.cancel()
            try:
                if pipeline is not None:
                    pipeline.stop()
            finally:
                if stream is not None:
                    stream.stop()

        if timer is not None or stream is not None:
            self.logger.info("Capture session stopped")

    def switch_mode(self, mode: Mode) -> Transition:
        target = Mode(mode)
        with self._lock:
            transition = self.modes.request(target, self.state.status)
            if transition is Transition.NOOP:
                return transition

            if transition is Transition.QUEUED:
                # The in-flight detection belongs to the old mode; its result is dropped.
                self._generation += 1
                self.logger.warning(
                    "Mode switch to %s queued behind in-flight detection", target.value
                )
                if self._inflight is not None:
                    # A detection that has not started yet completes as cancelled.
                    self._inflight.cancel()
                return transition

            if self.running:
                self.start(target)
            else:
                self.modes.commit(target)
                self.state.mode = target
            self.logger.info("Mode switched to %s", target.value)
            return transition

    def mark_error(self, message: str) -> None:
        with self._lock:
            self.stop()
            self._fail(message)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            pending = self.modes.pending
            return {
                "mode": self.modes.mode.value,
                "status": self.state.status.value,
                "error": self.state.error,
                "running": self.running,
                "generation": self._generation,
                "pending_mode": pending.value if pending is not None else None,
                "published": self._published,
            }

    def shutdown(self) -> None:
        self.stop()
        if self._owns_executor:
            self.executor.shutdown(wait=False, cancel_futures=True)

    def _fail(self, message: str) -> None:
        self.state.status = SessionStatus.ERROR
        self.state.error = message
        self.logger.error("Capture session failed: %s", message)

    def _tick(self, session: int) -> None:
        with self._lock:
            if session != self._session or self.state.active_stream is None:
                return
            if self.state.status is SessionStatus.DETECTING:
                self.logger.debug("Detection still running, skipping tick")
                return

            try:
                frame = self.state.active_stream.read()
            except CaptureError as exc:
                self._read_failures += 1
                self.logger.warning(
                    "Frame read failed (%d/%d): %s", self._read_failures, self.max_read_failures, exc
                )
                if self._read_failures >= self.max_read_failures:
                    self.stop()
                    self._fail(f"Camera stream lost: {exc}")
                return
            self._read_failures = 0

            pipeline = self._active_pipeline
            if pipeline is None:
                return
            try:
                future = self.executor.submit(pipeline.detect, frame)
            except RuntimeError as exc:
                self.logger.error("Could not schedule detection: %s", exc)
                return
            self.state.status = SessionStatus.DETECTING
            self._inflight = future
            generation = self._generation
        future.add_done_callback(partial(self._on_detection_done, generation))

    def _on_detection_done(self, generation: int, future: Future) -> None:
        with self._lock:
            if future is not self._inflight:
                return
            self._inflight = None
            self.state.status = SessionStatus.READY

            if generation != self._generation:
                self.logger.debug("Discarding stale detection result")
                self._apply_pending_mode()
                return

            if future.cancelled():
                return
            exc = future.exception()
            if isinstance(exc, ValidationError):
                self.stop()
                self._fail(str(exc))
                return
            if exc is not None:
                self.logger.error("Detection failed: %s", exc, exc_info=exc)
                return

            result = future.result()
            if result is None:
                return
            self.sink.publish(result)
            self._published += 1

    def _apply_pending_mode(self) -> None:
        pending = self.modes.take_pending()
        if pending is None or pending is self.modes.mode:
            return
        self.logger.info("Applying queued mode switch to %s", pending.value)
        if self.running:
            try:
                self.start(pending)
            except CaptureError:
                # start() already recorded the failure on the session.
                return
        else:
            self.modes.commit(pending)
            self.state.mode = pending
