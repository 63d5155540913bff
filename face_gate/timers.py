from __future__ import annotations

import threading
from typing import Callable, Protocol

from .logger import setup_logger


class TimerHandle(Protocol):
    @property
    def active(self) -> bool:
        ...

    def cancel(self) -> None:
        ...


class TimerFactory(Protocol):
    def schedule(self, interval_seconds: float, callback: Callable[[], None]) -> TimerHandle:
        ...


class PeriodicTimer:
    """Fires `callback` every `interval_seconds` on a daemon thread until cancelled.

    `cancel()` only sets the stop event and never joins, so it is safe to call
    while holding a lock the callback also takes.
    """

    def __init__(self, interval_seconds: float, callback: Callable[[], None], name: str = "capture-tick"):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive.")
        self.interval_seconds = interval_seconds
        self._callback = callback
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._run_loop, name=name, daemon=True)
        self.logger = setup_logger(self.__class__.__name__)

    @property
    def active(self) -> bool:
        return not self._stop_event.is_set()

    def start(self) -> "PeriodicTimer":
        self._thread.start()
        return self

    def cancel(self) -> None:
        self._stop_event.set()

    def join(self, timeout: float = 2.0) -> None:
        if self._thread.is_alive() and threading.current_thread() is not self._thread:
            self._thread.join(timeout=timeout)

    def _run_loop(self) -> None:
        while not self._stop_event.wait(self.interval_seconds):
            try:
                self._callback()
            except Exception:
                self.logger.exception("Periodic callback failed")


class ThreadTimerFactory:
    def schedule(self, interval_seconds: float, callback: Callable[[], None]) -> PeriodicTimer:
        return PeriodicTimer(interval_seconds, callback).start()
