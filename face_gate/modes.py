from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class Mode(str, Enum):
    FACE = "face"
    QR = "qr"


class Facing(str, Enum):
    USER = "user"
    ENVIRONMENT = "environment"


class SessionStatus(str, Enum):
    LOADING = "loading"
    READY = "ready"
    DETECTING = "detecting"
    ERROR = "error"


class Transition(str, Enum):
    NOOP = "noop"
    APPLY = "apply"
    QUEUED = "queued"


def facing_for(mode: Mode) -> Facing:
    # Face recognition looks at the operator, QR scanning looks away from them.
    return Facing.USER if mode is Mode.FACE else Facing.ENVIRONMENT


@dataclass
class SessionState:
    mode: Mode = Mode.FACE
    status: SessionStatus = SessionStatus.LOADING
    error: Optional[str] = None
    active_stream: Optional[Any] = None
    active_timer: Optional[Any] = None


class ModeController:
    """Face/QR state machine with a single queued transition slot."""

    def __init__(self, initial: Mode = Mode.FACE):
        self._mode = Mode(initial)
        self._pending: Optional[Mode] = None
        self._lock = threading.Lock()

    @property
    def mode(self) -> Mode:
        return self._mode

    @property
    def pending(self) -> Optional[Mode]:
        return self._pending

    def request(self, target: Mode, status: SessionStatus) -> Transition:
        target = Mode(target)
        with self._lock:
            if target is self._mode:
                # Asking for the current mode withdraws any queued switch.
                self._pending = None
                return Transition.NOOP
            if status is SessionStatus.DETECTING:
                self._pending = target
                return Transition.QUEUED
            self._pending = None
            return Transition.APPLY

    def commit(self, mode: Mode) -> None:
        with self._lock:
            self._mode = Mode(mode)
            if self._pending is self._mode:
                self._pending = None

    def take_pending(self) -> Optional[Mode]:
        with self._lock:
            pending, self._pending = self._pending, None
            return pending

    def cancel_pending(self) -> None:
        with self._lock:
            self._pending = None
