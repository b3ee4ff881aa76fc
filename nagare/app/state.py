from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from enum import Enum


class RuntimeState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    ERROR = "error"


@dataclass
class RuntimeStateTracker:
    """Lifecycle of a session or poller as seen by the CLI."""
    state: RuntimeState = RuntimeState.STOPPED
    last_error: str | None = None
    changed_at: float = 0.0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def is_active(self) -> bool:
        return self.state in (RuntimeState.STARTING, RuntimeState.RUNNING)

    def _set(self, state: RuntimeState) -> None:
        with self._lock:
            self.state = state
            self.changed_at = time.monotonic()

    def set_starting(self) -> None:
        self._set(RuntimeState.STARTING)
        self.last_error = None

    def set_running(self) -> None:
        if self.state == RuntimeState.STARTING:
            self._set(RuntimeState.RUNNING)

    def set_stopped(self) -> None:
        self._set(RuntimeState.STOPPED)

    def set_error(self, detail: str) -> None:
        self._set(RuntimeState.ERROR)
        self.last_error = detail
