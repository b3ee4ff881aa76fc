from __future__ import annotations

import queue
import threading
from typing import Any, Optional, Union

from nagare.contracts import CaptionCommitted, LineConfirmed, PartialUpdated, StateChanged

Event = Union[StateChanged, PartialUpdated, LineConfirmed, CaptionCommitted]


class Subscription:
    """
    One consumer's view of the event stream. Producer threads push, the
    consumer polls (non-blocking by default).
    """
    def __init__(self, bus: "EventBus", maxsize: int = 0):
        self._bus = bus
        self.q: "queue.Queue[Event]" = queue.Queue(maxsize=maxsize)
        self.dropped = 0

    def push(self, event: Event) -> None:
        try:
            self.q.put_nowait(event)
        except queue.Full:
            # drop oldest to keep the consumer responsive
            try:
                _ = self.q.get_nowait()
                self.dropped += 1
            except queue.Empty:
                return
            try:
                self.q.put_nowait(event)
            except queue.Full:
                return

    def pop(self, timeout: Optional[float] = None) -> Optional[Event]:
        try:
            if timeout is None:
                return self.q.get_nowait()
            return self.q.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self, max_items: int = 1000) -> list[Event]:
        out: list[Event] = []
        while len(out) < max_items:
            ev = self.pop()
            if ev is None:
                break
            out.append(ev)
        return out

    def close(self) -> None:
        self._bus.unsubscribe(self)


class EventBus:
    """Thread-safe fan-out of typed transcript events to explicit subscribers."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subs: list[Subscription] = []

    def subscribe(self, maxsize: int = 0) -> Subscription:
        sub = Subscription(self, maxsize=maxsize)
        with self._lock:
            self._subs.append(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            if sub in self._subs:
                self._subs.remove(sub)

    def publish(self, event: Any) -> None:
        with self._lock:
            subs = list(self._subs)
        for sub in subs:
            sub.push(event)
