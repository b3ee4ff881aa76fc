from __future__ import annotations

import logging
import threading
import time
from typing import Callable, List, Optional

from nagare.app.state import RuntimeStateTracker
from nagare.captions.matcher import CaptionMatcher
from nagare.captions.source import CaptionSource
from nagare.contracts import CaptionCommitted
from nagare.live.bus import EventBus

logger = logging.getLogger(__name__)


class CaptionPoller:
    """Polls a caption source on a fixed interval and publishes committed entries."""

    def __init__(
        self,
        source: CaptionSource,
        matcher: CaptionMatcher | None = None,
        bus: EventBus | None = None,
        *,
        interval_sec: float = 0.5,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if interval_sec <= 0:
            raise ValueError("interval_sec must be > 0")
        self.source = source
        self.matcher = matcher or CaptionMatcher()
        self.bus = bus or EventBus()
        self.interval_sec = float(interval_sec)
        self.clock = clock
        self.state = RuntimeStateTracker()
        self.pending = ""
        self.failures = 0
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def poll_once(self) -> List[CaptionCommitted]:
        try:
            pairs = self.source.read()
        except Exception as e:
            self.failures += 1
            logger.warning("caption_poll_failed", extra={"error": str(e), "failures": self.failures})
            return []
        outcome = self.matcher.observe(pairs, now=self.clock())
        self.pending = outcome.pending
        for ev in outcome.events:
            self.bus.publish(ev)
        return outcome.events

    def start(self) -> None:
        if self._thread is not None:
            return
        self.state.set_starting()
        self.matcher.reset()
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="nagare-captions", daemon=True)
        self._thread.start()
        self.state.set_running()

    def stop(self, timeout: float = 2.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        self.state.set_stopped()

    def _run(self) -> None:
        logger.info("caption_poller_start", extra={"interval_sec": self.interval_sec})
        while True:
            self.poll_once()
            if self._stop.wait(self.interval_sec):
                break
        logger.info("caption_poller_stop", extra={"failures": self.failures})
