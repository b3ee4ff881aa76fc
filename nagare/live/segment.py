from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

from nagare.contracts import AudioChunk


@dataclass(frozen=True)
class Segment:
    """Snapshot of the accumulated buffer handed to the transcriber."""
    segment_id: int
    samples: np.ndarray
    sample_rate: int
    t0: float
    t1: Optional[float] = None

    @property
    def duration(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return len(self.samples) / float(self.sample_rate)

    @property
    def is_closed(self) -> bool:
        return self.t1 is not None


class SegmentAccumulator:
    """
    Sample buffer for the current speech span.

    Overlapping chunks are appended without their leading overlap, so the
    buffer holds each captured sample once.
    """

    def __init__(self) -> None:
        self._parts: list[np.ndarray] = []
        self._size = 0
        self._sample_rate = 0
        self._t0: Optional[float] = None
        self._t1: Optional[float] = None
        self._next_id = 1
        self.segment_id = 0

    @property
    def is_open(self) -> bool:
        return self._t0 is not None

    @property
    def has_samples(self) -> bool:
        return self._size > 0

    @property
    def duration(self) -> float:
        if self._sample_rate <= 0:
            return 0.0
        return self._size / float(self._sample_rate)

    @property
    def t0(self) -> Optional[float]:
        return self._t0

    def open(self, t0: float) -> int:
        if self._t0 is None:
            self._t0 = float(t0)
            self.segment_id = self._next_id
            self._next_id += 1
        return self.segment_id

    def append(self, chunk: AudioChunk) -> None:
        if self._t0 is None:
            self.open(chunk.timestamp)
        samples = chunk.samples
        if self._t1 is not None and chunk.timestamp < self._t1:
            skip = int(round((self._t1 - chunk.timestamp) * chunk.sample_rate))
            samples = samples[skip:]
        if samples.size:
            self._parts.append(samples)
            self._size += int(samples.size)
        self._sample_rate = chunk.sample_rate
        chunk_end = chunk.timestamp + chunk.duration
        self._t1 = chunk_end if self._t1 is None else max(self._t1, chunk_end)

    def snapshot(self) -> Segment:
        samples = np.concatenate(self._parts) if self._parts else np.zeros(0, dtype=np.float32)
        self._parts = [samples] if samples.size else []
        return Segment(
            segment_id=self.segment_id,
            samples=samples,
            sample_rate=self._sample_rate,
            t0=self._t0 if self._t0 is not None else 0.0,
        )

    def close(self) -> Segment:
        """Hand off the full buffer as a closed segment and clear."""
        seg = self.snapshot()
        closed = Segment(
            segment_id=seg.segment_id,
            samples=seg.samples,
            sample_rate=seg.sample_rate,
            t0=seg.t0,
            t1=self._t1 if self._t1 is not None else seg.t0,
        )
        self.clear()
        return closed

    def clear(self) -> None:
        self._parts = []
        self._size = 0
        self._t0 = None
        self._t1 = None
        self.segment_id = 0
