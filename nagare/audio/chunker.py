from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterator, Optional

import numpy as np

from nagare.audio.convert import power_db, resample, to_mono
from nagare.audio.mic import AudioSource
from nagare.contracts import AudioChunk

logger = logging.getLogger(__name__)

_STOP = object()


@dataclass(frozen=True)
class ChunkerConfig:
    chunk_seconds: float = 0.5
    # fraction of each chunk carried over into the next one
    overlap_ratio: float = 0.2
    target_rate: int = 16000
    # chunks at or below this loudness are not emitted; None disables gating
    silence_gate_db: Optional[float] = None
    max_pending_blocks: int = 256

    def __post_init__(self) -> None:
        if self.chunk_seconds <= 0:
            raise ValueError("chunk_seconds must be > 0")
        if not 0.0 <= self.overlap_ratio <= 0.5:
            raise ValueError("overlap_ratio must be within [0, 0.5]")
        if self.target_rate <= 0:
            raise ValueError("target_rate must be > 0")
        if self.max_pending_blocks <= 0:
            raise ValueError("max_pending_blocks must be > 0")

    @property
    def samples_per_chunk(self) -> int:
        return max(1, int(self.target_rate * self.chunk_seconds))

    @property
    def overlap_samples(self) -> int:
        return int(self.samples_per_chunk * self.overlap_ratio)


class AudioChunker:
    """
    Turns a device stream into fixed-length, overlapping AudioChunks.

    The capture callback only enqueues raw blocks. Conversion to mono at the
    target rate, slicing and loudness measurement run on a separate worker
    thread. Chunks go to `on_chunk` when given, otherwise to an internal
    queue read with get()/iter_chunks().
    """

    def __init__(
        self,
        source: AudioSource,
        cfg: ChunkerConfig | None = None,
        *,
        on_chunk: Callable[[AudioChunk], None] | None = None,
    ) -> None:
        self.source = source
        self.cfg = cfg or ChunkerConfig()
        self.on_chunk = on_chunk
        self.last_power_db = power_db(np.zeros(0, dtype=np.float32))
        self.dropped_blocks = 0
        self.gated_chunks = 0

        self._raw: "queue.Queue[object]" = queue.Queue(maxsize=self.cfg.max_pending_blocks)
        self._chunks: "queue.Queue[AudioChunk]" = queue.Queue()
        self._buffer = np.zeros(0, dtype=np.float32)
        self._consumed = 0
        self._emit_lock = threading.Lock()
        self._pending_lock = threading.Lock()
        self._pending = 0
        self._accepting = True
        self._worker: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._worker is not None

    def start(self) -> None:
        """Open the device and begin chunking. Raises DeviceUnavailable/FormatError."""
        if self._worker is not None:
            return
        self._reset_buffer()
        self._drain_raw()
        with self._emit_lock:
            self._accepting = True
        worker = threading.Thread(target=self._worker_loop, name="nagare-audio-convert", daemon=True)
        self._worker = worker
        worker.start()
        try:
            self.source.open(self._on_block)
        except Exception:
            self._shutdown_worker()
            raise
        logger.info(
            "chunker_started",
            extra={
                "native_rate": self.source.sample_rate,
                "native_channels": self.source.channels,
                "target_rate": self.cfg.target_rate,
                "chunk_seconds": self.cfg.chunk_seconds,
                "overlap_ratio": self.cfg.overlap_ratio,
            },
        )

    def stop(self) -> None:
        """Silence the device, then tear down. No chunk is emitted after return."""
        if self._worker is None:
            return
        self.source.close()
        self._shutdown_worker()
        self._reset_buffer()
        logger.info(
            "chunker_stopped",
            extra={"dropped_blocks": self.dropped_blocks, "gated_chunks": self.gated_chunks},
        )

    def get(self, timeout: float | None = None) -> AudioChunk | None:
        try:
            return self._chunks.get(timeout=timeout)
        except queue.Empty:
            return None

    def iter_chunks(self, poll_sec: float = 0.1) -> Iterator[AudioChunk]:
        while self.is_running or not self._chunks.empty():
            chunk = self.get(timeout=poll_sec)
            if chunk is not None:
                yield chunk

    def feed(self, block: np.ndarray, sample_rate: int) -> list[AudioChunk]:
        """
        Convert one native block and emit every complete chunk it produces.
        A block that fails conversion is dropped.
        """
        try:
            mono = to_mono(block)
            converted = resample(mono, int(sample_rate), self.cfg.target_rate)
        except Exception:
            logger.warning(
                "chunk_conversion_failed",
                extra={"sample_rate": sample_rate, "shape": str(getattr(block, "shape", None))},
                exc_info=True,
            )
            return []

        if converted.size:
            self.last_power_db = power_db(converted)
        self._buffer = np.concatenate((self._buffer, converted))

        per_chunk = self.cfg.samples_per_chunk
        advance = per_chunk - self.cfg.overlap_samples
        out: list[AudioChunk] = []
        while self._buffer.size >= per_chunk:
            window = self._buffer[:per_chunk].copy()
            chunk = AudioChunk(
                samples=window,
                sample_rate=self.cfg.target_rate,
                power_db=power_db(window),
                timestamp=self._consumed / float(self.cfg.target_rate),
            )
            self._buffer = self._buffer[advance:]
            self._consumed += advance
            if self._emit(chunk):
                out.append(chunk)
        return out

    def wait_idle(self, timeout: float = 5.0) -> bool:
        """Block until every captured block has been converted. False on timeout."""
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            with self._pending_lock:
                if self._pending == 0:
                    return True
            time.sleep(0.01)
        return False

    def _on_block(self, block: np.ndarray) -> None:
        self._add_pending(1)
        if getattr(self.source, "lossless", False):
            # file replay: back-pressure the reader instead of dropping
            self._raw.put(block)
            return
        # Runs in the capture callback: never block here.
        try:
            self._raw.put_nowait(block)
        except queue.Full:
            self._add_pending(-1)
            self.dropped_blocks += 1

    def _add_pending(self, n: int) -> None:
        with self._pending_lock:
            self._pending = max(0, self._pending + n)

    def _emit(self, chunk: AudioChunk) -> bool:
        gate = self.cfg.silence_gate_db
        if gate is not None and chunk.power_db <= gate:
            self.gated_chunks += 1
            return False
        with self._emit_lock:
            if not self._accepting:
                return False
            if self.on_chunk is not None:
                self.on_chunk(chunk)
            else:
                self._chunks.put(chunk)
        return True

    def _worker_loop(self) -> None:
        while True:
            item = self._raw.get()
            if item is _STOP:
                return
            try:
                self.feed(item, self.source.sample_rate)  # type: ignore[arg-type]
            finally:
                self._add_pending(-1)

    def _shutdown_worker(self) -> None:
        with self._emit_lock:
            self._accepting = False
        worker = self._worker
        self._worker = None
        if worker is None:
            return
        self._drain_raw()
        self._raw.put(_STOP)
        worker.join(timeout=2.0)

    def _drain_raw(self) -> None:
        while True:
            try:
                self._raw.get_nowait()
            except queue.Empty:
                break
        with self._pending_lock:
            self._pending = 0

    def _reset_buffer(self) -> None:
        self._buffer = np.zeros(0, dtype=np.float32)
        self._consumed = 0
