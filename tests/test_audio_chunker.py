from __future__ import annotations

import threading

import numpy as np
import pytest

from nagare.audio.chunker import AudioChunker, ChunkerConfig
from nagare.audio.errors import DeviceUnavailable


class FakeSource:
    lossless = False

    def __init__(self, sample_rate: int = 16000, channels: int = 1, fail: Exception | None = None) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self.fail = fail
        self.callback = None
        self.closed = False

    def open(self, callback) -> None:
        if self.fail is not None:
            raise self.fail
        self.callback = callback

    def close(self) -> None:
        self.closed = True


def test_chunker_config_validates_overlap() -> None:
    with pytest.raises(ValueError):
        ChunkerConfig(overlap_ratio=0.6)
    cfg = ChunkerConfig(chunk_seconds=0.5, overlap_ratio=0.2, target_rate=16000)
    assert cfg.samples_per_chunk == 8000
    assert cfg.overlap_samples == 1600


def test_feed_slices_overlapping_windows() -> None:
    chunker = AudioChunker(FakeSource(), ChunkerConfig(chunk_seconds=0.5, overlap_ratio=0.2))
    ramp = np.linspace(-0.5, 0.5, 16000, dtype=np.float32)

    chunks = chunker.feed(ramp, 16000)

    assert len(chunks) == 2
    first, second = chunks
    assert first.samples.shape == (8000,)
    assert first.timestamp == pytest.approx(0.0)
    assert second.timestamp == pytest.approx(0.4)
    assert np.array_equal(second.samples[:1600], first.samples[-1600:])
    assert chunker.get(timeout=0.01) is first


def test_feed_resamples_stereo_device_blocks() -> None:
    chunker = AudioChunker(FakeSource(48000, 2), ChunkerConfig(chunk_seconds=0.1, overlap_ratio=0.0))
    block = np.full((4800, 2), 0.25, dtype=np.float32)
    chunks = chunker.feed(block, 48000)
    assert len(chunks) == 1
    assert chunks[0].sample_rate == 16000
    assert chunks[0].samples.shape == (1600,)


def test_silence_gate_suppresses_quiet_chunks() -> None:
    chunker = AudioChunker(
        FakeSource(),
        ChunkerConfig(chunk_seconds=0.1, overlap_ratio=0.0, silence_gate_db=-80.0),
    )
    assert chunker.feed(np.zeros(1600, dtype=np.float32), 16000) == []
    assert chunker.gated_chunks == 1
    assert len(chunker.feed(np.full(1600, 0.1, dtype=np.float32), 16000)) == 1


def test_conversion_failure_drops_block_and_continues() -> None:
    chunker = AudioChunker(FakeSource(), ChunkerConfig(chunk_seconds=0.1, overlap_ratio=0.0))
    assert chunker.feed(np.zeros((2, 2, 2), dtype=np.float32), 16000) == []
    assert len(chunker.feed(np.full(1600, 0.1, dtype=np.float32), 16000)) == 1


def test_start_failure_propagates_device_error() -> None:
    chunker = AudioChunker(FakeSource(fail=DeviceUnavailable("Input device 9 not found.")))
    with pytest.raises(DeviceUnavailable):
        chunker.start()
    assert not chunker.is_running


def test_worker_delivers_to_callback_and_stop_silences() -> None:
    source = FakeSource()
    got = []
    seen = threading.Event()

    def on_chunk(chunk) -> None:
        got.append(chunk)
        seen.set()

    chunker = AudioChunker(source, ChunkerConfig(chunk_seconds=0.1, overlap_ratio=0.0), on_chunk=on_chunk)
    chunker.start()
    source.callback(np.full((1600, 1), 0.1, dtype=np.float32))
    assert seen.wait(2.0)
    assert chunker.wait_idle(2.0)

    chunker.stop()
    assert source.closed
    assert not chunker.is_running
    source.callback(np.full((1600, 1), 0.1, dtype=np.float32))
    assert len(got) == 1
