from __future__ import annotations

from concurrent.futures import Executor, Future

import numpy as np

from nagare.asr.base import Transcriber
from nagare.audio.vad import VADConfiguration
from nagare.contracts import AudioChunk, TranscriptionResult

TICK_SR = 100


class InlineExecutor(Executor):
    """Runs every job on submit, so callbacks fire before submit() returns."""

    def submit(self, fn, /, *args, **kwargs):
        fut: Future = Future()
        try:
            fut.set_result(fn(*args, **kwargs))
        except BaseException as e:
            fut.set_exception(e)
        return fut


class ManualExecutor(Executor):
    """Holds jobs until the test runs them."""

    def __init__(self) -> None:
        self.jobs: list[tuple[Future, object, tuple, dict]] = []

    def submit(self, fn, /, *args, **kwargs):
        fut: Future = Future()
        self.jobs.append((fut, fn, args, kwargs))
        return fut

    def run(self, index: int = 0) -> None:
        fut, fn, args, kwargs = self.jobs.pop(index)
        fut.set_result(fn(*args, **kwargs))


class FakeTranscriber(Transcriber):
    def __init__(self, text: str = "hello world.", success: bool = True) -> None:
        self.text = text
        self.success = success
        self.calls: list[np.ndarray] = []

    @property
    def name(self) -> str:
        return "fake"

    def transcribe(self, samples: np.ndarray) -> TranscriptionResult:
        self.calls.append(samples)
        return TranscriptionResult(text=self.text, success=self.success)


def tick_chunk(t: float, db: float, value: float = 0.1) -> AudioChunk:
    """One-second chunk whose loudness is given directly."""
    return AudioChunk(
        samples=np.full(TICK_SR, value, dtype=np.float32),
        sample_rate=TICK_SR,
        power_db=float(db),
        timestamp=float(t),
    )


def tick_vad_config(**overrides) -> VADConfiguration:
    """Floor -50 and no adaptation: speech-on at -40 dB, speech-off at -53 dB, 1 tick = 1 s."""
    values = dict(
        speech_on_offset=10.0,
        speech_off_offset=-3.0,
        min_speech_sec=2.0,
        min_silence_sec=2.0,
        hard_timeout_sec=10.0,
        noise_floor_alpha=0.0,
    )
    values.update(overrides)
    return VADConfiguration(**values)
