from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from nagare.contracts import AudioChunk, SpeechState, StateChanged, VadSignal

logger = logging.getLogger(__name__)

# Legal edges of the speech state machine.
TRANSITIONS: frozenset[tuple[SpeechState, SpeechState]] = frozenset(
    {
        (SpeechState.SILENCE, SpeechState.SPEECH_START),
        (SpeechState.SPEECH_START, SpeechState.SPEAKING),
        (SpeechState.SPEECH_START, SpeechState.SILENCE),
        (SpeechState.SPEAKING, SpeechState.SPEECH_END),
        (SpeechState.SPEECH_END, SpeechState.SILENCE),
    }
)


@dataclass(frozen=True)
class VADConfiguration:
    # energy strategy: thresholds are noise floor + offset (dB)
    speech_on_offset: float = 10.0
    speech_off_offset: float = 3.0
    # probability strategy: absolute thresholds
    speech_probability: float = 0.5
    silence_probability: float = 0.3
    min_speech_sec: float = 0.25
    min_silence_sec: float = 0.4
    # Speaking ends this long after the last sample above the speech-on threshold.
    hard_timeout_sec: float = 2.0
    noise_floor_alpha: float = 0.01
    noise_floor_min: float = -60.0
    noise_floor_max: float = -30.0
    initial_noise_floor: float = -50.0
    # floor only adapts to loudness below floor + margin
    adaptation_margin: float = 5.0

    def __post_init__(self) -> None:
        if self.speech_off_offset > self.speech_on_offset:
            raise ValueError("speech_off_offset must be <= speech_on_offset")
        if self.silence_probability > self.speech_probability:
            raise ValueError("silence_probability must be <= speech_probability")
        if self.min_speech_sec < 0 or self.min_silence_sec < 0:
            raise ValueError("min_speech_sec/min_silence_sec must be >= 0")
        if self.hard_timeout_sec <= 0:
            raise ValueError("hard_timeout_sec must be > 0")
        if not 0.0 <= self.noise_floor_alpha <= 1.0:
            raise ValueError("noise_floor_alpha must be within [0, 1]")
        if self.noise_floor_min > self.noise_floor_max:
            raise ValueError("noise_floor_min must be <= noise_floor_max")


class SpeechStateMachine:
    """
    Four-state speech segmentation shared by every VAD strategy.

    Each tick reports whether the driving signal is above the speech-on
    threshold and whether it is below the speech-off threshold; values in
    between hold the current state (hysteresis).
    """

    def __init__(self, cfg: VADConfiguration) -> None:
        self.cfg = cfg
        self.state = SpeechState.SILENCE
        self._speech_start: Optional[float] = None
        self._silence_start: Optional[float] = None
        self._last_speech: Optional[float] = None

    @property
    def is_speaking(self) -> bool:
        return self.state.is_speaking

    def reset(self) -> None:
        self.state = SpeechState.SILENCE
        self._speech_start = None
        self._silence_start = None
        self._last_speech = None

    def step(self, timestamp: float, *, above_on: bool, below_off: bool) -> list[StateChanged]:
        state = self.state
        cfg = self.cfg

        if state is SpeechState.SILENCE:
            if above_on:
                self._speech_start = timestamp
                self._last_speech = timestamp
                return self._transition(SpeechState.SPEECH_START, timestamp)
            return []

        if state is SpeechState.SPEECH_START:
            if not above_on:
                # false start
                self._speech_start = None
                return self._transition(SpeechState.SILENCE, timestamp)
            self._last_speech = timestamp
            start = self._speech_start if self._speech_start is not None else timestamp
            if timestamp - start >= cfg.min_speech_sec:
                self._silence_start = None
                return self._transition(SpeechState.SPEAKING, timestamp)
            return []

        if state is SpeechState.SPEAKING:
            if above_on:
                self._silence_start = None
                self._last_speech = timestamp
            elif below_off:
                if self._silence_start is None:
                    self._silence_start = timestamp
                if timestamp - self._silence_start >= cfg.min_silence_sec:
                    return self._end(timestamp)
            else:
                self._silence_start = None

            last = self._last_speech if self._last_speech is not None else timestamp
            if timestamp - last >= cfg.hard_timeout_sec:
                logger.debug("vad_hard_timeout", extra={"t": timestamp, "last_speech": last})
                return self._end(timestamp)
            return []

        # SPEECH_END lasts exactly one tick.
        return self._transition(SpeechState.SILENCE, timestamp)

    def force_start(self, timestamp: float) -> list[StateChanged]:
        if self.state is not SpeechState.SILENCE:
            return []
        self._speech_start = timestamp
        self._last_speech = timestamp
        return self._transition(SpeechState.SPEECH_START, timestamp)

    def force_end(self, timestamp: float) -> list[StateChanged]:
        if self.state is SpeechState.SPEECH_START:
            self._speech_start = None
            return self._transition(SpeechState.SILENCE, timestamp)
        if self.state is SpeechState.SPEAKING:
            return self._end(timestamp)
        return []

    def _end(self, timestamp: float) -> list[StateChanged]:
        self._speech_start = None
        self._silence_start = None
        self._last_speech = None
        return self._transition(SpeechState.SPEECH_END, timestamp)

    def _transition(self, new_state: SpeechState, timestamp: float) -> list[StateChanged]:
        previous = self.state
        if new_state is previous:
            return []
        if (previous, new_state) not in TRANSITIONS:
            raise AssertionError(f"illegal VAD transition {previous.value} -> {new_state.value}")
        self.state = new_state
        return [StateChanged(previous=previous, current=new_state, timestamp=timestamp)]


class VADEngine(Protocol):
    cfg: VADConfiguration

    @property
    def state(self) -> SpeechState:
        ...

    @property
    def is_speaking(self) -> bool:
        ...

    def process(self, chunk: AudioChunk) -> list[StateChanged]:
        ...

    def reset(self) -> None:
        ...


class _MachineBackedVAD:
    def __init__(self, cfg: VADConfiguration) -> None:
        self.cfg = cfg
        self.machine = SpeechStateMachine(cfg)

    @property
    def state(self) -> SpeechState:
        return self.machine.state

    @property
    def is_speaking(self) -> bool:
        return self.machine.is_speaking

    def _log(self, events: list[StateChanged], **fields: object) -> None:
        for ev in events:
            logger.debug(
                "vad_transition",
                extra={"from": ev.previous.value, "to": ev.current.value, "t": ev.timestamp, **fields},
            )


class EnergyVAD(_MachineBackedVAD):
    """Loudness-driven VAD with an adaptive noise floor."""

    def __init__(self, cfg: VADConfiguration | None = None) -> None:
        super().__init__(cfg or VADConfiguration())
        self.noise_floor = self.cfg.initial_noise_floor
        self.current_power_db = self.cfg.noise_floor_min

    @property
    def speech_threshold(self) -> float:
        return self.noise_floor + self.cfg.speech_on_offset

    @property
    def silence_threshold(self) -> float:
        return self.noise_floor + self.cfg.speech_off_offset

    def reset(self) -> None:
        self.machine.reset()
        self.current_power_db = self.cfg.noise_floor_min

    def process(self, chunk: AudioChunk) -> list[StateChanged]:
        return self.process_power(chunk.power_db, chunk.timestamp)

    def process_power(self, power_db: float, timestamp: float) -> list[StateChanged]:
        self.current_power_db = power_db
        if self.machine.state is SpeechState.SILENCE:
            self._adapt_floor(power_db)
        events = self.machine.step(
            timestamp,
            above_on=power_db > self.speech_threshold,
            below_off=power_db < self.silence_threshold,
        )
        self._log(events, power_db=round(power_db, 2), noise_floor=round(self.noise_floor, 2))
        return events

    def _adapt_floor(self, power_db: float) -> None:
        cfg = self.cfg
        # Loud spikes during silence must not drag the floor up.
        if power_db >= self.noise_floor + cfg.adaptation_margin:
            return
        alpha = cfg.noise_floor_alpha
        floor = alpha * power_db + (1.0 - alpha) * self.noise_floor
        self.noise_floor = min(max(floor, cfg.noise_floor_min), cfg.noise_floor_max)


class ProbabilitySource(Protocol):
    """External speech detector evaluated once per chunk."""

    def evaluate(self, chunk: AudioChunk) -> VadSignal:
        ...

    def reset(self) -> None:
        ...


class ProbabilityVAD(_MachineBackedVAD):
    """VAD driven by a speech probability (and optional discrete events) from an external model."""

    def __init__(self, source: ProbabilitySource, cfg: VADConfiguration | None = None) -> None:
        super().__init__(cfg or VADConfiguration())
        self.source = source
        self.current_probability = 0.0

    def reset(self) -> None:
        self.machine.reset()
        self.current_probability = 0.0
        self.source.reset()

    def process(self, chunk: AudioChunk) -> list[StateChanged]:
        try:
            sig = self.source.evaluate(chunk)
        except Exception:
            logger.warning("vad_inference_failed", extra={"t": chunk.timestamp}, exc_info=True)
            return []
        return self.process_signal(sig, chunk.timestamp)

    def process_signal(self, sig: VadSignal, timestamp: float) -> list[StateChanged]:
        self.current_probability = float(sig.probability)
        events: list[StateChanged] = []
        if sig.event == "speech_start":
            events += self.machine.force_start(timestamp)
        elif sig.event == "speech_end":
            events += self.machine.force_end(timestamp)

        if not events:
            events += self.machine.step(
                timestamp,
                above_on=sig.probability > self.cfg.speech_probability,
                below_off=sig.probability < self.cfg.silence_probability,
            )
        self._log(events, probability=round(self.current_probability, 3))
        return events
