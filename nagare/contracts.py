from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import numpy as np


@dataclass(frozen=True)
class AudioChunk:
    """
    Canonical audio window produced by the chunker.
    samples: mono float32 in [-1, 1] at the chunker's target rate.
    power_db: 20*log10(rms), floored at the chunker's epsilon.
    timestamp: seconds since stream start of the first sample.
    """
    samples: np.ndarray
    sample_rate: int
    power_db: float
    timestamp: float

    @property
    def duration(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return len(self.samples) / float(self.sample_rate)


class SpeechState(str, Enum):
    SILENCE = "silence"
    SPEECH_START = "speech_start"
    SPEAKING = "speaking"
    SPEECH_END = "speech_end"

    @property
    def is_speaking(self) -> bool:
        return self in (SpeechState.SPEECH_START, SpeechState.SPEAKING)


@dataclass(frozen=True)
class VadSignal:
    """One tick from an external speech-probability detector."""
    probability: float
    # Optional discrete event reported by the detector: "speech_start" or "speech_end".
    event: Optional[str] = None


@dataclass(frozen=True)
class TranscriptionResult:
    text: str
    success: bool

    @classmethod
    def failed(cls) -> "TranscriptionResult":
        return cls(text="", success=False)


@dataclass(frozen=True)
class ConfirmedLine:
    text: str
    t0: float
    t1: float
    index: int


@dataclass(frozen=True)
class PartialLine:
    # stable: agreed prefix of recent hypotheses; provisional: volatile tail.
    stable: str = ""
    provisional: str = ""

    @property
    def text(self) -> str:
        return " ".join(p for p in (self.stable, self.provisional) if p)

    def __bool__(self) -> bool:
        return bool(self.stable or self.provisional)


@dataclass(frozen=True)
class CaptionEntry:
    speaker: str
    text: str
    timestamp: float
    is_pre_existing: bool = False

    @property
    def key(self) -> str:
        return f"{self.speaker}:{self.text}"


@dataclass(frozen=True)
class StateChanged:
    previous: SpeechState
    current: SpeechState
    timestamp: float


@dataclass(frozen=True)
class PartialUpdated:
    partial: PartialLine


@dataclass(frozen=True)
class LineConfirmed:
    line: ConfirmedLine


@dataclass(frozen=True)
class CaptionCommitted:
    entry: CaptionEntry
    index: int
    replaced: bool = False
    pending: str = field(default="")
