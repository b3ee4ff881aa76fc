from __future__ import annotations

from abc import ABC, abstractmethod

import numpy as np

from nagare.contracts import TranscriptionResult


class Transcriber(ABC):
    @property
    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    def transcribe(self, samples: np.ndarray) -> TranscriptionResult:
        """
        Transcribe a full mono float32 segment buffer. May be called again with a
        longer buffer for the same segment. Reports failure via success=False.
        """
        raise NotImplementedError
