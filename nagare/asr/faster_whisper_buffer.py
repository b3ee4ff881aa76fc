from __future__ import annotations

import logging
import threading
from typing import Optional

import numpy as np

from nagare.asr.base import Transcriber
from nagare.contracts import TranscriptionResult

logger = logging.getLogger(__name__)


class FasterWhisperBufferTranscriber(Transcriber):
    """
    On-device backend: runs faster-whisper directly on the 16 kHz float32
    segment buffer (no temp WAV round-trip).
    """

    def __init__(
        self,
        *,
        model_size: str = "tiny",
        device: str = "cpu",
        compute_type: str = "int8",
        language: Optional[str] = "en",
        beam_size: int = 1,
        initial_prompt: Optional[str] = None,
    ) -> None:
        self.model_size = model_size
        self.device = device
        self.compute_type = compute_type
        self.language = language
        self.beam_size = beam_size
        self.initial_prompt = initial_prompt or None
        self._model = None
        self._model_lock = threading.Lock()

    @property
    def name(self) -> str:
        return f"faster-whisper:{self.model_size}"

    def _get_model(self):
        with self._model_lock:
            if self._model is None:
                from faster_whisper import WhisperModel

                self._model = WhisperModel(
                    self.model_size,
                    device=self.device,
                    compute_type=self.compute_type,
                )
            return self._model

    def transcribe(self, samples: np.ndarray) -> TranscriptionResult:
        if samples.size == 0:
            return TranscriptionResult(text="", success=True)
        try:
            model = self._get_model()
            segments, _info = model.transcribe(
                samples.astype(np.float32, copy=False),
                language=self.language,
                beam_size=self.beam_size,
                vad_filter=False,
                condition_on_previous_text=False,
                temperature=0.0,
                initial_prompt=self.initial_prompt,
            )
            parts = [(s.text or "").strip() for s in segments]
        except Exception:
            logger.warning(
                "transcriber_failed",
                extra={"backend": self.name, "samples": int(samples.size)},
                exc_info=True,
            )
            return TranscriptionResult.failed()
        return TranscriptionResult(text=" ".join(p for p in parts if p), success=True)
