from __future__ import annotations

import numpy as np

from nagare.contracts import AudioChunk, VadSignal


def _float_to_pcm16(samples: np.ndarray) -> bytes:
    clipped = np.clip(samples, -1.0, 1.0)
    return (clipped * 32767.0).astype("<i2").tobytes()


class WebRtcProbabilitySource:
    """
    Speech probability from WebRTC VAD: the fraction of fixed frames in a
    chunk classified as speech.

    WebRTC VAD expects:
      - 16-bit mono PCM
      - sample rate: 8000/16000/32000/48000
      - frame size: 10/20/30 ms
    aggressiveness: 0 (least) .. 3 (most aggressive)
    """
    def __init__(self, frame_ms: int = 20, aggressiveness: int = 2):
        if frame_ms not in (10, 20, 30):
            raise ValueError("frame_ms must be 10/20/30")
        if aggressiveness not in (0, 1, 2, 3):
            raise ValueError("aggressiveness must be 0..3")
        self.frame_ms = frame_ms
        self.aggressiveness = aggressiveness
        try:
            import webrtcvad
        except ImportError as e:
            raise RuntimeError(
                "webrtcvad is not installed. Install with: python -m pip install webrtcvad"
            ) from e
        self._webrtcvad = webrtcvad
        self.vad = webrtcvad.Vad(aggressiveness)

    def evaluate(self, chunk: AudioChunk) -> VadSignal:
        sr = chunk.sample_rate
        if sr not in (8000, 16000, 32000, 48000):
            raise ValueError("sr must be one of 8000/16000/32000/48000")
        frame_bytes = int(sr * self.frame_ms / 1000) * 2  # int16 => 2 bytes
        pcm16 = _float_to_pcm16(chunk.samples)
        total = 0
        voiced = 0
        for i in range(0, len(pcm16) - frame_bytes + 1, frame_bytes):
            total += 1
            if self.vad.is_speech(pcm16[i : i + frame_bytes], sr):
                voiced += 1
        if total == 0:
            return VadSignal(probability=0.0)
        return VadSignal(probability=voiced / float(total))

    def reset(self) -> None:
        self.vad = self._webrtcvad.Vad(self.aggressiveness)
