from __future__ import annotations

import math
from math import gcd

import numpy as np
from scipy import signal

POWER_EPSILON = 1e-10


def to_mono(block: np.ndarray) -> np.ndarray:
    """Downmix a (frames,) or (frames, channels) block to float32 mono."""
    data = np.asarray(block)
    if data.dtype.kind in ("i", "u"):
        info = np.iinfo(data.dtype)
        data = data.astype(np.float32) / float(max(abs(info.min), info.max))
    else:
        data = data.astype(np.float32, copy=False)
    if data.ndim == 1:
        return data
    if data.ndim != 2:
        raise ValueError(f"expected 1-D or 2-D audio block, got shape {data.shape}")
    if data.shape[1] == 1:
        return data[:, 0]
    return data.mean(axis=1, dtype=np.float32)


def resample(samples: np.ndarray, from_rate: int, to_rate: int) -> np.ndarray:
    """Resample mono float32 audio with polyphase filtering."""
    if from_rate <= 0 or to_rate <= 0:
        raise ValueError(f"invalid sample rates: {from_rate} -> {to_rate}")
    if from_rate == to_rate or samples.size == 0:
        return samples.astype(np.float32, copy=False)
    g = gcd(int(from_rate), int(to_rate))
    up = int(to_rate) // g
    down = int(from_rate) // g
    out = signal.resample_poly(samples, up, down)
    return np.clip(out, -1.0, 1.0).astype(np.float32)


def power_db(samples: np.ndarray, epsilon: float = POWER_EPSILON) -> float:
    """Loudness as 20*log10(max(rms, epsilon))."""
    if samples.size == 0:
        return 20.0 * math.log10(epsilon)
    x = samples.astype(np.float64, copy=False)
    rms = float(np.sqrt(np.mean(x * x)))
    return 20.0 * math.log10(max(rms, epsilon))
