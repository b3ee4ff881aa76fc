from __future__ import annotations

import logging
import threading
import time
import wave
from pathlib import Path
from typing import Callable, Optional, Protocol

import numpy as np

from nagare.audio.errors import DeviceUnavailable, FormatError

logger = logging.getLogger(__name__)

BlockCallback = Callable[[np.ndarray], None]


class AudioSource(Protocol):
    """
    Device seam. After open() succeeds, sample_rate/channels describe the
    native format of the blocks handed to the callback. Blocks are
    (frames, channels) arrays; the callback must not block.
    """
    sample_rate: int
    channels: int

    def open(self, callback: BlockCallback) -> None:
        ...

    def close(self) -> None:
        ...


def _import_sounddevice():
    try:
        import sounddevice as sd
    except (ImportError, OSError) as e:
        raise DeviceUnavailable(
            "sounddevice/PortAudio is not available. Install with: python -m pip install sounddevice"
        ) from e
    return sd


class SoundDeviceSource:
    """
    Live microphone via `sounddevice` (PortAudio). Opens the device at its
    own default rate and channel count; conversion happens downstream.
    """

    lossless = False

    def __init__(self, *, device: Optional[int] = None, block_seconds: float = 0.1) -> None:
        if block_seconds <= 0:
            raise ValueError("block_seconds must be > 0")
        self.device = device
        self.block_seconds = float(block_seconds)
        self.sample_rate = 0
        self.channels = 0
        self._stream = None

    @staticmethod
    def list_devices() -> str:
        sd = _import_sounddevice()
        return str(sd.query_devices())

    def open(self, callback: BlockCallback) -> None:
        sd = _import_sounddevice()
        try:
            info = sd.query_devices(self.device, "input")
        except Exception as e:
            raise DeviceUnavailable(f"Input device {self.device!r} not found.") from e

        sample_rate = int(round(float(info.get("default_samplerate") or 0)))
        channels = min(int(info.get("max_input_channels") or 0), 2)
        if sample_rate <= 0 or channels <= 0:
            raise FormatError(
                f"Invalid input format: sample_rate={sample_rate}, channels={channels}"
            )

        self.sample_rate = sample_rate
        self.channels = channels

        def _on_audio(indata, frames, time_info, status) -> None:
            if status:
                logger.debug("device_status", extra={"status": str(status)})
            callback(indata.copy())

        try:
            stream = sd.InputStream(
                samplerate=sample_rate,
                channels=channels,
                dtype="float32",
                device=self.device,
                blocksize=max(1, int(sample_rate * self.block_seconds)),
                callback=_on_audio,
            )
            stream.start()
        except Exception as e:
            raise DeviceUnavailable(
                "Failed to open microphone stream. "
                "Try --list-devices and select a device id with --device."
            ) from e

        self._stream = stream
        logger.info(
            "device_opened",
            extra={"device": self.device, "sample_rate": sample_rate, "channels": channels},
        )

    def close(self) -> None:
        stream = self._stream
        self._stream = None
        if stream is None:
            return
        try:
            stream.abort()
        finally:
            stream.close()


class WavFileSource:
    """
    Replays a 16-bit PCM WAV file through the device callback contract.
    realtime=True paces blocks at wall-clock speed.
    """

    lossless = True

    def __init__(self, path: str | Path, *, block_seconds: float = 0.1, realtime: bool = True) -> None:
        if block_seconds <= 0:
            raise ValueError("block_seconds must be > 0")
        self.path = Path(path)
        self.block_seconds = float(block_seconds)
        self.realtime = realtime
        self.sample_rate = 0
        self.channels = 0
        self.finished = threading.Event()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def open(self, callback: BlockCallback) -> None:
        try:
            wf = wave.open(str(self.path), "rb")
        except FileNotFoundError as e:
            raise DeviceUnavailable(f"Replay file not found: {self.path}") from e
        except (wave.Error, EOFError) as e:
            raise FormatError(f"Not a readable WAV file: {self.path}") from e

        if wf.getsampwidth() != 2 or wf.getframerate() <= 0 or wf.getnchannels() <= 0:
            wf.close()
            raise FormatError("Replay file must be 16-bit PCM WAV")

        self.sample_rate = wf.getframerate()
        self.channels = wf.getnchannels()
        self.finished.clear()
        self._stop.clear()
        frames_per_block = max(1, int(self.sample_rate * self.block_seconds))

        def _pump() -> None:
            try:
                while not self._stop.is_set():
                    raw = wf.readframes(frames_per_block)
                    if not raw:
                        break
                    block = np.frombuffer(raw, dtype=np.int16).reshape(-1, self.channels)
                    callback(block)
                    if self.realtime:
                        time.sleep(block.shape[0] / float(self.sample_rate))
            finally:
                wf.close()
                self.finished.set()

        self._thread = threading.Thread(target=_pump, name="nagare-wav-replay", daemon=True)
        self._thread.start()

    def close(self) -> None:
        self._stop.set()
        thread = self._thread
        self._thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=2.0)
