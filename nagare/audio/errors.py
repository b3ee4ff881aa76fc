from __future__ import annotations


class AudioError(RuntimeError):
    pass


class DeviceUnavailable(AudioError):
    """Capture device could not be opened or started."""


class FormatError(AudioError):
    """Device reports a format the pipeline cannot convert."""
