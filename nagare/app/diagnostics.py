from __future__ import annotations


def summarize_exception(detail: str, *, max_len: int = 220) -> str:
    text = str(detail or "").strip()
    if not text:
        return "Unknown runtime error."
    lines = [ln.strip() for ln in text.splitlines() if ln.strip()]
    for ln in reversed(lines):
        if ln.startswith(("File ", "^", "Traceback ")):
            continue
        out = ln
        break
    else:
        out = lines[-1]
    if len(out) > max_len:
        return out[: max_len - 3].rstrip() + "..."
    return out


def hint_for_exception(summary: str) -> str:
    s = str(summary or "").lower()
    if "no module named" in s:
        return "A required package is missing in this virtualenv. Reinstall dependencies and retry."
    if "config file not found" in s:
        return "Configured JSON file is missing. Update the config path or restore the file."
    if "replay file not found" in s:
        return "Check the --replay path; it must point to an existing WAV file."
    if "pcm" in s or "sample width" in s:
        return "Replay files must be 16-bit PCM WAV. Convert the file and retry."
    if "portaudio" in s or "input device" in s or "sounddevice" in s:
        return "Microphone init failed. Check --device (see --list-devices) and mic permissions."
    if "webrtcvad" in s:
        return "webrtcvad is unavailable. Install it or use --vad energy."
    return "Check logs for full traceback."
