from __future__ import annotations

import threading
import wave
from pathlib import Path
from types import SimpleNamespace

import numpy as np

from fakes import FakeTranscriber
from nagare.app.runtime import format_event, run_captions, run_live
from nagare.app.services import LiveServices
from nagare.audio.chunker import AudioChunker, ChunkerConfig
from nagare.audio.mic import WavFileSource
from nagare.audio.vad import EnergyVAD
from nagare.captions.poller import CaptionPoller
from nagare.captions.source import FileCaptionSource
from nagare.contracts import CaptionCommitted, CaptionEntry, ConfirmedLine, LineConfirmed, PartialLine, PartialUpdated
from nagare.live.session import LiveTranscriptionSession, SessionConfig


def _write_wav(path: Path, sr: int = 16000) -> None:
    t = np.arange(int(1.5 * sr)) / sr
    tone = 0.3 * np.sin(2 * np.pi * 220 * t)
    audio = np.concatenate([np.zeros(sr), tone, np.zeros(int(1.5 * sr))])
    pcm = (audio * 32767).astype("<i2")
    with wave.open(str(path), "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(sr)
        wf.writeframes(pcm.tobytes())


def test_format_event() -> None:
    line = ConfirmedLine(text="Hi all.", t0=1.0, t1=2.25, index=0)
    assert format_event(LineConfirmed(line=line)) == "[line 1.00-2.25] Hi all."

    partial = PartialUpdated(partial=PartialLine(stable="good morning", provisional="every"))
    assert format_event(partial) is None
    assert format_event(partial, print_partials=True) == "[partial] good morning | every"

    entry = CaptionEntry(speaker="Ren", text="Agreed.", timestamp=0.0)
    assert format_event(CaptionCommitted(entry=entry, index=0)) == "[caption] Ren: Agreed."
    old = CaptionEntry(speaker="Ren", text="Agreed.", timestamp=0.0, is_pre_existing=True)
    assert format_event(CaptionCommitted(entry=old, index=2, replaced=True)) == "[history] Ren: Agreed. (replaced #2)"


def test_run_live_replays_wav_to_confirmed_line(tmp_path: Path) -> None:
    wav = tmp_path / "talk.wav"
    _write_wav(wav)

    source = WavFileSource(wav, block_seconds=0.1, realtime=False)
    chunker = AudioChunker(source, ChunkerConfig())
    vad = EnergyVAD()
    tr = FakeTranscriber("replayed speech.")
    session = LiveTranscriptionSession(
        vad=vad, transcriber=tr, chunker=chunker, cfg=SessionConfig(inference_workers=1)
    )
    built = LiveServices(source=source, chunker=chunker, vad=vad, transcriber=tr, session=session)
    out: list[str] = []

    args = SimpleNamespace(print_partials=False, vad="energy", model="fake", replay=str(wav))
    assert run_live(args, services=built, out=out.append) == 0

    lines = [ln for ln in out if ln.startswith("[line ")]
    assert lines
    assert all(ln.endswith("replayed speech.") for ln in lines)
    assert session.state.state.value == "stopped"
    assert not chunker.is_running


def test_run_captions_prints_until_stopped(tmp_path: Path) -> None:
    path = tmp_path / "cc.txt"
    path.write_text("Mika: Welcome back.\nMika: so", encoding="utf-8")
    poller = CaptionPoller(FileCaptionSource(path), interval_sec=0.01)
    stop = threading.Event()
    out: list[str] = []

    def _print(text: str) -> None:
        out.append(text)
        stop.set()

    guard = threading.Timer(5.0, stop.set)
    guard.start()
    try:
        code = run_captions(SimpleNamespace(captions_file=str(path)), poller=poller, stop_event=stop, out=_print)
    finally:
        guard.cancel()
    assert code == 0
    assert out[0] == "[history] Mika: Welcome back."
