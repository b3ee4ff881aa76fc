from __future__ import annotations

import json
from pathlib import Path

from nagare.app.config import resolve_args


def _cfg(tmp_path: Path, payload: dict) -> Path:
    path = tmp_path / "app.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def test_cli_overrides_config(tmp_path: Path) -> None:
    cfg_path = _cfg(tmp_path, {"vad": "webrtc", "chunk_sec": 0.4, "poll_ms": 250})
    args = resolve_args(["--config", str(cfg_path), "--vad", "energy", "--poll-ms", "100"])
    assert args.vad == "energy"
    assert args.chunk_sec == 0.4
    assert args.poll_ms == 100


def test_optional_floats_accept_none(tmp_path: Path) -> None:
    cfg_path = _cfg(tmp_path, {"silence_gate_db": -70.0})
    args = resolve_args(["--config", str(cfg_path), "--silence-gate-db", "none", "--max-segment-sec", "12"])
    assert args.silence_gate_db is None
    assert args.max_segment_sec == 12.0


def test_boolean_flags_from_config(tmp_path: Path) -> None:
    cfg_path = _cfg(tmp_path, {"print_partials": True, "debug": True, "replay_realtime": False})
    args = resolve_args(["--config", str(cfg_path)])
    assert args.print_partials is True
    assert args.debug is True
    assert args.replay_realtime is False

    args = resolve_args(["--config", str(cfg_path), "--no-print-partials", "--replay-realtime"])
    assert args.print_partials is False
    assert args.replay_realtime is True


def test_input_selection_flags(tmp_path: Path) -> None:
    cfg_path = _cfg(tmp_path, {})
    args = resolve_args(
        ["--config", str(cfg_path), "--device", "3", "--replay", "talk.wav", "--captions-file", "cc.txt"]
    )
    assert args.device == 3
    assert args.replay == "talk.wav"
    assert args.captions_file == "cc.txt"
    assert args.list_devices is False
