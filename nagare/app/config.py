from __future__ import annotations

import argparse
import copy
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from platformdirs import user_config_dir


DEFAULTS: dict[str, Any] = {
    "list_devices": False,
    "device": None,
    "replay": None,
    "replay_realtime": True,
    "captions_file": None,
    "poll_ms": 500,
    "block_sec": 0.1,
    "chunk_sec": 0.5,
    "overlap": 0.2,
    "target_sr": 16000,
    "silence_gate_db": None,
    "vad": "energy",
    "speech_on_db": 10.0,
    "speech_off_db": 3.0,
    "min_speech_sec": 0.25,
    "min_silence_sec": 0.4,
    "hard_timeout_sec": 2.0,
    "noise_alpha": 0.01,
    "webrtc_aggressiveness": 2,
    "min_segment_sec": 0.5,
    "min_final_sec": 0.0,
    "max_segment_sec": 25.0,
    "inference_workers": 2,
    "history_size": 3,
    "confirmation_threshold": 2,
    "min_words": 2,
    "model": "tiny",
    "asr_device": "cpu",
    "compute_type": "int8",
    "language": "en",
    "beam_size": 1,
    "similarity_threshold": 0.7,
    "print_partials": False,
    "debug": False,
}
CONFIG_KEYS: tuple[str, ...] = tuple(DEFAULTS.keys())


@dataclass(frozen=True)
class AppPaths:
    config_dir: Path
    config_path: Path
    log_dir: Path


def app_paths() -> AppPaths:
    config_dir = Path(user_config_dir("Nagare", "Nagare"))
    return AppPaths(
        config_dir=config_dir,
        config_path=config_dir / "config.json",
        log_dir=config_dir / "logs",
    )


def _load_json_dict(path: Path) -> dict[str, Any]:
    # Accept UTF-8 with or without BOM for Windows-edited config files.
    with path.open("r", encoding="utf-8-sig") as f:
        loaded = json.load(f)
    if not isinstance(loaded, dict):
        raise ValueError(f"config must be a JSON object: {path}")
    return loaded


def _write_json_dict(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2)
        f.write("\n")


def _known_only(payload: dict[str, Any]) -> dict[str, Any]:
    return {key: payload[key] for key in CONFIG_KEYS if key in payload}


def load_default_config() -> dict[str, Any]:
    return copy.deepcopy(DEFAULTS)


def ensure_user_config_exists(defaults: dict[str, Any] | None = None) -> Path:
    paths = app_paths()
    if paths.config_path.exists():
        return paths.config_path
    _write_json_dict(paths.config_path, defaults or load_default_config())
    return paths.config_path


def load_user_config(config_path: str | None = None) -> tuple[dict[str, Any], Path]:
    defaults = load_default_config()
    if config_path:
        chosen = Path(config_path)
        if not chosen.exists():
            raise SystemExit(f"Config file not found: {chosen}")
    else:
        chosen = ensure_user_config_exists(defaults)
    merged = dict(defaults)
    merged.update(_known_only(_load_json_dict(chosen)))
    return merged, chosen


def resolve_defaults(config_path: str | None = None) -> tuple[dict[str, Any], Path]:
    return load_user_config(config_path=config_path)


def _optional_float(value: str) -> float | None:
    if value.strip().lower() in ("", "none", "off"):
        return None
    return float(value)


def parser_with_defaults(defaults: dict[str, Any]) -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="nagare", description="Live speech transcription and caption capture.")
    p.add_argument("--config", default=None, help="JSON config path (CLI flags override config)")
    p.add_argument("--list-devices", action="store_true", help="print audio devices and exit")

    src = p.add_argument_group("input")
    src.add_argument("--device", type=int, default=defaults["device"], help="sounddevice input device id")
    src.add_argument("--replay", default=defaults["replay"], help="16-bit PCM WAV file to use instead of the mic")
    src.add_argument(
        "--replay-realtime",
        action=argparse.BooleanOptionalAction,
        default=defaults["replay_realtime"],
        help="pace WAV replay at real time",
    )
    src.add_argument(
        "--captions-file",
        default=defaults["captions_file"],
        help="poll a 'Speaker: text' caption file instead of transcribing audio",
    )
    src.add_argument("--poll-ms", type=int, default=defaults["poll_ms"], help="caption poll interval (ms)")

    audio = p.add_argument_group("chunking")
    audio.add_argument("--block-sec", type=float, default=defaults["block_sec"], help="capture block size (seconds)")
    audio.add_argument("--chunk-sec", type=float, default=defaults["chunk_sec"], help="chunk duration (seconds)")
    audio.add_argument("--overlap", type=float, default=defaults["overlap"], help="chunk overlap ratio [0, 0.5]")
    audio.add_argument("--target-sr", type=int, default=defaults["target_sr"], help="canonical sample rate (Hz)")
    audio.add_argument(
        "--silence-gate-db",
        type=_optional_float,
        default=defaults["silence_gate_db"],
        help="drop chunks quieter than this before the VAD ('none' disables)",
    )

    vad = p.add_argument_group("vad")
    vad.add_argument("--vad", default=defaults["vad"], choices=["energy", "webrtc"], help="VAD backend")
    vad.add_argument("--speech-on-db", type=float, default=defaults["speech_on_db"], help="speech onset above floor (dB)")
    vad.add_argument(
        "--speech-off-db", type=float, default=defaults["speech_off_db"], help="speech offset above floor (dB)"
    )
    vad.add_argument("--min-speech-sec", type=float, default=defaults["min_speech_sec"], help="speech confirm time")
    vad.add_argument("--min-silence-sec", type=float, default=defaults["min_silence_sec"], help="silence confirm time")
    vad.add_argument(
        "--hard-timeout-sec",
        type=float,
        default=defaults["hard_timeout_sec"],
        help="end speech after this long without an onset-level chunk",
    )
    vad.add_argument("--noise-alpha", type=float, default=defaults["noise_alpha"], help="noise floor EMA factor")
    vad.add_argument(
        "--webrtc-aggressiveness",
        type=int,
        default=defaults["webrtc_aggressiveness"],
        choices=[0, 1, 2, 3],
        help="webrtcvad mode",
    )

    live = p.add_argument_group("transcription")
    live.add_argument(
        "--min-segment-sec", type=float, default=defaults["min_segment_sec"], help="audio before provisional runs"
    )
    live.add_argument(
        "--min-final-sec", type=float, default=defaults["min_final_sec"], help="drop shorter closed segments"
    )
    live.add_argument(
        "--max-segment-sec",
        type=_optional_float,
        default=defaults["max_segment_sec"],
        help="force-close segments longer than this ('none' disables)",
    )
    live.add_argument("--inference-workers", type=int, default=defaults["inference_workers"], help="ASR pool size")
    live.add_argument("--history-size", type=int, default=defaults["history_size"], help="provisional history size")
    live.add_argument(
        "--confirmation-threshold",
        type=int,
        default=defaults["confirmation_threshold"],
        help="hypotheses needed for a stable prefix",
    )
    live.add_argument("--min-words", type=int, default=defaults["min_words"], help="minimum stable prefix words")
    live.add_argument("--model", default=defaults["model"], help="faster-whisper model size")
    live.add_argument("--asr-device", default=defaults["asr_device"], help="faster-whisper device (cpu/cuda)")
    live.add_argument("--compute-type", default=defaults["compute_type"], help="faster-whisper compute type")
    live.add_argument("--language", default=defaults["language"], help="ASR language code")
    live.add_argument("--beam-size", type=int, default=defaults["beam_size"], help="ASR beam size")

    cap = p.add_argument_group("captions")
    cap.add_argument(
        "--similarity-threshold",
        type=float,
        default=defaults["similarity_threshold"],
        help="LCS ratio above which a caption replaces an earlier one",
    )

    out = p.add_argument_group("output")
    out.add_argument(
        "--print-partials",
        action=argparse.BooleanOptionalAction,
        default=defaults["print_partials"],
        help="print partial lines as they change",
    )
    out.add_argument("--debug", action="store_true", help="log debug events (VAD transitions, dropped triggers)")
    return p


def resolve_args(argv: list[str] | None = None) -> argparse.Namespace:
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("--config", default=None)
    pre_args, _ = pre.parse_known_args(argv)
    defaults, _ = resolve_defaults(config_path=pre_args.config)
    parser = parser_with_defaults(defaults)
    args = parser.parse_args(argv)
    if defaults.get("list_devices"):
        args.list_devices = True
    if defaults.get("debug"):
        args.debug = True
    return args
