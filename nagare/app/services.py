from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from nagare.asr.base import Transcriber
from nagare.asr.faster_whisper_buffer import FasterWhisperBufferTranscriber
from nagare.audio.chunker import AudioChunker, ChunkerConfig
from nagare.audio.mic import AudioSource, SoundDeviceSource, WavFileSource
from nagare.audio.vad import EnergyVAD, ProbabilityVAD, VADConfiguration, VADEngine
from nagare.audio.vad_webrtc import WebRtcProbabilitySource
from nagare.captions.matcher import CaptionMatcher, MatcherConfig
from nagare.captions.poller import CaptionPoller
from nagare.captions.source import FileCaptionSource
from nagare.live.bus import EventBus
from nagare.live.session import LiveTranscriptionSession, SessionConfig
from nagare.live.stabilizer import StabilizerConfig


@dataclass(frozen=True)
class LiveServices:
    source: AudioSource
    chunker: AudioChunker
    vad: VADEngine
    transcriber: Transcriber
    session: LiveTranscriptionSession


def build_chunker_config(args: Any) -> ChunkerConfig:
    gate = getattr(args, "silence_gate_db", None)
    return ChunkerConfig(
        chunk_seconds=float(args.chunk_sec),
        overlap_ratio=float(args.overlap),
        target_rate=int(args.target_sr),
        silence_gate_db=None if gate is None else float(gate),
    )


def build_vad_config(args: Any) -> VADConfiguration:
    return VADConfiguration(
        speech_on_offset=float(args.speech_on_db),
        speech_off_offset=float(args.speech_off_db),
        min_speech_sec=float(args.min_speech_sec),
        min_silence_sec=float(args.min_silence_sec),
        hard_timeout_sec=float(args.hard_timeout_sec),
        noise_floor_alpha=float(args.noise_alpha),
    )


def build_session_config(args: Any) -> SessionConfig:
    max_seg = getattr(args, "max_segment_sec", None)
    return SessionConfig(
        min_segment_sec=float(args.min_segment_sec),
        min_final_sec=float(args.min_final_sec),
        max_segment_sec=None if max_seg is None else float(max_seg),
        inference_workers=int(args.inference_workers),
        stabilizer=StabilizerConfig(
            history_size=int(args.history_size),
            confirmation_threshold=int(args.confirmation_threshold),
            min_words_for_confirmation=int(args.min_words),
        ),
    )


def build_source(args: Any) -> AudioSource:
    block_sec = float(args.block_sec)
    if getattr(args, "replay", None):
        return WavFileSource(args.replay, block_seconds=block_sec, realtime=bool(args.replay_realtime))
    return SoundDeviceSource(device=args.device, block_seconds=block_sec)


def build_vad(args: Any, cfg: VADConfiguration | None = None) -> VADEngine:
    cfg = cfg or build_vad_config(args)
    kind = str(args.vad).lower()
    if kind == "energy":
        return EnergyVAD(cfg)
    if kind == "webrtc":
        source = WebRtcProbabilitySource(aggressiveness=int(args.webrtc_aggressiveness))
        return ProbabilityVAD(source, cfg)
    raise ValueError(f"Unknown VAD backend: {args.vad!r}")


def build_transcriber(args: Any) -> Transcriber:
    return FasterWhisperBufferTranscriber(
        model_size=str(args.model),
        device=str(args.asr_device),
        compute_type=str(args.compute_type),
        language=args.language or None,
        beam_size=int(args.beam_size),
    )


def build_live_services(args: Any, bus: EventBus | None = None) -> LiveServices:
    source = build_source(args)
    chunker = AudioChunker(source, build_chunker_config(args))
    vad = build_vad(args)
    transcriber = build_transcriber(args)
    session = LiveTranscriptionSession(
        vad=vad,
        transcriber=transcriber,
        chunker=chunker,
        cfg=build_session_config(args),
        bus=bus,
    )
    return LiveServices(source=source, chunker=chunker, vad=vad, transcriber=transcriber, session=session)


def build_caption_poller(args: Any, bus: EventBus | None = None) -> CaptionPoller:
    matcher = CaptionMatcher(MatcherConfig(similarity_threshold=float(args.similarity_threshold)))
    return CaptionPoller(
        FileCaptionSource(args.captions_file),
        matcher,
        bus,
        interval_sec=max(10, int(args.poll_ms)) / 1000.0,
    )
