from __future__ import annotations

import logging
import queue
import threading
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Optional, Union

import numpy as np

from nagare.app.state import RuntimeState, RuntimeStateTracker
from nagare.asr.base import Transcriber
from nagare.audio.chunker import AudioChunker
from nagare.audio.errors import AudioError
from nagare.audio.vad import VADConfiguration, VADEngine
from nagare.contracts import (
    AudioChunk,
    LineConfirmed,
    PartialLine,
    PartialUpdated,
    SpeechState,
    StateChanged,
    TranscriptionResult,
)
from nagare.live.bus import EventBus
from nagare.live.segment import Segment, SegmentAccumulator
from nagare.live.stabilizer import StabilizerConfig, TranscriptStabilizer
from nagare.nlp.cleanup import clean_transcription

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionConfig:
    # provisional inference starts once the open segment holds this much audio
    min_segment_sec: float = 0.5
    # closed segments shorter than this are dropped without a final pass
    min_final_sec: float = 0.0
    # force-close a segment that keeps growing past this length
    max_segment_sec: Optional[float] = 25.0
    inference_workers: int = 2
    stabilizer: StabilizerConfig = field(default_factory=StabilizerConfig)

    def __post_init__(self) -> None:
        if self.min_segment_sec < 0:
            raise ValueError("min_segment_sec must be >= 0")
        if self.min_final_sec < 0:
            raise ValueError("min_final_sec must be >= 0")
        if self.max_segment_sec is not None and self.max_segment_sec <= 0:
            raise ValueError("max_segment_sec must be > 0 when set")
        if self.inference_workers <= 0:
            raise ValueError("inference_workers must be > 0")


@dataclass(frozen=True)
class _InferenceDone:
    generation: int
    segment_id: int
    final: bool
    result: TranscriptionResult
    seq: int = -1
    t0: float = 0.0
    t1: float = 0.0


@dataclass(frozen=True)
class _Stop:
    flush: bool
    done: threading.Event


@dataclass(frozen=True)
class _Clear:
    pass


_Message = Union[AudioChunk, _InferenceDone, _Stop, _Clear]


def _run_inference(transcriber: Transcriber, samples: np.ndarray) -> TranscriptionResult:
    try:
        return transcriber.transcribe(samples)
    except Exception:
        logger.warning(
            "transcriber_raised",
            extra={"backend": getattr(transcriber, "name", "?"), "samples": int(samples.size)},
            exc_info=True,
        )
        return TranscriptionResult.failed()


class LiveTranscriptionSession:
    """
    One recording session. All session state (VAD, segment buffer, provisional
    history, transcript) is mutated only from a single owner context that
    drains the inbox: the owner thread after start(), or the caller of
    process_pending() when no thread is running. Inference runs on a worker
    pool and reports back through the inbox.
    """

    def __init__(
        self,
        *,
        vad: VADEngine,
        transcriber: Transcriber,
        chunker: AudioChunker | None = None,
        cfg: SessionConfig | None = None,
        bus: EventBus | None = None,
        executor: Executor | None = None,
    ) -> None:
        self.cfg = cfg or SessionConfig()
        self.vad = vad
        self.transcriber = transcriber
        self.chunker = chunker
        self.bus = bus or EventBus()
        self.stabilizer = TranscriptStabilizer(self.cfg.stabilizer)
        self.accumulator = SegmentAccumulator()
        self.state = RuntimeStateTracker()
        self.metrics: dict[str, int] = {
            "chunks": 0,
            "provisional_runs": 0,
            "provisional_dropped": 0,
            "provisional_failures": 0,
            "final_runs": 0,
            "final_failures": 0,
            "lines_confirmed": 0,
        }

        self._inbox: "queue.Queue[_Message]" = queue.Queue()
        self._executor = executor
        self._owns_executor = executor is None
        self._thread: threading.Thread | None = None
        self._generation = 0
        self._inflight_segment: Optional[int] = None
        self._partial_segment: Optional[int] = None
        self._final_seq = 0
        self._next_commit = 0
        self._ready_finals: dict[int, _InferenceDone] = {}
        self._closed = False
        self._stopping: Optional[threading.Event] = None
        self._exit = False

        if chunker is not None:
            chunker.on_chunk = self.feed

    # ---- public API (any thread) ----

    @property
    def confirmed_lines(self):
        return list(self.stabilizer.confirmed)

    @property
    def partial(self) -> PartialLine:
        return self.stabilizer.partial

    @property
    def all_text(self) -> str:
        return self.stabilizer.all_text

    def reconfigure(self, vad_cfg: VADConfiguration) -> None:
        """Swap VAD thresholds between sessions."""
        if self.state.state in (RuntimeState.STARTING, RuntimeState.RUNNING):
            raise RuntimeError("cannot reconfigure VAD while the session is active")
        self.vad.cfg = vad_cfg
        machine = getattr(self.vad, "machine", None)
        if machine is not None:
            machine.cfg = vad_cfg
        self.vad.reset()

    def start(self) -> None:
        """Reset the transcript, start the owner thread and begin capture."""
        if self._thread is not None:
            return
        self.state.set_starting()
        self._drain_inbox()
        self._reset_all()
        self._closed = False
        self._exit = False
        self._stopping = None
        if self._owns_executor:
            self._executor = ThreadPoolExecutor(
                max_workers=self.cfg.inference_workers,
                thread_name_prefix="nagare-asr",
            )
        self._thread = threading.Thread(target=self._owner_loop, name="nagare-session", daemon=True)
        self._thread.start()
        if self.chunker is not None:
            try:
                self.chunker.start()
            except AudioError as e:
                logger.error("session_start_failed", extra={"error": str(e)})
                self.state.set_error(str(e))
                self._shutdown_owner(flush=False, timeout=2.0)
                raise
        self.state.set_running()
        logger.info("session_started", extra={"backend": getattr(self.transcriber, "name", "?")})

    def stop(self, *, flush: bool = True, timeout: float = 10.0) -> None:
        """
        Silence the device first. Provisional results still in flight are
        ignored. With flush=True, finals already submitted are awaited and the
        pending segment gets one final transcription; flush=False drops both.
        """
        if self._thread is None and self._exit:
            # already stopped; nothing left to flush
            return
        if self.chunker is not None:
            self.chunker.stop()
        self._shutdown_owner(flush=flush, timeout=timeout)
        if self.state.state is not RuntimeState.ERROR:
            self.state.set_stopped()
        logger.info("session_stopped", extra=dict(self.metrics))

    def clear(self) -> None:
        """Drop transcript, buffers and history. In-flight results are ignored."""
        self._inbox.put(_Clear())
        if self._thread is None:
            self.process_pending()

    def feed(self, chunk: AudioChunk) -> None:
        self._inbox.put(chunk)

    def process_pending(self) -> int:
        """Handle every queued message on the calling thread. Returns the count handled."""
        handled = 0
        while not self._exit:
            try:
                msg = self._inbox.get_nowait()
            except queue.Empty:
                break
            self._dispatch(msg)
            handled += 1
        return handled

    # ---- owner context ----

    def _owner_loop(self) -> None:
        while not self._exit:
            msg = self._inbox.get()
            try:
                self._dispatch(msg)
            except Exception:
                logger.exception("session_message_failed", extra={"msg_type": type(msg).__name__})

    def _dispatch(self, msg: _Message) -> None:
        if isinstance(msg, AudioChunk):
            self._handle_chunk(msg)
        elif isinstance(msg, _InferenceDone):
            self._handle_result(msg)
        elif isinstance(msg, _Stop):
            self._handle_stop(msg)
        elif isinstance(msg, _Clear):
            self._reset_all()
            self.bus.publish(PartialUpdated(partial=PartialLine()))
        self._check_stopped()

    def _handle_chunk(self, chunk: AudioChunk) -> None:
        if self._closed:
            return
        self.metrics["chunks"] += 1
        for ev in self.vad.process(chunk):
            self.bus.publish(ev)
            self._on_state_change(ev)

        if self.vad.is_speaking or self.accumulator.has_samples:
            self.accumulator.append(chunk)
            max_sec = self.cfg.max_segment_sec
            if max_sec is not None and self.accumulator.duration >= max_sec:
                logger.info("segment_forced_close", extra={"duration": round(self.accumulator.duration, 2)})
                self._finalize_segment()
            elif self.accumulator.duration >= self.cfg.min_segment_sec:
                self._submit_provisional()

    def _on_state_change(self, ev: StateChanged) -> None:
        if ev.current is SpeechState.SPEECH_START:
            self.accumulator.open(ev.timestamp)
        elif ev.current is SpeechState.SPEECH_END:
            self._finalize_segment()
        elif ev.previous is SpeechState.SPEECH_START and ev.current is SpeechState.SILENCE:
            # false start: nothing from this span is ever transcribed
            self._discard_segment()

    def _submit_provisional(self) -> None:
        seg_id = self.accumulator.segment_id
        if self._inflight_segment == seg_id:
            self.metrics["provisional_dropped"] += 1
            return
        seg = self.accumulator.snapshot()
        self._inflight_segment = seg_id
        self.metrics["provisional_runs"] += 1
        self._submit(seg, final=False)

    def _finalize_segment(self) -> None:
        if not self.accumulator.has_samples:
            self.accumulator.clear()
            return
        seg = self.accumulator.close()
        self.stabilizer.history.clear()
        if self._inflight_segment == seg.segment_id:
            # provisional result for a closed segment is stale; let the next segment run
            self._inflight_segment = None
        if seg.duration < self.cfg.min_final_sec:
            logger.info(
                "segment_too_short",
                extra={"segment_id": seg.segment_id, "duration": round(seg.duration, 3)},
            )
            self._clear_partial_for(seg.segment_id)
            return
        self.metrics["final_runs"] += 1
        self._submit(seg, final=True, seq=self._final_seq)
        self._final_seq += 1

    def _discard_segment(self) -> None:
        seg_id = self.accumulator.segment_id
        self.accumulator.clear()
        self.stabilizer.history.clear()
        if self._inflight_segment == seg_id:
            self._inflight_segment = None
        self._clear_partial_for(seg_id)

    def _submit(self, seg: Segment, *, final: bool, seq: int = -1) -> None:
        generation = self._generation
        executor = self._executor
        if executor is None:
            raise RuntimeError("no inference executor; call start() or pass executor=")

        def _done(fut: Future) -> None:
            try:
                result = fut.result()
            except Exception:
                logger.warning("inference_future_failed", exc_info=True)
                result = TranscriptionResult.failed()
            self._inbox.put(
                _InferenceDone(
                    generation=generation,
                    segment_id=seg.segment_id,
                    final=final,
                    result=result,
                    seq=seq,
                    t0=seg.t0,
                    t1=seg.t1 if seg.t1 is not None else seg.t0 + seg.duration,
                )
            )

        future = executor.submit(_run_inference, self.transcriber, seg.samples)
        future.add_done_callback(_done)

    def _handle_result(self, msg: _InferenceDone) -> None:
        if msg.generation != self._generation:
            logger.debug("stale_result_ignored", extra={"segment_id": msg.segment_id, "final": msg.final})
            return
        if msg.final:
            self._ready_finals[msg.seq] = msg
            while self._next_commit in self._ready_finals:
                self._commit_final(self._ready_finals.pop(self._next_commit))
                self._next_commit += 1
            return

        if self._inflight_segment == msg.segment_id:
            self._inflight_segment = None
        if self._closed or msg.segment_id != self.accumulator.segment_id:
            return
        if not msg.result.success:
            self.metrics["provisional_failures"] += 1
            logger.info("provisional_inference_failed", extra={"segment_id": msg.segment_id})
            return
        partial = self.stabilizer.offer_provisional(clean_transcription(msg.result.text))
        if partial is None:
            return
        self._partial_segment = msg.segment_id
        self.bus.publish(PartialUpdated(partial=partial))

    def _commit_final(self, msg: _InferenceDone) -> None:
        self._clear_partial_for(msg.segment_id)
        if not msg.result.success:
            self.metrics["final_failures"] += 1
            logger.warning(
                "final_transcription_failed",
                extra={"segment_id": msg.segment_id, "t0": msg.t0, "t1": msg.t1},
            )
            return
        line = self.stabilizer.confirm(
            clean_transcription(msg.result.text), msg.t0, msg.t1, keep_partial=True
        )
        if line is None:
            return
        self.metrics["lines_confirmed"] += 1
        logger.info(
            "line_confirmed",
            extra={"index": line.index, "t0": line.t0, "t1": line.t1, "chars": len(line.text)},
        )
        self.bus.publish(LineConfirmed(line=line))

    def _clear_partial_for(self, segment_id: int) -> None:
        if self._partial_segment != segment_id:
            return
        self._partial_segment = None
        self.stabilizer.discard_partial()
        self.bus.publish(PartialUpdated(partial=PartialLine()))

    def _handle_stop(self, msg: _Stop) -> None:
        self._closed = True
        self._inflight_segment = None
        if not msg.flush:
            self._invalidate_inflight()
        if msg.flush and self.accumulator.has_samples:
            self._finalize_segment()
        else:
            self.accumulator.clear()
        self.vad.reset()
        self._stopping = msg.done

    def _check_stopped(self) -> None:
        if self._stopping is None:
            return
        if self._final_seq > self._next_commit:
            return
        self._stopping.set()
        self._stopping = None
        self._exit = True

    def _invalidate_inflight(self) -> None:
        self._generation += 1
        self._inflight_segment = None
        self._final_seq = 0
        self._next_commit = 0
        self._ready_finals.clear()

    def _drain_inbox(self) -> None:
        while True:
            try:
                self._inbox.get_nowait()
            except queue.Empty:
                return

    def _reset_all(self) -> None:
        self._invalidate_inflight()
        self.accumulator.clear()
        self.stabilizer.reset()
        self._partial_segment = None
        self.vad.reset()

    def _shutdown_owner(self, *, flush: bool, timeout: float) -> None:
        done = threading.Event()
        self._inbox.put(_Stop(flush=flush, done=done))
        thread = self._thread
        if thread is not None:
            deadline = time.monotonic() + timeout
            if not done.wait(timeout):
                logger.warning("session_stop_timeout", extra={"timeout": timeout})
                self._exit = True
                self._inbox.put(_Clear())
            thread.join(timeout=max(0.1, deadline - time.monotonic()))
            self._thread = None
        else:
            self.process_pending()
        if self._owns_executor and self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
