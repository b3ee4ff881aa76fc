from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Iterable, Optional

from nagare.app.services import LiveServices, build_caption_poller, build_live_services
from nagare.captions.poller import CaptionPoller
from nagare.contracts import CaptionCommitted, LineConfirmed, PartialUpdated
from nagare.live.bus import EventBus

Printer = Callable[[str], None]


def format_event(event: Any, *, print_partials: bool = False) -> Optional[str]:
    """Console rendering of one bus event, or None if it is not printed."""
    if isinstance(event, LineConfirmed):
        line = event.line
        return f"[line {line.t0:.2f}-{line.t1:.2f}] {line.text}"
    if isinstance(event, PartialUpdated):
        if not print_partials:
            return None
        p = event.partial
        return f"[partial] {p.stable} | {p.provisional}"
    if isinstance(event, CaptionCommitted):
        entry = event.entry
        tag = "[history]" if entry.is_pre_existing else "[caption]"
        out = f"{tag} {entry.speaker}: {entry.text}"
        if event.replaced:
            out += f" (replaced #{event.index})"
        return out
    return None


def _print_events(events: Iterable[Any], print_partials: bool, out: Printer) -> int:
    printed = 0
    for ev in events:
        text = format_event(ev, print_partials=print_partials)
        if text is None:
            continue
        out(text)
        printed += 1
    return printed


def _log_event(logger: logging.Logger | None, level: int, event: str, **fields: Any) -> None:
    if logger is None:
        return
    logger.log(level, event, extra=fields)


def run_live(
    args: Any,
    logger: logging.Logger | None = None,
    *,
    stop_event: threading.Event | None = None,
    services: LiveServices | None = None,
    bus: EventBus | None = None,
    out: Printer = print,
) -> int:
    """
    Mic/replay mode. Runs until Ctrl+C, stop_event, or the end of a replay
    file. Device failures propagate as AudioError.
    """
    if services is None:
        bus = bus or EventBus()
        services = build_live_services(args, bus=bus)
    session = services.session
    sub = session.bus.subscribe()
    stop_event = stop_event or threading.Event()
    replay_done = getattr(services.source, "finished", None)
    print_partials = bool(getattr(args, "print_partials", False))

    _log_event(
        logger,
        logging.INFO,
        "live_start",
        vad=str(getattr(args, "vad", "")),
        model=str(getattr(args, "model", "")),
        replay=str(getattr(args, "replay", None) or ""),
    )
    session.start()
    try:
        while not stop_event.is_set():
            _print_events(sub.drain(), print_partials, out)
            if replay_done is not None and replay_done.is_set():
                services.chunker.wait_idle()
                break
            stop_event.wait(0.05)
    except KeyboardInterrupt:
        _log_event(logger, logging.INFO, "keyboard_interrupt")
    finally:
        session.stop(flush=True)
        _print_events(sub.drain(), print_partials, out)
        sub.close()
        _log_event(logger, logging.INFO, "live_stop", lines=len(session.confirmed_lines), **session.metrics)
    return 0


def run_captions(
    args: Any,
    logger: logging.Logger | None = None,
    *,
    stop_event: threading.Event | None = None,
    poller: CaptionPoller | None = None,
    out: Printer = print,
) -> int:
    """Caption mode: poll the caption file and print committed entries until stopped."""
    poller = poller or build_caption_poller(args, EventBus())
    sub = poller.bus.subscribe()
    stop_event = stop_event or threading.Event()
    _log_event(logger, logging.INFO, "captions_start", path=str(getattr(args, "captions_file", "")))
    poller.start()
    try:
        while not stop_event.is_set():
            _print_events(sub.drain(), False, out)
            stop_event.wait(0.05)
    except KeyboardInterrupt:
        _log_event(logger, logging.INFO, "keyboard_interrupt")
    finally:
        poller.stop()
        _print_events(sub.drain(), False, out)
        sub.close()
        _log_event(
            logger,
            logging.INFO,
            "captions_stop",
            entries=len(poller.matcher.entries),
            failures=poller.failures,
        )
    return 0
