from __future__ import annotations

from pathlib import Path

from nagare.captions.matcher import CaptionMatcher
from nagare.captions.poller import CaptionPoller
from nagare.captions.source import FileCaptionSource, parse_caption_line
from nagare.contracts import CaptionCommitted
from nagare.live.bus import EventBus


def test_parse_caption_line() -> None:
    assert parse_caption_line("Aiko: See you tomorrow.") == ("Aiko", "See you tomorrow.")
    assert parse_caption_line("no speaker here.") == ("Unknown", "no speaker here.")
    assert parse_caption_line(": orphan text.") == ("Unknown", ": orphan text.")


def test_file_source_reads_non_empty_lines(tmp_path: Path) -> None:
    path = tmp_path / "captions.txt"
    path.write_text("A: One.\n\nB: Two.\n", encoding="utf-8")
    assert FileCaptionSource(path).read() == [("A", "One."), ("B", "Two.")]


def test_poll_once_publishes_committed_entries(tmp_path: Path) -> None:
    path = tmp_path / "captions.txt"
    path.write_text("A: Earlier remark.\nA: typing", encoding="utf-8")
    bus = EventBus()
    sub = bus.subscribe()
    poller = CaptionPoller(FileCaptionSource(path), CaptionMatcher(), bus, clock=lambda: 42.0)

    first = poller.poll_once()
    assert [e.entry.is_pre_existing for e in first] == [True]

    path.write_text("A: Earlier remark.\nB: Fresh news today.\nB: more", encoding="utf-8")
    second = poller.poll_once()
    assert [e.entry.text for e in second] == ["Fresh news today."]
    assert second[0].entry.timestamp == 42.0
    assert poller.pending == "more"

    published = [e for e in sub.drain() if isinstance(e, CaptionCommitted)]
    assert len(published) == 2


def test_poll_failure_produces_nothing(tmp_path: Path) -> None:
    poller = CaptionPoller(FileCaptionSource(tmp_path / "missing.txt"))
    assert poller.poll_once() == []
    assert poller.failures == 1
    assert poller.matcher.entries == []


def test_start_stop_thread(tmp_path: Path) -> None:
    path = tmp_path / "captions.txt"
    path.write_text("A: Hi.\nA: x", encoding="utf-8")
    poller = CaptionPoller(FileCaptionSource(path), interval_sec=0.01)
    poller.start()
    poller.stop()
    assert poller.state.state.value == "stopped"
    assert len(poller.matcher.entries) == 1
