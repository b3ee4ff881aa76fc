from __future__ import annotations

import pytest

from nagare.captions.matcher import CaptionMatcher, MatcherConfig


def test_last_line_is_pending_and_unterminated_lines_wait() -> None:
    m = CaptionMatcher()
    m.observe([("A", "warming up")], now=0.0)

    out = m.observe([("A", "Hello there."), ("B", "not finished"), ("B", "still typing")], now=1.0)
    assert [e.entry.text for e in out.events] == ["Hello there."]
    assert out.pending == "still typing"
    assert out.events[-1].pending == "still typing"


def test_first_poll_entries_are_history() -> None:
    m = CaptionMatcher()
    first = m.observe([("A", "Old line."), ("B", "Another old one."), ("A", "typing")], now=0.0)
    assert all(e.entry.is_pre_existing for e in first.events)

    m.observe([("A", "Old line."), ("B", "Another old one."), ("A", "Brand new line."), ("A", "x")], now=1.0)
    assert [e.text for e in m.entries_for_processing()] == ["Brand new line."]
    assert len(m.entries) == 3


def test_exact_duplicates_are_ignored() -> None:
    m = CaptionMatcher()
    m.observe([], now=0.0)
    m.observe([("A", "Same thing."), ("A", "...")], now=1.0)
    out = m.observe([("A", "Same thing."), ("A", "...")], now=2.0)
    assert out.events == []
    assert len(m.entries) == 1


def test_longer_near_duplicate_replaces_in_place() -> None:
    m = CaptionMatcher()
    m.observe([], now=0.0)
    m.observe([("A", "I think we should go."), ("A", "...")], now=1.0)
    m.observe([("A", "Okay."), ("A", "...")], now=1.5)

    out = m.observe([("A", "I think we should go now."), ("A", "...")], now=2.0)

    assert len(out.events) == 1
    ev = out.events[0]
    assert ev.replaced
    assert ev.index == 0
    assert [e.text for e in m.entries] == ["I think we should go now.", "Okay."]


def test_shorter_near_duplicate_is_discarded() -> None:
    m = CaptionMatcher()
    m.observe([], now=0.0)
    m.observe([("A", "I think we should go now."), ("A", "...")], now=1.0)
    out = m.observe([("A", "I think we should go."), ("A", "...")], now=2.0)
    assert out.events == []
    assert [e.text for e in m.entries] == ["I think we should go now."]


def test_most_similar_entry_is_replaced() -> None:
    m = CaptionMatcher(MatcherConfig(similarity_threshold=0.4))
    m.observe([], now=0.0)
    m.observe([("A", "abcdefghij."), ("A", "klmnopqrst uv."), ("A", "-")], now=1.0)
    assert len(m.entries) == 2

    # 11/25 against the first entry, 14/25 against the second
    out = m.observe([("A", "abcdefghij klmnopqrst uv."), ("A", "-")], now=2.0)
    assert out.events[0].replaced
    assert out.events[0].index == 1
    assert m.entries[0].text == "abcdefghij."


def test_missing_speaker_becomes_unknown() -> None:
    m = CaptionMatcher()
    m.observe([], now=0.0)
    out = m.observe([("", "Who said this?"), ("", "...")], now=1.0)
    assert out.events[0].entry.speaker == "Unknown"
    assert out.events[0].entry.key == "Unknown:Who said this?"


def test_reset_forgets_everything() -> None:
    m = CaptionMatcher()
    m.observe([("A", "One."), ("A", "two")], now=0.0)
    m.reset()
    out = m.observe([("A", "One."), ("A", "two")], now=1.0)
    assert out.events[0].entry.is_pre_existing
    assert len(m.entries) == 1


def test_config_validation() -> None:
    with pytest.raises(ValueError):
        MatcherConfig(similarity_threshold=0.0)
    with pytest.raises(ValueError):
        MatcherConfig(sentence_endings=frozenset())
