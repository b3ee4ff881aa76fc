from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional, Sequence

from nagare.contracts import ConfirmedLine, PartialLine
from nagare.nlp.cleanup import remove_overlap


@dataclass(frozen=True)
class StabilizerConfig:
    # retained provisional hypotheses for the open segment
    history_size: int = 3
    # hypotheses required before any prefix can be stable
    confirmation_threshold: int = 2
    min_words_for_confirmation: int = 2
    trim_confirmed_overlap: bool = True

    def __post_init__(self) -> None:
        if self.history_size <= 0:
            raise ValueError("history_size must be > 0")
        if self.confirmation_threshold <= 0:
            raise ValueError("confirmation_threshold must be > 0")
        if self.confirmation_threshold > self.history_size:
            raise ValueError("confirmation_threshold must be <= history_size")
        if self.min_words_for_confirmation <= 0:
            raise ValueError("min_words_for_confirmation must be > 0")


def stable_prefix_words(hypotheses: Sequence[str], min_words: int) -> List[str]:
    """
    Longest run of leading word positions on which every hypothesis agrees
    (case-insensitive). Runs shorter than min_words count as no prefix.
    Words are returned as spelled in the first hypothesis.
    """
    word_lists = [h.split() for h in hypotheses]
    if not word_lists or not word_lists[0]:
        return []
    first = word_lists[0]
    stable: List[str] = []
    for i, word in enumerate(first):
        w = word.lower()
        if all(i < len(words) and words[i].lower() == w for words in word_lists):
            stable.append(word)
        else:
            break
    if len(stable) < min_words:
        return []
    return stable


class ProvisionalHistory:
    """Most recent hypotheses for the open segment, oldest evicted first."""

    def __init__(self, max_len: int) -> None:
        self._items: Deque[str] = deque(maxlen=max_len)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(self._items)

    def add(self, text: str) -> None:
        self._items.append(text)

    def clear(self) -> None:
        self._items.clear()

    @property
    def latest(self) -> Optional[str]:
        return self._items[-1] if self._items else None


class TranscriptStabilizer:
    """
    Owns the authoritative transcript: confirmed lines (append-only) plus at
    most one partial line for the open segment.
    """

    def __init__(self, cfg: StabilizerConfig | None = None) -> None:
        self.cfg = cfg or StabilizerConfig()
        self.history = ProvisionalHistory(self.cfg.history_size)
        self.confirmed: List[ConfirmedLine] = []
        self.partial = PartialLine()

    @property
    def all_text(self) -> str:
        lines = [line.text for line in self.confirmed]
        if self.partial:
            lines.append(self.partial.text)
        return "\n".join(lines)

    def stable_prefix(self) -> List[str]:
        if len(self.history) < self.cfg.confirmation_threshold:
            return []
        return stable_prefix_words(list(self.history), self.cfg.min_words_for_confirmation)

    def offer_provisional(self, text: str) -> Optional[PartialLine]:
        """Record a provisional hypothesis. Returns the new partial line, or None if ignored."""
        text = (text or "").strip()
        if not text:
            return None
        self.history.add(text)

        stable = self.stable_prefix()
        latest = text.split()
        rest = latest[len(stable):] if stable else latest
        partial = PartialLine(stable=" ".join(stable), provisional=" ".join(rest))

        if self.cfg.trim_confirmed_overlap and self.confirmed:
            partial = self._trim_overlap(partial)

        self.partial = partial
        return partial

    def confirm(self, text: str, t0: float, t1: float, *, keep_partial: bool = False) -> Optional[ConfirmedLine]:
        """
        Finalize a segment. Provisional state is discarded either way unless
        keep_partial is set, which the session uses when a newer segment
        already owns the partial line.
        """
        if not keep_partial:
            self.history.clear()
            self.partial = PartialLine()
        text = (text or "").strip()
        if not text:
            return None
        line = ConfirmedLine(text=text, t0=float(t0), t1=float(t1), index=len(self.confirmed))
        self.confirmed.append(line)
        return line

    def discard_partial(self) -> None:
        self.history.clear()
        self.partial = PartialLine()

    def reset(self) -> None:
        self.discard_partial()
        self.confirmed = []

    def _trim_overlap(self, partial: PartialLine) -> PartialLine:
        tail = self.confirmed[-1].text
        full = partial.text
        trimmed = remove_overlap(full, tail)
        if trimmed == full:
            return partial
        if trimmed is None:
            return PartialLine()
        kept = trimmed.split()
        cut = len(full.split()) - len(kept)
        n_stable = max(0, len(partial.stable.split()) - cut)
        return PartialLine(stable=" ".join(kept[:n_stable]), provisional=" ".join(kept[n_stable:]))
