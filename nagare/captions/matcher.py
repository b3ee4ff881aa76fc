from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import FrozenSet, List, Optional, Sequence, Tuple

from nagare.captions.similarity import similarity_ratio
from nagare.contracts import CaptionCommitted, CaptionEntry

logger = logging.getLogger(__name__)

CAPTION_SENTENCE_ENDINGS: FrozenSet[str] = frozenset("。.!?！？…")


@dataclass(frozen=True)
class MatcherConfig:
    similarity_threshold: float = 0.7
    sentence_endings: FrozenSet[str] = CAPTION_SENTENCE_ENDINGS

    def __post_init__(self) -> None:
        if not 0.0 < self.similarity_threshold <= 1.0:
            raise ValueError("similarity_threshold must be in (0, 1]")
        if not self.sentence_endings:
            raise ValueError("sentence_endings must not be empty")


@dataclass(frozen=True)
class MatchOutcome:
    events: List[CaptionCommitted]
    pending: str


class CaptionMatcher:
    """
    Turns repeated snapshots of an external caption list into a deduplicated
    list of entries. The last line of each snapshot is still being written
    and is only reported as pending text.
    """

    def __init__(self, cfg: MatcherConfig | None = None) -> None:
        self.cfg = cfg or MatcherConfig()
        self.entries: List[CaptionEntry] = []
        self._seen: set[str] = set()
        self._first_poll = True

    def reset(self) -> None:
        self.entries = []
        self._seen.clear()
        self._first_poll = True

    def entries_for_processing(self) -> List[CaptionEntry]:
        """Entries a downstream consumer should act on (history excluded)."""
        return [e for e in self.entries if not e.is_pre_existing]

    def observe(self, pairs: Sequence[Tuple[str, str]], now: Optional[float] = None) -> MatchOutcome:
        now = time.time() if now is None else float(now)
        pre_existing = self._first_poll
        self._first_poll = False

        lines = [(str(s or "").strip() or "Unknown", str(t or "").strip()) for s, t in pairs]
        lines = [(s, t) for s, t in lines if t]
        if not lines:
            return MatchOutcome(events=[], pending="")

        settled, (_, pending) = lines[:-1], lines[-1]
        events: List[CaptionCommitted] = []
        for speaker, text in settled:
            ev = self._observe_one(speaker, text, now, pre_existing)
            if ev is not None:
                events.append(ev)
        if events:
            events[-1] = CaptionCommitted(
                entry=events[-1].entry,
                index=events[-1].index,
                replaced=events[-1].replaced,
                pending=pending,
            )
        return MatchOutcome(events=events, pending=pending)

    def _observe_one(self, speaker: str, text: str, now: float, pre_existing: bool) -> Optional[CaptionCommitted]:
        if text[-1] not in self.cfg.sentence_endings:
            return None
        entry = CaptionEntry(speaker=speaker, text=text, timestamp=now, is_pre_existing=pre_existing)
        if entry.key in self._seen:
            return None
        self._seen.add(entry.key)

        idx, score = self._most_similar(text)
        if idx is not None:
            existing = self.entries[idx]
            if len(text) < len(existing.text):
                logger.debug("caption_shorter_duplicate", extra={"index": idx, "score": round(score, 3)})
                return None
            self.entries[idx] = entry
            logger.debug("caption_replaced", extra={"index": idx, "score": round(score, 3)})
            return CaptionCommitted(entry=entry, index=idx, replaced=True)

        self.entries.append(entry)
        return CaptionCommitted(entry=entry, index=len(self.entries) - 1)

    def _most_similar(self, text: str) -> Tuple[Optional[int], float]:
        best_idx: Optional[int] = None
        best = 0.0
        for i, existing in enumerate(self.entries):
            score = similarity_ratio(text, existing.text)
            if score > self.cfg.similarity_threshold and score > best:
                best_idx, best = i, score
        return best_idx, best
