from __future__ import annotations

from pathlib import Path
from typing import List, Protocol, Tuple


class CaptionSource(Protocol):
    """Anything that can return the current caption list as (speaker, text) pairs."""

    def read(self) -> List[Tuple[str, str]]:
        ...


def parse_caption_line(line: str) -> Tuple[str, str]:
    speaker, sep, text = line.partition(":")
    if not sep or not speaker.strip() or not text.strip():
        return "Unknown", line.strip()
    return speaker.strip(), text.strip()


class FileCaptionSource:
    """
    Reads a text file that some external tool keeps rewriting with the
    visible caption list, one "Speaker: text" line per caption.
    """

    def __init__(self, path: str | Path, encoding: str = "utf-8") -> None:
        self.path = Path(path)
        self.encoding = encoding

    def read(self) -> List[Tuple[str, str]]:
        raw = self.path.read_text(encoding=self.encoding)
        return [parse_caption_line(ln) for ln in raw.splitlines() if ln.strip()]
