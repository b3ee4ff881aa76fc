from __future__ import annotations

import re

# Non-speech markers the recognizer emits for music, silence and blank audio.
NON_SPEECH_MARKERS: tuple[str, ...] = (
    "[BLANK_AUDIO]",
    "(BLANK_AUDIO)",
    "[MUSIC]",
    "[music]",
    "[ Silence ]",
    "[silence]",
    "(music)",
    "(silence)",
)

SENTENCE_ENDINGS = frozenset("。！？.!?」』”’…")

MIN_OVERLAP_CHARS = 3
MAX_OVERLAP_CHARS = 200

_MULTI_SPACE = re.compile(r"[ \t]{2,}")


def clean_transcription(text: str) -> str:
    cleaned = (text or "").strip()
    for marker in NON_SPEECH_MARKERS:
        cleaned = cleaned.replace(marker, "")
    cleaned = _MULTI_SPACE.sub(" ", cleaned)
    return cleaned.strip()


def ends_with_sentence(text: str) -> bool:
    return bool(text) and text[-1] in SENTENCE_ENDINGS


def remove_overlap(new_text: str, existing_text: str) -> str | None:
    """
    Drop the part of new_text that repeats the tail of existing_text.
    Returns None when nothing new remains. Only whole-word overlaps count:
    the repeated text must start a word in existing_text and end one in
    new_text.
    """
    if not new_text or not existing_text:
        return new_text
    longest = min(len(new_text), len(existing_text), MAX_OVERLAP_CHARS)
    for size in range(longest, MIN_OVERLAP_CHARS - 1, -1):
        if size < len(new_text) and not new_text[size].isspace():
            continue
        if size < len(existing_text) and not existing_text[-size - 1].isspace():
            continue
        if new_text.startswith(existing_text[-size:]):
            rest = new_text[size:].strip()
            return rest or None
    return new_text
