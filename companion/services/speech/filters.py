"""Garbage transcript filtering.

Whisper turns silence and background noise into short fillers or stock
phrases from its training data. Such transcripts must not reach reply
generation; the caller just resumes listening.
"""
import re

MIN_SIGNIFICANT_CHARS = 3

STOP_WORDS = frozenset(
    [
        "you", "yo", "the", "a", "an", "i", "me", "my", "um", "uh", "hmm", "ah",
        "oh", "hey", "hi", "hello", "huh", "mhm", "yeah", "ya", "yep", "nah",
        "no", "yes", "ok", "okay",
    ]
)

HALLUCINATION_MARKERS = (
    "osho",
    "copyright",
    "subscribe",
    "thank you for watching",
    "www.",
    ".com",
    "music",
    "applause",
)

_INSIGNIFICANT = re.compile(r"[\s.,!?]+")
_BRACKETED_TAG = re.compile(r"^\[.*\]$")


def significant_text(transcript: str) -> str:
    """Transcript with whitespace and sentence punctuation removed."""
    return _INSIGNIFICANT.sub("", transcript)


def is_hallucination(transcript: str) -> bool:
    """Known Whisper output for silence or noise ([Music], subscribe, ...)."""
    stripped = transcript.strip()
    lowered = stripped.lower()
    if _BRACKETED_TAG.match(stripped):
        return True
    return any(marker in lowered for marker in HALLUCINATION_MARKERS)


def is_garbage_transcript(transcript: str) -> bool:
    """Check whether a transcript should be treated as no speech."""
    if not transcript or not transcript.strip():
        return True
    clean = significant_text(transcript)
    if len(clean) < MIN_SIGNIFICANT_CHARS:
        return True
    if clean.lower() in STOP_WORDS:
        return True
    return is_hallucination(transcript)
