from __future__ import annotations

"""
Turn parsing and display labels for speaker-labeled transcripts.

Design intent:
- Keep transcript display deterministic for a given doctor name and visibility policy.
- Accept both one-turn-per-line transcripts and run-on text with inline labels.
- Normalize speaker aliases ("Doctor", "Dr. X", "patient") for readability.
"""

import re
from dataclasses import dataclass
from typing import Iterable, Sequence

from trialscribe.internal_core.contracts import NameVisibility, Turn

NARRATOR = "Narrator"
PATIENT = "Patient"
DOCTOR_FALLBACK = "Doctor"

_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])(?<!\bDr\.)(?<!\bMr\.)(?<!\bMs\.)(?<!\bMrs\.)\s+")
_LABELED_LINE_RE = re.compile(r"^([^:]+):\s*(.*)$")
# Break before "Label:" when it follows a sentence end; honorifics are not sentence ends.
_INLINE_LABEL_RE = re.compile(
    r"(?<=[.!?])(?<!\bDr\.)(?<!\bMr\.)(?<!\bMs\.)(?<!\bMrs\.)\s+"
    r"(?=(?:Dr\.\s+)?[A-Z][A-Za-z]*(?:\s[A-Z][A-Za-z]*)?\s*:)"
)


@dataclass(frozen=True)
class DisplayTurn:
    speaker: str
    text: str
    show_name: bool


def ensure_terminal_punctuation(text: str) -> str:
    trimmed = text.strip()
    if not trimmed:
        return ""
    if trimmed[-1] in ".!?":
        return trimmed
    return f"{trimmed}."


def split_sentences(text: str) -> list[str]:
    normalized = " ".join(text.split()).strip()
    if not normalized:
        return []
    return [part.strip() for part in _SENTENCE_SPLIT_RE.split(normalized) if part.strip()]


def doctor_label(doctor_name: str) -> str:
    name = (doctor_name or "").strip()
    if not name:
        return DOCTOR_FALLBACK
    if name.startswith("Dr."):
        return name
    return f"Dr. {name}"


def map_speaker(raw: str, doctor_name: str) -> str:
    lower = raw.lower()
    if "doctor" in lower or "dr." in lower:
        return doctor_label(doctor_name)
    if "patient" in lower:
        return PATIENT
    return raw


def _segments(transcript: str) -> Iterable[str]:
    for line in transcript.split("\n"):
        line = line.strip()
        if not line:
            continue
        for part in _INLINE_LABEL_RE.split(line):
            part = part.strip()
            if part:
                yield part


def parse_turns(transcript: str) -> list[Turn]:
    turns: list[Turn] = []
    for segment in _segments(transcript or ""):
        match = _LABELED_LINE_RE.match(segment)
        if match and match.group(1).strip():
            turns.append(Turn(speaker=match.group(1).strip(), text=match.group(2).strip()))
        else:
            turns.append(Turn(speaker=NARRATOR, text=segment))
    return turns


def transcript_turns(
    transcript: str,
    doctor_name: str,
    visibility: NameVisibility = "first",
) -> list[DisplayTurn]:
    """
    Split a transcript into display turns.

    `visibility` controls `show_name`: "always" on every turn, "first" only on a
    speaker's first turn, "none" never.
    """
    seen: set[str] = set()
    out: list[DisplayTurn] = []
    for turn in parse_turns(transcript):
        display = map_speaker(turn.speaker, doctor_name)
        if visibility == "always":
            show = True
        elif visibility == "first":
            show = display not in seen
        else:
            show = False
        seen.add(display)
        out.append(DisplayTurn(speaker=display, text=turn.text, show_name=show))
    return out


def format_turns(turns: Sequence[Turn]) -> str:
    return "\n".join(f"{t.speaker}: {t.text}" for t in turns)
