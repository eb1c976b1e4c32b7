from __future__ import annotations

import math
from typing import Optional, Sequence

from trialscribe.internal_core.contracts import KeyMoment

PLACEHOLDER_DESC = "Key moments unavailable; review the full transcript"
MAX_RATIO = 0.999


def format_mm_ss(seconds: int) -> str:
    return f"{seconds // 60:02d}:{seconds % 60:02d}"


def derive_moment_time(
    transcript: str,
    quote: Optional[str],
    duration_sec: Optional[float],
) -> Optional[str]:
    """
    Approximate MM:SS for a quote from its character offset in the transcript.

    The offset ratio is clamped to [0, 0.999] so a quote at the very end never
    maps past the recording. Returns None without a quote, without a usable
    duration or when the quote does not occur in the transcript.
    """
    if not quote or not transcript:
        return None
    if duration_sec is None or not math.isfinite(duration_sec) or duration_sec <= 0:
        return None
    idx = transcript.lower().find(quote.lower())
    if idx < 0:
        return None
    ratio = min(MAX_RATIO, max(0.0, idx / len(transcript)))
    return format_mm_ss(int(math.floor(ratio * duration_sec)))


def apply_derived_times(
    moments: Sequence[KeyMoment],
    transcript: str,
    duration_sec: Optional[float],
) -> list[KeyMoment]:
    out: list[KeyMoment] = []
    for moment in moments:
        if moment.time:
            out.append(moment)
            continue
        derived = derive_moment_time(transcript, moment.quote, duration_sec)
        out.append(moment.model_copy(update={"time": derived}) if derived else moment)
    return out


def placeholder_moment() -> KeyMoment:
    return KeyMoment(desc=PLACEHOLDER_DESC)
