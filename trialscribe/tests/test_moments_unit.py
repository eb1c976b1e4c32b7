import pytest

from trialscribe.extraction.moments import (
    PLACEHOLDER_DESC,
    apply_derived_times,
    derive_moment_time,
    placeholder_moment,
)
from trialscribe.internal_core.contracts import KeyMoment
from trialscribe.pipeline.adapters import MomentShapeError, coerce_moments


def _transcript_with_quote_at(offset: int, quote: str, length: int) -> str:
    filler = "x" * offset
    tail = "y" * (length - offset - len(quote))
    return filler + quote + tail


def test_quote_at_middle_of_two_minute_recording_maps_to_one_minute() -> None:
    transcript = _transcript_with_quote_at(600, "chest pressure", 1200)
    assert len(transcript) == 1200
    assert derive_moment_time(transcript, "CHEST PRESSURE", 120.0) == "01:00"


def test_quote_at_end_is_clamped_below_duration() -> None:
    transcript = "a" * 99 + "z"
    assert derive_moment_time(transcript, "z", 60.0) == "00:59"


@pytest.mark.parametrize(
    ("quote", "duration"),
    [(None, 120.0), ("", 120.0), ("missing", 120.0), ("chest", None), ("chest", 0.0), ("chest", float("nan"))],
)
def test_no_time_without_quote_duration_or_match(quote, duration) -> None:
    assert derive_moment_time("my chest hurts", quote, duration) is None


def test_apply_derived_times_keeps_explicit_times() -> None:
    transcript = _transcript_with_quote_at(600, "tired", 1200)
    moments = [
        KeyMoment(desc="explicit", quote="tired", time="00:05"),
        KeyMoment(desc="derived", quote="tired"),
        KeyMoment(desc="no quote"),
    ]
    out = apply_derived_times(moments, transcript, 120.0)
    assert [m.time for m in out] == ["00:05", "01:00", None]


def test_search_text_is_lowercase_quote_or_desc() -> None:
    assert KeyMoment(desc="Desc", quote="Chest PAIN").search_text == "chest pain"
    assert KeyMoment(desc="Family History").search_text == "family history"
    assert placeholder_moment().desc == PLACEHOLDER_DESC


def test_coerce_moments_wraps_single_object() -> None:
    moments = coerce_moments({"desc": "Reports fatigue", "quote": "I'm tired"})
    assert len(moments) == 1
    assert moments[0].search_text == "i'm tired"


def test_coerce_moments_unwraps_and_accepts_strings() -> None:
    moments = coerce_moments({"moments": ["Smoking history", {"desc": "Plan", "searchText": "plan"}]})
    assert [m.desc for m in moments] == ["Smoking history", "Plan"]
    assert coerce_moments(None) == []


@pytest.mark.parametrize("raw", [42, [{"quote": "no desc"}], ["   "], {"moments": 3}])
def test_coerce_moments_rejects_unusable_shapes(raw) -> None:
    with pytest.raises(MomentShapeError):
        coerce_moments(raw)
