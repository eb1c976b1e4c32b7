from __future__ import annotations

"""
Translate a patient profile into one ClinicalTrials.gov v2 search query.

Design intent:
- Registries over-constrain when handed every condition, so the query carries
  one primary condition and at most one secondary free-text term.
- Explicit trial ids narrow the search without dropping condition or location.
- Every parameter appears at most once in the output.
"""

from typing import Optional, Sequence
from urllib.parse import urlencode

from trialscribe.internal_core.contracts import DEFAULT_COUNTRY, PatientProfile
from trialscribe.trials.diagnosis import normalize_diagnosis

DEFAULT_MAX_RESULTS = 10
MAX_RESULTS = 50
ADULT_AGE = 18


def clamp_page_size(max_results: Optional[int]) -> int:
    if max_results is None:
        return DEFAULT_MAX_RESULTS
    return max(1, min(int(max_results), MAX_RESULTS))


def _clean(values: Optional[Sequence[str]]) -> list[str]:
    return [v.strip() for v in (values or []) if isinstance(v, str) and v.strip()]


def primary_condition(profile: PatientProfile) -> Optional[str]:
    diagnosis = (profile.diagnosis or "").strip()
    if diagnosis:
        return normalize_diagnosis(diagnosis)
    conditions = _clean(profile.conditions)
    return conditions[0] if conditions else None


def secondary_term(profile: PatientProfile, primary: Optional[str]) -> Optional[str]:
    primary_key = (primary or "").lower()
    for condition in _clean(profile.conditions):
        if primary_key and (
            condition.lower() == primary_key
            or normalize_diagnosis(condition).lower() == primary_key
        ):
            continue
        return condition
    return None


def location_term(profile: PatientProfile) -> Optional[str]:
    location = profile.location
    if location is None:
        return None
    place = (location.state or "").strip() or (location.city or "").strip()
    if not place:
        return None
    return f"{place}, {DEFAULT_COUNTRY}"


def build_search_params(
    profile: PatientProfile,
    nct_ids: Optional[Sequence[str]] = None,
    max_results: Optional[int] = DEFAULT_MAX_RESULTS,
) -> list[tuple[str, str]]:
    params: list[tuple[str, str]] = []

    primary = primary_condition(profile)
    if primary:
        params.append(("query.cond", primary))

    secondary = secondary_term(profile, primary)
    if secondary:
        params.append(("query.term", secondary))

    locn = location_term(profile)
    if locn:
        params.append(("query.locn", locn))

    if profile.age is not None and profile.age >= ADULT_AGE:
        params.append(("filter.overallStatus", "RECRUITING"))

    ids = _clean(nct_ids)
    if ids:
        params.append(("filter.ids", ",".join(ids)))

    params.append(("format", "json"))
    params.append(("countTotal", "true"))
    params.append(("pageSize", str(clamp_page_size(max_results))))
    return params


def build_query_string(
    profile: PatientProfile,
    nct_ids: Optional[Sequence[str]] = None,
    max_results: Optional[int] = DEFAULT_MAX_RESULTS,
) -> str:
    return urlencode(build_search_params(profile, nct_ids=nct_ids, max_results=max_results))
