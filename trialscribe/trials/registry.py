from __future__ import annotations

"""
ClinicalTrials.gov v2 client and study-record transform.

Design intent:
- One GET per search; the registry's own schema stays behind `transform_study`.
- Upstream failures raise `RegistryUpstreamError` with the status and body so
  the caller decides between a 502 and the canned fallback set.
- Records whose id fails the NCT pattern never reach callers.
"""

import logging
from typing import Any, Mapping, Optional, Sequence

import requests

from trialscribe.internal_core.contracts import (
    NCT_ID_RE,
    CentralContact,
    ContactInfo,
    PatientProfile,
    SearchCriteria,
    TrialLocation,
    TrialRecord,
    TrialsResponse,
    TrialUrls,
)
from trialscribe.trials.query_builder import (
    DEFAULT_MAX_RESULTS,
    build_query_string,
    clamp_page_size,
)

logger = logging.getLogger(__name__)

STUDY_URL_TEMPLATE = "https://clinicaltrials.gov/study/{nct_id}"


class RegistryUpstreamError(RuntimeError):
    def __init__(self, status_code: Optional[int], body: str):
        super().__init__(f"Registry request failed (status={status_code})")
        self.code = "UPSTREAM_ERROR"
        self.message = str(self)
        self.status_code = status_code
        self.body = body


def _module(protocol: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = protocol.get(name)
    return value if isinstance(value, Mapping) else {}


def _str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, str)]


def study_nct_id(study: Mapping[str, Any]) -> str:
    protocol = study.get("protocolSection") or {}
    return _str(_module(protocol, "identificationModule").get("nctId"))


def transform_study(study: Mapping[str, Any]) -> TrialRecord:
    protocol = study.get("protocolSection") or {}
    identification = _module(protocol, "identificationModule")
    status = _module(protocol, "statusModule")
    design = _module(protocol, "designModule")
    description = _module(protocol, "descriptionModule")
    conditions = _module(protocol, "conditionsModule")
    arms = _module(protocol, "armsInterventionsModule")
    eligibility = _module(protocol, "eligibilityModule")
    contacts = _module(protocol, "contactsLocationsModule")

    nct_id = _str(identification.get("nctId"))

    interventions = [
        _str(item.get("name"))
        for item in (arms.get("interventions") or [])
        if isinstance(item, Mapping) and _str(item.get("name"))
    ]
    locations = [
        TrialLocation(
            facility=_str(loc.get("facility")),
            city=_str(loc.get("city")),
            state=_str(loc.get("state")),
            country=_str(loc.get("country")),
            status=_str(loc.get("status")),
        )
        for loc in (contacts.get("locations") or [])
        if isinstance(loc, Mapping)
    ]

    contact_info = None
    central = contacts.get("centralContacts") or []
    if central and isinstance(central[0], Mapping):
        first = central[0]
        contact_info = ContactInfo(
            central_contact=CentralContact(
                name=_str(first.get("name")),
                phone=first.get("phone") or None,
                email=first.get("email") or None,
            )
        )

    return TrialRecord(
        nct_id=nct_id,
        title=_str(identification.get("officialTitle")) or _str(identification.get("briefTitle")),
        status=_str(status.get("overallStatus")) or "Unknown",
        phase=_str_list(design.get("phases")),
        study_type=_str(design.get("studyType")) or "Unknown",
        brief_summary=_str(description.get("briefSummary")),
        detailed_description=_str(description.get("detailedDescription")),
        conditions=_str_list(conditions.get("conditions")),
        interventions=interventions,
        eligibility_criteria=_str(eligibility.get("eligibilityCriteria")),
        minimum_age=_str(eligibility.get("minimumAge")),
        maximum_age=_str(eligibility.get("maximumAge")),
        sex=_str(eligibility.get("sex")),
        locations=locations,
        contact_info=contact_info,
        urls=TrialUrls(clinical_trials_gov=STUDY_URL_TEMPLATE.format(nct_id=nct_id)),
    )


def transform_studies(studies: Sequence[Any], max_results: int) -> list[TrialRecord]:
    """Truncate to the cap, then drop studies whose id fails the NCT pattern."""
    out: list[TrialRecord] = []
    dropped = 0
    for study in list(studies or [])[: clamp_page_size(max_results)]:
        if not isinstance(study, Mapping) or not NCT_ID_RE.match(study_nct_id(study)):
            dropped += 1
            continue
        out.append(transform_study(study))
    if dropped:
        logger.warning("registry records dropped invalid_nct_id=%d", dropped)
    return out


def build_search_criteria(profile: PatientProfile) -> SearchCriteria:
    conditions = [c for c in [profile.diagnosis, *profile.conditions] if c]
    location = None
    if profile.location is not None:
        parts = [
            (p or "").strip() for p in (profile.location.city, profile.location.state)
        ]
        location = ", ".join(p for p in parts if p) or None
    return SearchCriteria(
        conditions=conditions,
        location=location,
        age_range=f"{profile.age} years" if profile.age is not None else None,
        sex=profile.sex,
    )


def canned_fallback_response() -> TrialsResponse:
    """Two fixed demonstration trials served when the registry is unavailable."""
    trials = [
        TrialRecord(
            nct_id="NCT12345678",
            title="Study of Treatment for Breast Cancer Patients",
            status="Recruiting",
            phase=["Phase II"],
            study_type="Interventional",
            brief_summary=(
                "A clinical trial investigating new treatment options for patients with breast "
                "cancer, focusing on improving quality of life and treatment outcomes."
            ),
            detailed_description=(
                "This Phase II study evaluates the safety and efficacy of experimental treatments "
                "in combination with standard care for patients diagnosed with breast cancer. The "
                "study aims to improve treatment outcomes while maintaining quality of life."
            ),
            conditions=["Breast Cancer"],
            interventions=["Drug: Experimental Treatment", "Behavioral: Lifestyle Intervention"],
            eligibility_criteria=(
                "Inclusion: Adults 18+ with diagnosed breast cancer. "
                "Exclusion: Pregnant women, severe heart conditions."
            ),
            minimum_age="18 Years",
            maximum_age="75 Years",
            sex="All",
            locations=[
                TrialLocation(
                    facility="Memorial Cancer Center",
                    city="Jacksonville",
                    state="Florida",
                    country="United States",
                    status="Recruiting",
                )
            ],
            contact_info=ContactInfo(
                central_contact=CentralContact(
                    name="Clinical Research Team",
                    phone="(555) 123-4567",
                    email="research@memorial.org",
                )
            ),
            urls=TrialUrls(clinical_trials_gov=STUDY_URL_TEMPLATE.format(nct_id="NCT12345678")),
        ),
        TrialRecord(
            nct_id="NCT87654321",
            title="Hypertension Management in Cancer Patients",
            status="Active, not recruiting",
            phase=["Phase I"],
            study_type="Interventional",
            brief_summary=(
                "Research study examining blood pressure management strategies in cancer patients "
                "receiving treatment."
            ),
            detailed_description=(
                "This Phase I study investigates optimal blood pressure management approaches for "
                "cancer patients undergoing active treatment. The research focuses on balancing "
                "cardiovascular health with cancer treatment effectiveness."
            ),
            conditions=["Hypertension", "Cancer"],
            interventions=["Drug: Blood Pressure Medication", "Behavioral: Diet Modification"],
            eligibility_criteria=(
                "Inclusion: Cancer patients with hypertension. Exclusion: Uncontrolled diabetes."
            ),
            minimum_age="21 Years",
            maximum_age="80 Years",
            sex="All",
            locations=[
                TrialLocation(
                    facility="University Medical Center",
                    city="Miami",
                    state="Florida",
                    country="United States",
                    status="Active",
                )
            ],
            contact_info=ContactInfo(
                central_contact=CentralContact(
                    name="Dr. Smith's Research Team",
                    phone="(555) 987-6543",
                    email="trials@umc.edu",
                )
            ),
            urls=TrialUrls(clinical_trials_gov=STUDY_URL_TEMPLATE.format(nct_id="NCT87654321")),
        ),
    ]
    return TrialsResponse(
        trials=trials,
        total_count=len(trials),
        search_criteria=SearchCriteria(
            conditions=["Breast Cancer", "Hypertension"],
            location="Florida, United States",
            age_range="52 years",
            sex="female",
        ),
    )


class ClinicalTrialsRegistry:
    """Interface to the ClinicalTrials.gov v2 studies endpoint."""

    def __init__(
        self,
        api_url: str = "https://clinicaltrials.gov/api/v2/studies",
        timeout_sec: float = 30.0,
        user_agent: str = "TrialScribe/1.0",
        session: Optional[requests.Session] = None,
    ):
        self.api_url = api_url
        self.timeout_sec = float(timeout_sec)
        self.user_agent = user_agent
        self._session = session or requests.Session()

    def search(
        self,
        profile: PatientProfile,
        nct_ids: Optional[Sequence[str]] = None,
        max_results: int = DEFAULT_MAX_RESULTS,
    ) -> TrialsResponse:
        query = build_query_string(profile, nct_ids=nct_ids, max_results=max_results)
        url = f"{self.api_url}?{query}"
        headers = {"Accept": "application/json", "User-Agent": self.user_agent}

        logger.info("registry search max_results=%d explicit_ids=%d", max_results, len(nct_ids or []))
        try:
            response = self._session.get(url, headers=headers, timeout=self.timeout_sec)
        except requests.exceptions.RequestException as exc:
            logger.error("registry transport error: %s", exc)
            raise RegistryUpstreamError(None, str(exc)) from exc

        if not 200 <= response.status_code < 300:
            body = response.text or ""
            logger.error("registry returned status=%d", response.status_code)
            raise RegistryUpstreamError(response.status_code, body[:2000])

        try:
            data = response.json()
        except ValueError as exc:
            raise RegistryUpstreamError(response.status_code, "invalid JSON body") from exc
        if not isinstance(data, Mapping):
            raise RegistryUpstreamError(response.status_code, "unexpected JSON shape")

        trials = transform_studies(data.get("studies") or [], max_results)
        total = data.get("totalCount")
        logger.info("registry search returned trials=%d total=%s", len(trials), total)
        return TrialsResponse(
            trials=trials,
            total_count=int(total) if isinstance(total, int) else 0,
            search_criteria=build_search_criteria(profile),
        )
