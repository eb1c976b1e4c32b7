from __future__ import annotations

import re
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

NCT_ID_RE = re.compile(r"^NCT\d{8}$")
DEFAULT_COUNTRY = "United States"
PROFILE_CONFIDENCE_FIELDS = 7

Sex = Literal["male", "female", "other"]
NameVisibility = Literal["none", "first", "always"]


class WireModel(BaseModel):
    """Base for payloads that travel as camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def _none_to_list(value: Any) -> Any:
    return [] if value is None else value


class Location(WireModel):
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = DEFAULT_COUNTRY


class PatientProfile(WireModel):
    age: Optional[int] = Field(default=None, ge=0, le=120)
    sex: Optional[Sex] = None
    diagnosis: Optional[str] = None
    conditions: List[str] = Field(default_factory=list)
    symptoms: List[str] = Field(default_factory=list)
    medications: List[str] = Field(default_factory=list)
    allergies: List[str] = Field(default_factory=list)
    location: Optional[Location] = None

    @field_validator("conditions", "symptoms", "medications", "allergies", mode="before")
    @classmethod
    def _lists_default_empty(cls, value: Any) -> Any:
        return _none_to_list(value)

    @field_validator("sex", mode="before")
    @classmethod
    def _lower_sex(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip().lower()
            return value or None
        return value


def _is_non_empty(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, (list, tuple)):
        return len(value) > 0
    if isinstance(value, BaseModel):
        return any(_is_non_empty(v) for v in value.model_dump().values())
    if isinstance(value, str):
        return value != ""
    return True


def profile_confidence(profile: PatientProfile) -> float:
    """Share of populated top-level fields over a fixed denominator of 7."""
    populated = sum(1 for name in PatientProfile.model_fields if _is_non_empty(getattr(profile, name)))
    ratio = min(populated / float(PROFILE_CONFIDENCE_FIELDS), 1.0)
    return round(max(0.0, ratio), 2)


class Turn(WireModel):
    speaker: str = Field(min_length=1)
    text: str


class KeyMoment(WireModel):
    desc: str
    quote: Optional[str] = None
    time: Optional[str] = None
    search_text: str = ""

    @model_validator(mode="after")
    def _fill_search_text(self) -> "KeyMoment":
        if not self.search_text:
            self.search_text = (self.quote or self.desc).lower()
        return self


class TrialLocation(WireModel):
    facility: str = ""
    city: str = ""
    state: str = ""
    country: str = ""
    status: str = ""


class CentralContact(WireModel):
    name: str = ""
    phone: Optional[str] = None
    email: Optional[str] = None


class ContactInfo(WireModel):
    central_contact: Optional[CentralContact] = None


class TrialUrls(WireModel):
    clinical_trials_gov: str


class TrialRecord(WireModel):
    nct_id: str = Field(pattern=NCT_ID_RE.pattern)
    title: str
    status: str = "Unknown"
    phase: List[str] = Field(default_factory=list)
    study_type: str = "Unknown"
    brief_summary: str = ""
    detailed_description: str = ""
    conditions: List[str] = Field(default_factory=list)
    interventions: List[str] = Field(default_factory=list)
    eligibility_criteria: str = ""
    minimum_age: str = ""
    maximum_age: str = ""
    sex: str = ""
    locations: List[TrialLocation] = Field(default_factory=list)
    contact_info: Optional[ContactInfo] = None
    urls: TrialUrls


class SearchCriteria(WireModel):
    conditions: List[str] = Field(default_factory=list)
    location: Optional[str] = None
    age_range: Optional[str] = None
    sex: Optional[str] = None


class TrialsResponse(WireModel):
    trials: List[TrialRecord] = Field(default_factory=list)
    total_count: int = 0
    search_criteria: SearchCriteria = Field(default_factory=SearchCriteria)


class TranscribeRequest(WireModel):
    audio_base64: str = ""
    mime_type: Optional[str] = None


class TranscribeResponse(WireModel):
    transcript: str = ""
    language: Optional[str] = None
    duration_in_seconds: Optional[float] = None


class FormatTranscriptRequest(WireModel):
    transcript: str = ""


class FormatTranscriptResponse(WireModel):
    turns: List[Turn] = Field(default_factory=list)
    formatted: str = ""


class ExtractRequest(WireModel):
    transcript: str = Field(min_length=10)


class ExtractResponse(WireModel):
    patient_profile: PatientProfile
    confidence: float = Field(ge=0.0, le=1.0)


class KeyMomentsRequest(WireModel):
    transcript: str = Field(min_length=10)
    duration_sec: Optional[float] = Field(default=None, gt=0.0)


class KeyMomentsResponse(WireModel):
    moments: List[KeyMoment] = Field(default_factory=list)


class TrialsRequest(WireModel):
    patient_profile: PatientProfile
    max_results: int = Field(default=10, ge=1, le=50)
    nct_ids: Optional[List[str]] = None


class Patient(WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str = Field(min_length=1)
    name: str
    appointment: str = ""


class GlobalSettings(WireModel):
    doctor_name: str = ""
    name_visibility: NameVisibility = "first"


class TranscriptionSession(WireModel):
    created_at: Optional[str] = None
    transcript: Optional[str] = None
    formatted_transcript: Optional[str] = None
    key_moments: Optional[List[KeyMoment]] = None
    trials: Optional[TrialsResponse] = None


class PatientRecord(WireModel):
    profile: Optional[PatientProfile] = None
    confidence: Optional[float] = None
    transcript: Optional[str] = None
    formatted_transcript: Optional[str] = None
    key_moments: Optional[List[KeyMoment]] = None
    trials: Optional[TrialsResponse] = None
    transcriptions: Dict[str, TranscriptionSession] = Field(default_factory=dict)

    @field_validator("transcriptions", mode="before")
    @classmethod
    def _transcriptions_default_empty(cls, value: Any) -> Any:
        return {} if value is None else value


class TrialSet(WireModel):
    transcription_id: str
    created_at: str = ""
    trials: TrialsResponse


PatientField = Literal[
    "profile",
    "confidence",
    "transcript",
    "formatted_transcript",
    "key_moments",
    "trials",
]
TranscriptionField = Literal[
    "created_at",
    "transcript",
    "formatted_transcript",
    "key_moments",
    "trials",
]
GlobalField = Literal["doctor_name", "name_visibility"]
