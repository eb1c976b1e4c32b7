from __future__ import annotations

from .patient_utils import (
    DEFAULT_PATIENTS,
    ensure_default_patients,
    get_latest_transcription,
    get_patient_status,
    get_patient_trial_sets,
    has_patient_data,
)

__all__ = [
    "DEFAULT_PATIENTS",
    "ensure_default_patients",
    "get_latest_transcription",
    "get_patient_status",
    "get_patient_trial_sets",
    "has_patient_data",
]
