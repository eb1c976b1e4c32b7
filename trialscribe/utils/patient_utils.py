from __future__ import annotations

"""
Read-only helpers over stored patient records.

Design intent:
- Derive trial history and status from `PatientRecord` without touching the store.
- Keep display fallbacks in one place.
"""

from typing import Optional

from trialscribe.internal_core.contracts import (
    Patient,
    PatientRecord,
    TranscriptionSession,
    TrialSet,
)
from trialscribe.internal_core.session_store import SessionStateStore
from trialscribe.pipeline.synchronizer import created_at_key, latest_session_id

UNKNOWN_PATIENT = "Unknown Patient"
NO_APPOINTMENT = "No appointment scheduled"

DEFAULT_PATIENTS: tuple[Patient, ...] = (
    Patient(id="p001", name="Maria Martinez", appointment="Today • 9:00 AM"),
    Patient(id="p002", name="John Kim", appointment="Today • 9:30 AM"),
    Patient(id="p003", name="Ava Patel", appointment="Today • 10:00 AM"),
    Patient(id="p004", name="Liam Johnson", appointment="Today • 10:30 AM"),
)


def ensure_default_patients(store: SessionStateStore) -> list[Patient]:
    """Seed the demo roster when the stored list is empty."""
    patients = store.get_patients_list()
    if patients:
        return patients
    store.set_patients_list(list(DEFAULT_PATIENTS))
    return list(DEFAULT_PATIENTS)


def get_patient_trial_sets(record: Optional[PatientRecord]) -> list[TrialSet]:
    """Trial sets per session, newest first; sessions without trials are skipped."""
    if record is None or not record.transcriptions:
        return []
    sets = [
        TrialSet(
            transcription_id=transcription_id,
            created_at=session.created_at or "",
            trials=session.trials,
        )
        for transcription_id, session in record.transcriptions.items()
        if session.trials is not None
    ]
    sets.sort(key=lambda item: (created_at_key(item.created_at), item.transcription_id), reverse=True)
    return sets


def has_patient_data(record: Optional[PatientRecord]) -> bool:
    if record is None:
        return False
    return bool(record.formatted_transcript or record.key_moments or record.transcriptions)


def get_patient_status(record: Optional[PatientRecord]) -> dict[str, object]:
    trial_set_count = len(get_patient_trial_sets(record))
    return {
        "has_data": bool(record is not None and (record.formatted_transcript or record.key_moments)),
        "has_trials": trial_set_count > 0,
        "trial_set_count": trial_set_count,
    }


def get_latest_transcription(record: Optional[PatientRecord]) -> Optional[TranscriptionSession]:
    if record is None:
        return None
    latest = latest_session_id(record.transcriptions)
    return record.transcriptions[latest] if latest is not None else None


def get_patient_display_name(patient: Optional[Patient]) -> str:
    return patient.name if patient is not None and patient.name else UNKNOWN_PATIENT


def get_patient_appointment_display(patient: Optional[Patient]) -> str:
    return patient.appointment if patient is not None and patient.appointment else NO_APPOINTMENT
