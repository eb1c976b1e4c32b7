from trialscribe.internal_core.contracts import (
    Patient,
    PatientRecord,
    TranscriptionSession,
    TrialsResponse,
)
from trialscribe.internal_core.session_store import SessionStateStore
from trialscribe.utils.patient_utils import (
    DEFAULT_PATIENTS,
    NO_APPOINTMENT,
    UNKNOWN_PATIENT,
    ensure_default_patients,
    get_latest_transcription,
    get_patient_appointment_display,
    get_patient_display_name,
    get_patient_status,
    get_patient_trial_sets,
    has_patient_data,
)


def _record() -> PatientRecord:
    return PatientRecord(
        formatted_transcript="Doctor: Hello.",
        transcriptions={
            "20240101090000-aaaa": TranscriptionSession(
                created_at="2024-01-01T09:00:00+00:00", trials=TrialsResponse(total_count=1)
            ),
            "20240102090000-bbbb": TranscriptionSession(created_at="2024-01-02T09:00:00+00:00"),
            "20240103090000-cccc": TranscriptionSession(
                created_at="2024-01-03T09:00:00+00:00", trials=TrialsResponse(total_count=3)
            ),
        },
    )


def test_trial_sets_are_newest_first_and_skip_sessions_without_trials() -> None:
    sets = get_patient_trial_sets(_record())
    assert [s.transcription_id for s in sets] == ["20240103090000-cccc", "20240101090000-aaaa"]
    assert sets[0].trials.total_count == 3
    assert get_patient_trial_sets(None) == []


def test_status_reports_data_and_trial_count() -> None:
    status = get_patient_status(_record())
    assert status == {"has_data": True, "has_trials": True, "trial_set_count": 2}
    assert get_patient_status(None) == {"has_data": False, "has_trials": False, "trial_set_count": 0}
    assert has_patient_data(PatientRecord()) is False


def test_latest_transcription_uses_created_at() -> None:
    latest = get_latest_transcription(_record())
    assert latest is not None
    assert latest.created_at == "2024-01-03T09:00:00+00:00"
    assert get_latest_transcription(PatientRecord()) is None


def test_default_roster_is_seeded_only_once() -> None:
    store = SessionStateStore()
    seeded = ensure_default_patients(store)
    assert [p.id for p in seeded] == [p.id for p in DEFAULT_PATIENTS]

    store.set_patients_list([Patient(id="x1", name="Solo")])
    assert [p.id for p in ensure_default_patients(store)] == ["x1"]


def test_display_fallbacks() -> None:
    assert get_patient_display_name(None) == UNKNOWN_PATIENT
    assert get_patient_display_name(Patient(id="p1", name="")) == UNKNOWN_PATIENT
    assert get_patient_appointment_display(Patient(id="p1", name="A")) == NO_APPOINTMENT
    assert get_patient_appointment_display(Patient(id="p1", name="A", appointment="Noon")) == "Noon"


def test_trial_sets_order_by_instant_not_by_string() -> None:
    record = PatientRecord(
        transcriptions={
            "20240101080000-aaaa": TranscriptionSession(
                created_at="2024-01-01T10:00:00+02:00", trials=TrialsResponse(total_count=1)
            ),
            "20240101090000-bbbb": TranscriptionSession(
                created_at="2024-01-01T09:00:00Z", trials=TrialsResponse(total_count=2)
            ),
        },
    )
    sets = get_patient_trial_sets(record)
    assert [s.transcription_id for s in sets] == ["20240101090000-bbbb", "20240101080000-aaaa"]
    assert get_latest_transcription(record).trials.total_count == sets[0].trials.total_count
