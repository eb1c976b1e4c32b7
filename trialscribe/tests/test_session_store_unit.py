import datetime as dt
import random

import pytest

from trialscribe.internal_core.contracts import KeyMoment, Patient, PatientProfile
from trialscribe.internal_core.durable import InMemoryKeyValueStore, JsonFileKeyValueStore
from trialscribe.internal_core.session_store import SessionStateStore, StoreChange, generate_transcription_id


def test_transcription_id_is_sortable_with_random_suffix() -> None:
    now = dt.datetime(2024, 3, 5, 14, 7, 9)
    tid = generate_transcription_id(now=now, rng=random.Random(7))
    stamp, suffix = tid.split("-")
    assert stamp == "20240305140709"
    assert len(suffix) == 4
    assert suffix.isalnum() and suffix.lower() == suffix


def test_store_merges_fields_and_notifies_after_write() -> None:
    store = SessionStateStore()
    seen: list[StoreChange] = []

    def listener(change: StoreChange) -> None:
        record = store.get_patient("p001")
        assert record is not None
        seen.append(change)

    store.subscribe("p001", listener)
    store.set_patient_item("p001", "transcript", "hello")
    store.set_transcription_item("p001", "20240101000000-abcd", "key_moments", [KeyMoment(desc="Plan")])

    record = store.get_patient("p001")
    assert record.transcript == "hello"
    session = store.get_transcription("p001", "20240101000000-abcd")
    assert session.key_moments[0].desc == "Plan"
    assert [c.field for c in seen] == ["transcript", "key_moments"]
    assert seen[1].transcription_id == "20240101000000-abcd"


def test_created_at_is_immutable() -> None:
    store = SessionStateStore()
    store.set_transcription_item("p001", "t1", "created_at", "2024-01-01T00:00:00+00:00")
    with pytest.raises(ValueError):
        store.set_transcription_item("p001", "t1", "created_at", "2025-01-01T00:00:00+00:00")


def test_unsubscribe_stops_notifications_and_failing_listener_is_isolated() -> None:
    store = SessionStateStore()
    calls: list[str] = []

    def broken(change: StoreChange) -> None:
        raise RuntimeError("observer bug")

    unsubscribe = store.subscribe("p001", lambda change: calls.append(change.field))
    store.subscribe_all(broken)
    store.set_patient_item("p001", "transcript", "a")
    unsubscribe()
    store.set_patient_item("p001", "transcript", "b")
    assert calls == ["transcript"]
    assert store.get_patient("p001").transcript == "b"


def test_patient_list_add_remove_and_duplicate_guard() -> None:
    store = SessionStateStore()
    store.add_patient(Patient(id="p9", name="Test Person"))
    with pytest.raises(ValueError):
        store.add_patient(Patient(id="p9", name="Other"))
    store.set_patient_item("p9", "transcript", "x")
    assert store.find_patient("p9").name == "Test Person"
    store.remove_patient("p9")
    assert store.find_patient("p9") is None
    assert store.get_patient("p9") is None


def test_state_survives_reload_from_json_file(tmp_path) -> None:
    path = tmp_path / "store.json"
    store = SessionStateStore(JsonFileKeyValueStore(path))
    store.set_global("doctor_name", "Chen")
    store.set_patients_list([Patient(id="p001", name="Maria Martinez", appointment="Today")])
    store.set_patient_item("p001", "profile", PatientProfile(age=52))

    reloaded = SessionStateStore(JsonFileKeyValueStore(path))
    assert reloaded.get_global().doctor_name == "Chen"
    assert reloaded.get_global().name_visibility == "first"
    assert [p.id for p in reloaded.get_patients_list()] == ["p001"]
    assert reloaded.get_patient("p001").profile.age == 52


def test_corrupt_store_file_starts_empty(tmp_path) -> None:
    path = tmp_path / "store.json"
    path.write_text("{not json", encoding="utf-8")
    store = SessionStateStore(JsonFileKeyValueStore(path))
    assert store.get_patients_list() == []


def test_reads_return_copies() -> None:
    durable = InMemoryKeyValueStore()
    store = SessionStateStore(durable)
    store.set_patient_item("p001", "key_moments", [KeyMoment(desc="A")])
    record = store.get_patient("p001")
    record.key_moments.append(KeyMoment(desc="B"))
    assert len(store.get_patient("p001").key_moments) == 1


class FailingDurable(InMemoryKeyValueStore):
    def __init__(self) -> None:
        super().__init__()
        self.fail = False

    def set(self, key, value) -> None:
        if self.fail:
            raise OSError("disk full")
        super().set(key, value)


def test_failed_write_leaves_memory_and_disk_unchanged_and_silent() -> None:
    durable = FailingDurable()
    store = SessionStateStore(durable)
    store.set_patient_item("p001", "transcript", "first")
    changes: list[StoreChange] = []
    store.subscribe("p001", changes.append)

    durable.fail = True
    with pytest.raises(OSError):
        store.set_patient_item("p001", "transcript", "second")
    with pytest.raises(OSError):
        store.set_transcription_item("p001", "20240601120000-abcd", "transcript", "second")

    assert store.get_patient("p001").transcript == "first"
    assert store.get_patient("p001").transcriptions == {}
    assert durable.get("trialscribe")["patients"]["p001"]["transcript"] == "first"
    assert changes == []


def test_json_file_store_keeps_previous_data_when_flush_fails(tmp_path, monkeypatch) -> None:
    durable = JsonFileKeyValueStore(tmp_path / "state.json")
    durable.set("trialscribe", {"global": {"doctor_name": "Chen"}})

    def _broken_replace(src, dst) -> None:
        raise OSError("read-only file system")

    monkeypatch.setattr("trialscribe.internal_core.durable.os.replace", _broken_replace)
    with pytest.raises(OSError):
        durable.set("trialscribe", {"global": {"doctor_name": "Lee"}})

    assert durable.get("trialscribe") == {"global": {"doctor_name": "Chen"}}
    assert [p.name for p in tmp_path.iterdir()] == ["state.json"]
