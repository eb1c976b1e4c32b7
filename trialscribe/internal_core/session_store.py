from __future__ import annotations

import copy
import datetime as _dt
import logging
import random
import string
from dataclasses import dataclass
from threading import RLock
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel

from .contracts import (
    GlobalField,
    GlobalSettings,
    Patient,
    PatientField,
    PatientRecord,
    TranscriptionField,
    TranscriptionSession,
)
from .durable import DurableKeyValueStore, InMemoryKeyValueStore

logger = logging.getLogger(__name__)

STORE_NAMESPACE = "trialscribe"
_ID_SUFFIX_ALPHABET = string.digits + string.ascii_lowercase


def now_iso() -> str:
    return _dt.datetime.now(_dt.timezone.utc).isoformat()


def generate_transcription_id(
    now: Optional[_dt.datetime] = None,
    rng: Optional[random.Random] = None,
) -> str:
    """Sortable id: YYYYMMDDHHMMSS plus a 4-char base-36 suffix."""
    now = now or _dt.datetime.now()
    rng = rng or random
    suffix = "".join(rng.choice(_ID_SUFFIX_ALPHABET) for _ in range(4))
    return f"{now.strftime('%Y%m%d%H%M%S')}-{suffix}"


def _to_json(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, (list, tuple)):
        return [_to_json(v) for v in value]
    if isinstance(value, dict):
        return {k: _to_json(v) for k, v in value.items()}
    return value


@dataclass(frozen=True)
class StoreChange:
    patient_id: Optional[str]
    field: str
    transcription_id: Optional[str] = None


StoreListener = Callable[[StoreChange], None]


class SessionStateStore:
    """
    Process-wide record of patients and their transcription sessions.

    Writes replace whole fields (last write wins) and are persisted before
    listeners are notified. Reads return copies.
    """

    def __init__(self, durable: Optional[DurableKeyValueStore] = None):
        self._durable = durable or InMemoryKeyValueStore()
        self._lock = RLock()
        self._listeners: Dict[str, List[StoreListener]] = {}
        self._global_listeners: List[StoreListener] = []
        self._state: Dict[str, Any] = self._load()

    def _load(self) -> Dict[str, Any]:
        raw = self._durable.get(STORE_NAMESPACE)
        if not isinstance(raw, dict):
            raw = {}
        return {
            "global": dict(raw.get("global") or {}),
            "patients_list": list(raw.get("patients_list") or []),
            "patients": dict(raw.get("patients") or {}),
        }

    def _commit(self, mutate: Callable[[Dict[str, Any]], None]) -> None:
        """Apply `mutate` to a staged copy, persist it, then make it current."""
        with self._lock:
            staged = copy.deepcopy(self._state)
            mutate(staged)
            self._durable.set(STORE_NAMESPACE, staged)
            self._state = staged

    def _notify(self, change: StoreChange) -> None:
        with self._lock:
            listeners = list(self._global_listeners)
            if change.patient_id is not None:
                listeners.extend(self._listeners.get(change.patient_id, []))
        for listener in listeners:
            try:
                listener(change)
            except Exception:
                # A failing observer must never break the writer.
                logger.exception(
                    "store listener failed patient_id=%s field=%s",
                    change.patient_id,
                    change.field,
                )

    # Subscriptions

    def subscribe(self, patient_id: str, listener: StoreListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.setdefault(patient_id, []).append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                items = self._listeners.get(patient_id, [])
                if listener in items:
                    items.remove(listener)
                if not items:
                    self._listeners.pop(patient_id, None)

        return _unsubscribe

    def subscribe_all(self, listener: StoreListener) -> Callable[[], None]:
        with self._lock:
            self._global_listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._global_listeners:
                    self._global_listeners.remove(listener)

        return _unsubscribe

    # Global settings

    def set_global(self, key: GlobalField, value: str) -> None:
        def _apply(state: Dict[str, Any]) -> None:
            state["global"][key] = value

        self._commit(_apply)
        self._notify(StoreChange(patient_id=None, field=f"global.{key}"))

    def get_global(self) -> GlobalSettings:
        with self._lock:
            return GlobalSettings.model_validate(copy.deepcopy(self._state["global"]))

    # Patient list

    def set_patients_list(self, patients: List[Patient]) -> None:
        rows = [_to_json(p) for p in patients]

        def _apply(state: Dict[str, Any]) -> None:
            state["patients_list"] = rows

        self._commit(_apply)
        self._notify(StoreChange(patient_id=None, field="patients_list"))

    def get_patients_list(self) -> List[Patient]:
        with self._lock:
            return [Patient.model_validate(p) for p in self._state["patients_list"]]

    def add_patient(self, patient: Patient) -> None:
        def _apply(state: Dict[str, Any]) -> None:
            if any(p.get("id") == patient.id for p in state["patients_list"]):
                raise ValueError(f"Patient already exists: {patient.id}")
            state["patients_list"].append(_to_json(patient))

        self._commit(_apply)
        self._notify(StoreChange(patient_id=None, field="patients_list"))

    def remove_patient(self, patient_id: str) -> None:
        def _apply(state: Dict[str, Any]) -> None:
            state["patients_list"] = [p for p in state["patients_list"] if p.get("id") != patient_id]
            state["patients"].pop(patient_id, None)

        self._commit(_apply)
        self._notify(StoreChange(patient_id=patient_id, field="removed"))

    def find_patient(self, patient_id: str) -> Optional[Patient]:
        with self._lock:
            for p in self._state["patients_list"]:
                if p.get("id") == patient_id:
                    return Patient.model_validate(p)
        return None

    # Per-patient data

    def set_patient_item(self, patient_id: str, key: PatientField, value: Any) -> None:
        encoded = _to_json(value)

        def _apply(state: Dict[str, Any]) -> None:
            state["patients"].setdefault(patient_id, {})[key] = encoded

        self._commit(_apply)
        self._notify(StoreChange(patient_id=patient_id, field=key))

    def set_transcription_item(
        self,
        patient_id: str,
        transcription_id: str,
        key: TranscriptionField,
        value: Any,
    ) -> None:
        encoded = _to_json(value)

        def _apply(state: Dict[str, Any]) -> None:
            record = state["patients"].setdefault(patient_id, {})
            transcriptions = record.get("transcriptions")
            if not isinstance(transcriptions, dict):
                transcriptions = {}
                record["transcriptions"] = transcriptions
            session = transcriptions.setdefault(transcription_id, {})
            if key == "created_at" and session.get("created_at"):
                raise ValueError(
                    f"created_at is immutable for transcription {transcription_id}"
                )
            session[key] = encoded

        self._commit(_apply)
        self._notify(
            StoreChange(patient_id=patient_id, field=key, transcription_id=transcription_id)
        )

    def get_patient(self, patient_id: str) -> Optional[PatientRecord]:
        with self._lock:
            raw = self._state["patients"].get(patient_id)
            if raw is None:
                return None
            return PatientRecord.model_validate(copy.deepcopy(raw))

    def get_transcription(
        self, patient_id: str, transcription_id: str
    ) -> Optional[TranscriptionSession]:
        with self._lock:
            raw = self._state["patients"].get(patient_id) or {}
            session = (raw.get("transcriptions") or {}).get(transcription_id)
            if session is None:
                return None
            return TranscriptionSession.model_validate(copy.deepcopy(session))
