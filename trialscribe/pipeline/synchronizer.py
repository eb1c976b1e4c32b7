from __future__ import annotations

"""
Cross-instance reconciliation of orchestrator state with the session store.

Design intent:
- `reconcile` is a pure function of (local view, stored record); it never touches the store.
- `StateSynchronizer` applies the result to its orchestrator first and only
  then writes any session container the reconciliation asked for.
"""

import datetime as _dt
import logging
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Callable, Optional

from trialscribe.internal_core.contracts import KeyMoment, PatientRecord, TranscriptionSession
from trialscribe.internal_core.session_store import (
    SessionStateStore,
    StoreChange,
    generate_transcription_id,
    now_iso as _now_iso,
)

if TYPE_CHECKING:
    from trialscribe.pipeline.orchestrator import PipelineOrchestrator

logger = logging.getLogger(__name__)

_EPOCH = _dt.datetime.min.replace(tzinfo=_dt.timezone.utc)


@dataclass(frozen=True)
class LocalView:
    formatted_transcript: str = ""
    captured_text: str = ""
    key_moments: list[KeyMoment] = field(default_factory=list)
    method: str = "none"
    current_session_id: Optional[str] = None


@dataclass(frozen=True)
class Reconciliation:
    formatted_transcript: str
    captured_text: str
    key_moments: list[KeyMoment]
    method: str
    current_session_id: Optional[str]
    materialize_session: Optional[str] = None
    materialize_created_at: Optional[str] = None

    def changed_from(self, local: LocalView) -> bool:
        return (
            self.formatted_transcript != local.formatted_transcript
            or self.captured_text != local.captured_text
            or self.key_moments != local.key_moments
            or self.method != local.method
            or self.current_session_id != local.current_session_id
        )


def created_at_key(created_at: Optional[str]) -> _dt.datetime:
    if not created_at:
        return _EPOCH
    try:
        parsed = _dt.datetime.fromisoformat(created_at.replace("Z", "+00:00"))
    except ValueError:
        return _EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=_dt.timezone.utc)
    return parsed


def latest_session_id(transcriptions: dict[str, TranscriptionSession]) -> Optional[str]:
    """Most recently created session; the id (timestamp plus random suffix) breaks ties."""
    if not transcriptions:
        return None
    return max(
        transcriptions.items(),
        key=lambda item: (created_at_key(item[1].created_at), item[0]),
    )[0]


def reconcile(
    local: LocalView,
    remote: Optional[PatientRecord],
    *,
    new_session_id: str,
    now_iso: str,
) -> Reconciliation:
    result = Reconciliation(
        formatted_transcript=local.formatted_transcript,
        captured_text=local.captured_text,
        key_moments=list(local.key_moments),
        method=local.method,
        current_session_id=local.current_session_id,
    )
    if remote is None:
        return result

    if remote.formatted_transcript is not None and remote.formatted_transcript != local.formatted_transcript:
        result = replace(result, formatted_transcript=remote.formatted_transcript)
    if remote.transcript is not None and remote.transcript != local.captured_text:
        result = replace(result, captured_text=remote.transcript)
    if remote.key_moments is not None and remote.key_moments != local.key_moments:
        result = replace(result, key_moments=list(remote.key_moments))

    has_legacy = bool(remote.formatted_transcript or remote.transcript)
    if has_legacy and result.method == "none":
        result = replace(result, method="on_device")

    if result.current_session_id:
        return result
    latest = latest_session_id(remote.transcriptions)
    if latest is not None:
        return replace(result, current_session_id=latest)
    if has_legacy:
        return replace(
            result,
            current_session_id=new_session_id,
            materialize_session=new_session_id,
            materialize_created_at=now_iso,
        )
    return result


class StateSynchronizer:
    """Keeps one orchestrator converged with the store slice for its patient."""

    def __init__(
        self,
        orchestrator: "PipelineOrchestrator",
        store: SessionStateStore,
        *,
        id_factory: Callable[[], str] = generate_transcription_id,
        clock: Callable[[], str] = _now_iso,
    ):
        self.orchestrator = orchestrator
        self.store = store
        self._id_factory = id_factory
        self._clock = clock
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def attached(self) -> bool:
        return self._unsubscribe is not None

    def attach(self) -> None:
        if self._unsubscribe is not None:
            return
        self._unsubscribe = self.store.subscribe(self.orchestrator.patient_id, self._on_change)
        self.sync()

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_change(self, change: StoreChange) -> None:
        if change.field == "removed":
            return
        self.sync()

    def sync(self) -> Reconciliation:
        patient_id = self.orchestrator.patient_id
        local = self.orchestrator.local_view()
        rec = reconcile(
            local,
            self.store.get_patient(patient_id),
            new_session_id=self._id_factory(),
            now_iso=self._clock(),
        )
        if rec.changed_from(local):
            self.orchestrator.apply_reconciliation(rec)
        if rec.materialize_session:
            logger.info(
                "materializing session for stored transcript patient_id=%s transcription_id=%s",
                patient_id,
                rec.materialize_session,
            )
            self.store.set_transcription_item(
                patient_id, rec.materialize_session, "created_at", rec.materialize_created_at
            )
        return rec
