from __future__ import annotations

"""
Per-view pipeline driver: transcript in, formatted transcript, profile and key moments out.

Design intent:
- Stages run strictly in order (format, extract, key moments); trials are a
  separate user-triggered stage.
- Stage failures become one `error` string; nothing raises out of `process()`.
- Local state is updated before the store write, so store notifications never
  roll a view back to an older value.
- A per-patient generation captured at the start of a run discards results
  that land after `reset()`.
"""

import asyncio
import logging
from typing import Any, Callable, Optional, Sequence

from trialscribe.asr.formatting import DisplayTurn, format_turns, transcript_turns
from trialscribe.asr.recorder import (
    OnDeviceRecorder,
    RecordingMethod,
    RecordingMethodSelector,
    ServerRecorder,
    TranscriptionFailed,
)
from trialscribe.extraction.moments import apply_derived_times, derive_moment_time, placeholder_moment
from trialscribe.internal_core.config import ScribeConfig
from trialscribe.internal_core.contracts import (
    KeyMoment,
    PatientProfile,
    TrialsResponse,
    profile_confidence,
)
from trialscribe.internal_core.session_store import (
    SessionStateStore,
    generate_transcription_id,
    now_iso,
)
from trialscribe.pipeline.client import RetryPolicy, TranscriptServices
from trialscribe.pipeline.mutations import (
    STAGE_EXTRACT,
    STAGE_FORMAT,
    STAGE_KEY_MOMENTS,
    STAGE_TRANSCRIBE,
    STAGE_TRIALS,
    MutationRegistry,
    default_registry,
)
from trialscribe.pipeline.synchronizer import LocalView, Reconciliation
from trialscribe.trials.query_builder import DEFAULT_MAX_RESULTS
from trialscribe.trials.registry import (
    ClinicalTrialsRegistry,
    RegistryUpstreamError,
    canned_fallback_response,
)

logger = logging.getLogger(__name__)

__all__ = ["PipelineOrchestrator", "derive_moment_time"]

BUSY_LABELS = {
    STAGE_TRANSCRIBE: "transcribing",
    STAGE_FORMAT: "formatting",
    STAGE_EXTRACT: "extracting",
    STAGE_KEY_MOMENTS: "generating moments",
    STAGE_TRIALS: "fetching trials",
}


class PipelineOrchestrator:
    def __init__(
        self,
        patient_id: str,
        store: SessionStateStore,
        services: TranscriptServices,
        registry: ClinicalTrialsRegistry,
        config: ScribeConfig,
        *,
        mutations: Optional[MutationRegistry] = None,
        selector: Optional[RecordingMethodSelector] = None,
        trials_retry: Optional[RetryPolicy] = None,
        id_factory: Callable[[], str] = generate_transcription_id,
    ):
        self.patient_id = patient_id
        self.store = store
        self.services = services
        self.registry = registry
        self.config = config
        self.mutations = mutations or default_registry()
        self.selector = selector or RecordingMethodSelector(
            ServerRecorder(self._transcribe_audio),
            OnDeviceRecorder(config.SCRIBE_ONDEVICE_RECOGNIZER),
        )
        self.trials_retry = trials_retry or RetryPolicy(max_attempts=config.SCRIBE_RETRY_MAX_ATTEMPTS)
        self._id_factory = id_factory

        self.captured_text = ""
        self.formatted_transcript = ""
        self.key_moments: list[KeyMoment] = []
        self.current_session_id: Optional[str] = None
        self.method: RecordingMethod = "none"
        self.needs_processing = False
        self.highlight_text = ""
        self.error: Optional[str] = None
        self.too_short = False
        self.duration_sec: Optional[float] = None

    # Busy flags, shared across every orchestrator bound to the same registry

    @property
    def is_transcribing(self) -> bool:
        return self.mutations.is_in_flight(STAGE_TRANSCRIBE, self.patient_id)

    @property
    def is_formatting(self) -> bool:
        return self.mutations.is_in_flight(STAGE_FORMAT, self.patient_id)

    @property
    def is_extracting(self) -> bool:
        return self.mutations.is_in_flight(STAGE_EXTRACT, self.patient_id)

    @property
    def is_generating_moments(self) -> bool:
        return self.mutations.is_in_flight(STAGE_KEY_MOMENTS, self.patient_id)

    @property
    def is_fetching_trials(self) -> bool:
        return self.mutations.is_in_flight(STAGE_TRIALS, self.patient_id)

    @property
    def is_busy(self) -> bool:
        return bool(self.mutations.in_flight_stages(self.patient_id))

    def busy_labels(self) -> list[str]:
        return [BUSY_LABELS.get(stage, stage) for stage in self.mutations.in_flight_stages(self.patient_id)]

    @property
    def is_recording(self) -> bool:
        return self.selector.is_capturing

    # Sessions and store writes

    def start_session(self) -> str:
        transcription_id = self._id_factory()
        self.current_session_id = transcription_id
        self.store.set_transcription_item(self.patient_id, transcription_id, "created_at", now_iso())
        logger.info("session started patient_id=%s transcription_id=%s", self.patient_id, transcription_id)
        return transcription_id

    def _write(self, field: str, value: Any, *, session_scoped: bool = True) -> None:
        self.store.set_patient_item(self.patient_id, field, value)  # type: ignore[arg-type]
        if session_scoped and self.current_session_id:
            self.store.set_transcription_item(
                self.patient_id, self.current_session_id, field, value  # type: ignore[arg-type]
            )

    def _is_stale(self, generation: int, stage: str) -> bool:
        if self.mutations.generation(self.patient_id) == generation:
            return False
        logger.info("discarding stale %s result patient_id=%s", stage, self.patient_id)
        return True

    # Triggers

    def _check_length(self, text: str) -> bool:
        minimum = self.config.SCRIBE_MIN_TRANSCRIPT_CHARS
        if len(text.strip()) >= minimum:
            self.too_short = False
            return True
        self.too_short = True
        self.error = f"Transcript is too short to process (minimum {minimum} characters)."
        logger.info("transcript held as too short patient_id=%s chars=%d", self.patient_id, len(text.strip()))
        return False

    async def submit_transcript(self, text: str, duration_sec: Optional[float] = None) -> bool:
        """Accept a new raw transcript (capture result or pasted text) and process it."""
        text = text or ""
        self.captured_text = text
        self.duration_sec = duration_sec
        self.needs_processing = True
        if not self._check_length(text):
            return False

        # Session first, so other views adopt it instead of materializing their own.
        self.start_session()
        self.store.set_patient_item(self.patient_id, "transcript", text)
        self.store.set_transcription_item(self.patient_id, self.current_session_id, "transcript", text)
        return await self.process()

    async def load_sample_transcript(self, text: str) -> bool:
        self.reset()
        return await self.submit_transcript(text)

    async def record(self) -> RecordingMethod:
        loop = asyncio.get_running_loop()
        method = await loop.run_in_executor(None, self.selector.start)
        self.method = method
        if method == "none":
            self.error = self.selector.last_error
        else:
            self.error = None
        return method

    async def stop_recording(self) -> bool:
        try:
            transcript = await self.selector.stop()
        except TranscriptionFailed as exc:
            self.error = exc.message
            logger.error("transcription failed patient_id=%s code=%s", self.patient_id, exc.code)
            return False
        if transcript is None:
            return False
        return await self.submit_transcript(transcript, self.selector.last_duration_sec)

    async def _transcribe_audio(self, audio_base64: str, mime_type: str) -> tuple[str, Optional[float]]:
        result = await self.mutations.run(
            STAGE_TRANSCRIBE,
            self.patient_id,
            lambda: self.services.transcribe(audio_base64, mime_type),
            args=(audio_base64, mime_type),
        )
        if not result.ok or result.payload is None:
            raise TranscriptionFailed(result.code or "TRANSCRIPTION_FAILED", result.message or "Transcription failed.")
        return result.payload.transcript, result.payload.duration_in_seconds

    # Pipeline

    async def process(self) -> bool:
        text = self.captured_text
        if not self._check_length(text):
            return False
        self.error = None
        generation = self.mutations.generation(self.patient_id)
        try:
            return await self._run_stages(text, generation)
        finally:
            if not self._is_stale(generation, "pipeline"):
                self.needs_processing = False

    async def _run_stages(self, text: str, generation: int) -> bool:
        pid = self.patient_id

        # 1. Format
        formatted_result = await self.mutations.run(
            STAGE_FORMAT,
            pid,
            lambda: self.services.format_transcript(text),
            generation=generation,
            args=text,
        )
        if self._is_stale(generation, STAGE_FORMAT):
            return False
        if formatted_result.ok and formatted_result.payload is not None:
            payload = formatted_result.payload
            formatted = payload.formatted or format_turns(payload.turns)
        elif formatted_result.is_quota:
            logger.warning("format quota exceeded, using raw transcript patient_id=%s", pid)
            formatted = text
        else:
            self.error = formatted_result.message or "Failed to format transcript."
            logger.error("format stage failed patient_id=%s status=%s", pid, formatted_result.status_code)
            return False
        self.formatted_transcript = formatted
        self._write("formatted_transcript", formatted)

        # 2. Extract profile from the raw transcript
        extract_result = await self.mutations.run(
            STAGE_EXTRACT,
            pid,
            lambda: self.services.extract(text),
            generation=generation,
            args=text,
        )
        if self._is_stale(generation, STAGE_EXTRACT):
            return False
        if not extract_result.ok or extract_result.payload is None:
            self.error = extract_result.message or "Failed to extract patient data."
            logger.error("extract stage failed patient_id=%s status=%s", pid, extract_result.status_code)
            return False
        profile = extract_result.payload.patient_profile
        self._write("profile", profile, session_scoped=False)
        self._write("confidence", profile_confidence(profile), session_scoped=False)

        # 3. Key moments
        duration = self.duration_sec
        moments_result = await self.mutations.run(
            STAGE_KEY_MOMENTS,
            pid,
            lambda: self.services.key_moments(text, duration),
            generation=generation,
            args=(text, duration),
        )
        if self._is_stale(generation, STAGE_KEY_MOMENTS):
            return False
        if moments_result.ok and moments_result.payload is not None:
            moments = apply_derived_times(moments_result.payload, text, duration)
        else:
            logger.warning(
                "key moments unavailable, using placeholder patient_id=%s status=%s",
                pid,
                moments_result.status_code,
            )
            moments = [placeholder_moment()]
        self.key_moments = moments
        self._write("key_moments", moments)
        logger.info("pipeline complete patient_id=%s moments=%d", pid, len(moments))
        return True

    async def fetch_trials(
        self,
        profile: Optional[PatientProfile] = None,
        nct_ids: Optional[Sequence[str]] = None,
        max_results: int = DEFAULT_MAX_RESULTS,
    ) -> Optional[TrialsResponse]:
        if profile is None:
            record = self.store.get_patient(self.patient_id)
            profile = record.profile if record is not None else None
        if profile is None:
            self.error = "No patient profile available; process a transcript first."
            return None

        generation = self.mutations.generation(self.patient_id)
        try:
            response = await self.mutations.run(
                STAGE_TRIALS,
                self.patient_id,
                lambda: self._search_with_retry(profile, nct_ids, max_results),
                generation=generation,
                args=(profile.model_dump_json(), tuple(nct_ids or ()), max_results),
            )
        except RegistryUpstreamError as exc:
            if not self.config.SCRIBE_TRIALS_FALLBACK_ON_ERROR:
                self.error = f"Trial search failed: {exc.message}"
                logger.error("trial search failed patient_id=%s status=%s", self.patient_id, exc.status_code)
                return None
            logger.warning("trial search failed, using fallback set patient_id=%s", self.patient_id)
            response = canned_fallback_response()

        if self._is_stale(generation, STAGE_TRIALS):
            return None
        if not self.current_session_id:
            self.start_session()
        self._write("trials", response)
        self.error = None
        return response

    async def _search_with_retry(
        self,
        profile: PatientProfile,
        nct_ids: Optional[Sequence[str]],
        max_results: int,
    ) -> TrialsResponse:
        loop = asyncio.get_running_loop()
        attempt = 0
        while True:
            attempt += 1
            try:
                return await loop.run_in_executor(
                    None, self.registry.search, profile, nct_ids, max_results
                )
            except RegistryUpstreamError as exc:
                if not self.trials_retry.should_retry(attempt, exc.status_code):
                    raise
                delay = self.trials_retry.delay_sec(attempt)
                logger.warning("retrying trial search attempt=%d status=%s", attempt, exc.status_code)
                if delay > 0:
                    await asyncio.sleep(delay)

    def reset(self) -> None:
        """Clear stored and local transcript fields and invalidate in-flight results."""
        self.mutations.bump_generation(self.patient_id)
        session_id = self.current_session_id

        for field, empty in (("transcript", ""), ("formatted_transcript", ""), ("key_moments", [])):
            self.store.set_patient_item(self.patient_id, field, empty)  # type: ignore[arg-type]
            if session_id:
                self.store.set_transcription_item(self.patient_id, session_id, field, empty)  # type: ignore[arg-type]

        self.captured_text = ""
        self.formatted_transcript = ""
        self.key_moments = []
        self.highlight_text = ""
        self.current_session_id = None
        self.method = "none"
        self.needs_processing = False
        self.error = None
        self.too_short = False
        self.duration_sec = None

    # View helpers

    def select_moment(self, moment: KeyMoment) -> None:
        self.highlight_text = moment.search_text

    def clear_highlight(self) -> None:
        self.highlight_text = ""

    def turns(self) -> list[DisplayTurn]:
        settings = self.store.get_global()
        return transcript_turns(
            self.formatted_transcript or self.captured_text,
            settings.doctor_name,
            settings.name_visibility,
        )

    def local_view(self) -> LocalView:
        return LocalView(
            formatted_transcript=self.formatted_transcript,
            captured_text=self.captured_text,
            key_moments=list(self.key_moments),
            method=self.method,
            current_session_id=self.current_session_id,
        )

    def apply_reconciliation(self, rec: Reconciliation) -> None:
        self.formatted_transcript = rec.formatted_transcript
        self.captured_text = rec.captured_text
        self.key_moments = list(rec.key_moments)
        self.method = rec.method  # type: ignore[assignment]
        self.current_session_id = rec.current_session_id
