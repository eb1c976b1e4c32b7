import base64
from dataclasses import replace

import numpy as np
from fastapi.testclient import TestClient

from trialscribe.api.main import CFG, app
from trialscribe.extraction.engines import ExtractionEngines
from trialscribe.extraction.llm_adapter import LLMAdapterError, LLMQuotaError
from trialscribe.internal_core.asr import MockASRProvider
from trialscribe.internal_core.audio_utils import pcm16_to_wav_bytes
from trialscribe.internal_core.samples import SAMPLE_BREAST_CANCER_FOLLOWUP
from trialscribe.trials.registry import RegistryUpstreamError, canned_fallback_response

_INJECTED = ("config", "engines", "asr_provider", "registry")


def _clear_injected_state() -> None:
    for name in _INJECTED:
        if hasattr(app.state, name):
            delattr(app.state, name)


def _tone_wav_b64(seconds: float = 1.0, silent: bool = False) -> str:
    t = np.arange(int(16000 * seconds), dtype=np.float32) / 16000.0
    amplitude = 0.0 if silent else 0.3
    pcm = (amplitude * np.sin(2 * np.pi * 440.0 * t) * 32767).astype("<i2").tobytes()
    return base64.b64encode(pcm16_to_wav_bytes(pcm, 16000)).decode("ascii")


class StubEngines:
    last_engine_used = "stub"

    def __init__(self, error: Exception = None, moments=None) -> None:
        self.error = error
        self.moments = moments

    def format_turns(self, transcript: str):
        if self.error is not None:
            raise self.error
        return []

    def extract_profile(self, transcript: str):
        raise self.error

    def extract_moments(self, transcript: str):
        if self.error is not None:
            raise self.error
        return self.moments


class StubRegistry:
    def __init__(self, error: Exception = None) -> None:
        self.error = error
        self.calls: list[tuple] = []

    def search(self, profile, nct_ids=None, max_results=10):
        self.calls.append((profile, nct_ids, max_results))
        if self.error is not None:
            raise self.error
        return canned_fallback_response()


def test_healthz() -> None:
    client = TestClient(app)
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_transcribe_returns_provider_text_and_duration(tmp_path) -> None:
    app.state.config = replace(CFG, SCRIBE_TMP_DIR=str(tmp_path))
    app.state.asr_provider = MockASRProvider("Doctor: Hello. Patient: Hi.")
    client = TestClient(app)
    try:
        response = client.post("/api/transcribe", json={"audioBase64": _tone_wav_b64(), "mimeType": "audio/wav"})
    finally:
        _clear_injected_state()

    assert response.status_code == 200
    body = response.json()
    assert body["transcript"] == "Doctor: Hello. Patient: Hi."
    assert body["durationInSeconds"] == 1.0
    assert list(tmp_path.iterdir()) == []


def test_transcribe_silent_audio_returns_empty_transcript(tmp_path) -> None:
    app.state.config = replace(CFG, SCRIBE_TMP_DIR=str(tmp_path))
    app.state.asr_provider = MockASRProvider("should not be used")
    client = TestClient(app)
    try:
        response = client.post("/api/transcribe", json={"audioBase64": _tone_wav_b64(silent=True), "mimeType": "audio/wav"})
    finally:
        _clear_injected_state()

    assert response.status_code == 200
    assert response.json()["transcript"] == ""


def test_transcribe_rejects_invalid_and_empty_payloads() -> None:
    client = TestClient(app)
    bad = client.post("/api/transcribe", json={"audioBase64": "%%% not base64 %%%"})
    assert bad.status_code == 400
    assert "Invalid base64" in bad.json()["detail"]

    empty = client.post("/api/transcribe", json={})
    assert empty.status_code == 400


def test_format_transcript_with_rule_engine() -> None:
    app.state.engines = ExtractionEngines(CFG, mode="rule")
    client = TestClient(app)
    try:
        response = client.post("/api/format-transcript", json={"transcript": "Doctor: Hello. Patient: Hi doc."})
    finally:
        _clear_injected_state()

    assert response.status_code == 200
    body = response.json()
    assert [t["speaker"] for t in body["turns"]] == ["Doctor", "Patient"]
    assert body["formatted"] == "Doctor: Hello.\nPatient: Hi doc."


def test_format_transcript_empty_input_skips_engines() -> None:
    app.state.engines = StubEngines(error=LLMAdapterError("must not run"))
    client = TestClient(app)
    try:
        response = client.post("/api/format-transcript", json={"transcript": "   "})
    finally:
        _clear_injected_state()
    assert response.status_code == 200
    assert response.json() == {"turns": [], "formatted": ""}


def test_format_transcript_quota_maps_to_429() -> None:
    app.state.engines = StubEngines(error=LLMQuotaError("token budget exceeded"))
    client = TestClient(app)
    try:
        response = client.post("/api/format-transcript", json={"transcript": SAMPLE_BREAST_CANCER_FOLLOWUP})
    finally:
        _clear_injected_state()

    assert response.status_code == 429
    assert response.json() == {"error": "token budget exceeded", "code": "QUOTA_EXCEEDED"}


def test_extract_returns_profile_and_confidence() -> None:
    app.state.engines = ExtractionEngines(CFG, mode="rule")
    client = TestClient(app)
    try:
        response = client.post("/api/extract", json={"transcript": SAMPLE_BREAST_CANCER_FOLLOWUP})
    finally:
        _clear_injected_state()

    assert response.status_code == 200
    body = response.json()
    assert body["patientProfile"]["diagnosis"] == "breast cancer"
    assert body["patientProfile"]["location"]["city"] == "Tampa"
    assert 0.0 < body["confidence"] <= 1.0


def test_extract_rejects_short_transcript() -> None:
    client = TestClient(app)
    response = client.post("/api/extract", json={"transcript": "hi"})
    assert response.status_code == 422


def test_extract_engine_failure_maps_to_500() -> None:
    app.state.engines = StubEngines(error=LLMAdapterError("model offline"))
    client = TestClient(app)
    try:
        response = client.post("/api/extract", json={"transcript": SAMPLE_BREAST_CANCER_FOLLOWUP})
    finally:
        _clear_injected_state()
    assert response.status_code == 500
    assert "model offline" in response.json()["error"]


def test_key_moments_derive_times_from_duration() -> None:
    transcript = "x" * 600 + "chest pressure" + "y" * 586
    app.state.engines = StubEngines(moments={"desc": "Chest pressure", "quote": "chest pressure"})
    client = TestClient(app)
    try:
        response = client.post("/api/key-moments", json={"transcript": transcript, "durationSec": 120})
    finally:
        _clear_injected_state()

    assert response.status_code == 200
    moments = response.json()["moments"]
    assert moments == [
        {"desc": "Chest pressure", "quote": "chest pressure", "time": "01:00", "searchText": "chest pressure"}
    ]


def test_key_moments_bad_shape_returns_placeholder() -> None:
    app.state.engines = StubEngines(moments=42)
    client = TestClient(app)
    try:
        response = client.post("/api/key-moments", json={"transcript": SAMPLE_BREAST_CANCER_FOLLOWUP})
    finally:
        _clear_injected_state()

    assert response.status_code == 200
    moments = response.json()["moments"]
    assert len(moments) == 1
    assert moments[0]["desc"].startswith("Key moments unavailable")


def test_trials_success_passes_request_through() -> None:
    registry = StubRegistry()
    app.state.registry = registry
    client = TestClient(app)
    try:
        response = client.post(
            "/api/trials",
            json={"patientProfile": {"diagnosis": "asthma"}, "maxResults": 3, "nctIds": ["NCT12345678"]},
        )
    finally:
        _clear_injected_state()

    assert response.status_code == 200
    assert response.json()["totalCount"] == 2
    profile, nct_ids, max_results = registry.calls[0]
    assert profile.diagnosis == "asthma"
    assert nct_ids == ["NCT12345678"]
    assert max_results == 3


def test_trials_upstream_failure_returns_502() -> None:
    app.state.config = replace(CFG, SCRIBE_TRIALS_FALLBACK_ON_ERROR=False)
    app.state.registry = StubRegistry(error=RegistryUpstreamError(503, "maintenance"))
    client = TestClient(app)
    try:
        response = client.post("/api/trials", json={"patientProfile": {"diagnosis": "asthma"}})
    finally:
        _clear_injected_state()

    assert response.status_code == 502
    assert response.json() == {
        "error": "Failed to fetch clinical trials",
        "code": "UPSTREAM_ERROR",
        "upstreamStatus": 503,
        "body": "maintenance",
    }


def test_trials_upstream_failure_serves_fallback_when_enabled() -> None:
    app.state.config = replace(CFG, SCRIBE_TRIALS_FALLBACK_ON_ERROR=True)
    app.state.registry = StubRegistry(error=RegistryUpstreamError(None, "refused"))
    client = TestClient(app)
    try:
        response = client.post("/api/trials", json={"patientProfile": {"diagnosis": "asthma"}})
    finally:
        _clear_injected_state()

    assert response.status_code == 200
    assert [t["nctId"] for t in response.json()["trials"]] == ["NCT12345678", "NCT87654321"]
