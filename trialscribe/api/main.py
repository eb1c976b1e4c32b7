from __future__ import annotations

"""
Service API for TrialScribe.

Design intent:
- Keep route handlers thin; engines, ASR provider and registry are resolved
  from `app.state` so tests can inject fakes.
- Map domain failures to explicit JSON error payloads instead of bare 500s.
- Never log transcript text, only sizes and ids.
"""

import asyncio
import logging
import wave
from pathlib import Path
from typing import Any, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from trialscribe.asr.formatting import format_turns
from trialscribe.extraction.engines import ExtractionEngines, build_engines
from trialscribe.extraction.llm_adapter import LLMAdapterError, LLMQuotaError
from trialscribe.extraction.moments import apply_derived_times, placeholder_moment
from trialscribe.internal_core.asr import (
    ASRError,
    ASRProvider,
    MockASRProvider,
    WhisperCppProvider,
    whisper_cpp_available,
)
from trialscribe.internal_core.audio_utils import (
    decode_audio_base64,
    guess_audio_suffix,
    load_wav_info,
    normalize_to_wav16k_mono,
    pcm16_rms,
    write_temp_audio,
)
from trialscribe.internal_core.config import ScribeConfig, load_config
from trialscribe.internal_core.contracts import (
    ExtractRequest,
    ExtractResponse,
    FormatTranscriptRequest,
    FormatTranscriptResponse,
    KeyMomentsRequest,
    KeyMomentsResponse,
    TranscribeRequest,
    TranscribeResponse,
    TrialsRequest,
    TrialsResponse,
    profile_confidence,
)
from trialscribe.internal_core.logging_setup import configure_logging
from trialscribe.pipeline.adapters import MomentShapeError, coerce_moments
from trialscribe.trials.registry import (
    ClinicalTrialsRegistry,
    RegistryUpstreamError,
    canned_fallback_response,
)

REPO_ROOT = Path(__file__).resolve().parents[2]
SILENCE_RMS = 1e-4

CFG = load_config()
configure_logging(CFG)

app = FastAPI(title="trialscribe service")
logger = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _get_config() -> ScribeConfig:
    configured = getattr(app.state, "config", None)
    return configured if isinstance(configured, ScribeConfig) else CFG


def _get_engines() -> ExtractionEngines:
    existing = getattr(app.state, "engines", None)
    if existing is not None:
        return existing
    created = build_engines(_get_config())
    setattr(app.state, "engines", created)
    return created


def _default_asr_provider(cfg: ScribeConfig) -> ASRProvider:
    provider = (cfg.SCRIBE_ASR_PROVIDER or "mock").strip().lower()
    if provider == "mock":
        return MockASRProvider()
    if provider == "whisper_cpp":
        ok, reason = whisper_cpp_available(cfg.SCRIBE_WHISPER_CPP_BIN, cfg.SCRIBE_WHISPER_CPP_MODEL)
        if not ok:
            raise ASRError("WHISPER_NOT_CONFIGURED", reason, "whisper_cpp")
        return WhisperCppProvider(
            bin_path=cfg.SCRIBE_WHISPER_CPP_BIN,
            model_path=cfg.SCRIBE_WHISPER_CPP_MODEL,
            no_gpu=cfg.SCRIBE_WHISPER_CPP_NO_GPU,
        )
    raise ASRError("UNSUPPORTED_PROVIDER", f"Unsupported ASR provider: {provider}", provider)


def _get_asr_provider() -> ASRProvider:
    existing = getattr(app.state, "asr_provider", None)
    if existing is not None:
        return existing
    created = _default_asr_provider(_get_config())
    setattr(app.state, "asr_provider", created)
    return created


def _get_registry() -> ClinicalTrialsRegistry:
    existing = getattr(app.state, "registry", None)
    if existing is not None:
        return existing
    cfg = _get_config()
    created = ClinicalTrialsRegistry(
        api_url=cfg.SCRIBE_TRIALS_API_URL,
        timeout_sec=cfg.SCRIBE_TRIALS_TIMEOUT_SEC,
        user_agent=cfg.SCRIBE_TRIALS_USER_AGENT,
    )
    setattr(app.state, "registry", created)
    return created


def _error(status_code: int, message: str, code: Optional[str] = None, **extra: Any) -> JSONResponse:
    content: dict[str, Any] = {"error": message}
    if code:
        content["code"] = code
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)


def _is_silent(wav_path: Path) -> bool:
    with wave.open(str(wav_path), "rb") as wf:
        if wf.getsampwidth() != 2:
            return False
        frames = wf.readframes(wf.getnframes())
    return pcm16_rms(frames) < SILENCE_RMS


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


def _transcribe_sync(payload: TranscribeRequest) -> TranscribeResponse:
    cfg = _get_config()
    audio = decode_audio_base64(payload.audio_base64, cfg.SCRIBE_MAX_AUDIO_BYTES)
    tmp_dir = cfg.tmp_dir_path(REPO_ROOT)
    src_path = write_temp_audio(audio, tmp_dir, guess_audio_suffix(payload.mime_type))
    wav_path: Optional[Path] = None
    try:
        wav_path = normalize_to_wav16k_mono(src_path, tmp_dir)
        duration, _, _ = load_wav_info(wav_path)
        if _is_silent(wav_path):
            logger.info("transcribe skipped silent audio duration=%.1fs", duration)
            return TranscribeResponse(transcript="", language="en", duration_in_seconds=duration)
        provider = _get_asr_provider()
        transcript = provider.transcribe_file(str(wav_path), language="en")
        logger.info(
            "transcribed audio provider=%s bytes=%d duration=%.1fs chars=%d",
            provider.name(),
            len(audio),
            duration,
            len(transcript),
        )
        return TranscribeResponse(transcript=transcript, language="en", duration_in_seconds=duration)
    finally:
        src_path.unlink(missing_ok=True)
        if wav_path is not None and wav_path != src_path:
            wav_path.unlink(missing_ok=True)


@app.post("/api/transcribe", response_model=TranscribeResponse, response_model_exclude_none=True)
async def transcribe(payload: TranscribeRequest) -> Any:
    loop = asyncio.get_running_loop()
    try:
        return await loop.run_in_executor(None, _transcribe_sync, payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ASRError as exc:
        logger.error("transcription failed provider=%s code=%s", exc.provider_name, exc.code)
        return _error(500, exc.message, exc.code)


@app.post("/api/format-transcript", response_model=FormatTranscriptResponse)
async def format_transcript(payload: FormatTranscriptRequest) -> Any:
    if not payload.transcript.strip():
        return FormatTranscriptResponse(turns=[], formatted="")
    engines = _get_engines()
    loop = asyncio.get_running_loop()
    try:
        turns = await loop.run_in_executor(None, engines.format_turns, payload.transcript)
    except LLMQuotaError as exc:
        logger.warning("format quota exceeded chars=%d", len(payload.transcript))
        return _error(429, str(exc), exc.code)
    except LLMAdapterError as exc:
        logger.error("format failed: %s", exc)
        return _error(500, f"Failed to format transcript: {exc}", exc.code)
    logger.info("formatted transcript turns=%d engine=%s", len(turns), engines.last_engine_used)
    return FormatTranscriptResponse(turns=turns, formatted=format_turns(turns))


@app.post("/api/extract", response_model=ExtractResponse)
async def extract(payload: ExtractRequest) -> Any:
    engines = _get_engines()
    loop = asyncio.get_running_loop()
    try:
        profile = await loop.run_in_executor(None, engines.extract_profile, payload.transcript)
    except LLMQuotaError as exc:
        return _error(429, str(exc), exc.code)
    except LLMAdapterError as exc:
        logger.error("extract failed: %s", exc)
        return _error(500, f"Failed to extract patient data: {exc}", exc.code)
    confidence = profile_confidence(profile)
    logger.info("extracted profile confidence=%.2f engine=%s", confidence, engines.last_engine_used)
    return ExtractResponse(patient_profile=profile, confidence=confidence)


@app.post("/api/key-moments", response_model=KeyMomentsResponse)
async def key_moments(payload: KeyMomentsRequest) -> Any:
    engines = _get_engines()
    loop = asyncio.get_running_loop()
    try:
        raw = await loop.run_in_executor(None, engines.extract_moments, payload.transcript)
    except LLMQuotaError as exc:
        return _error(429, str(exc), exc.code)
    except LLMAdapterError as exc:
        logger.error("key moments failed: %s", exc)
        return _error(500, f"Failed to generate key moments: {exc}", exc.code)

    try:
        moments = coerce_moments(raw)
    except MomentShapeError as exc:
        logger.warning("key moments schema violation, returning placeholder: %s", exc)
        moments = [placeholder_moment()]
    moments = apply_derived_times(moments, payload.transcript, payload.duration_sec)
    return KeyMomentsResponse(moments=moments)


@app.post("/api/trials", response_model=TrialsResponse)
async def trials(payload: TrialsRequest) -> Any:
    registry = _get_registry()
    loop = asyncio.get_running_loop()
    try:
        return await loop.run_in_executor(
            None,
            registry.search,
            payload.patient_profile,
            payload.nct_ids,
            payload.max_results,
        )
    except RegistryUpstreamError as exc:
        if _get_config().SCRIBE_TRIALS_FALLBACK_ON_ERROR:
            logger.warning("registry failed status=%s, serving fallback trials", exc.status_code)
            return canned_fallback_response()
        return _error(
            502,
            "Failed to fetch clinical trials",
            exc.code,
            upstreamStatus=exc.status_code,
            body=exc.body,
        )
