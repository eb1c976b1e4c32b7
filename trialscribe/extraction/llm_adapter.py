from __future__ import annotations

"""
Local GGUF model adapter for turn formatting, profile extraction and key moments.

Design intent:
- Reuse one llama-cpp model instance per model path across requests.
- Constrain output to JSON and validate it against the wire models.
- Fail closed on malformed output so the rule engine can take over.
"""

import json
import logging
import os
import threading
from typing import Any, Optional, Sequence

from pydantic import ValidationError

from trialscribe.internal_core.config import ScribeConfig
from trialscribe.internal_core.contracts import PatientProfile, Turn

logger = logging.getLogger(__name__)

_MODEL_CACHE: dict[str, Any] = {}
_MODEL_LOCK = threading.Lock()
_STOP_SEQUENCES = ["<end_of_turn>", "</s>"]


class LLMAdapterError(RuntimeError):
    """Raised when the local model is unavailable or returns an invalid payload."""

    code = "LLM_ERROR"


class LLMQuotaError(LLMAdapterError):
    """Raised when a request exceeds the model's token budget."""

    code = "QUOTA_EXCEEDED"


FORMAT_PROMPT = (
    "You are given a raw transcript of a single-channel medical visit with no speaker labels.\n"
    "Split it into chronological turns and label each turn as Doctor or Patient.\n"
    "Rules:\n"
    "- Never add medical facts that are not in the transcript.\n"
    "- Only assign a speaker when the context makes it clear (greetings, questions, answers).\n"
    "- Drop fillers and stutters when meaning is unchanged; lightly fix grammar.\n"
    'Respond with JSON only: {"turns": [{"speaker": "Doctor" or "Patient", "text": "..."}]}'
)

PROFILE_PROMPT = (
    "Read the doctor-patient conversation and extract the patient's details.\n"
    "Fields: age (integer), sex (male/female/other), diagnosis (primary or suspected condition), "
    "conditions (other conditions or comorbidities), symptoms, medications, allergies, "
    "location (city, state).\n"
    "Rules:\n"
    "- Only use information stated in the transcript; omit anything uncertain.\n"
    "- Prefer standard medical terms.\n"
    "- For an age range such as 'in her 60s' use the middle value (65).\n"
    'Respond with JSON only: {"age": ..., "sex": ..., "diagnosis": ..., "conditions": [], '
    '"symptoms": [], "medications": [], "allergies": [], "location": {"city": ..., "state": ...}}'
)

MOMENTS_PROMPT = (
    "Read the doctor-patient conversation and list 5 to 10 short key moments that matter "
    "for clinical assessment and planning.\n"
    "Each moment has:\n"
    "- desc: a brief description (a fragment is fine)\n"
    "- quote: a short excerpt copied exactly from the transcript (preferred)\n"
    "- time: an approximate MM:SS timestamp only if the transcript supports one; otherwise omit it\n"
    'Respond with JSON only: {"moments": [{"desc": "...", "quote": "...", "time": "MM:SS"}]}'
)


def _parse_json_object(raw: str) -> dict[str, Any] | None:
    if not raw:
        return None
    try:
        data = json.loads(raw)
        if isinstance(data, dict):
            return data
    except ValueError:
        pass

    extracted = _extract_first_json_object(raw)
    if not extracted:
        return None
    try:
        data = json.loads(extracted)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def _extract_first_json_object(text: str) -> str:
    start = text.find("{")
    if start < 0:
        return ""
    depth = 0
    in_str = False
    escape = False
    for i, ch in enumerate(text[start:], start=start):
        if in_str:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return ""


def _load_model(cfg: ScribeConfig) -> Any:
    model_path = (cfg.SCRIBE_LLAMA_CPP_MODEL or "").strip()
    if not model_path:
        raise LLMAdapterError(
            "Model path is missing. Set SCRIBE_LLAMA_CPP_MODEL or place scribe-extractor.gguf "
            "under the local model defaults."
        )
    if not os.path.exists(model_path):
        raise LLMAdapterError(f"Model file not found: {model_path}")

    with _MODEL_LOCK:
        cached = _MODEL_CACHE.get(model_path)
        if cached is not None:
            return cached

        try:
            from llama_cpp import Llama  # type: ignore
        except Exception as exc:
            raise LLMAdapterError(f"llama_cpp import failed: {exc}") from exc

        llm_kwargs: dict[str, Any] = {
            "model_path": model_path,
            "n_ctx": int(cfg.SCRIBE_LLAMA_CPP_N_CTX),
            "n_gpu_layers": int(cfg.SCRIBE_LLAMA_CPP_N_GPU_LAYERS),
            "verbose": False,
            "chat_format": cfg.SCRIBE_LLAMA_CPP_CHAT_FORMAT or "gemma",
        }
        try:
            llm = Llama(**llm_kwargs)
        except TypeError as exc:
            if "chat_format" not in str(exc):
                raise
            llm_kwargs.pop("chat_format", None)
            llm = Llama(**llm_kwargs)
        except (ValueError, RuntimeError) as exc:
            raise LLMAdapterError(f"Model load failed: {exc}") from exc

        logger.info("llm model loaded path=%s n_ctx=%d", model_path, cfg.SCRIBE_LLAMA_CPP_N_CTX)
        _MODEL_CACHE[model_path] = llm
        return llm


def _run_chat_completion(
    llm: Any,
    *,
    prompt: str,
    max_tokens: int,
    stop_sequences: Sequence[str] = _STOP_SEQUENCES,
) -> str:
    completion_kwargs: dict[str, Any] = {
        "messages": [{"role": "user", "content": prompt}],
        "temperature": 0.0,
        "top_p": 1.0,
        "max_tokens": int(max_tokens),
        "stop": list(stop_sequences),
        "response_format": {"type": "json_object"},
    }
    try:
        resp = llm.create_chat_completion(**completion_kwargs)
    except TypeError as exc:
        if "response_format" not in str(exc):
            raise
        completion_kwargs.pop("response_format", None)
        resp = llm.create_chat_completion(**completion_kwargs)
    except ValueError as exc:
        if "exceed context window" in str(exc) or "context window" in str(exc):
            raise LLMQuotaError(f"Prompt exceeds the model token budget: {exc}") from exc
        raise LLMAdapterError(f"Completion failed: {exc}") from exc

    return str(resp["choices"][0]["message"]["content"] or "").strip()


def complete_json(
    instructions: str,
    transcript: str,
    cfg: ScribeConfig,
    *,
    llm: Optional[Any] = None,
) -> dict[str, Any]:
    model = llm if llm is not None else _load_model(cfg)
    prompt = f"{instructions}\n\nTranscript:\n{transcript}"
    raw = _run_chat_completion(model, prompt=prompt, max_tokens=cfg.SCRIBE_LLM_MAX_TOKENS)
    parsed = _parse_json_object(raw)
    if parsed is None:
        logger.warning("llm output not valid JSON chars=%d", len(raw))
        raise LLMAdapterError("Model output is not valid JSON.")
    return parsed


def format_turns_with_llm(transcript: str, cfg: ScribeConfig, *, llm: Any = None) -> list[Turn]:
    data = complete_json(FORMAT_PROMPT, transcript, cfg, llm=llm)
    raw_turns = data.get("turns")
    if not isinstance(raw_turns, list):
        raise LLMAdapterError("Model JSON missing 'turns' list.")
    try:
        return [Turn.model_validate(item) for item in raw_turns]
    except ValidationError as exc:
        raise LLMAdapterError(f"Invalid turn payload: {exc}") from exc


def extract_profile_with_llm(transcript: str, cfg: ScribeConfig, *, llm: Any = None) -> PatientProfile:
    data = complete_json(PROFILE_PROMPT, transcript, cfg, llm=llm)
    try:
        return PatientProfile.model_validate(data)
    except ValidationError as exc:
        raise LLMAdapterError(f"Invalid profile payload: {exc}") from exc


def extract_moments_with_llm(transcript: str, cfg: ScribeConfig, *, llm: Any = None) -> Any:
    """Return the raw `moments` value; shape coercion happens in the caller."""
    data = complete_json(MOMENTS_PROMPT, transcript, cfg, llm=llm)
    if "moments" not in data:
        raise LLMAdapterError("Model JSON missing 'moments'.")
    return data["moments"]
