from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


def _project_root() -> Path:
    # trialscribe/internal_core/config.py -> trialscribe -> repo root
    return Path(__file__).resolve().parents[2]


def _resolve_default_path(candidates: list[Path]) -> str:
    for candidate in candidates:
        try:
            resolved = candidate.expanduser().resolve()
        except Exception:
            continue
        if resolved.exists():
            return str(resolved)
    # Keep deterministic fallback even when file is absent.
    if candidates:
        return str(candidates[0].expanduser().resolve())
    return ""


def _resolve_existing_path_or_empty(candidates: list[Path]) -> str:
    for candidate in candidates:
        try:
            resolved = candidate.expanduser().resolve()
        except Exception:
            continue
        if resolved.exists():
            return str(resolved)
    return ""


def _model_root_from_env() -> Optional[Path]:
    raw = os.getenv("SCRIBE_MODEL_ROOT", "").strip()
    if not raw:
        return None
    try:
        return Path(raw).expanduser().resolve()
    except Exception:
        return None


def _getenv_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return default if value is None else value


def _getenv_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _getenv_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _getenv_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


@dataclass(frozen=True)
class ScribeConfig:
    SCRIBE_STORE_PATH: str
    SCRIBE_SERVICE_BASE_URL: str
    SCRIBE_REQUEST_TIMEOUT_SEC: float
    SCRIBE_RETRY_MAX_ATTEMPTS: int
    SCRIBE_MIN_TRANSCRIPT_CHARS: int
    SCRIBE_TRIALS_API_URL: str
    SCRIBE_TRIALS_TIMEOUT_SEC: float
    SCRIBE_TRIALS_FALLBACK_ON_ERROR: bool
    SCRIBE_TRIALS_USER_AGENT: str
    SCRIBE_ASR_PROVIDER: str
    SCRIBE_WHISPER_CPP_BIN: str
    SCRIBE_WHISPER_CPP_MODEL: str
    SCRIBE_WHISPER_CPP_NO_GPU: bool
    SCRIBE_TMP_DIR: str
    SCRIBE_MAX_AUDIO_BYTES: int
    SCRIBE_LLM_ENGINE: str
    SCRIBE_LLAMA_CPP_MODEL: str
    SCRIBE_LLAMA_CPP_N_CTX: int
    SCRIBE_LLAMA_CPP_N_GPU_LAYERS: int
    SCRIBE_LLAMA_CPP_CHAT_FORMAT: str
    SCRIBE_LLM_MAX_TOKENS: int
    SCRIBE_ONDEVICE_RECOGNIZER: str
    SCRIBE_LOG_LEVEL: str

    def tmp_dir_path(self, repo_root: Path) -> Path:
        return (repo_root / self.SCRIBE_TMP_DIR).resolve()

    def store_path(self, repo_root: Path) -> Path:
        return (repo_root / self.SCRIBE_STORE_PATH).resolve()


def load_config() -> ScribeConfig:
    project_root = _project_root()
    model_root = _model_root_from_env()

    model_prefixes: list[Path] = []
    if model_root is not None:
        model_prefixes.append(model_root)
    model_prefixes.extend([project_root, project_root / "models", project_root.parent])

    default_whisper_bin = _resolve_default_path(
        [
            base / "whisper.cpp" / "build" / "bin" / "whisper-cli"
            for base in model_prefixes
        ]
    )
    default_whisper_model = _resolve_default_path(
        [
            base / "whisper.cpp" / "models" / "ggml-small.en.bin"
            for base in model_prefixes
        ] + [
            base / "ggml-small.en.bin" for base in model_prefixes
        ]
    )
    default_llama_cpp_model = _resolve_existing_path_or_empty(
        [
            base / "models" / "scribe-extractor.gguf"
            for base in model_prefixes
        ] + [
            base / "scribe-extractor.gguf" for base in model_prefixes
        ]
    )

    return ScribeConfig(
        SCRIBE_STORE_PATH=_getenv_str("SCRIBE_STORE_PATH", "./data/trialscribe_store.json"),
        SCRIBE_SERVICE_BASE_URL=_getenv_str("SCRIBE_SERVICE_BASE_URL", "http://127.0.0.1:8000"),
        SCRIBE_REQUEST_TIMEOUT_SEC=_getenv_float("SCRIBE_REQUEST_TIMEOUT_SEC", 60.0),
        SCRIBE_RETRY_MAX_ATTEMPTS=_getenv_int("SCRIBE_RETRY_MAX_ATTEMPTS", 3),
        SCRIBE_MIN_TRANSCRIPT_CHARS=_getenv_int("SCRIBE_MIN_TRANSCRIPT_CHARS", 100),
        SCRIBE_TRIALS_API_URL=_getenv_str(
            "SCRIBE_TRIALS_API_URL", "https://clinicaltrials.gov/api/v2/studies"
        ),
        SCRIBE_TRIALS_TIMEOUT_SEC=_getenv_float("SCRIBE_TRIALS_TIMEOUT_SEC", 30.0),
        SCRIBE_TRIALS_FALLBACK_ON_ERROR=_getenv_bool("SCRIBE_TRIALS_FALLBACK_ON_ERROR", False),
        SCRIBE_TRIALS_USER_AGENT=_getenv_str("SCRIBE_TRIALS_USER_AGENT", "TrialScribe/1.0"),
        SCRIBE_ASR_PROVIDER=_getenv_str("SCRIBE_ASR_PROVIDER", "mock"),
        SCRIBE_WHISPER_CPP_BIN=_getenv_str("SCRIBE_WHISPER_CPP_BIN", default_whisper_bin),
        SCRIBE_WHISPER_CPP_MODEL=_getenv_str("SCRIBE_WHISPER_CPP_MODEL", default_whisper_model),
        SCRIBE_WHISPER_CPP_NO_GPU=_getenv_bool("SCRIBE_WHISPER_CPP_NO_GPU", False),
        SCRIBE_TMP_DIR=_getenv_str("SCRIBE_TMP_DIR", "./tmp"),
        SCRIBE_MAX_AUDIO_BYTES=_getenv_int("SCRIBE_MAX_AUDIO_BYTES", 50 * 1024 * 1024),
        SCRIBE_LLM_ENGINE=_getenv_str("SCRIBE_LLM_ENGINE", "auto"),
        SCRIBE_LLAMA_CPP_MODEL=_getenv_str("SCRIBE_LLAMA_CPP_MODEL", default_llama_cpp_model),
        SCRIBE_LLAMA_CPP_N_CTX=_getenv_int("SCRIBE_LLAMA_CPP_N_CTX", 4096),
        SCRIBE_LLAMA_CPP_N_GPU_LAYERS=_getenv_int("SCRIBE_LLAMA_CPP_N_GPU_LAYERS", -1),
        SCRIBE_LLAMA_CPP_CHAT_FORMAT=_getenv_str("SCRIBE_LLAMA_CPP_CHAT_FORMAT", "gemma"),
        SCRIBE_LLM_MAX_TOKENS=_getenv_int("SCRIBE_LLM_MAX_TOKENS", 1024),
        SCRIBE_ONDEVICE_RECOGNIZER=_getenv_str("SCRIBE_ONDEVICE_RECOGNIZER", "sphinx"),
        SCRIBE_LOG_LEVEL=_getenv_str("SCRIBE_LOG_LEVEL", "INFO"),
    )
