from __future__ import annotations

"""
Engine selection for the three extraction services.

Design intent:
- `rule` is deterministic and always available.
- `llm` runs the local GGUF model and surfaces its failures.
- `auto` tries the model first and falls back to rules on adapter failure,
  except token-budget failures, which callers report as quota errors.
"""

import logging
from typing import Any, Callable, Literal, Optional, TypeVar

from trialscribe.extraction import llm_adapter, rules
from trialscribe.extraction.llm_adapter import LLMAdapterError, LLMQuotaError
from trialscribe.internal_core.config import ScribeConfig
from trialscribe.internal_core.contracts import PatientProfile, Turn

logger = logging.getLogger(__name__)

EngineMode = Literal["auto", "llm", "rule"]
ENGINE_MODES: set[str] = {"auto", "llm", "rule"}

T = TypeVar("T")


class ExtractionEngines:
    def __init__(self, cfg: ScribeConfig, mode: Optional[str] = None, llm: Any = None):
        resolved = (mode or cfg.SCRIBE_LLM_ENGINE or "auto").strip().lower()
        if resolved not in ENGINE_MODES:
            raise ValueError(f"Unsupported engine mode: {resolved}")
        self.cfg = cfg
        self.mode: EngineMode = resolved  # type: ignore[assignment]
        self._llm = llm
        self.last_engine_used = ""

    def _run(
        self,
        stage: str,
        transcript: str,
        model_fn: Callable[..., T],
        rule_fn: Callable[[str], T],
    ) -> T:
        if self.mode == "rule":
            self.last_engine_used = "rule"
            return rule_fn(transcript)

        try:
            result = model_fn(transcript, self.cfg, llm=self._llm)
            self.last_engine_used = "llm"
            return result
        except LLMQuotaError:
            raise
        except LLMAdapterError as exc:
            if self.mode == "llm":
                raise
            logger.warning("llm %s failed, using rule engine: %s", stage, exc)
            self.last_engine_used = "rule_fallback"
            return rule_fn(transcript)

    def format_turns(self, transcript: str) -> list[Turn]:
        return self._run(
            "format",
            transcript,
            llm_adapter.format_turns_with_llm,
            rules.format_transcript_turns,
        )

    def extract_profile(self, transcript: str) -> PatientProfile:
        return self._run(
            "extract",
            transcript,
            llm_adapter.extract_profile_with_llm,
            rules.extract_patient_profile,
        )

    def extract_moments(self, transcript: str) -> Any:
        return self._run(
            "key_moments",
            transcript,
            llm_adapter.extract_moments_with_llm,
            rules.extract_key_moments,
        )


def build_engines(cfg: ScribeConfig) -> ExtractionEngines:
    return ExtractionEngines(cfg)
