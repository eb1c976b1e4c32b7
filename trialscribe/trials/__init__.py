from __future__ import annotations

from .diagnosis import DIAGNOSIS_KEYWORDS, normalize_diagnosis
from .query_builder import build_query_string, build_search_params
from .registry import ClinicalTrialsRegistry, RegistryUpstreamError

__all__ = [
    "DIAGNOSIS_KEYWORDS",
    "normalize_diagnosis",
    "build_query_string",
    "build_search_params",
    "ClinicalTrialsRegistry",
    "RegistryUpstreamError",
]
