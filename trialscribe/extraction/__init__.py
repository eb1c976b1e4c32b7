from __future__ import annotations

from .engines import ExtractionEngines, build_engines
from .moments import apply_derived_times, derive_moment_time, placeholder_moment

__all__ = [
    "ExtractionEngines",
    "build_engines",
    "apply_derived_times",
    "derive_moment_time",
    "placeholder_moment",
]
