from __future__ import annotations

from .base import ASRError, ASRProvider
from .mock import MockASRProvider
from .whisper_cpp import WhisperCppProvider, whisper_cpp_available

__all__ = [
    "ASRError",
    "ASRProvider",
    "MockASRProvider",
    "WhisperCppProvider",
    "whisper_cpp_available",
]
