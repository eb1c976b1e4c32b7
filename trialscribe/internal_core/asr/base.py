from __future__ import annotations

from abc import ABC, abstractmethod


class ASRError(RuntimeError):
    """Server-side transcription failure; `code` is surfaced in the API error payload."""

    def __init__(self, code: str, message: str, provider_name: str):
        super().__init__(message)
        self.code = code
        self.message = message
        self.provider_name = provider_name


class ASRProvider(ABC):
    """Transcribes one whole recording, already normalized to 16 kHz mono WAV."""

    @abstractmethod
    def transcribe_file(
        self, wav_path: str, language: str = "en", timeout_sec: int = 300
    ) -> str: ...

    @abstractmethod
    def name(self) -> str: ...
