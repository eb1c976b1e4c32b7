from __future__ import annotations

from typing import Optional

from .base import ASRProvider


class MockASRProvider(ASRProvider):
    """Offline provider for demos and tests; echoes a fixed transcript when given one."""

    def __init__(self, transcript: str = "") -> None:
        self._transcript = transcript
        self.recordings: list[str] = []
        self.last_language: Optional[str] = None

    def transcribe_file(
        self, wav_path: str, language: str = "en", timeout_sec: int = 300
    ) -> str:
        self.recordings.append(wav_path)
        self.last_language = language
        if self._transcript:
            return self._transcript
        return (
            "Doctor: (mock) How have you been feeling? "
            f"Patient: (mock) Recording {len(self.recordings)} received."
        )

    def name(self) -> str:
        return "mock"
