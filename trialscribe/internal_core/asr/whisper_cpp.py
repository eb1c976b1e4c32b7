from __future__ import annotations

"""
Whole-recording transcription through the whisper.cpp CLI.

Design intent:
- One subprocess call per recording; the CLI prints plain text that becomes the transcript.
- A failed GPU run is repeated once on CPU and the provider stays on CPU afterwards.
"""

import logging
import subprocess
from pathlib import Path
from typing import Tuple

from .base import ASRError, ASRProvider

logger = logging.getLogger(__name__)

_STDERR_LIMIT = 200


def whisper_cpp_available(bin_path: str, model_path: str) -> Tuple[bool, str]:
    for setting, value in (("SCRIBE_WHISPER_CPP_BIN", bin_path), ("SCRIBE_WHISPER_CPP_MODEL", model_path)):
        if not value:
            return False, f"missing {setting}"
        if not Path(value).exists():
            return False, f"{setting} not found: {value}"
    return True, ""


class WhisperCppProvider(ASRProvider):
    def __init__(self, bin_path: str, model_path: str, no_gpu: bool = False):
        self._bin_path = bin_path
        self._model_path = model_path
        self.cpu_only = bool(no_gpu)

    def name(self) -> str:
        return "whisper_cpp"

    def _command(self, wav_path: str, language: str) -> list[str]:
        cmd = [self._bin_path, "-m", self._model_path, "-f", wav_path, "-l", language]
        if self.cpu_only:
            cmd.append("-ng")
        return cmd + ["--no-timestamps", "--no-prints"]

    def transcribe_file(
        self, wav_path: str, language: str = "en", timeout_sec: int = 300
    ) -> str:
        ok, reason = whisper_cpp_available(self._bin_path, self._model_path)
        if not ok:
            raise ASRError("WHISPER_NOT_CONFIGURED", reason, self.name())

        while True:
            try:
                res = subprocess.run(
                    self._command(wav_path, language),
                    capture_output=True,
                    text=True,
                    timeout=timeout_sec,
                )
            except subprocess.TimeoutExpired as exc:
                raise ASRError(
                    "WHISPER_TIMEOUT", f"no result after {timeout_sec}s", self.name()
                ) from exc
            except OSError as exc:
                raise ASRError("WHISPER_LAUNCH_FAILED", str(exc), self.name()) from exc

            if res.returncode == 0:
                break
            detail = (res.stderr or "").strip()[:_STDERR_LIMIT] or f"exit_code={res.returncode}"
            if self.cpu_only:
                raise ASRError("WHISPER_EXIT_NONZERO", detail, self.name())
            logger.warning("whisper.cpp failed on GPU, retrying on CPU: %s", detail)
            self.cpu_only = True

        transcript = " ".join((res.stdout or "").split())
        if not transcript:
            raise ASRError("WHISPER_EMPTY_OUTPUT", "whisper.cpp printed no text", self.name())
        return transcript
