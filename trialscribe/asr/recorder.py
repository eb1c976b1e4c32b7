from __future__ import annotations

"""
Capture strategies and the selector that falls back between them.

Design intent:
- `ServerRecorder` buffers microphone audio and submits one WAV to the
  transcription service on stop.
- `OnDeviceRecorder` recognizes phrases locally while capturing and joins them on stop.
- `RecordingMethodSelector` prefers the server path and falls back on any
  acquisition failure; only when both fail is the error surfaced.
"""

import asyncio
import base64
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Literal, Optional

import speech_recognition as sr

from trialscribe.internal_core.audio_utils import pcm16_to_wav_bytes

logger = logging.getLogger(__name__)

RecordingMethod = Literal["none", "server", "on_device"]
CaptureState = Literal["idle", "capturing", "finalizing"]

SAMPLE_RATE = 16000
SAMPLE_WIDTH = 2

TranscribeAudio = Callable[[str, str], Awaitable[tuple[str, Optional[float]]]]


class CaptureError(RuntimeError):
    def __init__(self, code: str, message: str, method: str):
        super().__init__(message)
        self.code = code
        self.message = message
        self.method = method


class TranscriptionFailed(RuntimeError):
    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


@dataclass(frozen=True)
class CaptureOutcome:
    transcript: str
    duration_sec: Optional[float] = None


def _default_microphone() -> Any:
    return sr.Microphone(sample_rate=SAMPLE_RATE)


def _default_recognizer() -> Any:
    return sr.Recognizer()


class Recorder(ABC):
    method: RecordingMethod = "none"

    @abstractmethod
    def start(self) -> None:
        """Acquire the capture device; raise `CaptureError` when unavailable."""

    @abstractmethod
    async def stop(self) -> CaptureOutcome: ...


class _BackgroundCapture:
    """Shared microphone plumbing: open, listen in the background, halt."""

    def __init__(
        self,
        microphone_factory: Callable[[], Any],
        recognizer_factory: Callable[[], Any],
    ):
        self._microphone_factory = microphone_factory
        self._recognizer_factory = recognizer_factory
        self._stopper: Optional[Callable[..., Any]] = None
        self._lock = threading.Lock()
        self._started_at = 0.0
        self.recognizer: Any = None

    def open(self, callback: Callable[[Any, Any], None], method: str) -> None:
        try:
            microphone = self._microphone_factory()
            recognizer = self._recognizer_factory()
            with microphone as source:
                recognizer.adjust_for_ambient_noise(source, duration=0.5)
            self._stopper = recognizer.listen_in_background(microphone, callback)
        except CaptureError:
            raise
        except Exception as exc:
            raise CaptureError("MIC_UNAVAILABLE", f"Microphone capture unavailable: {exc}", method) from exc
        self.recognizer = recognizer
        self._started_at = time.monotonic()

    def halt(self) -> float:
        stopper, self._stopper = self._stopper, None
        if stopper is not None:
            stopper(wait_for_stop=True)
        return max(0.0, time.monotonic() - self._started_at)


class ServerRecorder(Recorder):
    method: RecordingMethod = "server"

    def __init__(
        self,
        transcribe: TranscribeAudio,
        *,
        microphone_factory: Callable[[], Any] = _default_microphone,
        recognizer_factory: Callable[[], Any] = _default_recognizer,
    ):
        self._transcribe = transcribe
        self._capture = _BackgroundCapture(microphone_factory, recognizer_factory)
        self._frames: list[bytes] = []

    def _on_audio(self, recognizer: Any, audio: Any) -> None:
        data = audio.get_raw_data(convert_rate=SAMPLE_RATE, convert_width=SAMPLE_WIDTH)
        with self._capture._lock:
            self._frames.append(data)

    def start(self) -> None:
        self._frames = []
        self._capture.open(self._on_audio, self.method)

    async def stop(self) -> CaptureOutcome:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._capture.halt)
        with self._capture._lock:
            pcm = b"".join(self._frames)
            self._frames = []
        if not pcm:
            return CaptureOutcome(transcript="", duration_sec=0.0)

        captured_sec = len(pcm) / float(SAMPLE_RATE * SAMPLE_WIDTH)
        wav = pcm16_to_wav_bytes(pcm, SAMPLE_RATE, SAMPLE_WIDTH)
        audio_b64 = base64.b64encode(wav).decode("ascii")
        logger.info("server capture finalized bytes=%d duration=%.1fs", len(wav), captured_sec)
        transcript, reported_sec = await self._transcribe(audio_b64, "audio/wav")
        return CaptureOutcome(transcript=transcript or "", duration_sec=reported_sec or captured_sec)


class OnDeviceRecorder(Recorder):
    method: RecordingMethod = "on_device"

    def __init__(
        self,
        recognizer_name: str = "sphinx",
        *,
        microphone_factory: Callable[[], Any] = _default_microphone,
        recognizer_factory: Callable[[], Any] = _default_recognizer,
    ):
        self.recognizer_name = recognizer_name
        self._capture = _BackgroundCapture(microphone_factory, recognizer_factory)
        self._partials: list[str] = []
        self.recognition_errors: list[str] = []

    def _on_audio(self, recognizer: Any, audio: Any) -> None:
        recognize = getattr(recognizer, f"recognize_{self.recognizer_name}")
        try:
            text = recognize(audio)
        except sr.UnknownValueError:
            return
        except sr.RequestError as exc:
            logger.warning("on-device recognition failed: %s", exc)
            self.recognition_errors.append(str(exc))
            return
        text = (text or "").strip()
        if text:
            with self._capture._lock:
                self._partials.append(text)

    def start(self) -> None:
        recognizer = self._capture._recognizer_factory()
        if not callable(getattr(recognizer, f"recognize_{self.recognizer_name}", None)):
            raise CaptureError(
                "RECOGNIZER_UNAVAILABLE",
                f"Recognizer not supported: {self.recognizer_name}",
                self.method,
            )
        self._partials = []
        self.recognition_errors = []
        self._capture.open(self._on_audio, self.method)

    async def stop(self) -> CaptureOutcome:
        loop = asyncio.get_running_loop()
        elapsed = await loop.run_in_executor(None, self._capture.halt)
        with self._capture._lock:
            transcript = " ".join(self._partials).strip()
            self._partials = []
        return CaptureOutcome(transcript=transcript, duration_sec=elapsed or None)


class RecordingMethodSelector:
    """
    Owns at most one active recorder.

    States move idle -> capturing -> finalizing -> idle. `method` reports the
    recorder chosen by the last successful `start()`, or "none".
    """

    def __init__(self, server: Recorder, on_device: Recorder):
        self._server = server
        self._on_device = on_device
        self._active: Optional[Recorder] = None
        self.state: CaptureState = "idle"
        self.method: RecordingMethod = "none"
        self.last_error: Optional[str] = None
        self.last_duration_sec: Optional[float] = None

    @property
    def is_capturing(self) -> bool:
        return self.state == "capturing"

    def start(self) -> RecordingMethod:
        if self.state != "idle":
            return self.method

        errors: list[str] = []
        for recorder in (self._server, self._on_device):
            try:
                recorder.start()
            except Exception as exc:
                logger.warning("capture method=%s unavailable: %s", recorder.method, exc)
                errors.append(f"{recorder.method}: {exc}")
                continue
            self._active = recorder
            self.method = recorder.method
            self.state = "capturing"
            self.last_error = None
            logger.info("capture started method=%s", recorder.method)
            return self.method

        self.method = "none"
        self.last_error = "Recording unavailable. " + "; ".join(errors)
        logger.error("no capture method available: %s", "; ".join(errors))
        return self.method

    async def stop(self) -> Optional[str]:
        if self.state != "capturing" or self._active is None:
            return None
        recorder = self._active
        self.state = "finalizing"
        try:
            outcome = await recorder.stop()
        finally:
            self._active = None
            self.state = "idle"
        self.last_duration_sec = outcome.duration_sec
        return outcome.transcript
