import asyncio
import base64
from typing import Optional

import pytest
import speech_recognition as sr

from trialscribe.asr.recorder import (
    CaptureError,
    CaptureOutcome,
    OnDeviceRecorder,
    Recorder,
    RecordingMethodSelector,
    ServerRecorder,
)


class FakeMicrophone:
    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        return None


class FakeAudio:
    def __init__(self, pcm: bytes, phrase: str = "") -> None:
        self.pcm = pcm
        self.phrase = phrase

    def get_raw_data(self, convert_rate=None, convert_width=None) -> bytes:
        return self.pcm


class FakeRecognizer:
    def __init__(self) -> None:
        self.callback = None
        self.stopped_with: Optional[bool] = None

    def adjust_for_ambient_noise(self, source, duration=1.0) -> None:
        return None

    def listen_in_background(self, source, callback):
        self.callback = callback

        def stopper(wait_for_stop=True) -> None:
            self.stopped_with = wait_for_stop

        return stopper

    def recognize_sphinx(self, audio) -> str:
        if audio.phrase == "?":
            raise sr.UnknownValueError()
        if audio.phrase == "!":
            raise sr.RequestError("engine offline")
        return audio.phrase


class StaticRecorder(Recorder):
    def __init__(self, method: str, error: Optional[Exception] = None, transcript: str = "") -> None:
        self.method = method
        self.error = error
        self.transcript = transcript
        self.started = False

    def start(self) -> None:
        if self.error is not None:
            raise self.error
        self.started = True

    async def stop(self) -> CaptureOutcome:
        return CaptureOutcome(transcript=self.transcript, duration_sec=12.5)


def test_selector_prefers_server_capture() -> None:
    server = StaticRecorder("server", transcript="from server")
    on_device = StaticRecorder("on_device")
    selector = RecordingMethodSelector(server, on_device)

    assert selector.start() == "server"
    assert selector.is_capturing
    assert not on_device.started
    assert asyncio.run(selector.stop()) == "from server"
    assert selector.state == "idle"
    assert selector.last_duration_sec == 12.5


def test_selector_falls_back_to_on_device() -> None:
    server = StaticRecorder("server", error=CaptureError("MIC_UNAVAILABLE", "denied", "server"))
    on_device = StaticRecorder("on_device", transcript="local words")
    selector = RecordingMethodSelector(server, on_device)

    assert selector.start() == "on_device"
    assert selector.last_error is None
    assert asyncio.run(selector.stop()) == "local words"


def test_selector_reports_both_failures() -> None:
    selector = RecordingMethodSelector(
        StaticRecorder("server", error=RuntimeError("no device")),
        StaticRecorder("on_device", error=RuntimeError("no recognizer")),
    )
    assert selector.start() == "none"
    assert selector.state == "idle"
    assert selector.last_error.startswith("Recording unavailable.")
    assert "no device" in selector.last_error and "no recognizer" in selector.last_error


def test_stop_without_capture_is_a_no_op() -> None:
    selector = RecordingMethodSelector(StaticRecorder("server"), StaticRecorder("on_device"))
    assert asyncio.run(selector.stop()) is None


def test_server_recorder_submits_buffered_audio_as_wav() -> None:
    recognizer = FakeRecognizer()
    submitted: list[tuple[str, str]] = []

    async def transcribe(audio_b64: str, mime_type: str):
        submitted.append((audio_b64, mime_type))
        return "hello there", 3.0

    recorder = ServerRecorder(
        transcribe, microphone_factory=FakeMicrophone, recognizer_factory=lambda: recognizer
    )
    recorder.start()
    recognizer.callback(recognizer, FakeAudio(b"\x01\x00" * 16000))
    outcome = asyncio.run(recorder.stop())

    assert outcome == CaptureOutcome(transcript="hello there", duration_sec=3.0)
    assert recognizer.stopped_with is True
    audio_b64, mime_type = submitted[0]
    assert mime_type == "audio/wav"
    assert base64.b64decode(audio_b64)[:4] == b"RIFF"


def test_server_recorder_without_audio_skips_transcription() -> None:
    recognizer = FakeRecognizer()

    async def transcribe(audio_b64: str, mime_type: str):
        raise AssertionError("should not be called")

    recorder = ServerRecorder(transcribe, microphone_factory=FakeMicrophone, recognizer_factory=lambda: recognizer)
    recorder.start()
    assert asyncio.run(recorder.stop()) == CaptureOutcome(transcript="", duration_sec=0.0)


def test_microphone_failure_becomes_capture_error() -> None:
    def broken_microphone():
        raise OSError("no input device")

    async def transcribe(audio_b64: str, mime_type: str):
        return "", None

    recorder = ServerRecorder(transcribe, microphone_factory=broken_microphone, recognizer_factory=FakeRecognizer)
    with pytest.raises(CaptureError) as exc_info:
        recorder.start()
    assert exc_info.value.code == "MIC_UNAVAILABLE"
    assert exc_info.value.method == "server"


def test_on_device_recorder_joins_recognized_phrases() -> None:
    recognizer = FakeRecognizer()
    recorder = OnDeviceRecorder(
        "sphinx", microphone_factory=FakeMicrophone, recognizer_factory=lambda: recognizer
    )
    recorder.start()
    for phrase in ("I feel", "?", "tired", "!"):
        recognizer.callback(recognizer, FakeAudio(b"", phrase))
    outcome = asyncio.run(recorder.stop())

    assert outcome.transcript == "I feel tired"
    assert recorder.recognition_errors == ["engine offline"]


def test_on_device_recorder_rejects_unknown_recognizer() -> None:
    recorder = OnDeviceRecorder("nonexistent", microphone_factory=FakeMicrophone, recognizer_factory=FakeRecognizer)
    with pytest.raises(CaptureError) as exc_info:
        recorder.start()
    assert exc_info.value.code == "RECOGNIZER_UNAVAILABLE"
