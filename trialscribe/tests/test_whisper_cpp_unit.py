import subprocess
from types import SimpleNamespace

import pytest

from trialscribe.internal_core.asr import ASRError, WhisperCppProvider, whisper_cpp_available


def _provider(tmp_path, no_gpu: bool = False) -> WhisperCppProvider:
    bin_path = tmp_path / "whisper-cli"
    model_path = tmp_path / "ggml-base.en.bin"
    bin_path.write_text("", encoding="utf-8")
    model_path.write_text("", encoding="utf-8")
    return WhisperCppProvider(str(bin_path), str(model_path), no_gpu=no_gpu)


def test_availability_reports_the_missing_setting(tmp_path) -> None:
    assert whisper_cpp_available("", "model.bin") == (False, "missing SCRIBE_WHISPER_CPP_BIN")
    ok, reason = whisper_cpp_available(str(tmp_path), str(tmp_path / "nope.bin"))
    assert not ok
    assert reason.startswith("SCRIBE_WHISPER_CPP_MODEL not found")


def test_unconfigured_provider_raises_before_running(monkeypatch) -> None:
    monkeypatch.setattr(subprocess, "run", lambda *a, **k: pytest.fail("must not run"))
    with pytest.raises(ASRError) as exc_info:
        WhisperCppProvider("", "").transcribe_file("visit.wav")
    assert exc_info.value.code == "WHISPER_NOT_CONFIGURED"


def test_gpu_failure_retries_once_on_cpu(monkeypatch, tmp_path) -> None:
    commands: list[list[str]] = []

    def fake_run(cmd, **kwargs):
        commands.append(cmd)
        if "-ng" not in cmd:
            return SimpleNamespace(returncode=1, stdout="", stderr="ggml_metal_init: failed")
        return SimpleNamespace(returncode=0, stdout=" Doctor: Hello.\n Patient: Hi.\n", stderr="")

    monkeypatch.setattr(subprocess, "run", fake_run)
    provider = _provider(tmp_path)

    assert provider.transcribe_file("visit.wav") == "Doctor: Hello. Patient: Hi."
    assert ["-ng" in cmd for cmd in commands] == [False, True]
    assert provider.cpu_only is True


def test_cpu_failure_timeout_and_empty_output_map_to_codes(monkeypatch, tmp_path) -> None:
    outcomes = [
        SimpleNamespace(returncode=2, stdout="", stderr=""),
        subprocess.TimeoutExpired(cmd="whisper-cli", timeout=5),
        SimpleNamespace(returncode=0, stdout="   \n", stderr=""),
    ]

    def fake_run(cmd, **kwargs):
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    monkeypatch.setattr(subprocess, "run", fake_run)
    provider = _provider(tmp_path, no_gpu=True)

    codes = []
    for _ in range(3):
        with pytest.raises(ASRError) as exc_info:
            provider.transcribe_file("visit.wav", timeout_sec=5)
        codes.append(exc_info.value.code)
    assert codes == ["WHISPER_EXIT_NONZERO", "WHISPER_TIMEOUT", "WHISPER_EMPTY_OUTPUT"]
