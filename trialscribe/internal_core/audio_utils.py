from __future__ import annotations

import base64
import binascii
import mimetypes
import shutil
import subprocess
import uuid
import wave
from pathlib import Path
from typing import Optional, Tuple

import numpy as np

_MIME_SUFFIXES = {
    "audio/webm": ".webm",
    "audio/ogg": ".ogg",
    "audio/wav": ".wav",
    "audio/x-wav": ".wav",
    "audio/wave": ".wav",
    "audio/mpeg": ".mp3",
    "audio/mp4": ".m4a",
}


def _which(cmd: str) -> Optional[str]:
    return shutil.which(cmd)


def guess_audio_suffix(mime_type: Optional[str]) -> str:
    normalized = (mime_type or "").split(";", 1)[0].strip().lower()
    if not normalized:
        return ".webm"
    if normalized in _MIME_SUFFIXES:
        return _MIME_SUFFIXES[normalized]
    return mimetypes.guess_extension(normalized) or ".bin"


def decode_audio_base64(data_b64: str, max_bytes: int) -> bytes:
    try:
        payload = base64.b64decode(data_b64, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"Invalid base64 audio payload: {exc}") from exc
    if not payload:
        raise ValueError("Audio payload is empty.")
    if len(payload) > max_bytes:
        raise ValueError(
            f"Audio payload too large ({len(payload) / (1024 * 1024):.1f}MB), "
            f"max allowed is {max_bytes / (1024 * 1024):.1f}MB"
        )
    return payload


def write_temp_audio(payload: bytes, tmp_dir: Path, suffix: str) -> Path:
    tmp_dir.mkdir(parents=True, exist_ok=True)
    out_path = tmp_dir / f"recording_{uuid.uuid4().hex}{suffix}"
    out_path.write_bytes(payload)
    return out_path


def load_wav_info(path: Path) -> Tuple[float, int, int]:
    with wave.open(str(path), "rb") as wf:
        frames = wf.getnframes()
        rate = wf.getframerate()
        channels = wf.getnchannels()
        duration = frames / float(rate) if rate else 0.0
        return duration, rate, channels


def pcm16_to_wav_bytes(frames: bytes, sample_rate: int, sample_width: int = 2) -> bytes:
    """Wrap raw little-endian mono PCM frames in a WAV container."""
    import io

    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(sample_width)
        wf.setframerate(sample_rate)
        wf.writeframes(frames)
    return buf.getvalue()


def compute_rms(audio: np.ndarray) -> float:
    if audio.size == 0:
        return 0.0
    x = audio.astype(np.float32)
    return float(np.sqrt(np.mean(x * x)))


def pcm16_rms(frames: bytes) -> float:
    audio_i16 = np.frombuffer(frames, dtype="<i2")
    return compute_rms((audio_i16.astype(np.float32) / 32768.0).clip(-1.0, 1.0))


def normalize_to_wav16k_mono(input_path: Path, tmp_dir: Path) -> Path:
    """
    Normalize any supported audio to 16kHz mono WAV.
    Prefers ffmpeg when present; falls back to `miniaudio` decode/convert.
    """
    if not input_path.exists():
        raise ValueError(f"Audio file not found: {input_path}")

    if input_path.suffix.lower() == ".wav":
        try:
            _, sr, ch = load_wav_info(input_path)
            if int(sr) == 16000 and int(ch) == 1:
                return input_path
        except (wave.Error, EOFError):
            pass

    tmp_dir.mkdir(parents=True, exist_ok=True)
    out_path = tmp_dir / f"{input_path.stem}_norm_{uuid.uuid4().hex}.wav"

    ffmpeg = _which("ffmpeg")
    if ffmpeg:
        cmd = [ffmpeg, "-y", "-i", str(input_path), "-ac", "1", "-ar", "16000", str(out_path)]
        try:
            subprocess.run(cmd, check=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
            return out_path
        except subprocess.CalledProcessError as e:
            stderr = (
                e.stderr.decode("utf-8", "ignore")
                if isinstance(e.stderr, (bytes, bytearray))
                else str(e.stderr)
            )
            raise ValueError(
                f"Audio conversion failed via ffmpeg: {stderr.strip() or 'unknown error'}"
            ) from e

    try:
        import miniaudio  # type: ignore
    except ImportError as exc:
        raise ValueError(
            "Audio conversion requires `ffmpeg` or the Python dependency `miniaudio`."
        ) from exc

    try:
        decoded = miniaudio.decode_file(
            str(input_path),
            output_format=miniaudio.SampleFormat.SIGNED16,
            nchannels=1,
            sample_rate=16000,
        )
        out_path.write_bytes(pcm16_to_wav_bytes(decoded.samples.tobytes(), 16000))
        return out_path
    except Exception as e:
        raise ValueError(f"Audio conversion failed: {e}") from e
