"""Audio extraction: decode, resample to 16 kHz mono, wrap as WAV."""

import asyncio
import io
import wave
from pathlib import Path

import av
import numpy as np
import pytest

from services.audio_extractor import AudioExtractionError, extract_samples, extract_wav, extract_wav_async


def _write_stereo_wav(path: Path, *, seconds: float = 1.0, rate: int = 44_100) -> None:
    t = np.arange(int(seconds * rate)) / rate
    tone = (0.4 * np.sin(2 * np.pi * 440 * t) * 32767).astype("<i2")
    stereo = np.column_stack([tone, tone]).reshape(-1)
    with wave.open(str(path), "wb") as wf:
        wf.setnchannels(2)
        wf.setsampwidth(2)
        wf.setframerate(rate)
        wf.writeframes(stereo.tobytes())


def _write_silent_video(path: Path) -> None:
    container = av.open(str(path), mode="w")
    stream = container.add_stream("mpeg4", rate=10)
    stream.width = 32
    stream.height = 32
    stream.pix_fmt = "yuv420p"
    for _ in range(10):
        frame = av.VideoFrame.from_ndarray(np.zeros((32, 32, 3), dtype=np.uint8), format="rgb24")
        for packet in stream.encode(frame):
            container.mux(packet)
    for packet in stream.encode():
        container.mux(packet)
    container.close()


def test_resamples_stereo_44k_to_mono_16k(tmp_path: Path) -> None:
    path = tmp_path / "tone.wav"
    _write_stereo_wav(path, seconds=2.0)

    samples = extract_samples(str(path))

    assert samples.dtype == np.float32
    assert samples.ndim == 1
    assert abs(samples.size - 32_000) <= 500
    assert 0.3 < float(np.max(np.abs(samples))) <= 1.0


def test_extract_wav_produces_pcm16_mono_16k(tmp_path: Path) -> None:
    path = tmp_path / "tone.wav"
    _write_stereo_wav(path)

    data = extract_wav(str(path))

    with wave.open(io.BytesIO(data), "rb") as wf:
        assert wf.getnchannels() == 1
        assert wf.getsampwidth() == 2
        assert wf.getframerate() == 16_000
        assert abs(wf.getnframes() - 16_000) <= 500


def test_extraction_is_deterministic(tmp_path: Path) -> None:
    path = tmp_path / "tone.wav"
    _write_stereo_wav(path, seconds=0.5)
    assert extract_wav(str(path)) == extract_wav(str(path))


def test_video_without_audio_track_fails(tmp_path: Path) -> None:
    path = tmp_path / "silent.mp4"
    _write_silent_video(path)

    with pytest.raises(AudioExtractionError, match="No audio stream"):
        extract_samples(str(path))


def test_undecodable_input_fails(tmp_path: Path) -> None:
    path = tmp_path / "garbage.mp4"
    path.write_bytes(b"definitely not a media container" * 10)

    with pytest.raises(AudioExtractionError):
        extract_wav(str(path))


def test_async_wrapper_returns_same_bytes(tmp_path: Path) -> None:
    path = tmp_path / "tone.wav"
    _write_stereo_wav(path, seconds=0.25)
    assert asyncio.run(extract_wav_async(str(path))) == extract_wav(str(path))
