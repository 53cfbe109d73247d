"""Decode a video's audio track and resample it to 16 kHz mono WAV for transcription."""

from __future__ import annotations

import asyncio
import logging

import av
import numpy as np

from services.wav_encoder import TARGET_SAMPLE_RATE, encode_wav

logger = logging.getLogger(__name__)


class AudioExtractionError(RuntimeError):
    """No usable audio could be decoded (missing track, unsupported codec, decode error)."""


def extract_samples(locator: str, *, sample_rate: int = TARGET_SAMPLE_RATE) -> np.ndarray:
    """
    Decode the first audio stream of locator and resample it to mono float32 at sample_rate.

    Resampling is a plain offline pass over the decoded frames, so the output only depends on
    the input bytes.
    """
    try:
        with av.open(locator) as container:
            if not container.streams.audio:
                raise AudioExtractionError(f"No audio stream in {locator}")
            stream = container.streams.audio[0]
            resampler = av.AudioResampler(format="flt", layout="mono", rate=sample_rate)
            chunks: list[np.ndarray] = []
            for frame in container.decode(stream):
                frame.pts = None
                for out in resampler.resample(frame):
                    chunks.append(out.to_ndarray().reshape(-1))
            for out in resampler.resample(None):
                chunks.append(out.to_ndarray().reshape(-1))
    except av.error.FFmpegError as exc:
        raise AudioExtractionError(f"Audio decode failed for {locator}: {exc}") from exc

    if not chunks:
        raise AudioExtractionError(f"Audio stream in {locator} produced no samples")
    samples = np.concatenate(chunks).astype(np.float32, copy=False)
    logger.info(
        "[audio_extractor] Decoded %d samples (%.1fs @ %dHz mono) from %s",
        samples.size,
        samples.size / sample_rate,
        sample_rate,
        locator,
    )
    return samples


def extract_wav(locator: str) -> bytes:
    """Decode, resample and wrap as a PCM16 mono 16 kHz WAV file."""
    return encode_wav(extract_samples(locator), sample_rate=TARGET_SAMPLE_RATE)


async def extract_wav_async(locator: str) -> bytes:
    return await asyncio.to_thread(extract_wav, locator)
