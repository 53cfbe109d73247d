"""PCM16 mono WAV container for the transcription service.

The transcription service only accepts canonical 44-byte-header PCM16 WAV, so the layout here
is fixed: RIFF/WAVE, a 16-byte "fmt " chunk with format 1, then a single "data" chunk.
"""

import struct
from collections.abc import Sequence

import numpy as np

TARGET_SAMPLE_RATE = 16000
TARGET_CHANNELS = 1
BITS_PER_SAMPLE = 16
WAV_HEADER_SIZE = 44


def quantize_pcm16(samples: np.ndarray | Sequence[float]) -> np.ndarray:
    """Clamp float samples to [-1, 1] and scale to int16 (negatives by 32768, positives by 32767)."""
    clipped = np.clip(np.asarray(samples, dtype=np.float64).reshape(-1), -1.0, 1.0)
    scaled = np.where(clipped < 0, clipped * 32768.0, clipped * 32767.0)
    # Round to nearest so the reconstruction error stays within half a step.
    return np.rint(scaled).astype("<i2")


def wav_header(
    sample_count: int,
    *,
    sample_rate: int = TARGET_SAMPLE_RATE,
    channels: int = TARGET_CHANNELS,
) -> bytes:
    block_align = channels * BITS_PER_SAMPLE // 8
    byte_rate = sample_rate * block_align
    data_size = sample_count * block_align
    return struct.pack(
        "<4sI4s4sIHHIIHH4sI",
        b"RIFF",
        36 + data_size,
        b"WAVE",
        b"fmt ",
        16,
        1,  # PCM
        channels,
        sample_rate,
        byte_rate,
        block_align,
        BITS_PER_SAMPLE,
        b"data",
        data_size,
    )


def encode_wav(samples: np.ndarray | Sequence[float], *, sample_rate: int = TARGET_SAMPLE_RATE) -> bytes:
    """
    Serialize mono float PCM into a WAV file.

    :param samples: Float samples, nominally in [-1, 1]; out-of-range values are clamped
    :param sample_rate: Rate written to the header (the pipeline always uses 16 kHz)
    :return: 44 + 2 * len(samples) bytes
    """
    pcm = quantize_pcm16(samples)
    return wav_header(pcm.size, sample_rate=sample_rate) + pcm.tobytes()
