"""Audio decoding for uploads and live PCM streams."""

from __future__ import annotations

from io import BytesIO
from pathlib import Path
from typing import Union

import librosa
import numpy as np


def load_audio(
    file_path_or_buffer: Union[str, Path, BytesIO],
    sr: int = 44100,
) -> tuple[np.ndarray, int]:
    """Load an audio file or buffer as mono float32 at *sr*."""
    audio, sample_rate = librosa.load(file_path_or_buffer, sr=sr, mono=True)
    return audio.astype(np.float32), sample_rate


def decode_pcm_float32(data: bytes) -> np.ndarray:
    """Decode little-endian Float32 PCM; a trailing partial sample is dropped."""
    n_samples = len(data) // 4
    if n_samples == 0:
        return np.zeros(0, dtype=np.float32)
    samples = np.frombuffer(data[:n_samples * 4], dtype="<f4").astype(np.float32)
    return np.nan_to_num(samples, nan=0.0, posinf=0.0, neginf=0.0)
