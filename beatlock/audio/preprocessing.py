"""Audio preprocessing utilities."""

from __future__ import annotations

import numpy as np
from scipy.signal import butter, sosfilt, sosfilt_zi


def normalize(audio: np.ndarray) -> np.ndarray:
    """Peak-normalize audio to the range [-1, 1].

    If the audio is silent (all zeros), it is returned unchanged.
    """
    peak = np.max(np.abs(audio)) if len(audio) else 0.0
    if peak == 0:
        return audio
    return audio / peak


def _highpass_sos(sr: int, cutoff: float) -> np.ndarray:
    return butter(N=4, Wn=cutoff, btype="high", fs=sr, output="sos")


def high_pass_filter(audio: np.ndarray, sr: int, cutoff: float = 30.0) -> np.ndarray:
    """Apply a Butterworth high-pass filter to a whole signal."""
    return sosfilt(_highpass_sos(sr, cutoff), audio)


class StreamingHighPass:
    """High-pass filter that keeps its state across live chunks."""

    def __init__(self, sr: int, cutoff: float = 30.0) -> None:
        self._sos = _highpass_sos(sr, cutoff)
        self._zi: np.ndarray | None = None

    def process(self, chunk: np.ndarray) -> np.ndarray:
        chunk = np.asarray(chunk, dtype=np.float64).ravel()
        if len(chunk) == 0:
            return chunk.astype(np.float32)
        if self._zi is None:
            self._zi = sosfilt_zi(self._sos) * chunk[0]
        out, self._zi = sosfilt(self._sos, chunk, zi=self._zi)
        return out.astype(np.float32)

    def reset(self) -> None:
        self._zi = None


def preprocess(audio: np.ndarray, sr: int, cutoff: float = 30.0) -> np.ndarray:
    """Apply the offline preprocessing pipeline (normalize then high-pass filter)."""
    audio = normalize(np.asarray(audio, dtype=np.float64))
    return high_pass_filter(audio, sr, cutoff).astype(np.float32)
