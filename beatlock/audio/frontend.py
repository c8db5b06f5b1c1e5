"""Spectral frontend: PCM audio -> AnalysisFrames at a fixed hop.

Magnitudes are normalised by the window sum so a full-scale sinusoid peaks
near 0.5 regardless of FFT size, which keeps onset strengths on a scale the
peak picker's default threshold suits.
"""

from __future__ import annotations

import numpy as np
import librosa
from scipy.signal import get_window

from beatlock.analysis.models import AnalysisFrame

_DEFAULT_SR = 44100
_DEFAULT_N_FFT = 2048
_DEFAULT_HOP = 512


class SpectralFrontend:
    """Streaming STFT that turns arbitrary-sized PCM chunks into frames.

    Parameters
    ----------
    sr:
        Sample rate in Hz.
    n_fft:
        Analysis window length in samples.
    hop_size:
        Samples between frames; must not exceed ``n_fft``.
    start_time:
        Audio-clock time of the first sample, in seconds.
    """

    def __init__(
        self,
        sr: int = _DEFAULT_SR,
        n_fft: int = _DEFAULT_N_FFT,
        hop_size: int = _DEFAULT_HOP,
        start_time: float = 0.0,
    ) -> None:
        if hop_size <= 0 or hop_size > n_fft:
            raise ValueError(f"hop_size must be in 1..{n_fft}, got {hop_size}")
        self.sr = sr
        self.n_fft = n_fft
        self.hop_size = hop_size
        self.start_time = start_time
        self._window = get_window("hann", n_fft, fftbins=True).astype(np.float32)
        self._scale = 1.0 / float(np.sum(self._window))
        self._frame = np.zeros(n_fft, dtype=np.float32)
        self._pending = np.zeros(0, dtype=np.float32)
        self._samples_seen = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def push(self, chunk: np.ndarray) -> list[AnalysisFrame]:
        """Append PCM samples and return every frame that became complete."""
        chunk = np.asarray(chunk, dtype=np.float32).ravel()
        if len(chunk) == 0:
            return []

        data = np.concatenate([self._pending, chunk]) if len(self._pending) else chunk
        frames = []
        offset = 0
        hop = self.hop_size
        while len(data) - offset >= hop:
            hop_samples = data[offset:offset + hop]
            self._frame[:-hop] = self._frame[hop:]
            self._frame[-hop:] = hop_samples
            self._samples_seen += hop
            offset += hop
            frames.append(self._analyze(hop_samples))

        self._pending = data[offset:].copy()
        return frames

    @property
    def time(self) -> float:
        """Audio-clock time of the last analysed sample."""
        return self.start_time + self._samples_seen / self.sr

    def reset(self, start_time: float | None = None) -> None:
        """Drop buffered audio, e.g. after a stream discontinuity."""
        self._frame[:] = 0
        self._pending = np.zeros(0, dtype=np.float32)
        self._samples_seen = 0
        if start_time is not None:
            self.start_time = start_time

    def _analyze(self, hop_samples: np.ndarray) -> AnalysisFrame:
        spectrum = np.fft.rfft(self._frame * self._window)
        return AnalysisFrame(
            magnitudes=(np.abs(spectrum) * self._scale).astype(np.float32),
            phase=np.angle(spectrum).astype(np.float32),
            timestamp=self.time,
            samples=hop_samples.copy(),
        )


def frames_from_audio(
    audio: np.ndarray,
    sr: int = _DEFAULT_SR,
    n_fft: int = _DEFAULT_N_FFT,
    hop_size: int = _DEFAULT_HOP,
) -> list[AnalysisFrame]:
    """Compute all frames of a pre-loaded signal with librosa's STFT.

    Frame *i* is stamped with the time of its last sample, matching what the
    streaming frontend reports for the same audio.
    """
    audio = np.asarray(audio, dtype=np.float32).ravel()
    if len(audio) < n_fft:
        audio = np.pad(audio, (n_fft - len(audio), 0))

    stft = librosa.stft(audio, n_fft=n_fft, hop_length=hop_size, window="hann", center=False)
    window_sum = float(np.sum(get_window("hann", n_fft, fftbins=True)))
    magnitudes = (np.abs(stft) / window_sum).astype(np.float32)
    phases = np.angle(stft).astype(np.float32)

    frames = []
    for i in range(stft.shape[1]):
        end = i * hop_size + n_fft
        frames.append(AnalysisFrame(
            magnitudes=magnitudes[:, i],
            phase=phases[:, i],
            timestamp=end / sr,
            samples=audio[end - hop_size:end].copy(),
        ))
    return frames
