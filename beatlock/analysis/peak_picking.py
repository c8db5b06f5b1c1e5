"""Adaptive-threshold peak picking on the onset-strength stream."""

from collections import deque

import numpy as np

from beatlock.analysis.models import BeatCandidate

_DEFAULT_INITIAL_THRESHOLD = 0.3
_DEFAULT_WINDOW_SIZE = 5
_DEFAULT_ALPHA = 0.01
_DEFAULT_HOP_SECONDS = 512 / 44100
_STATS_HISTORY = 20


class AdaptivePeakPicker:
    """Emit a BeatCandidate for significant local maxima of the onset stream.

    Parameters
    ----------
    initial_threshold:
        Threshold before any adaptation. ``reset()`` restores it.
    window_size:
        Length of the sliding window; its center sample is the peak candidate.
    alpha:
        Exponential smoothing rate of the threshold.
    hop_seconds:
        Time between successive onset values, used to back-date peaks to
        the frame they occurred in.
    stats_history:
        Number of windowed mean/variance pairs the threshold adapts to.
    """

    def __init__(
        self,
        initial_threshold: float = _DEFAULT_INITIAL_THRESHOLD,
        window_size: int = _DEFAULT_WINDOW_SIZE,
        alpha: float = _DEFAULT_ALPHA,
        hop_seconds: float = _DEFAULT_HOP_SECONDS,
        stats_history: int = _STATS_HISTORY,
    ) -> None:
        if window_size < 3:
            raise ValueError(f"window_size must be at least 3, got {window_size}")
        self.initial_threshold = float(initial_threshold)
        self.window_size = window_size
        self.alpha = float(alpha)
        self.hop_seconds = float(hop_seconds)
        self._threshold = self.initial_threshold
        self._window: deque[float] = deque(maxlen=window_size)
        self._means: deque[float] = deque(maxlen=stats_history)
        self._variances: deque[float] = deque(maxlen=stats_history)

    @property
    def center_index(self) -> int:
        return self.window_size // 2

    def detect_peak(self, value: float, timestamp: float) -> BeatCandidate | None:
        """Feed one onset value; return a candidate if the window center is a peak.

        The reported timestamp is that of the center sample, i.e. *timestamp*
        minus the lookahead still in the window.
        """
        self._window.append(float(value))
        if len(self._window) < self.window_size:
            return None

        window = np.fromiter(self._window, dtype=np.float64, count=self.window_size)
        center = self.center_index
        center_value = float(window[center])

        # Ties reject, so a flat run never produces a peak
        others = np.delete(window, center)
        if np.any(others >= center_value):
            return None

        self._update_threshold(window)

        if center_value <= self._threshold:
            return None

        lookahead = self.window_size - center - 1
        confidence = min(1.0, center_value / self._threshold) if self._threshold > 0 else 1.0
        return BeatCandidate(
            timestamp=timestamp - lookahead * self.hop_seconds,
            strength=center_value,
            confidence=confidence,
        )

    def _update_threshold(self, window: np.ndarray) -> None:
        self._means.append(float(np.mean(window)))
        self._variances.append(float(np.var(window)))

        rolling_mean = float(np.mean(self._means))
        rolling_std = float(np.sqrt(np.mean(self._variances)))
        target = rolling_mean + 2.0 * rolling_std
        self._threshold = self._threshold * (1.0 - self.alpha) + target * self.alpha

    def get_threshold(self) -> float:
        return self._threshold

    def reset(self) -> None:
        """Clear all window state and restore the initial threshold."""
        self._window.clear()
        self._means.clear()
        self._variances.clear()
        self._threshold = self.initial_threshold
