"""Running tempo estimation from accepted beat timestamps."""

import logging
from collections import deque

import numpy as np

from beatlock.analysis.models import TempoEstimate

logger = logging.getLogger(__name__)

DEFAULT_TEMPO = 120.0
_BEAT_HISTORY = 8
_SMOOTHING_HISTORY = 5
_MIN_CONFIDENCE_SAMPLES = 3
_NEUTRAL_CONFIDENCE = 0.5
_VARIANCE_SCALE = 100.0  # BPM^2 of variance that drives confidence to 0
_RESYNC_BEATS = 4  # slowest-tempo beats of silence after which the beat grid restarts


class TempoTracker:
    """Outlier-resistant tempo tracker.

    Intervals between stored beats are IQR-filtered, their median converted
    to BPM, and the last few medians averaged. Confidence falls with the
    variance of those recent medians.

    A beat arriving after a gap longer than ``resync_gap`` seconds (default:
    four beats at ``min_tempo``) restarts the beat history from that beat,
    keeping tempo and confidence, so a dropout cannot stall the tracker.
    This deliberately departs from the discard rule for out-of-range beats:
    the re-anchoring beat is stored even though its implied tempo is below
    ``min_tempo``, but it never contributes a tempo value.
    """

    def __init__(
        self,
        min_tempo: float = 60.0,
        max_tempo: float = 200.0,
        beat_history: int = _BEAT_HISTORY,
        smoothing_history: int = _SMOOTHING_HISTORY,
        resync_gap: float | None = None,
    ) -> None:
        if min_tempo >= max_tempo:
            raise ValueError(f"min_tempo ({min_tempo}) must be below max_tempo ({max_tempo})")
        self.min_tempo = float(min_tempo)
        self.max_tempo = float(max_tempo)
        self.resync_gap = resync_gap if resync_gap is not None else _RESYNC_BEATS * 60.0 / self.min_tempo
        self._beats: deque[float] = deque(maxlen=beat_history)
        self._tempo_history: deque[float] = deque(maxlen=smoothing_history)
        self._tempo = self._clamp(DEFAULT_TEMPO)
        self._confidence = 0.0

    def _clamp(self, bpm: float) -> float:
        return max(self.min_tempo, min(self.max_tempo, bpm))

    def update_tempo(self, beat_timestamp: float) -> float:
        """Register a beat and return the (possibly updated) tempo.

        Beats implying a tempo outside ``[min_tempo, max_tempo]`` relative to
        the previous stored beat are discarded without touching any state,
        unless the gap exceeds ``resync_gap``.
        """
        if not self._beats:
            self._beats.append(float(beat_timestamp))
            return self._tempo

        interval = beat_timestamp - self._beats[-1]
        if interval <= 0:
            logger.debug(f"Discarding beat at {beat_timestamp:.3f}s: non-positive interval")
            return self._tempo

        if interval > self.resync_gap:
            logger.info(f"Beat grid restarted after {interval:.2f}s gap")
            self._beats.clear()
            self._beats.append(float(beat_timestamp))
            return self._tempo

        implied = 60.0 / interval
        if not self.min_tempo <= implied <= self.max_tempo:
            logger.debug(f"Discarding beat at {beat_timestamp:.3f}s: implied {implied:.1f} BPM out of range")
            return self._tempo

        self._beats.append(float(beat_timestamp))
        self._tempo = self.calculate_tempo()
        self.update_confidence()
        return self._tempo

    def calculate_tempo(self) -> float:
        """Median-of-filtered-intervals tempo, averaged over recent estimates."""
        if len(self._beats) < 2:
            return self._tempo

        intervals = np.sort(np.diff(np.fromiter(self._beats, dtype=np.float64)))
        n = len(intervals)
        q1 = intervals[int(n * 0.25)]
        q3 = intervals[int(n * 0.75)]
        iqr = q3 - q1
        kept = intervals[(intervals >= q1 - 1.5 * iqr) & (intervals <= q3 + 1.5 * iqr)]
        if len(kept) == 0:
            return self._tempo

        median_interval = float(kept[len(kept) // 2])
        self._tempo_history.append(60.0 / median_interval)
        return self._clamp(float(np.mean(self._tempo_history)))

    def update_confidence(self) -> None:
        """Map the spread of recent tempo estimates to a [0, 1] confidence."""
        if len(self._tempo_history) < _MIN_CONFIDENCE_SAMPLES:
            self._confidence = _NEUTRAL_CONFIDENCE
            return

        history = np.fromiter(self._tempo_history, dtype=np.float64)
        variance = float(np.mean((history - self._tempo) ** 2))
        self._confidence = max(0.0, min(1.0, 1.0 - variance / _VARIANCE_SCALE))

    def get_current_tempo(self) -> float:
        return self._tempo

    def get_confidence(self) -> float:
        return self._confidence

    def get_estimate(self) -> TempoEstimate:
        return TempoEstimate(bpm=self._tempo, confidence=self._confidence)

    @property
    def beat_count(self) -> int:
        """Number of beats currently stored."""
        return len(self._beats)

    def reset(self) -> None:
        self._beats.clear()
        self._tempo_history.clear()
        self._tempo = self._clamp(DEFAULT_TEMPO)
        self._confidence = 0.0
