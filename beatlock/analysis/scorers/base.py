"""Scorer protocol and feature vector layout."""

from typing import Protocol, Sequence, runtime_checkable

import numpy as np

from beatlock.analysis.models import ScorerResult, SyncState

FEATURE_LENGTH = 50
N_SPECTRAL = 20
N_TEMPORAL = 20
N_INTERVALS = 5
_TEMPO_NORM = 200.0

# Offsets into the feature vector
SPECTRAL_OFFSET = 0
TEMPORAL_OFFSET = SPECTRAL_OFFSET + N_SPECTRAL
STATE_OFFSET = TEMPORAL_OFFSET + N_TEMPORAL
INTERVAL_OFFSET = STATE_OFFSET + 5


@runtime_checkable
class BeatScorer(Protocol):
    """Optional model that refines beat candidates.

    ``predict`` returns ``None`` when it has no opinion (e.g. still warming
    up); the engine treats that the same as having no scorer. Exceptions are
    caught by the engine.
    """

    def predict(self, features: np.ndarray) -> ScorerResult | None:
        ...


def _copy_into(dest: np.ndarray, offset: int, count: int, values) -> None:
    if values is None:
        return
    src = np.nan_to_num(np.asarray(values, dtype=np.float32).ravel()[:count])
    dest[offset:offset + len(src)] = src


def build_features(
    magnitudes,
    samples,
    state: SyncState,
    threshold: float,
    beat_times: Sequence[float],
) -> np.ndarray:
    """Build the fixed-length scorer input.

    Layout: 20 lowest spectral bins, 20 time-domain samples, normalized tempo,
    beat phase, measure phase, tempo confidence, adaptive threshold, then up
    to 5 most recent inter-beat intervals (newest first). Missing values are 0.
    """
    features = np.zeros(FEATURE_LENGTH, dtype=np.float32)
    _copy_into(features, SPECTRAL_OFFSET, N_SPECTRAL, magnitudes)
    _copy_into(features, TEMPORAL_OFFSET, N_TEMPORAL, samples)

    features[STATE_OFFSET] = state.current_tempo / _TEMPO_NORM
    features[STATE_OFFSET + 1] = state.beat_phase
    features[STATE_OFFSET + 2] = state.measure_phase
    features[STATE_OFFSET + 3] = state.confidence
    features[STATE_OFFSET + 4] = threshold

    times = list(beat_times)
    if len(times) >= 2:
        intervals = np.diff(times)[::-1][:N_INTERVALS]
        features[INTERVAL_OFFSET:INTERVAL_OFFSET + len(intervals)] = intervals

    return features


def close_scorer(scorer) -> None:
    """Release scorer resources if it exposes ``close()``."""
    close = getattr(scorer, "close", None)
    if callable(close):
        close()


def reset_scorer(scorer) -> None:
    """Drop any sequence context the scorer keeps, if it exposes ``reset()``."""
    reset = getattr(scorer, "reset", None)
    if callable(reset):
        reset()
