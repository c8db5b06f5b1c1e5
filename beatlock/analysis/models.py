"""Core data models for beat tracking and synchronization."""

from dataclasses import dataclass

import numpy as np


def clamp01(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


@dataclass(frozen=True, eq=False)
class AnalysisFrame:
    """One spectral analysis frame produced at a fixed hop interval."""
    magnitudes: np.ndarray
    phase: np.ndarray | None = None
    timestamp: float = 0.0  # seconds on the audio clock
    samples: np.ndarray | None = None  # time-domain hop, if the frontend kept it


@dataclass
class BeatCandidate:
    """A local onset maximum above the adaptive threshold."""
    timestamp: float
    strength: float
    confidence: float  # 0.0-1.0


@dataclass(frozen=True)
class BeatEvent:
    """An accepted beat."""
    timestamp: float
    confidence: float
    strength: float
    position_in_measure: float  # 0.0-1.0
    tempo_bpm: float
    time_signature: tuple[int, int] = (4, 4)


@dataclass(frozen=True)
class TempoEstimate:
    """Current tempo and how much to trust it."""
    bpm: float
    confidence: float


@dataclass(frozen=True)
class SyncState:
    """Phase-locked synchronization snapshot, safe to share across threads."""
    current_tempo: float = 120.0
    last_beat_time: float = 0.0
    next_beat_time: float = 0.0
    beat_phase: float = 0.0  # 0-1 within beat
    measure_phase: float = 0.0  # 0-1 within measure
    is_stable: bool = False
    confidence: float = 0.0
    adaptive_threshold: float = 0.3


@dataclass(frozen=True)
class SyncMetrics:
    """Running quality and performance metrics."""
    accuracy: float = 0.0
    latency: float = 0.0  # seconds between a beat and the frame that confirmed it
    stability: float = 0.0
    processing_time: float = 0.0  # ms spent on the last frame
    beat_count: int = 0
    missed_beats: int = 0
    false_positives: int = 0
    frame_count: int = 0


@dataclass(frozen=True)
class ScorerResult:
    """Output of an optional beat scorer."""
    beat_probability: float
    tempo_adjustment: float
