"""Run the streaming pipeline over a complete recording."""

import logging
from dataclasses import dataclass, field

import numpy as np

from beatlock.analysis.engine import SyncEngine
from beatlock.analysis.models import BeatEvent, SyncMetrics, SyncState, TempoEstimate
from beatlock.analysis.scorers.base import BeatScorer
from beatlock.audio.frontend import frames_from_audio
from beatlock.config import SyncConfig, settings

logger = logging.getLogger(__name__)


@dataclass
class OfflineResult:
    """Everything the pipeline produced for one recording."""
    tempo: TempoEstimate
    sync_state: SyncState
    metrics: SyncMetrics
    beats: list[BeatEvent] = field(default_factory=list)
    duration: float = 0.0


def analyze_audio(
    audio: np.ndarray,
    sr: int,
    config: SyncConfig | None = None,
    scorer: BeatScorer | None = None,
    n_fft: int | None = None,
) -> OfflineResult:
    """Feed every frame of *audio* through a fresh SyncEngine.

    The beat history is sized to hold every beat of the recording.
    """
    config = config or settings.sync_config(sample_rate=sr)
    duration = len(audio) / sr
    capacity = max(config.history_capacity, int(duration * config.max_tempo / 60.0) + 1)
    config = config.merged(sample_rate=sr, history_capacity=capacity)

    frames = frames_from_audio(audio, sr, n_fft=n_fft or settings.n_fft, hop_size=config.hop_size)
    logger.info(f"Analyzing {duration:.1f}s of audio at {sr}Hz ({len(frames)} frames)")

    with SyncEngine(config, scorer=scorer) as engine:
        for frame in frames:
            engine.process_frame(frame)
        metrics = engine.get_metrics()
        result = OfflineResult(
            tempo=engine.tempo_tracker.get_estimate(),
            sync_state=engine.get_sync_state(),
            metrics=metrics,
            beats=engine.get_recent_beats(metrics.beat_count),
            duration=duration,
        )

    logger.info(f"  {len(result.beats)} beats, {result.tempo.bpm:.1f} BPM "
                f"(confidence: {result.tempo.confidence:.2f})")
    return result
