"""Sync engine - drives the per-frame beat tracking pipeline.

One frame is fully processed before the next is accepted:
onset detection -> peak picking -> optional scorer -> confidence gate ->
tempo tracking -> SyncState. The published SyncState is an immutable
snapshot replaced by reference each frame, so readers on other threads never
block the processing stream and never see a half-updated state.
"""

import logging
import math
import threading
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError

from beatlock.analysis.models import (
    AnalysisFrame,
    BeatCandidate,
    BeatEvent,
    ScorerResult,
    SyncMetrics,
    SyncState,
    clamp01,
)
from beatlock.analysis.onset import OnsetDetector
from beatlock.analysis.peak_picking import AdaptivePeakPicker
from beatlock.analysis.scorers.base import BeatScorer, build_features, close_scorer, reset_scorer
from beatlock.analysis.tempo import TempoTracker
from beatlock.config import SyncConfig

logger = logging.getLogger(__name__)

_TEMPO_ADJUSTMENT_SCALE = 0.1
_STABILITY_WINDOW = 10  # events
_MISSED_BEAT_GAP = 1.5  # beat intervals


class EngineDisposedError(RuntimeError):
    """Raised when frames are submitted after dispose()."""


def _phase(elapsed: float, interval: float) -> float:
    phase = (elapsed % interval) / interval
    # Float rounding can land exactly on 1.0
    return phase if 0.0 <= phase < 1.0 else 0.0


def project_sync_state(
    last_beat_time: float,
    tempo: float,
    confidence: float,
    threshold: float,
    now: float,
    beats_per_measure: int = 4,
    stable_confidence: float = 0.8,
) -> SyncState:
    """SyncState at clock time *now* for a beat grid anchored at *last_beat_time*."""
    beat_interval = 60.0 / tempo
    elapsed = now - last_beat_time
    beat_phase = _phase(elapsed, beat_interval)
    measure_phase = _phase(elapsed, beat_interval * beats_per_measure)
    confidence = clamp01(confidence)
    return SyncState(
        current_tempo=tempo,
        last_beat_time=last_beat_time,
        next_beat_time=now + (1.0 - beat_phase) * beat_interval,
        beat_phase=beat_phase,
        measure_phase=measure_phase,
        is_stable=confidence > stable_confidence,
        confidence=confidence,
        adaptive_threshold=threshold,
    )


class SyncEngine:
    """Real-time beat detection and phase-locked sync state.

    Parameters
    ----------
    config:
        Pipeline configuration. Keyword *overrides* are merged on top and
        validated; invalid values raise ``pydantic.ValidationError``.
    scorer:
        Optional BeatScorer. Absent, abstaining, failing and timed-out
        scorers are all treated as "no adjustment".
    """

    def __init__(self, config: SyncConfig | None = None, scorer: BeatScorer | None = None, **overrides) -> None:
        config = config or SyncConfig()
        if overrides:
            config = config.merged(**overrides)
        self.config = config
        self.scorer = scorer
        self._executor = (
            ThreadPoolExecutor(max_workers=1, thread_name_prefix="beat-scorer")
            if scorer is not None else None
        )
        self._lock = threading.Lock()
        self._disposed = False

        self.onset_detector = OnsetDetector(config.onset_function)
        self.peak_picker = self._make_peak_picker(config)
        self.tempo_tracker = TempoTracker(config.min_tempo, config.max_tempo)
        self._events: deque[BeatEvent] = deque(maxlen=config.history_capacity)
        self._reset_metrics()
        self._state = self._idle_state()

        logger.info(
            f"SyncEngine ready: {config.onset_function.value}, "
            f"{config.min_tempo:.0f}-{config.max_tempo:.0f} BPM, "
            f"scorer={'on' if scorer is not None else 'off'}"
        )

    @staticmethod
    def _make_peak_picker(config: SyncConfig) -> AdaptivePeakPicker:
        return AdaptivePeakPicker(
            initial_threshold=config.initial_threshold,
            window_size=config.adaptive_peak_window_size,
            alpha=config.adaptive_peak_alpha,
            hop_seconds=config.hop_seconds,
        )

    def _reset_metrics(self) -> None:
        self._accuracy = 0.0
        self._latency = 0.0
        self._stability = 0.0
        self._processing_time = 0.0
        self._beat_count = 0
        self._missed_beats = 0
        self._false_positives = 0
        self._frame_count = 0

    def _idle_state(self) -> SyncState:
        return SyncState(
            current_tempo=self.tempo_tracker.get_current_tempo(),
            adaptive_threshold=self.peak_picker.get_threshold(),
        )

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def process_frame(self, frame: AnalysisFrame) -> SyncState:
        """Run one full pipeline step for *frame* and return the new state."""
        with self._lock:
            self._check_open()
            start = time.perf_counter()
            strength = self.onset_detector.detect(frame)
            self._step(strength, frame.timestamp, frame)
            self._processing_time = (time.perf_counter() - start) * 1000
            return self._state

    def process_onset(self, strength: float, timestamp: float) -> SyncState:
        """Run the pipeline from an already computed onset strength."""
        with self._lock:
            self._check_open()
            start = time.perf_counter()
            self._step(strength, timestamp, None)
            self._processing_time = (time.perf_counter() - start) * 1000
            return self._state

    def _check_open(self) -> None:
        if self._disposed:
            raise EngineDisposedError("SyncEngine has been disposed")

    def _step(self, strength: float, timestamp: float, frame: AnalysisFrame | None) -> None:
        if not math.isfinite(strength):
            strength = 0.0
        candidate = self.peak_picker.detect_peak(strength, timestamp)
        if candidate is not None:
            self._handle_candidate(candidate, timestamp, frame)
        self._frame_count += 1
        self._state = self._compute_state(timestamp)

    def _handle_candidate(self, candidate: BeatCandidate, now: float, frame: AnalysisFrame | None) -> None:
        if self.scorer is not None:
            result = self._score(frame)
            if result is not None:
                candidate.confidence = clamp01(candidate.confidence * result.beat_probability)
                provisional = self.tempo_tracker.get_current_tempo() * (
                    1.0 + result.tempo_adjustment * _TEMPO_ADJUSTMENT_SCALE
                )
                logger.debug(
                    f"Scorer: p={result.beat_probability:.2f}, "
                    f"provisional tempo {provisional:.1f} BPM"
                )

        if candidate.confidence < self.config.confidence_threshold:
            self._false_positives += 1
            logger.debug(
                f"Rejected candidate at {candidate.timestamp:.3f}s "
                f"(confidence {candidate.confidence:.2f})"
            )
            return

        previous = self._events[-1] if self._events else None
        tempo = self.tempo_tracker.update_tempo(candidate.timestamp)
        tempo = max(self.config.min_tempo, min(self.config.max_tempo, tempo))
        beat_interval = 60.0 / tempo

        position = 0.0
        if previous is not None:
            since_previous = candidate.timestamp - previous.timestamp
            position = _phase(since_previous, beat_interval)
            if since_previous > beat_interval * _MISSED_BEAT_GAP:
                self._missed_beats += max(0, round(since_previous / beat_interval) - 1)

        event = BeatEvent(
            timestamp=candidate.timestamp,
            confidence=clamp01(candidate.confidence),
            strength=candidate.strength,
            position_in_measure=position,
            tempo_bpm=tempo,
            time_signature=(self.config.beats_per_measure, 4),
        )
        self._events.append(event)
        self._beat_count += 1
        self._latency = max(0.0, now - candidate.timestamp)
        self._update_accuracy_metrics()
        logger.debug(f"Beat at {event.timestamp:.3f}s, {tempo:.1f} BPM")

    def _score(self, frame: AnalysisFrame | None) -> ScorerResult | None:
        features = build_features(
            frame.magnitudes if frame is not None else None,
            frame.samples if frame is not None else None,
            self._state,
            self.peak_picker.get_threshold(),
            [e.timestamp for e in self._events],
        )
        future = self._executor.submit(self.scorer.predict, features)
        try:
            result = future.result(timeout=self.config.scorer_timeout_ms / 1000)
        except FutureTimeoutError:
            future.cancel()
            logger.warning(f"Beat scorer exceeded {self.config.scorer_timeout_ms:.0f} ms; skipping")
            return None
        except Exception as e:
            logger.warning("Beat scorer failed: %s", e)
            return None

        if result is None:
            return None
        if isinstance(result, tuple):
            result = ScorerResult(*result)
        if not (math.isfinite(result.beat_probability) and math.isfinite(result.tempo_adjustment)):
            logger.warning("Beat scorer returned non-finite output; ignoring")
            return None
        return ScorerResult(
            beat_probability=clamp01(result.beat_probability),
            tempo_adjustment=float(result.tempo_adjustment),
        )

    def _update_accuracy_metrics(self) -> None:
        recent = list(self._events)[-_STABILITY_WINDOW:]
        if len(recent) < 2:
            return

        intervals = [b.timestamp - a.timestamp for a, b in zip(recent, recent[1:])]
        avg = sum(intervals) / len(intervals)
        if avg <= 0:
            return
        variance = sum((i - avg) ** 2 for i in intervals) / len(intervals)
        self._stability = max(0.0, 1.0 - variance / (avg * avg))
        self._accuracy = self.tempo_tracker.get_confidence()

    def _compute_state(self, now: float) -> SyncState:
        if not self._events:
            return self._idle_state()
        return project_sync_state(
            last_beat_time=self._events[-1].timestamp,
            tempo=self.tempo_tracker.get_current_tempo(),
            confidence=self.tempo_tracker.get_confidence(),
            threshold=self.peak_picker.get_threshold(),
            now=now,
            beats_per_measure=self.config.beats_per_measure,
            stable_confidence=self.config.stable_confidence,
        )

    # ------------------------------------------------------------------
    # Consumer API
    # ------------------------------------------------------------------

    def get_sync_state(self) -> SyncState:
        """Latest published snapshot (immutable)."""
        return self._state

    def sync_state_at(self, now: float) -> SyncState:
        """Project the latest snapshot to clock time *now*, e.g. a render tick."""
        state = self._state
        if not self._events:
            return state
        return project_sync_state(
            last_beat_time=state.last_beat_time,
            tempo=state.current_tempo,
            confidence=state.confidence,
            threshold=state.adaptive_threshold,
            now=now,
            beats_per_measure=self.config.beats_per_measure,
            stable_confidence=self.config.stable_confidence,
        )

    def get_recent_beats(self, count: int = 10) -> list[BeatEvent]:
        if count <= 0:
            return []
        return list(self._events)[-count:]

    def get_metrics(self) -> SyncMetrics:
        return SyncMetrics(
            accuracy=self._accuracy,
            latency=self._latency,
            stability=self._stability,
            processing_time=self._processing_time,
            beat_count=self._beat_count,
            missed_beats=self._missed_beats,
            false_positives=self._false_positives,
            frame_count=self._frame_count,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def update_config(self, **changes) -> SyncConfig:
        """Apply a partial config update.

        The merged config is validated first; on error nothing changes.
        """
        with self._lock:
            self._check_open()
            new = self.config.merged(**changes)
            old = self.config
            self.config = new

            if (new.min_tempo, new.max_tempo) != (old.min_tempo, old.max_tempo):
                self.tempo_tracker = TempoTracker(new.min_tempo, new.max_tempo)
            if (
                new.adaptive_peak_window_size != old.adaptive_peak_window_size
                or new.adaptive_peak_alpha != old.adaptive_peak_alpha
                or new.initial_threshold != old.initial_threshold
            ):
                self.peak_picker = self._make_peak_picker(new)
            else:
                self.peak_picker.hop_seconds = new.hop_seconds
            if new.onset_function != old.onset_function:
                self.onset_detector = OnsetDetector(new.onset_function)
            if new.history_capacity != old.history_capacity:
                self._events = deque(self._events, maxlen=new.history_capacity)

            logger.info(f"Config updated: {', '.join(sorted(changes))}")
            return new

    def reset(self) -> None:
        """Return every component to its initial state and clear history."""
        with self._lock:
            self.onset_detector.reset()
            self.peak_picker.reset()
            self.tempo_tracker.reset()
            self._events.clear()
            self._reset_metrics()
            self._state = self._idle_state()
            if self.scorer is not None:
                reset_scorer(self.scorer)

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def dispose(self) -> None:
        """Stop accepting frames and release the scorer. Safe to call twice."""
        with self._lock:
            if self._disposed:
                return
            self._disposed = True
            if self._executor is not None:
                self._executor.shutdown(wait=False, cancel_futures=True)
                self._executor = None
            if self.scorer is not None:
                try:
                    close_scorer(self.scorer)
                except Exception as e:
                    logger.warning("Failed to close beat scorer: %s", e)
                self.scorer = None
        logger.info("SyncEngine disposed")

    def __enter__(self) -> "SyncEngine":
        return self

    def __exit__(self, *exc) -> None:
        self.dispose()
