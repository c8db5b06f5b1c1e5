"""Pydantic response models for API."""

from dataclasses import asdict

from pydantic import BaseModel

from beatlock.analysis.models import BeatEvent, SyncMetrics, SyncState


class BeatEventResponse(BaseModel):
    timestamp: float
    confidence: float
    strength: float
    position_in_measure: float
    tempo_bpm: float
    time_signature: tuple[int, int]

    @classmethod
    def from_event(cls, event: BeatEvent) -> "BeatEventResponse":
        return cls(**asdict(event))


class TempoResponse(BaseModel):
    bpm: float
    confidence: float


class SyncStateResponse(BaseModel):
    current_tempo: float
    last_beat_time: float
    next_beat_time: float
    beat_phase: float
    measure_phase: float
    is_stable: bool
    confidence: float
    adaptive_threshold: float

    @classmethod
    def from_state(cls, state: SyncState) -> "SyncStateResponse":
        return cls(**asdict(state))


class MetricsResponse(BaseModel):
    accuracy: float
    latency: float
    stability: float
    processing_time: float
    beat_count: int
    missed_beats: int
    false_positives: int
    frame_count: int

    @classmethod
    def from_metrics(cls, metrics: SyncMetrics) -> "MetricsResponse":
        return cls(**asdict(metrics))


class AnalysisResponse(BaseModel):
    tempo: TempoResponse
    beats: list[BeatEventResponse]
    sync_state: SyncStateResponse
    metrics: MetricsResponse
    duration: float = 0.0


# WebSocket message types

class BeatMessage(BaseModel):
    type: str = "beat"
    data: BeatEventResponse


class SyncMessage(BaseModel):
    type: str = "sync"
    data: SyncStateResponse


class ErrorMessage(BaseModel):
    type: str = "error"
    message: str
