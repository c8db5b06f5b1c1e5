"""Shared test fixtures for beat sync tests."""

import numpy as np
import pytest
from fastapi.testclient import TestClient

from beatlock.analysis.models import ScorerResult
from beatlock.config import SyncConfig
from beatlock.main import app

# 10 ms hops so synthetic onset trains land on exact frame indices
TEST_SR = 1000
TEST_HOP = 10


@pytest.fixture
def client():
    """FastAPI test client."""
    return TestClient(app)


@pytest.fixture
def test_config():
    """Pipeline config with 10 ms hops."""
    return SyncConfig(sample_rate=TEST_SR, hop_size=TEST_HOP)


def generate_onset_train(
    period: float = 0.5,
    n_beats: int = 10,
    peak: float = 0.6,
    hop: float = TEST_HOP / TEST_SR,
    lead_in: float = 0.5,
) -> list[tuple[float, float]]:
    """Onset-strength stream with an isolated peak every *period* seconds.

    Returns (strength, timestamp) pairs; a few trailing frames follow the
    last peak so the peak picker has its lookahead.
    """
    frames_per_beat = round(period / hop)
    first = round(lead_in / hop)
    peak_frames = {first + k * frames_per_beat for k in range(n_beats)}
    n_frames = first + n_beats * frames_per_beat + 5
    return [
        (peak if i in peak_frames else 0.0, i * hop)
        for i in range(n_frames)
    ]


def generate_click_track(
    bpm: float,
    beats_per_bar: int = 4,
    duration_seconds: float = 10.0,
    sr: int = 22050,
    accent_ratio: float = 2.0,
) -> np.ndarray:
    """Generate a synthetic click track with accented downbeats.

    Returns mono audio at the given sample rate.
    """
    n_samples = int(duration_seconds * sr)
    audio = np.zeros(n_samples, dtype=np.float32)

    beat_interval = 60.0 / bpm  # seconds per beat
    click_samples = int(0.02 * sr)  # 20ms click

    # Create click sound (short sine burst with envelope)
    t_click = np.arange(click_samples) / sr
    click = np.sin(2 * np.pi * 1000 * t_click) * np.exp(-t_click * 100)

    beat = 0
    time = 0.0
    while time < duration_seconds:
        sample_pos = int(round(time * sr))
        amplitude = accent_ratio if beat % beats_per_bar == 0 else 1.0

        end = min(sample_pos + click_samples, n_samples)
        length = end - sample_pos
        if length > 0:
            audio[sample_pos:end] += click[:length] * amplitude

        time += beat_interval
        beat += 1

    # Normalize
    peak = np.max(np.abs(audio))
    if peak > 0:
        audio = audio / peak

    return audio


class FixedScorer:
    """Scorer that always returns the same result."""

    def __init__(self, beat_probability: float = 1.0, tempo_adjustment: float = 0.0):
        self.result = ScorerResult(beat_probability, tempo_adjustment)
        self.calls = 0
        self.resets = 0
        self.closed = False

    def predict(self, features):
        self.calls += 1
        return self.result

    def reset(self):
        self.resets += 1

    def close(self):
        self.closed = True


class FailingScorer:
    """Scorer whose every prediction raises."""

    def __init__(self):
        self.calls = 0

    def predict(self, features):
        self.calls += 1
        raise RuntimeError("model exploded")
