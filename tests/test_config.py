"""Tests for pipeline config and app settings."""

import pytest
from pydantic import ValidationError

from beatlock.config import OnsetFunction, Settings, SyncConfig


def test_defaults():
    config = SyncConfig()
    assert config.sample_rate == 44100
    assert config.hop_size == 512
    assert (config.min_tempo, config.max_tempo) == (60.0, 200.0)
    assert config.confidence_threshold == 0.7
    assert config.beats_per_measure == 4
    assert config.history_capacity == 100
    assert config.adaptive_peak_window_size == 5
    assert config.onset_function is OnsetFunction.SPECTRAL_FLUX
    assert config.hop_seconds == pytest.approx(512 / 44100)


@pytest.mark.parametrize("changes", [
    {"min_tempo": 200, "max_tempo": 200},
    {"min_tempo": 180, "max_tempo": 90},
    {"confidence_threshold": 1.5},
    {"adaptive_peak_window_size": 2},
    {"hop_size": 0},
    {"onset_function": "zero_crossings"},
    {"tempo": 120},
])
def test_invalid_values_rejected(changes):
    with pytest.raises(ValidationError):
        SyncConfig(**changes)


def test_config_is_frozen():
    config = SyncConfig()
    with pytest.raises(ValidationError):
        config.min_tempo = 90


def test_merged_returns_validated_copy():
    config = SyncConfig()
    merged = config.merged(min_tempo=90, onset_function="complex_domain")
    assert merged.min_tempo == 90
    assert merged.onset_function is OnsetFunction.COMPLEX_DOMAIN
    assert config.min_tempo == 60

    with pytest.raises(ValidationError):
        config.merged(max_tempo=50)


def test_settings_env_override(monkeypatch):
    monkeypatch.setenv("BEATLOCK_MIN_TEMPO", "80")
    monkeypatch.setenv("BEATLOCK_ONSET_FUNCTION", "phase_deviation")
    monkeypatch.setenv("BEATLOCK_HOP_SIZE", "256")

    config = Settings().sync_config()
    assert config.min_tempo == 80
    assert config.hop_size == 256
    assert config.onset_function is OnsetFunction.PHASE_DEVIATION


def test_settings_overrides_take_precedence():
    config = Settings().sync_config(sample_rate=22050, beats_per_measure=3)
    assert config.sample_rate == 22050
    assert config.beats_per_measure == 3
