"""Tests for the scorer feature vector and the torch scorer."""

import numpy as np
import pytest

from beatlock.analysis.models import ScorerResult, SyncState
from beatlock.analysis.scorers import FEATURE_LENGTH, BeatScorer, TorchBeatScorer, build_features, create_scorer
from beatlock.analysis.scorers.base import INTERVAL_OFFSET, STATE_OFFSET, TEMPORAL_OFFSET, close_scorer, reset_scorer
from tests.conftest import FailingScorer, FixedScorer


def test_feature_layout():
    state = SyncState(current_tempo=100.0, beat_phase=0.25, measure_phase=0.5, confidence=0.9)
    features = build_features(
        magnitudes=np.arange(30, dtype=np.float32),
        samples=np.full(64, -0.5),
        state=state,
        threshold=0.4,
        beat_times=[0.0, 0.5, 1.1, 1.8],
    )

    assert features.shape == (FEATURE_LENGTH,)
    assert features.dtype == np.float32
    np.testing.assert_array_equal(features[:20], np.arange(20))
    np.testing.assert_array_equal(features[TEMPORAL_OFFSET:TEMPORAL_OFFSET + 20], -0.5)
    assert features[STATE_OFFSET] == pytest.approx(0.5)
    assert features[STATE_OFFSET + 1] == pytest.approx(0.25)
    assert features[STATE_OFFSET + 2] == pytest.approx(0.5)
    assert features[STATE_OFFSET + 3] == pytest.approx(0.9)
    assert features[STATE_OFFSET + 4] == pytest.approx(0.4)
    # Newest interval first, unused slots stay zero
    np.testing.assert_allclose(features[INTERVAL_OFFSET:], [0.7, 0.6, 0.5, 0.0, 0.0], atol=1e-6)


def test_feature_vector_tolerates_missing_inputs():
    features = build_features(None, None, SyncState(), 0.3, [])
    assert features.shape == (FEATURE_LENGTH,)
    assert np.all(features[:STATE_OFFSET] == 0)
    assert np.all(features[INTERVAL_OFFSET:] == 0)


def test_feature_vector_keeps_five_intervals():
    times = [i * 0.5 for i in range(12)]
    features = build_features(np.zeros(4), np.zeros(4), SyncState(), 0.3, times)
    np.testing.assert_allclose(features[INTERVAL_OFFSET:], [0.5] * 5)


def test_protocol_is_structural():
    assert isinstance(FixedScorer(), BeatScorer)
    assert isinstance(FailingScorer(), BeatScorer)
    assert isinstance(TorchBeatScorer(), BeatScorer)


def test_close_scorer_is_optional():
    scorer = FixedScorer()
    close_scorer(scorer)
    assert scorer.closed
    close_scorer(FailingScorer())


def test_create_scorer():
    assert create_scorer(None) is None
    assert create_scorer("") is None
    assert isinstance(create_scorer("model.pt"), TorchBeatScorer)


def test_missing_checkpoint_abstains(tmp_path):
    scorer = TorchBeatScorer(model_path=tmp_path / "missing.pt")
    for _ in range(12):
        assert scorer.predict(np.zeros(FEATURE_LENGTH)) is None
    assert not scorer.is_loaded


def test_untrained_network_scores_after_warmup():
    pytest.importorskip("torch")
    scorer = TorchBeatScorer(model_path="does-not-exist.pt", allow_untrained=True)

    results = [scorer.predict(np.random.rand(FEATURE_LENGTH)) for _ in range(10)]
    assert results[:9] == [None] * 9
    result = results[9]
    assert isinstance(result, ScorerResult)
    assert 0.0 <= result.beat_probability <= 1.0
    assert -1.0 <= result.tempo_adjustment <= 1.0

    scorer.close()
    assert not scorer.is_loaded


def test_checkpoint_is_loaded(tmp_path):
    torch = pytest.importorskip("torch")
    from beatlock.analysis.scorers.torch_scorer import SEQUENCE_LENGTH, _build_network

    path = tmp_path / "beat_scorer.pt"
    torch.save({"model_state_dict": _build_network().state_dict()}, path)

    scorer = TorchBeatScorer(model_path=path)
    # Short vectors are zero-padded
    for _ in range(SEQUENCE_LENGTH):
        result = scorer.predict(np.ones(10))
    assert scorer.is_loaded
    assert isinstance(result, ScorerResult)


def test_reset_scorer_is_optional():
    scorer = FixedScorer()
    reset_scorer(scorer)
    assert scorer.resets == 1
    reset_scorer(FailingScorer())


def test_reset_restarts_warmup():
    pytest.importorskip("torch")
    scorer = TorchBeatScorer(model_path="does-not-exist.pt", allow_untrained=True)
    for _ in range(10):
        scorer.predict(np.zeros(FEATURE_LENGTH))

    scorer.reset()
    assert scorer.predict(np.zeros(FEATURE_LENGTH)) is None
    assert scorer.is_loaded
