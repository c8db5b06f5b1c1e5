"""Optional beat scorers that refine candidate confidence."""

from beatlock.analysis.scorers.base import FEATURE_LENGTH, BeatScorer, build_features, close_scorer, reset_scorer
from beatlock.analysis.scorers.torch_scorer import TorchBeatScorer, create_scorer

__all__ = [
    "FEATURE_LENGTH",
    "BeatScorer",
    "build_features",
    "close_scorer",
    "reset_scorer",
    "TorchBeatScorer",
    "create_scorer",
]
