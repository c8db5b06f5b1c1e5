"""Recurrent beat scorer backed by PyTorch.

Buffers the last few feature vectors and runs a small dense + LSTM network
over them, producing a beat probability and a tempo adjustment. The network
is built lazily on first use. Without a checkpoint the scorer abstains
(returns ``None``) unless explicitly asked to run untrained weights, so a
missing model file never degrades detection.
"""

import logging
import threading
from collections import deque
from pathlib import Path

import numpy as np

from beatlock.analysis.models import ScorerResult
from beatlock.analysis.scorers.base import FEATURE_LENGTH

logger = logging.getLogger(__name__)

SEQUENCE_LENGTH = 10

# Search paths for the model checkpoint (checked in priority order)
MODEL_PATHS = [
    Path("data/beat_scorer.pt"),  # local development
    Path.home() / ".beatlock" / "beat_scorer.pt",  # user install
]


def _build_network():
    import torch.nn as nn

    class BeatScorerNet(nn.Module):
        def __init__(self) -> None:
            super().__init__()
            self.embed = nn.Sequential(nn.Linear(FEATURE_LENGTH, 128), nn.ReLU())
            self.lstm1 = nn.LSTM(128, 64, batch_first=True)
            self.lstm2 = nn.LSTM(64, 32, batch_first=True)
            self.head = nn.Sequential(nn.Linear(32, 16), nn.ReLU(), nn.Linear(16, 2), nn.Sigmoid())

        def forward(self, x):
            x = self.embed(x)
            x, _ = self.lstm1(x)
            x, _ = self.lstm2(x)
            return self.head(x[:, -1, :])

    return BeatScorerNet()


class TorchBeatScorer:
    """BeatScorer implementation using a recurrent network.

    Parameters
    ----------
    model_path:
        Checkpoint containing ``model_state_dict``. If ``None``, ``MODEL_PATHS``
        are searched.
    allow_untrained:
        Run randomly initialised weights when no checkpoint is found.
        Only useful for development.
    """

    def __init__(self, model_path: str | Path | None = None, allow_untrained: bool = False) -> None:
        self.model_path = Path(model_path) if model_path else None
        self.allow_untrained = allow_untrained
        self._model = None
        self._load_attempted = False
        self._buffer: deque[np.ndarray] = deque(maxlen=SEQUENCE_LENGTH)
        self._lock = threading.Lock()

    def _find_checkpoint(self) -> Path | None:
        candidates = [self.model_path] if self.model_path else MODEL_PATHS
        for candidate in candidates:
            if candidate.exists():
                return candidate
        return None

    def _load_model(self) -> bool:
        """Build the network once; return whether it is usable."""
        if self._model is not None:
            return True
        if self._load_attempted:
            return False
        self._load_attempted = True

        try:
            import torch

            checkpoint_path = self._find_checkpoint()
            if checkpoint_path is None and not self.allow_untrained:
                logger.debug("Beat scorer checkpoint not found; scorer disabled")
                return False

            model = _build_network()
            if checkpoint_path is not None:
                checkpoint = torch.load(checkpoint_path, map_location="cpu", weights_only=False)
                model.load_state_dict(checkpoint["model_state_dict"])
                logger.info("Loaded beat scorer from %s", checkpoint_path)
            else:
                logger.warning("Beat scorer running with untrained weights")
            model.eval()
            self._model = model
            return True

        except Exception as e:
            logger.warning("Failed to load beat scorer: %s", e)
            return False

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    def predict(self, features: np.ndarray) -> ScorerResult | None:
        """Score the newest feature vector in the context of the previous ones."""
        vector = np.zeros(FEATURE_LENGTH, dtype=np.float32)
        src = np.asarray(features, dtype=np.float32).ravel()[:FEATURE_LENGTH]
        vector[:len(src)] = src

        with self._lock:
            if not self._load_model():
                return None

            self._buffer.append(vector)
            if len(self._buffer) < SEQUENCE_LENGTH:
                return None

            import torch

            batch = torch.from_numpy(np.stack(self._buffer)).unsqueeze(0)  # (1, T, F)
            with torch.no_grad():
                output = self._model(batch).cpu().numpy()[0]

        # Second output is a sigmoid; recentre it to a signed adjustment
        return ScorerResult(
            beat_probability=float(output[0]),
            tempo_adjustment=float(output[1]) * 2.0 - 1.0,
        )

    def reset(self) -> None:
        """Forget buffered feature vectors, e.g. after a stream discontinuity."""
        with self._lock:
            self._buffer.clear()

    def close(self) -> None:
        with self._lock:
            self._model = None
            self._buffer.clear()


def create_scorer(model_path: str | Path | None) -> TorchBeatScorer | None:
    """Scorer for a configured checkpoint path, or None when none is set."""
    if not model_path:
        return None
    return TorchBeatScorer(model_path)
