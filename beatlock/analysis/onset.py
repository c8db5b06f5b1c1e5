"""Frame-wise onset detection functions.

Each function compares the current frame against stored state from the
previous frame(s) and returns one non-negative onset strength. All of them
return 0 on the first call after construction or ``reset()`` and use that
call to initialise their state, so callers never special-case frame #1.
"""

import logging

import numpy as np

from beatlock.analysis.models import AnalysisFrame
from beatlock.config import OnsetFunction

logger = logging.getLogger(__name__)

# Bins quieter than this carry unreliable phase
PHASE_MAGNITUDE_FLOOR = 0.01


def wrap_phase(phase: np.ndarray) -> np.ndarray:
    """Wrap angles into [-pi, pi]."""
    return np.mod(phase + np.pi, 2 * np.pi) - np.pi


def _as_array(values) -> np.ndarray:
    arr = np.asarray(values, dtype=np.float64).ravel()
    return np.nan_to_num(arr, nan=0.0, posinf=0.0, neginf=0.0)


class OnsetDetector:
    """Stateful onset-strength calculator.

    Parameters
    ----------
    function:
        Detection function used by :meth:`detect`. The individual functions
        can still be called directly.
    """

    def __init__(self, function: OnsetFunction = OnsetFunction.SPECTRAL_FLUX) -> None:
        self.function = OnsetFunction(function)
        self._prev_magnitudes: np.ndarray | None = None
        self._prev_phase: np.ndarray | None = None
        self._prev_prev_phase: np.ndarray | None = None

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def detect(self, frame: AnalysisFrame) -> float:
        """Onset strength of *frame* using the configured function."""
        if self.function is OnsetFunction.SPECTRAL_FLUX:
            return self.spectral_flux(frame.magnitudes)
        if frame.phase is None:
            logger.debug(f"Frame at {frame.timestamp:.3f}s has no phase; using spectral flux")
            return self.spectral_flux(frame.magnitudes)
        if self.function is OnsetFunction.PHASE_DEVIATION:
            return self.phase_deviation(frame.magnitudes, frame.phase)
        return self.complex_domain(frame.magnitudes, frame.phase)

    # ------------------------------------------------------------------
    # Detection functions
    # ------------------------------------------------------------------

    def spectral_flux(self, magnitudes) -> float:
        """Sum of half-wave rectified magnitude increases since the last frame."""
        mags = _as_array(magnitudes)
        if mags.size == 0:
            return 0.0

        prev = self._prev_magnitudes
        self._prev_magnitudes = mags.copy()
        if prev is None:
            return 0.0

        n = min(len(prev), len(mags))
        diff = mags[:n] - prev[:n]
        return float(np.sum(np.maximum(diff, 0.0)))

    def phase_deviation(self, magnitudes, phase) -> float:
        """Magnitude-weighted deviation from linearly extrapolated phase.

        The expected phase of each bin is ``2*prev - prev_prev``; until two
        earlier frames exist the previous phase itself is used. DC and Nyquist
        bins are skipped.
        """
        mags = _as_array(magnitudes)
        phs = _as_array(phase)
        if mags.size == 0 or phs.size == 0:
            return 0.0

        prev_phase = self._prev_phase
        prev_prev_phase = self._prev_prev_phase
        self._store(mags, phs)
        if prev_phase is None:
            return 0.0

        if prev_prev_phase is not None:
            n = min(len(mags), len(phs), len(prev_phase), len(prev_prev_phase))
            expected = 2 * prev_phase[:n] - prev_prev_phase[:n]
        else:
            n = min(len(mags), len(phs), len(prev_phase))
            expected = prev_phase[:n]
        if n < 3:
            return 0.0

        inner = slice(1, n - 1)
        weights = mags[inner]
        deviation = np.abs(wrap_phase(phs[inner] - expected[inner]))
        mask = weights > PHASE_MAGNITUDE_FLOOR
        return float(np.sum(deviation[mask] * weights[mask]))

    def complex_domain(self, magnitudes, phase) -> float:
        """Summed distance between previous and current complex spectra."""
        mags = _as_array(magnitudes)
        phs = _as_array(phase)
        if mags.size == 0 or phs.size == 0:
            return 0.0

        prev_mags = self._prev_magnitudes
        prev_phase = self._prev_phase
        self._store(mags, phs)
        if prev_mags is None or prev_phase is None:
            return 0.0

        n = min(len(mags), len(phs), len(prev_mags), len(prev_phase))
        current = mags[:n] * np.exp(1j * phs[:n])
        previous = prev_mags[:n] * np.exp(1j * prev_phase[:n])
        return float(np.sum(np.abs(current - previous)))

    def reset(self) -> None:
        """Forget all previous-frame state."""
        self._prev_magnitudes = None
        self._prev_phase = None
        self._prev_prev_phase = None

    def _store(self, mags: np.ndarray, phs: np.ndarray) -> None:
        self._prev_magnitudes = mags.copy()
        self._prev_prev_phase = self._prev_phase
        self._prev_phase = phs.copy()
