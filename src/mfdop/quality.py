"""
Correlation-based noise model and output quality control.

The pulse-pair correlation (in percent) maps to a phase standard deviation
sqrt(-2 ln(c / 100)); multiplying by a velocity-per-radian factor gives the
velocity standard deviation used to weight every least-squares step.
"""

from dataclasses import replace

import numpy as np

from .records import VelocityResult
from .utils import time_bin_indices

EPS = np.finfo(float).eps


def correlation_phase_std(correl: np.ndarray) -> np.ndarray:
    """
    Phase standard deviation (rad) from correlation (%).

    Correlation is clipped to [1, 100] first; NaN stays NaN.
    """
    r2 = np.clip(np.asarray(correl, dtype=float), 1.0, 100.0) / 100.0
    return np.sqrt(-2.0 * np.log(r2))


def velocity_variance(correl: np.ndarray, vel_per_rad: np.ndarray | float) -> np.ndarray:
    """Velocity variance from correlation, floored at machine epsilon."""
    sigv = correlation_phase_std(correl) * vel_per_rad
    return np.maximum(sigv ** 2, EPS)


def inverse_variance_weights(
    correl: np.ndarray | None,
    vel_per_rad: np.ndarray | float,
    shape: tuple[int, ...] | None = None,
    max_weight: float | None = None,
) -> np.ndarray:
    """
    Inverse-variance weights from correlation.

    Args:
        correl (np.ndarray | None): Correlation in percent. None gives uniform
            weights of 1 with the given shape.
        vel_per_rad (np.ndarray | float): Velocity per radian of phase,
            broadcastable against correl
        shape (tuple[int, ...] | None): Output shape when correl is None
        max_weight (float | None): Optional cap on the weights

    Returns:
        np.ndarray: Finite, non-negative weights; NaN correlation gives 0
    """
    if correl is None:
        if shape is None:
            raise ValueError("shape is required when no correlation is given")
        return np.ones(shape)

    w = 1.0 / velocity_variance(correl, vel_per_rad)
    if max_weight is not None:
        w = np.minimum(w, max_weight)
    return np.where(np.isfinite(w), w, 0.0)


def bin_max_correlation(correl: np.ndarray, nave: int = 1) -> np.ndarray:
    """
    Maximum correlation over frequency, beam and averaging window.

    Args:
        correl (np.ndarray): Correlation (R, T, F, B) in percent
        nave (int): Odd averaging window used for the velocity output

    Returns:
        np.ndarray: (R, n_bins) best correlation per output bin
    """
    filled = np.where(np.isnan(correl), -np.inf, correl)
    best = np.max(filled, axis=(2, 3))
    idx = time_bin_indices(correl.shape[1], nave)
    out = np.max(best[:, idx], axis=2)
    # All-NaN windows stay NaN (and count as bad)
    return np.where(np.isneginf(out), np.nan, out)


def mask_low_quality(
    result: VelocityResult,
    correl: np.ndarray | None = None,
    min_correl: float = 0.0,
    max_std: float = 0.0,
    nave: int = 1,
) -> VelocityResult:
    """
    High-grade a velocity result.

    Bins whose best correlation (over frequency and beam) is below min_correl
    are set to NaN in every component; each component is also set to NaN
    where its own std exceeds max_std. A threshold of 0 disables that test.

    Returns:
        VelocityResult: New result; the input is left untouched
    """
    bad = np.zeros(result.ranges.shape + result.times.shape, dtype=bool)
    if min_correl > 0 and correl is not None:
        best = bin_max_correlation(correl, nave)
        bad |= ~(best >= min_correl)

    changes = {}
    for comp in result.components:
        vel = getattr(result, comp)
        std = getattr(result, f"{comp}_std")
        comp_bad = bad.copy()
        if max_std > 0 and std is not None:
            comp_bad |= std > max_std
        changes[comp] = np.where(comp_bad, np.nan, vel)
        if std is not None:
            changes[f"{comp}_std"] = np.where(comp_bad, np.nan, std)
    return replace(result, **changes)

