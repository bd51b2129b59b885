"""
Single-beam velocity from multi-frequency phases.

All frequencies (and beams, if more than one is given) are treated as
independent observations of the same velocity and combined with
inverse-variance weights over centred, non-overlapping time windows.
"""

import numpy as np

from .ambiguity import nyquist_velocity
from .errors import ConfigError
from .quality import inverse_variance_weights
from .records import BeamVelocityResult
from .utils import sample_times, time_bin_centers, time_bin_indices


def beam2u(
    phase: np.ndarray,
    freqs: np.ndarray,
    ping_interval: float,
    correl: np.ndarray | None = None,
    nave: int = 1,
    sound_speed: float = 1500.0,
    times: np.ndarray | None = None,
    ranges: np.ndarray | None = None,
    beam_names: tuple[str, ...] | None = None,
) -> BeamVelocityResult:
    """
    Weighted average of beam velocities over frequency and time.

    Args:
        phase (np.ndarray): Unwrapped phase (R, T, F) or (R, T, F, B), +'ve toward the xdr
        freqs (np.ndarray): Frequencies in Hz (F,)
        ping_interval (float): Ping interval in s
        correl (np.ndarray | None): Correlation in percent, same shape as
            phase; None gives equal weights
        nave (int): Odd number of time steps per output bin
        sound_speed (float): Speed of sound in m/s
        times (np.ndarray | None): Timestamps (T,); sample indices if None
        ranges (np.ndarray | None): Range bins (R,); indices if None
        beam_names (tuple[str, ...] | None): Names of the beams, for reference

    Returns:
        BeamVelocityResult: Velocity and std per (range, bin); a bin without
            any valid observation is NaN in both
    """
    phase = np.asarray(phase, dtype=float)
    if phase.ndim == 3:
        phase = phase[..., np.newaxis]
        if correl is not None:
            correl = np.asarray(correl, dtype=float)[..., np.newaxis]
    n_range, n_time, n_freq, n_beam = phase.shape
    freqs = np.atleast_1d(np.asarray(freqs, dtype=float))
    if freqs.size != n_freq:
        raise ConfigError(f"Expected {n_freq} frequencies, got {freqs.size}")
    if correl is not None and np.shape(correl) != phase.shape:
        raise ConfigError(f"correl shape {np.shape(correl)} does not match phase {phase.shape}")

    centers = time_bin_centers(n_time, nave)
    idx = time_bin_indices(n_time, nave)

    ambv = nyquist_velocity(freqs, ping_interval, sound_speed)
    per_freq = ambv.reshape(1, 1, n_freq, 1)
    vb = phase / np.pi * per_freq

    w = inverse_variance_weights(correl, per_freq / np.pi, shape=phase.shape)
    w = np.where(np.isfinite(vb), w, 0.0)
    vb_filled = np.where(w > 0, vb, 0.0)

    # (R, n_bins, nave, F, B) -> sum over window, frequency and beam
    w_bins = w[:, idx]
    wsum = np.sum(w_bins, axis=(2, 3, 4))
    wvsum = np.sum(w_bins * vb_filled[:, idx], axis=(2, 3, 4))
    empty = wsum <= 0
    with np.errstate(invalid="ignore", divide="ignore"):
        velocity = np.where(empty, np.nan, wvsum / wsum)
        velocity_std = np.where(empty, np.nan, np.sqrt(1.0 / wsum))

    time_axis = sample_times(times, n_time)
    range_axis = np.arange(n_range, dtype=float) if ranges is None else np.asarray(ranges, dtype=float)
    if beam_names is None:
        beam_names = tuple(f"Beam_{b + 1}" for b in range(n_beam))

    return BeamVelocityResult(
        velocity=velocity,
        velocity_std=velocity_std,
        times=time_axis[centers],
        ranges=range_axis,
        bin_centers=centers,
        beam_velocity=vb,
        ambiguity=ambv,
        beam_names=tuple(beam_names),
    )
