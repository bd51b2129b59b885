"""
Utility functions for MFDop processing.

This module contains general-purpose helpers used throughout the
processing chain: phase/velocity wrapping, the layout of centred
time-averaging bins, time-gap padding, and worker-count resolution.
"""

import os
from datetime import datetime

import numpy as np

from .errors import ConfigError


def wrap_to_pi(phase: np.ndarray) -> np.ndarray:
    """Wrap phase values into [-pi, pi)."""
    return np.mod(phase + np.pi, 2 * np.pi) - np.pi


def wrap_velocity(vel: np.ndarray, v_amb: np.ndarray | float) -> np.ndarray:
    """Wrap velocities into [-v_amb/2, v_amb/2), with v_amb the full-wrap ambiguity."""
    return np.mod(vel + v_amb / 2, v_amb) - v_amb / 2


def time_bin_centers(n_time: int, nave: int) -> np.ndarray:
    """
    Centre indices of non-overlapping, centred time-averaging bins.

    The first bin is centred at (nave - 1) / 2 and the last centre leaves room
    for a full window before the end of the record, so trailing samples that
    do not fill a window are dropped.

    Args:
        n_time (int): Number of time steps in the record
        nave (int): Window size (must be odd and >= 1)

    Returns:
        np.ndarray: 1D integer array of bin centre indices
    """
    if not isinstance(nave, (int, np.integer)) or nave < 1 or nave % 2 == 0:
        raise ConfigError(f"nave must be a positive odd integer, got {nave!r}")

    half = (nave - 1) // 2
    return np.arange(half, n_time - half, nave, dtype=int)


def time_bin_indices(n_time: int, nave: int) -> np.ndarray:
    """
    Time indices belonging to each centred averaging bin.

    Returns:
        np.ndarray: Integer array of shape (n_bins, nave)
    """
    centers = time_bin_centers(n_time, nave)
    half = (nave - 1) // 2
    return centers[:, np.newaxis] + np.arange(-half, half + 1)[np.newaxis, :]


def sample_times(times: np.ndarray | None, n_time: int) -> np.ndarray:
    """Timestamps as floats, or sample indices when no timestamps are known."""
    if times is None:
        return np.arange(n_time, dtype=float)
    return np.asarray(times, dtype=float)


def find_time_gaps(times: np.ndarray, dt: float, tol: float = 0.1) -> tuple[np.ndarray, np.ndarray]:
    """
    Map a non-uniformly sampled time vector onto a uniform time base.

    Gaps are steps larger than dt * (1 + tol). Each gap shifts all later
    samples by the number of missing samples it spans.

    Args:
        times (np.ndarray): 1D array of timestamps in seconds
        dt (float): Nominal sampling interval in seconds
        tol (float): Fractional tolerance on dt for gap detection

    Returns:
        tuple[np.ndarray, np.ndarray]:
            - uniform_times: 1D array covering the full period at spacing dt
            - index_map: positions of the original samples in uniform_times
    """
    times = np.asarray(times, dtype=float)
    if times.ndim != 1 or times.size == 0:
        raise ValueError("times must be a non-empty 1D array")
    if dt <= 0:
        raise ValueError("dt must be positive")

    index_map = np.arange(times.size)
    steps = np.diff(times)
    for gap_i in np.nonzero(steps > dt * (1 + tol))[0]:
        gap_len = int(round(steps[gap_i] / dt))
        index_map[gap_i + 1:] += gap_len - 1

    n_uniform = int(index_map[-1]) + 1
    uniform_times = times[0] + np.arange(n_uniform) * dt

    # Padded originals must sit on the uniform grid to within one sample
    if np.max(np.abs(uniform_times[index_map] - times)) > dt * 0.9:
        raise RuntimeError("Gap detection failed to produce a consistent uniform time base")

    return uniform_times, index_map


def pad_time_axis(arr: np.ndarray, index_map: np.ndarray, n_time: int, axis: int = 1) -> np.ndarray:
    """
    Insert samples into a NaN-filled array on the uniform time base.

    Args:
        arr (np.ndarray): Array with the original (gappy) samples along axis
        index_map (np.ndarray): Output of find_time_gaps
        n_time (int): Length of the uniform time base
        axis (int): Time axis of arr

    Returns:
        np.ndarray: Float array with n_time samples along axis, NaN in gaps
    """
    arr = np.asarray(arr)
    if arr.shape[axis] != index_map.size:
        raise ValueError(
            f"Array has {arr.shape[axis]} samples along axis {axis}, index_map has {index_map.size}")

    shape = list(arr.shape)
    shape[axis] = n_time
    padded = np.full(shape, np.nan)

    index = [slice(None)] * arr.ndim
    index[axis] = index_map
    padded[tuple(index)] = arr
    return padded


def resolve_n_jobs(n_jobs: int | None) -> int:
    """Number of worker threads; None or 0 means one per CPU."""
    if not n_jobs:
        return os.cpu_count() or 4
    return max(1, int(n_jobs))


def timestamp_str() -> str:
    """Timestamp used to name run directories."""
    return datetime.now().strftime("%Y%m%d_%H%M%S")
