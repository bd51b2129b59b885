"""
Ambiguity velocities for multi-frequency Doppler beams.

Two conventions are used in the processing chain:

- the *ambiguity velocity* V = c / (2 f tau) is the velocity that produces a
  full 2 pi phase change over the pulse-pair lag tau; the unwrapper works
  with this quantity;
- the *Nyquist velocity* pi / (2 k T cos(theta/2)) is the velocity of a pi
  phase change over the ping interval T, with theta/2 the bistatic
  half-angle of an outboard beam (0 for a normal-incidence beam, giving
  c / (4 f T)). Beam velocities are phase / pi times this value.
"""

import numpy as np

from .errors import GeometryError


def ambiguity_velocity(freqs: np.ndarray | float, lag: float, sound_speed: float = 1500.0) -> np.ndarray:
    """
    Full-wrap ambiguity velocity of a normal-incidence beam.

    Args:
        freqs (np.ndarray | float): Carrier frequencies in Hz
        lag (float): Pulse-pair lag in seconds
        sound_speed (float): Speed of sound in m/s

    Returns:
        np.ndarray: Velocity (m/s) corresponding to a 2 pi phase wrap, per frequency
    """
    return sound_speed / (2 * np.asarray(freqs, dtype=float) * lag)


def phase_to_velocity_factor(freqs: np.ndarray | float, lag: float, sound_speed: float = 1500.0) -> np.ndarray:
    """Velocity per radian of Doppler phase, c / (4 pi f tau)."""
    return sound_speed / (4 * np.pi * lag * np.asarray(freqs, dtype=float))


def beam_half_angle(baseline: float, ranges: np.ndarray | float) -> np.ndarray:
    """
    Bistatic half-angle of an outboard beam.

    The outboard receiver sits a distance `baseline` from the centre
    transmitter; at range r the half-angle is pi/2 - arccos(baseline / (2 r)).

    Raises:
        GeometryError: If baseline >= 2 r for any range bin
    """
    ranges = np.asarray(ranges, dtype=float)
    with np.errstate(divide="ignore"):
        ratio = (baseline / 2) / ranges
    if np.any(~np.isfinite(ratio)) or np.any(np.abs(ratio) >= 1):
        bad = ranges[~np.isfinite(ratio) | (np.abs(ratio) >= 1)]
        raise GeometryError(
            f"Half-angle undefined for baseline {baseline} m at ranges {bad.tolist()} m "
            "(baseline must be smaller than twice the range)")
    return np.pi / 2 - np.arccos(ratio)


def nyquist_velocity(
    freqs: np.ndarray | float,
    ping_interval: float,
    sound_speed: float = 1500.0,
    half_angle: np.ndarray | float = 0.0,
) -> np.ndarray:
    """
    Velocity of a pi phase change over one ping interval.

    Args:
        freqs (np.ndarray | float): Carrier frequencies in Hz, shape (F,)
        ping_interval (float): Ping interval in seconds
        sound_speed (float): Speed of sound in m/s
        half_angle (np.ndarray | float): Bistatic half-angle(s) in radians,
            e.g. per range bin with shape (R,). Zero for normal incidence.

    Returns:
        np.ndarray: Array broadcast from half_angle[..., None] and freqs,
            i.e. (F,) for a scalar half-angle and (R, F) for a range profile
    """
    k = 2 * np.pi * np.asarray(freqs, dtype=float) / sound_speed
    half_angle = np.asarray(half_angle, dtype=float)
    if half_angle.ndim:
        half_angle = half_angle[..., np.newaxis]
    return np.pi / (2 * k * ping_interval * np.cos(half_angle))


def beam_nyquist_velocities(
    freqs: np.ndarray,
    ranges: np.ndarray,
    ping_interval: float,
    baselines: list[float] | np.ndarray,
    sound_speed: float = 1500.0,
) -> np.ndarray:
    """
    Nyquist velocity table for a set of beams.

    Args:
        freqs (np.ndarray): Frequencies in Hz, shape (F,)
        ranges (np.ndarray): Range bins in m, shape (R,)
        ping_interval (float): Ping interval in seconds
        baselines (list[float] | np.ndarray): Per-beam baseline in m;
            0 marks a normal-incidence (centre) beam
        sound_speed (float): Speed of sound in m/s

    Returns:
        np.ndarray: Nyquist velocities of shape (R, F, B)
    """
    ranges = np.asarray(ranges, dtype=float)
    table = np.empty((ranges.size, np.size(freqs), len(baselines)))
    for b, baseline in enumerate(baselines):
        if baseline > 0:
            half = beam_half_angle(baseline, ranges)
        else:
            half = np.zeros(ranges.size)
        table[:, :, b] = nyquist_velocity(freqs, ping_interval, sound_speed, half)
    return table
