"""
Typed records passed between the processing stages.

All records are frozen: a stage returns a new record instead of mutating
its input. Arrays follow the (range, time, freq, beam) axis order.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace

import numpy as np

from .errors import ConfigError
from .utils import sample_times


def _nan_summary(**arrays: np.ndarray | None) -> dict[str, int]:
    """Count NaN entries per named array (None entries are skipped)."""
    return {name: int(np.count_nonzero(np.isnan(arr)))
            for name, arr in arrays.items() if arr is not None}


@dataclass(frozen=True, eq=False)
class Capture:
    """
    One head of one data collection, ready for processing.

    Attributes:
        phase (np.ndarray): Wrapped phase (R, T, F, B) in radians, +'ve toward the xdr
        correl (np.ndarray | None): Correlation (R, T, F, B) in percent
        freqs (np.ndarray): Carrier frequencies (F,) in Hz
        ranges (np.ndarray): Range bins (R,) in m
        ping_interval (float): Ping interval in s
        pulse_lag (float): Pulse-pair lag used for unwrapping in s
        beam_names (tuple[str, ...]): Name of each beam (B,)
        times (np.ndarray | None): Timestamps (T,) in s; sample indices if None
        amp (np.ndarray | None): Amplitude (R, T, F, B), carried for output only
        sound_speed (float): Speed of sound in m/s
        head (str): Head name ('Main', 'Aux1' or 'Aux2')
    """

    phase: np.ndarray
    correl: np.ndarray | None
    freqs: np.ndarray
    ranges: np.ndarray
    ping_interval: float
    pulse_lag: float
    beam_names: tuple[str, ...]
    times: np.ndarray | None = None
    amp: np.ndarray | None = None
    sound_speed: float = 1500.0
    head: str = "Main"

    def __post_init__(self):
        phase = np.asarray(self.phase, dtype=float)
        if phase.ndim == 3:
            phase = phase[..., np.newaxis]
        if phase.ndim != 4:
            raise ConfigError(f"phase must be 3D or 4D (R, T, F[, B]), got {phase.shape}")
        object.__setattr__(self, "phase", phase)

        for name in ("correl", "amp"):
            arr = getattr(self, name)
            if arr is None:
                continue
            arr = np.asarray(arr, dtype=float).reshape(phase.shape) \
                if np.size(arr) == phase.size else None
            if arr is None:
                raise ConfigError(f"{name} must have the same shape as phase {phase.shape}")
            object.__setattr__(self, name, arr)

        n_range, n_time, n_freq, n_beam = phase.shape
        freqs = np.atleast_1d(np.asarray(self.freqs, dtype=float))
        ranges = np.atleast_1d(np.asarray(self.ranges, dtype=float))
        if freqs.size != n_freq:
            raise ConfigError(f"Expected {n_freq} frequencies, got {freqs.size}")
        if ranges.size != n_range:
            raise ConfigError(f"Expected {n_range} range bins, got {ranges.size}")
        if len(self.beam_names) != n_beam:
            raise ConfigError(f"Expected {n_beam} beam names, got {len(self.beam_names)}")
        object.__setattr__(self, "freqs", freqs)
        object.__setattr__(self, "ranges", ranges)
        object.__setattr__(self, "beam_names", tuple(str(b) for b in self.beam_names))

        if self.times is not None:
            times = np.asarray(self.times, dtype=float)
            if times.shape != (n_time,):
                raise ConfigError(f"times must have shape ({n_time},), got {times.shape}")
            object.__setattr__(self, "times", times)

        if self.ping_interval <= 0 or self.pulse_lag <= 0:
            raise ConfigError("ping_interval and pulse_lag must be positive")

    @property
    def shape(self) -> tuple[int, int, int, int]:
        return self.phase.shape

    @property
    def time_axis(self) -> np.ndarray:
        """Timestamps, or sample indices when no timestamps are known."""
        return sample_times(self.times, self.phase.shape[1])

    def select_beams(self, names: list[str] | tuple[str, ...]) -> Capture:
        """Copy restricted to the given beams, in the given order."""
        missing = [n for n in names if n not in self.beam_names]
        if missing:
            raise ConfigError(f"Required beam name(s) {missing} not found in {list(self.beam_names)}")
        idx = [self.beam_names.index(n) for n in names]
        return replace(
            self,
            phase=self.phase[..., idx],
            correl=None if self.correl is None else self.correl[..., idx],
            amp=None if self.amp is None else self.amp[..., idx],
            beam_names=tuple(names),
        )


@dataclass(frozen=True)
class FrequencyRoles:
    """Sorted frequencies and the indices (into the unsorted input) of the beat anchors."""

    sorted_freqs: tuple[float, ...]
    i_low: int
    i_mid: int | None
    i_high: int


@dataclass(frozen=True, eq=False)
class UnwrapResult:
    """
    Output of the phase unwrapper.

    Attributes:
        phase (np.ndarray): Unwrapped phase, same shape as the input phase
        velocity (np.ndarray): Velocity estimate (R, T[, B]) in m/s
        velocity_std (np.ndarray): Its standard deviation (R, T[, B])
        iterations (np.ndarray): IRLS iterations used per pixel (R, T[, B])
        invalid (np.ndarray): Pixels below the correlation floor (R, T[, B])
        roles (FrequencyRoles): Low/mid/high frequency assignment
    """

    phase: np.ndarray
    velocity: np.ndarray
    velocity_std: np.ndarray
    iterations: np.ndarray
    invalid: np.ndarray
    roles: FrequencyRoles

    def summary(self) -> dict[str, int]:
        out = _nan_summary(velocity=self.velocity, velocity_std=self.velocity_std)
        out["invalid"] = int(np.count_nonzero(self.invalid))
        out["pixels"] = int(self.invalid.size)
        return out


@dataclass(frozen=True, eq=False)
class BeamVelocityResult:
    """
    Weighted single-beam velocity (beam2u output).

    Attributes:
        velocity (np.ndarray): Velocity (R, n_bins), +'ve toward the xdr
        velocity_std (np.ndarray): Its standard deviation (R, n_bins)
        times (np.ndarray): Time of each bin centre (n_bins,)
        ranges (np.ndarray): Range bins (R,)
        bin_centers (np.ndarray): Index of each bin centre in the input time axis
        beam_velocity (np.ndarray): Per-frequency beam velocities (R, T, F, B)
        ambiguity (np.ndarray): Nyquist velocity per frequency (F,)
        beam_names (tuple[str, ...]): Beam names
    """

    velocity: np.ndarray
    velocity_std: np.ndarray
    times: np.ndarray
    ranges: np.ndarray
    bin_centers: np.ndarray
    beam_velocity: np.ndarray
    ambiguity: np.ndarray
    beam_names: tuple[str, ...]

    def summary(self) -> dict[str, int]:
        return _nan_summary(velocity=self.velocity, velocity_std=self.velocity_std)


@dataclass(frozen=True, eq=False)
class VelocityResult:
    """
    Cartesian velocity in flume coordinates (x shoreward, y cross-tank, z up).

    Components not measured by a head are None (e.g. an Aux head only
    provides one). Beam diagnostics are in the original beam order.
    """

    times: np.ndarray
    ranges: np.ndarray
    u: np.ndarray | None = None
    v: np.ndarray | None = None
    w: np.ndarray | None = None
    u_std: np.ndarray | None = None
    v_std: np.ndarray | None = None
    w_std: np.ndarray | None = None
    beam_names: tuple[str, ...] = ()
    beam_velocity: np.ndarray | None = None
    ambiguity: np.ndarray | None = None
    transform: np.ndarray | None = None
    bin_centers: np.ndarray | None = None

    @property
    def components(self) -> tuple[str, ...]:
        return tuple(c for c in ("u", "v", "w") if getattr(self, c) is not None)

    def summary(self) -> dict[str, int]:
        return _nan_summary(u=self.u, v=self.v, w=self.w)


@dataclass(frozen=True, eq=False)
class HeadResult:
    """Everything produced for one head of one capture."""

    head: str
    capture: Capture
    unwrap: UnwrapResult
    velocity: VelocityResult
    notes: dict[str, object] = field(default_factory=dict)

    def summary(self) -> dict[str, int]:
        out = {f"unwrap_{k}": v for k, v in self.unwrap.summary().items()}
        out.update({f"nan_{k}": v for k, v in self.velocity.summary().items()})
        return out
