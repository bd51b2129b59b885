"""
Beam-to-Cartesian inversion for the five-beam Main head.

Beam velocities relate to the flume velocity (u, v, w) through a fixed
matrix A, vb = A @ [u, v, w]. Every frequency of every beam is an
independent observation (A is replicated per frequency), weighted by its
inverse variance, and (u, v, w) is solved per range bin and centred time
bin with a pseudo-inverse weighted least-squares fit.
"""

from concurrent.futures import ThreadPoolExecutor
from functools import partial

import numpy as np
from scipy.spatial.transform import Rotation
from tqdm import tqdm

from .ambiguity import beam_nyquist_velocities
from .errors import ConfigError
from .geometry import MainHeadGeometry
from .quality import inverse_variance_weights
from .records import VelocityResult
from .utils import resolve_n_jobs, sample_times, time_bin_centers, time_bin_indices

# Output bins per worker task
_BIN_CHUNK = 256


def _rot_z(angle_deg: float) -> np.ndarray:
    c, s = np.cos(np.deg2rad(angle_deg)), np.sin(np.deg2rad(angle_deg))
    return np.array([[c, -s, 0.0],
                     [s, c, 0.0],
                     [0.0, 0.0, 1.0]])


def pitch_roll_rotation(pitch_deg: float, roll_deg: float) -> np.ndarray:
    """
    Rotation that takes the vertical onto the transducer-plane normal.

    A positive pitch (roll) tilts the transducer plane upward in +x (+y).
    The normal is the cross product of the two tilted in-plane unit vectors;
    the rotation is about their common perpendicular with the enclosed angle.
    """
    p, r = np.deg2rad(pitch_deg), np.deg2rad(roll_deg)
    normal = np.cross([np.cos(p), 0.0, np.sin(p)], [0.0, np.cos(r), np.sin(r)])
    normal /= np.linalg.norm(normal)

    vertical = np.array([0.0, 0.0, 1.0])
    axis = np.cross(vertical, normal)
    axis_norm = np.linalg.norm(axis)
    if axis_norm < 1e-12:
        return np.eye(3)
    angle = np.arccos(np.clip(np.dot(vertical, normal), -1.0, 1.0))
    return Rotation.from_rotvec(axis / axis_norm * angle).as_matrix()


def beam_transform_matrix(
    geometry: MainHeadGeometry | None = None,
    pitch_deg: float = 0.0,
    roll_deg: float = 0.0,
    yaw_deg: float = 0.0,
) -> np.ndarray:
    """
    Matrix A (5 x 3) with [Beam_1, Beam_2, Beam_3, Beam_4, Beam_CL] = A @ [u, v, w].

    A is first written in instrument coordinates (x', y', z'), then rotated
    by the mounting angle about z and negated to flume coordinates. Pitch
    and roll are applied next, then yaw (a counter-clockwise rotation of the
    output seen from above).
    """
    geometry = geometry or MainHeadGeometry()
    half = np.deg2rad(geometry.opening_angle_deg) / 2
    s, c = np.sin(half), np.cos(half)

    a0 = np.array([
        [0.0, +s, +c],    # Beam_1: +v' is toward beam 1
        [-s, 0.0, +c],    # Beam_2: +u' is away from beam 2
        [+s, 0.0, -c],    # Beam_3: +u' is toward beam 3
        [0.0, -s, +c],    # Beam_4: +v' is away from beam 4
        [0.0, 0.0, -1.0],  # Beam_CL: +w' is away from the centre beam
    ])
    a = -a0 @ _rot_z(geometry.mount_rotation_deg).T

    if pitch_deg != 0 or roll_deg != 0:
        a = a @ pitch_roll_rotation(pitch_deg, roll_deg).T
    if yaw_deg != 0:
        a = a @ _rot_z(yaw_deg).T
    return a


def beam2uvw(
    phase: np.ndarray,
    freqs: np.ndarray,
    ping_interval: float,
    ranges: np.ndarray,
    beam_names: list[str] | tuple[str, ...],
    correl: np.ndarray | None = None,
    nave: int = 1,
    pitch_deg: float = 0.0,
    roll_deg: float = 0.0,
    yaw_deg: float = 0.0,
    sound_speed: float = 1500.0,
    times: np.ndarray | None = None,
    geometry: MainHeadGeometry | None = None,
    n_jobs: int | None = None,
    progress: bool = False,
    verbose: bool = False,
) -> VelocityResult:
    """
    Weighted least-squares (u, v, w) from Main head beam phases.

    Args:
        phase (np.ndarray): Unwrapped phase (R, T, F, B), +'ve toward the xdr
        freqs (np.ndarray): Frequencies in Hz (F,)
        ping_interval (float): Ping interval in s
        ranges (np.ndarray): Range bins in m (R,)
        beam_names (list[str] | tuple[str, ...]): Beam names (B,), any order;
            all Main head beams must be present
        correl (np.ndarray | None): Correlation in percent, same shape as
            phase; None gives equal weights
        nave (int): Odd number of time steps per output bin
        pitch_deg (float): Pitch of the transducer plane in degrees
        roll_deg (float): Roll of the transducer plane in degrees
        yaw_deg (float): Output rotation about +z in degrees
        sound_speed (float): Speed of sound in m/s
        times (np.ndarray | None): Timestamps (T,); sample indices if None
        geometry (MainHeadGeometry | None): Head layout
        n_jobs (int | None): Worker threads (None/0: one per CPU)
        progress (bool): Show a progress bar over bin chunks
        verbose (bool): Print a summary line

    Returns:
        VelocityResult: u, v, w and their stds (R, n_bins); beam velocity,
            ambiguity velocity and A are in the input beam order
    """
    geometry = geometry or MainHeadGeometry()
    phase = np.asarray(phase, dtype=float)
    if phase.ndim != 4:
        raise ConfigError(f"phase must have shape (R, T, F, B), got {phase.shape}")
    beam_names = [str(b) for b in beam_names]
    if len(beam_names) != phase.shape[3]:
        raise ConfigError(f"Expected {phase.shape[3]} beam names, got {len(beam_names)}")

    canonical = geometry.beam_names
    missing = [name for name in canonical if name not in beam_names]
    if missing:
        raise ConfigError(f"Required beam name(s) {missing} not found in {beam_names}")
    if correl is not None:
        correl = np.asarray(correl, dtype=float)
        if correl.shape != phase.shape:
            raise ConfigError(f"correl shape {correl.shape} does not match phase {phase.shape}")

    order = [beam_names.index(name) for name in canonical]
    phase = phase[..., order]
    if correl is not None:
        correl = correl[..., order]

    n_range, n_time, n_freq, n_beam = phase.shape
    freqs = np.atleast_1d(np.asarray(freqs, dtype=float))
    ranges = np.atleast_1d(np.asarray(ranges, dtype=float))
    if freqs.size != n_freq or ranges.size != n_range:
        raise ConfigError(
            f"freqs ({freqs.size}) and ranges ({ranges.size}) do not match phase {phase.shape}")

    ambv = beam_nyquist_velocities(freqs, ranges, ping_interval, geometry.baselines, sound_speed)
    per_obs = ambv[:, np.newaxis, :, :]
    vb = phase / np.pi * per_obs * geometry.polarities

    w = inverse_variance_weights(correl, per_obs / np.pi, shape=phase.shape)
    w = np.where(np.isfinite(vb), w, 0.0)
    vb_filled = np.where(w > 0, vb, 0.0)

    a = beam_transform_matrix(geometry, pitch_deg, roll_deg, yaw_deg)

    # Collapse window and frequency: A'WA and A'W vb only depend on per-beam sums
    centers = time_bin_centers(n_time, nave)
    idx = time_bin_indices(n_time, nave)
    sw = np.sum(w[:, idx], axis=(2, 3))                  # (R, n_bins, B)
    swv = np.sum((w * vb_filled)[:, idx], axis=(2, 3))  # (R, n_bins, B)

    n_bins = centers.size
    chunks = [slice(i, min(i + _BIN_CHUNK, n_bins)) for i in range(0, n_bins, _BIN_CHUNK)]
    invert_partial = partial(_invert_bins, sw=sw, swv=swv, a=a)
    with ThreadPoolExecutor(max_workers=resolve_n_jobs(n_jobs)) as executor:
        chunk_results = list(tqdm(
            executor.map(invert_partial, chunks), total=len(chunks),
            desc="Inverting bins ", disable=not progress))

    if chunk_results:
        uvw = np.concatenate([res[0] for res in chunk_results], axis=1)
        uvw_std = np.concatenate([res[1] for res in chunk_results], axis=1)
    else:
        uvw = uvw_std = np.full((n_range, 0, 3), np.nan)

    # Back to input beam order
    inverse = np.argsort(order)
    time_axis = sample_times(times, n_time)
    result = VelocityResult(
        times=time_axis[centers],
        ranges=ranges,
        u=uvw[..., 0], v=uvw[..., 1], w=uvw[..., 2],
        u_std=uvw_std[..., 0], v_std=uvw_std[..., 1], w_std=uvw_std[..., 2],
        beam_names=tuple(canonical[i] for i in inverse),
        beam_velocity=vb[..., inverse],
        ambiguity=ambv[..., inverse],
        transform=a[inverse],
        bin_centers=centers,
    )
    if verbose:
        n_nan = int(np.count_nonzero(np.isnan(result.u)))
        print(f"Inversion: {n_range} x {n_bins} bins (nave={nave}), {n_nan} without valid data")
    return result


def _invert_bins(chunk: slice, sw: np.ndarray, swv: np.ndarray, a: np.ndarray):
    """
    Solve one chunk of time bins; returns (uvw, std) of shape (R, n, 3).

    Bins whose valid beams do not span three independent directions are NaN
    in every component: the pseudo-inverse would return 0 with zero
    uncertainty along the unobserved directions.
    """
    sw_c, swv_c = sw[:, chunk], swv[:, chunk]
    normal = np.einsum("rkb,bi,bj->rkij", sw_c, a, a)
    rhs = np.einsum("rkb,bi->rki", swv_c, a)

    cov = np.linalg.pinv(normal)
    uvw = np.einsum("rkij,rkj->rki", cov, rhs)
    std = np.sqrt(np.clip(np.diagonal(cov, axis1=-2, axis2=-1), 0.0, None))

    # Rank from the unweighted rows of the observed beams, independent of weight spread
    rows = (sw_c > 0)[..., np.newaxis] * a
    underdetermined = np.linalg.matrix_rank(rows) < a.shape[1]
    uvw[underdetermined] = np.nan
    std[underdetermined] = np.nan
    return uvw, std
