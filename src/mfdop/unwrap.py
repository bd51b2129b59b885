"""
Multi-frequency phase unwrapping.

Each (range, time) pixel observes the same radial velocity at several
carrier frequencies, each wrapped at its own ambiguity velocity. The
velocity is seeded from the phase difference ("beat") between the highest
frequency and a lower one, which wraps much more slowly, and then refined
with iteratively reweighted least squares (IRLS) using Huber weights on top
of correlation-derived inverse-variance weights.

In hybrid mode the final velocity is anchored on the (least noisy) highest
frequency: the IRLS estimate only decides its integer wrap count, invalid
pixels borrow the wrap count of their nearest valid neighbour, and isolated
wrap errors are removed by a two-pass spike detector.
"""

import warnings
from concurrent.futures import ThreadPoolExecutor
from functools import partial

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view
from scipy import ndimage
from scipy.interpolate import griddata
from tqdm import tqdm

from .ambiguity import ambiguity_velocity, phase_to_velocity_factor
from .errors import ConfigError
from .init_config import UnwrapOptions
from .quality import EPS, correlation_phase_std
from .records import FrequencyRoles, UnwrapResult
from .utils import resolve_n_jobs, wrap_to_pi, wrap_velocity

# A wrap adjustment is accepted only if it shrinks the error below this fraction
_WRAP_IMPROVEMENT = 0.7


def frequency_roles(freqs: np.ndarray) -> FrequencyRoles:
    """
    Assign the low, mid and high frequencies used for the beat seeds.

    Raises:
        ConfigError: If fewer than two frequencies are given
    """
    freqs = np.atleast_1d(np.asarray(freqs, dtype=float))
    if freqs.ndim != 1 or freqs.size < 2:
        raise ConfigError(f"At least two frequencies are required, got {freqs.size}")
    if np.unique(freqs).size != freqs.size:
        raise ConfigError(f"Frequencies must be distinct, got {freqs.tolist()}")

    order = np.argsort(freqs, kind="stable")
    i_mid = int(order[freqs.size // 2]) if freqs.size >= 3 else None
    return FrequencyRoles(
        sorted_freqs=tuple(float(f) for f in freqs[order]),
        i_low=int(order[0]), i_mid=i_mid, i_high=int(order[-1]))


def unwrap_beat_ls(
    phase: np.ndarray,
    freqs: np.ndarray,
    tau: float,
    sound_speed: float = 1500.0,
    correl: np.ndarray | None = None,
    v_bounds: tuple[float, float] | None = None,
    opts: UnwrapOptions | None = None,
    *,
    n_jobs: int | None = None,
    progress: bool = False,
    verbose: bool = False,
) -> UnwrapResult:
    """
    Unwrap multi-frequency Doppler phases, beam by beam.

    Args:
        phase (np.ndarray): Wrapped phase, (R, T, F) or (R, T, F, B)
        freqs (np.ndarray): Frequencies in Hz, (F,), any order
        tau (float): Pulse-pair lag in s
        sound_speed (float): Speed of sound in m/s
        correl (np.ndarray | None): Correlation in percent, same shape as
            phase; None means 100 % everywhere
        v_bounds (tuple[float, float] | None): Optional (min, max) clip for
            every IRLS update
        opts (UnwrapOptions | None): Unwrapper options
        n_jobs (int | None): Worker threads for the beams (None/0: one per CPU)
        progress (bool): Show a progress bar over beams
        verbose (bool): Print a summary line

    Returns:
        UnwrapResult: Arrays keep the beam axis only if the input has one
    """
    opts = opts or UnwrapOptions()
    roles = frequency_roles(freqs)
    freqs = np.asarray(freqs, dtype=float)

    phase = np.asarray(phase, dtype=float)
    squeeze = phase.ndim == 3
    if squeeze:
        phase = phase[..., np.newaxis]
    if phase.ndim != 4 or phase.shape[2] != freqs.size:
        raise ConfigError(
            f"phase must have shape (R, T, F[, B]) with F={freqs.size}, got {phase.shape}")

    if correl is None:
        correl = np.full(phase.shape, 100.0)
    else:
        correl = np.asarray(correl, dtype=float)
        if squeeze and correl.ndim == 3:
            correl = correl[..., np.newaxis]
        if correl.shape != phase.shape:
            raise ConfigError(f"correl shape {correl.shape} does not match phase {phase.shape}")

    if v_bounds is not None and v_bounds[0] >= v_bounds[1]:
        raise ConfigError(f"v_bounds must be increasing, got {v_bounds}")

    n_beams = phase.shape[3]
    unwrap_partial = partial(
        _unwrap_beam, phase=phase, correl=correl, freqs=freqs, tau=tau,
        sound_speed=sound_speed, roles=roles, v_bounds=v_bounds, opts=opts)

    with ThreadPoolExecutor(max_workers=min(resolve_n_jobs(n_jobs), n_beams)) as executor:
        beam_results = list(tqdm(
            executor.map(unwrap_partial, range(n_beams)), total=n_beams,
            desc="Unwrapping beams ", disable=not progress))

    phase_out, vel, vstd, iters, invalid = (np.stack(arrs, axis=-1) for arrs in zip(*beam_results))
    if squeeze:
        phase_out, vel, vstd, iters, invalid = (
            a[..., 0] for a in (phase_out, vel, vstd, iters, invalid))

    result = UnwrapResult(phase=phase_out, velocity=vel, velocity_std=vstd,
                          iterations=iters, invalid=invalid, roles=roles)
    if verbose:
        summary = result.summary()
        mode = "hybrid" if opts.hybrid_mode else "standard"
        print(f"Unwrapping ({mode}): {summary['invalid']}/{summary['pixels']} pixels below "
              f"{opts.min_correl:g}% correlation, {summary['velocity']} NaN velocities, "
              f"max {int(iters.max(initial=0))} IRLS iterations")
    return result


def _unwrap_beam(b, phase, correl, freqs, tau, sound_speed, roles, v_bounds, opts):
    """Unwrap one beam; returns (phase, velocity, std, iterations, invalid)."""
    phi = phase[..., b]
    cor = np.clip(correl[..., b], 1.0, 100.0)
    i_h = roles.i_high

    k_vec = phase_to_velocity_factor(freqs, tau, sound_speed)
    v_amb = ambiguity_velocity(freqs, tau, sound_speed)

    # Missing observations get zero weight; filled values never reach the output
    observed = np.isfinite(phi) & np.isfinite(cor)
    phi_filled = np.where(observed, phi, 0.0)
    sigv = correlation_phase_std(np.where(observed, cor, 100.0)) * k_vec
    w0 = np.minimum(1.0 / np.maximum(sigv ** 2, EPS), opts.max_weight)
    w0 = np.where(observed, w0, 0.0)
    vtilde = phi_filled * k_vec

    invalid = ~(cor[..., i_h] >= opts.min_correl) | ~np.isfinite(phi[..., i_h]) \
        | ~np.any(observed, axis=-1)

    v = _seed_velocity(phi_filled, w0, freqs, tau, sound_speed, roles)
    v, w_final, iterations = _irls(v, vtilde, w0, sigv, v_amb, v_bounds, opts)
    vstd = np.sqrt(1.0 / np.maximum(np.sum(w_final, axis=-1), EPS))

    if not opts.hybrid_mode:
        v = np.where(invalid, np.nan, v)
        vstd = np.where(invalid, np.nan, vstd)
        phi_unw = _rewrap_frequencies(phi, v, k_vec)
        if opts.median_filter_3x3:
            v = np.where(invalid, np.nan, _nanmedian3x3(v))
        return phi_unw, v, vstd, iterations, invalid

    v = _hybrid_anchor(v, phi[..., i_h], v_amb[i_h], k_vec[i_h], invalid,
                       np.any(observed, axis=-1), opts)
    if np.any(invalid):
        valid_std = vstd[~invalid]
        median_std = np.median(valid_std) if valid_std.size else opts.invalid_std_fallback
        vstd = np.where(invalid, 2 * median_std, vstd)

    phi_unw = _rewrap_frequencies(phi, v, k_vec)
    phi_unw[..., i_h] = despike_high_frequency(phi_unw[..., i_h], invalid, opts)
    v = np.where(np.isfinite(phi_unw[..., i_h]), phi_unw[..., i_h] * k_vec[i_h], v)
    phi_unw = _rewrap_frequencies(phi, v, k_vec)
    return phi_unw, v, vstd, iterations, invalid


def _seed_velocity(phi, w0, freqs, tau, sound_speed, roles):
    """Beat-frequency seed velocity per pixel."""
    scale = sound_speed / (4 * np.pi * tau)
    phi_h = phi[..., roles.i_high]

    def beat_seed(i):
        return scale * wrap_to_pi(phi_h - phi[..., i]) / (freqs[roles.i_high] - freqs[i])

    v_hl = beat_seed(roles.i_low)
    if roles.i_mid is None:
        return v_hl
    v_hm = beat_seed(roles.i_mid)

    # Keep the seed whose predicted phases add up most coherently with the data
    alpha = 4 * np.pi * tau / sound_speed
    coherent = w0 * np.exp(1j * phi)
    s_hm = np.abs(np.sum(coherent * np.exp(-1j * alpha * v_hm[..., np.newaxis] * freqs), axis=-1))
    s_hl = np.abs(np.sum(coherent * np.exp(-1j * alpha * v_hl[..., np.newaxis] * freqs), axis=-1))
    return np.where(s_hm >= s_hl, v_hm, v_hl)


def _irls(v, vtilde, w0, sigv, v_amb, v_bounds, opts):
    """
    Huber-weighted IRLS refinement.

    Pixels whose update drops below opts.tol are frozen; the returned
    iteration count is per pixel.
    """
    v = v.copy()
    active = np.ones(v.shape, dtype=bool)
    iterations = np.zeros(v.shape, dtype=int)
    w_final = w0.copy()

    for _ in range(opts.max_iter):
        r = wrap_velocity(v[..., np.newaxis] - vtilde, v_amb)
        if opts.use_huber:
            z = r / np.maximum(sigv, EPS)
            w = w0 * np.minimum(1.0, opts.kappa / np.maximum(np.abs(z), EPS))
        else:
            w = w0

        v_unw = v[..., np.newaxis] - r
        v_new = np.sum(w * v_unw, axis=-1) / np.maximum(np.sum(w, axis=-1), EPS)
        if v_bounds is not None:
            v_new = np.clip(v_new, v_bounds[0], v_bounds[1])

        iterations[active] += 1
        w_final[active] = w[active]
        converged = np.abs(v_new - v) < opts.tol
        v[active] = v_new[active]
        active &= ~converged
        if not active.any():
            break

    return v, w_final, iterations


def _nanmedian3x3(field: np.ndarray) -> np.ndarray:
    """3x3 median filter with symmetric edges, ignoring NaN."""
    padded = np.pad(field, 1, mode="symmetric")
    windows = sliding_window_view(padded, (3, 3))
    with warnings.catch_warnings():
        # All-NaN windows stay NaN
        warnings.simplefilter("ignore", RuntimeWarning)
        return np.nanmedian(windows, axis=(-2, -1))


def _hybrid_anchor(v, phi_h, v_amb_h, k_h, invalid, observed_any, opts):
    """
    High-frequency velocity with its wrap count taken from the IRLS estimate.

    Pixels without a high-frequency phase keep the IRLS estimate from the
    other frequencies; pixels with no observation at all take the anchored
    velocity of their nearest neighbour.
    """
    guide = _nanmedian3x3(v) if opts.median_filter_3x3 else v
    v_hf_raw = phi_h * k_h
    wrap_correction = np.round((guide - v_hf_raw) / v_amb_h) * v_amb_h

    known = ~invalid & np.isfinite(wrap_correction)
    if np.any(invalid) and np.any(known):
        points = np.argwhere(known)
        targets = np.argwhere(invalid)
        wrap_correction = wrap_correction.copy()
        wrap_correction[invalid] = griddata(
            points, wrap_correction[known], targets, method="nearest")

    anchored = v_hf_raw + wrap_correction
    missing = ~np.isfinite(anchored)
    if np.any(missing):
        anchored = np.where(missing & observed_any, guide, anchored)
        unfilled = ~np.isfinite(anchored)
        filled = ~unfilled
        if np.any(unfilled) and np.any(filled):
            anchored[unfilled] = griddata(
                np.argwhere(filled), anchored[filled], np.argwhere(unfilled), method="nearest")
    return anchored


def _rewrap_frequencies(phi: np.ndarray, velocity: np.ndarray, k_vec: np.ndarray) -> np.ndarray:
    """Add the 2 pi multiple to each frequency's phase that best matches velocity."""
    target = velocity[..., np.newaxis] / k_vec
    return phi + np.round((target - phi) / (2 * np.pi)) * 2 * np.pi


def despike_high_frequency(
    phi_hf: np.ndarray,
    invalid: np.ndarray | None = None,
    opts: UnwrapOptions | None = None,
) -> np.ndarray:
    """
    Two-pass spike removal on an unwrapped (range, time) phase field.

    Candidates are interior, valid pixels that deviate from the mean of their
    window (centre excluded) by more than the pass threshold. A candidate
    with enough valid neighbours is compared with the neighbour median: in
    the first pass, and in the second pass for small deviations, the best of
    the -2 pi / 0 / +2 pi adjustments is applied if it clearly reduces the
    error; larger second-pass deviations are replaced by the median.
    Pixels are visited range-fastest and corrected in place, so later
    candidates see earlier corrections.

    Args:
        phi_hf (np.ndarray): Unwrapped phase (R, T) in radians
        invalid (np.ndarray | None): Pixels that are never corrected
        opts (UnwrapOptions | None): Thresholds and window settings

    Returns:
        np.ndarray: Corrected copy of phi_hf
    """
    opts = opts or UnwrapOptions()
    phi = np.array(phi_hf, dtype=float, copy=True)
    if invalid is None:
        invalid = np.zeros(phi.shape, dtype=bool)

    size = opts.despike_window
    half = size // 2
    n_r, n_t = phi.shape
    interior = np.zeros(phi.shape, dtype=bool)
    interior[half:n_r - half, half:n_t - half] = True
    interior &= ~invalid
    if not interior.any():
        return phi

    kernel = np.ones((size, size))
    kernel[half, half] = 0
    adjustments = np.array([-2 * np.pi, 0.0, 2 * np.pi])

    for first_pass, threshold in ((True, opts.despike_pass1_thresh),
                                  (False, opts.despike_pass2_thresh)):
        valid = np.isfinite(phi)
        total = ndimage.convolve(np.where(valid, phi, 0.0), kernel, mode="reflect")
        count = ndimage.convolve(valid.astype(float), kernel, mode="reflect")
        with np.errstate(invalid="ignore", divide="ignore"):
            local_mean = total / count
            candidates = interior & valid & (np.abs(phi - local_mean) > threshold)
        if not candidates.any():
            continue

        cols, rows = np.nonzero(candidates.T)
        for i, j in zip(rows, cols):
            neighbours = phi[i - half:i + half + 1, j - half:j + half + 1].ravel()
            neighbours = np.delete(neighbours, half * size + half)
            neighbours = neighbours[np.isfinite(neighbours)]
            if neighbours.size < opts.despike_min_neighbours:
                continue

            median = np.median(neighbours)
            centre = phi[i, j]
            deviation = centre - median
            if first_pass or abs(deviation) <= opts.despike_force_thresh:
                options = centre + adjustments
                errors = np.abs(options - median)
                best = int(np.argmin(errors))
                if errors[best] < abs(deviation) * _WRAP_IMPROVEMENT:
                    phi[i, j] = options[best]
            else:
                phi[i, j] = median

    return phi
