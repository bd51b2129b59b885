"""Process one head of a capture: unwrap, convert to velocity, high-grade."""

import numpy as np

from .beamvel import beam2u
from .errors import ConfigError
from .geometry import AUX_HEADS, HEAD_NAMES, MainHeadGeometry
from .init_config import ProcessingConfig
from .inversion import beam2uvw
from .quality import mask_low_quality
from .records import Capture, HeadResult, VelocityResult
from .unwrap import unwrap_beat_ls


def select_head_beams(capture: Capture, geometry: MainHeadGeometry | None = None) -> Capture:
    """Keep only the beams the head's velocity transform uses."""
    if capture.head == "Main":
        return capture.select_beams((geometry or MainHeadGeometry()).beam_names)

    aux = AUX_HEADS[capture.head]
    if aux.beam_name in capture.beam_names:
        return capture.select_beams([aux.beam_name])
    if len(capture.beam_names) == 1:
        return capture
    raise ConfigError(
        f"{capture.head} needs beam '{aux.beam_name}', found {list(capture.beam_names)}")


def process_head(
    capture: Capture,
    config: ProcessingConfig | None = None,
    geometry: MainHeadGeometry | None = None,
) -> HeadResult:
    """
    Full chain for one head.

    Main: unwrap all five beams, then invert to (u, v, w).
    Aux1: unwrap the vertical beam, weighted average -> w.
    Aux2: unwrap the horizontal beam, weighted average -> v (sign flipped,
    the beam faces -y).

    Args:
        capture (Capture): Raw (wrapped) capture of one head
        config (ProcessingConfig | None): Settings; packaged defaults if None
        geometry (MainHeadGeometry | None): Main head layout

    Returns:
        HeadResult: Unwrapping diagnostics and the high-graded velocity
    """
    if capture.head not in HEAD_NAMES:
        raise ConfigError(f"Invalid head name '{capture.head}', valid names are {list(HEAD_NAMES)}")
    config = config or ProcessingConfig()
    geometry = geometry or MainHeadGeometry()
    capture = select_head_beams(capture, geometry)
    verbose = config.verbose

    if verbose:
        n_range, n_time, n_freq, n_beam = capture.shape
        print(f"Processing head {capture.head}: {n_range} ranges x {n_time} pings, "
              f"{n_freq} frequencies, {n_beam} beam(s)")
        print("  Applying beam velocity unwrapping...")

    unwrapped = unwrap_beat_ls(
        capture.phase, capture.freqs, capture.pulse_lag, capture.sound_speed,
        correl=capture.correl, v_bounds=config.velocity_bounds, opts=config.unwrap,
        n_jobs=config.n_jobs, progress=config.progress, verbose=verbose)

    inv = config.inversion
    if verbose:
        print("  Converting beam velocities to flume coordinates...")
    if capture.head == "Main":
        velocity = beam2uvw(
            unwrapped.phase, capture.freqs, capture.ping_interval, capture.ranges,
            capture.beam_names, correl=capture.correl, nave=inv.nave,
            pitch_deg=inv.pitch_deg, roll_deg=inv.roll_deg, yaw_deg=inv.yaw_deg,
            sound_speed=capture.sound_speed, times=capture.time_axis, geometry=geometry,
            n_jobs=config.n_jobs, progress=config.progress, verbose=verbose)
    else:
        velocity = _aux_velocity(capture, unwrapped.phase, inv.nave)

    velocity = mask_low_quality(
        velocity, capture.correl, min_correl=config.quality.min_correl,
        max_std=config.quality.max_std, nave=inv.nave)

    result = HeadResult(head=capture.head, capture=capture, unwrap=unwrapped, velocity=velocity,
                        notes={"hybrid_mode": config.unwrap.hybrid_mode, "nave": inv.nave})
    if verbose:
        counts = ", ".join(f"{k}={v}" for k, v in result.summary().items())
        print(f"  Summary ({capture.head}): {counts}")
    return result


def _aux_velocity(capture: Capture, phase: np.ndarray, nave: int) -> VelocityResult:
    """Single-beam average relabelled to the flume component the beam measures."""
    aux = AUX_HEADS[capture.head]
    single = beam2u(
        phase, capture.freqs, capture.ping_interval, correl=capture.correl, nave=nave,
        sound_speed=capture.sound_speed, times=capture.time_axis, ranges=capture.ranges,
        beam_names=capture.beam_names)

    return VelocityResult(
        times=single.times,
        ranges=single.ranges,
        beam_names=single.beam_names,
        beam_velocity=single.beam_velocity,
        ambiguity=single.ambiguity,
        bin_centers=single.bin_centers,
        **{aux.component: aux.sign * single.velocity,
           f"{aux.component}_std": single.velocity_std},
    )
