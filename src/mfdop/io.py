"""
Input/output functions for MFDop processing.

Captures are read from `.npz` files holding the per-ping cubes of one head
(`phase`, `cor`, optional `amp`, each (range, time, freq, beam)) together
with `f` (Hz), `r` (m), optional `etime` (s), `ping_interval` (s), `tau`
(s), `beamname` and optional `head`. Results are written with np.savez
next to a small JSON metadata file.
"""

from __future__ import annotations

import json
from dataclasses import replace
from pathlib import Path
from typing import Any

import numpy as np
from natsort import natsorted

from .errors import ConfigError
from .records import Capture, HeadResult
from .utils import find_time_gaps, pad_time_axis

_REQUIRED_KEYS = ("phase", "f", "r", "ping_interval", "tau", "beamname")


def find_captures(capture_dir: str | Path, pattern: str = "*.npz") -> list[Path]:
    """Capture files in natural sort order (file_2 before file_10)."""
    capture_dir = Path(capture_dir)
    if not capture_dir.is_dir():
        raise ConfigError(f"Capture directory not found: {capture_dir}")
    return natsorted(capture_dir.glob(pattern), key=lambda p: p.name)


def load_capture(file_path: str | Path, head: str | None = None,
                 sound_speed: float = 1500.0) -> Capture:
    """
    Load one capture file.

    Args:
        file_path (str | Path): Path to the .npz file
        head (str | None): Head name; overrides the one stored in the file
        sound_speed (float): Speed of sound in m/s

    Returns:
        Capture: Validated capture record
    """
    file_path = Path(file_path)
    with np.load(file_path, allow_pickle=False) as data:
        missing = [key for key in _REQUIRED_KEYS if key not in data.files]
        if missing:
            raise ConfigError(f"{file_path.name} is missing required key(s) {missing}")

        stored_head = str(data["head"]) if "head" in data.files else "Main"
        return Capture(
            phase=data["phase"],
            correl=data["cor"] if "cor" in data.files else None,
            amp=data["amp"] if "amp" in data.files else None,
            freqs=data["f"],
            ranges=data["r"],
            times=data["etime"] if "etime" in data.files else None,
            ping_interval=float(data["ping_interval"]),
            pulse_lag=float(data["tau"]),
            beam_names=tuple(str(b) for b in np.atleast_1d(data["beamname"])),
            sound_speed=sound_speed,
            head=head or stored_head,
        )


def pad_capture_gaps(capture: Capture, sample_interval: float = 0.0) -> Capture:
    """
    Put a capture on a uniform time base, NaN-filling dropped pings.

    Args:
        capture (Capture): Capture with timestamps
        sample_interval (float): Nominal ping spacing in s; 0 uses the median step

    Returns:
        Capture: Padded copy (the input itself if there are no gaps)
    """
    if capture.times is None or capture.times.size < 2:
        return capture

    dt = sample_interval or float(np.median(np.diff(capture.times)))
    uniform_times, index_map = find_time_gaps(capture.times, dt)
    if uniform_times.size == capture.times.size:
        return capture

    n_time = uniform_times.size
    return replace(
        capture,
        phase=pad_time_axis(capture.phase, index_map, n_time),
        correl=None if capture.correl is None else pad_time_axis(capture.correl, index_map, n_time),
        amp=None if capture.amp is None else pad_time_axis(capture.amp, index_map, n_time),
        times=uniform_times,
    )


def init_run_dir(output_dir: Path, run_id: str) -> Path:
    run_dir = output_dir / "runs" / run_id
    run_dir.mkdir(parents=True, exist_ok=True)
    return run_dir


def save_result(file_path: str | Path, result: HeadResult) -> Path:
    """
    Save one head result to a .npz file.

    Velocity components the head does not measure are left out. The
    unwrapped phase and per-pixel unwrapping diagnostics are included.
    """
    file_path = Path(file_path)
    if file_path.suffix != ".npz":
        file_path = file_path.with_suffix(".npz")
    file_path.parent.mkdir(parents=True, exist_ok=True)

    vel = result.velocity
    arrays: dict[str, Any] = {
        "head": np.array(result.head),
        "etime": vel.times,
        "r": vel.ranges,
        "f": result.capture.freqs,
        "beamname": np.array(vel.beam_names),
        "phase_unwrapped": result.unwrap.phase,
        "unwrap_velocity": result.unwrap.velocity,
        "unwrap_velocity_std": result.unwrap.velocity_std,
        "unwrap_iterations": result.unwrap.iterations,
        "unwrap_invalid": result.unwrap.invalid,
    }
    for comp in vel.components:
        arrays[comp] = getattr(vel, comp)
        arrays[f"{comp}std"] = getattr(vel, f"{comp}_std")
    for key, value in (("vb", vel.beam_velocity), ("ambv", vel.ambiguity), ("A", vel.transform)):
        if value is not None:
            arrays[key] = value

    np.savez(file_path, **arrays)
    return file_path


def write_meta_json(path: Path, meta: dict[str, Any]) -> None:
    path.write_text(json.dumps(meta, indent=2, sort_keys=True, default=_json_default),
                    encoding="utf-8")


def _json_default(obj: Any) -> Any:
    if isinstance(obj, np.generic):
        return obj.item()
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, Path):
        return str(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")
