"""Configuration loading for mfdop.

This module provides :func:`read_file` which loads a TOML configuration,
applies packaged defaults, normalizes and validates the settings, and
returns them as frozen dataclasses.

The config system is TOML-driven:
- `config/default_config.toml` is the single source of truth for defaults.
- `read_file()` loads the user TOML, deep-merges it over the defaults, and
  builds the typed option objects below.
- The dataclass field defaults mirror the packaged TOML so that the option
  objects can also be constructed directly from Python. The one exception is
  `hybrid_mode`: off for direct calls, on for configured batch runs.

When adding an option: add it to `default_config.toml`, add the field to the
matching dataclass (with validation in `__post_init__` if needed), and read
it in the matching `_*_from_table()` helper.
"""

from __future__ import annotations

import tomllib
from copy import deepcopy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .errors import ConfigError


@dataclass(frozen=True)
class UnwrapOptions:
    """Options of the beat-seeded IRLS phase unwrapper."""

    kappa: float = 1.345
    max_iter: int = 12
    tol: float = 1e-6
    min_correl: float = 40.0
    max_weight: float = 1.0 / (1e-3 ** 2)
    median_filter_3x3: bool = False
    use_huber: bool = True
    hybrid_mode: bool = False
    despike_pass1_thresh: float = 1.2
    despike_pass2_thresh: float = 0.6
    despike_force_thresh: float = 0.4
    despike_window: int = 7
    despike_min_neighbours: int = 10
    invalid_std_fallback: float = 0.05

    def __post_init__(self):
        if self.kappa <= 0:
            raise ConfigError(f"kappa must be positive, got {self.kappa}")
        if self.max_iter < 1:
            raise ConfigError(f"max_iter must be >= 1, got {self.max_iter}")
        if self.tol <= 0:
            raise ConfigError(f"tol must be positive, got {self.tol}")
        if not 0 <= self.min_correl <= 100:
            raise ConfigError(f"min_correl must be within [0, 100], got {self.min_correl}")
        if self.max_weight <= 0:
            raise ConfigError(f"max_weight must be positive, got {self.max_weight}")
        if self.despike_window < 3 or self.despike_window % 2 == 0:
            raise ConfigError(
                f"despike_window must be an odd integer >= 3, got {self.despike_window}")
        if self.invalid_std_fallback <= 0:
            raise ConfigError("invalid_std_fallback must be positive")


@dataclass(frozen=True)
class InversionOptions:
    """Time averaging and orientation corrections for the velocity transforms."""

    nave: int = 1
    pitch_deg: float = 0.0
    roll_deg: float = 0.0
    yaw_deg: float = 0.0

    def __post_init__(self):
        if self.nave < 1 or self.nave % 2 == 0:
            raise ConfigError(f"nave must be a positive odd integer, got {self.nave}")


@dataclass(frozen=True)
class QualityOptions:
    """Output masking thresholds; 0 disables a test."""

    min_correl: float = 0.0
    max_std: float = 0.0

    def __post_init__(self):
        if not 0 <= self.min_correl <= 100:
            raise ConfigError(f"quality.min_correl must be within [0, 100], got {self.min_correl}")
        if self.max_std < 0:
            raise ConfigError(f"quality.max_std must be >= 0, got {self.max_std}")


@dataclass(frozen=True)
class ProcessingConfig:
    """Complete, validated settings of one processing run."""

    capture_dir: str = ""
    pattern: str = "*.npz"
    pad_time_gaps: bool = False
    sample_interval_s: float = 0.0
    output_dir: str = ""
    sound_speed: float = 1500.0
    velocity_bounds: tuple[float, float] | None = None
    unwrap: UnwrapOptions = field(default_factory=UnwrapOptions)
    inversion: InversionOptions = field(default_factory=InversionOptions)
    quality: QualityOptions = field(default_factory=QualityOptions)
    n_jobs: int = 0
    progress: bool = True
    verbose: bool = True

    def __post_init__(self):
        if self.sound_speed <= 0:
            raise ConfigError(f"sound_speed must be positive, got {self.sound_speed}")
        if self.velocity_bounds is not None and self.velocity_bounds[0] >= self.velocity_bounds[1]:
            raise ConfigError(f"velocity_bounds must be increasing, got {self.velocity_bounds}")
        if self.n_jobs < 0:
            raise ConfigError(f"n_jobs must be >= 0, got {self.n_jobs}")


def read_file(config_file: Path | str | None) -> ProcessingConfig:
    """Load TOML config, apply defaults, and return validated settings.

    Passing None returns the packaged defaults.
    """

    user_cfg: dict[str, Any] = {}
    if config_file:
        config_path = Path(config_file)
        if not config_path.is_file():
            raise ConfigError(f"Configuration file not found: {config_path}")
        print(f"Reading configuration from: {config_path}.")
        with config_path.open("rb") as fp:
            try:
                user_cfg = tomllib.load(fp)
            except tomllib.TOMLDecodeError as exc:
                raise ConfigError(f"Invalid TOML in {config_path}: {exc}") from exc

    defaults = _read_packaged_default_config()
    _check_known_keys(defaults, user_cfg)
    return from_dict(_deep_merge(defaults, user_cfg))


def from_dict(merged: dict[str, Any]) -> ProcessingConfig:
    """Build a ProcessingConfig from a fully merged config dictionary."""

    try:
        source = merged["input"]
        output = merged["output"]
        instrument = merged["instrument"]
        unwrap = merged["unwrap"]
        inversion = merged["inversion"]
        quality = merged["quality"]
        processing = merged["processing"]

        # [unwrap]
        unwrap_opts = UnwrapOptions(
            kappa=float(unwrap["kappa"]),
            max_iter=int(unwrap["max_iter"]),
            tol=float(unwrap["tol"]),
            min_correl=float(unwrap["min_correl"]),
            max_weight=float(unwrap["max_weight"]),
            median_filter_3x3=bool(unwrap["median_filter_3x3"]),
            use_huber=bool(unwrap["use_huber"]),
            hybrid_mode=bool(unwrap["hybrid_mode"]),
            despike_pass1_thresh=float(unwrap["despike_pass1_thresh"]),
            despike_pass2_thresh=float(unwrap["despike_pass2_thresh"]),
            despike_force_thresh=float(unwrap["despike_force_thresh"]),
            despike_window=int(unwrap["despike_window"]),
            despike_min_neighbours=int(unwrap["despike_min_neighbours"]),
            invalid_std_fallback=float(unwrap["invalid_std_fallback"]),
        )

        bounds_value = unwrap["velocity_bounds"]
        if bounds_value in ([], ""):
            velocity_bounds = None
        else:
            velocity_bounds = _as_float_tuple(bounds_value, length=2)

        # [inversion]
        inversion_opts = InversionOptions(
            nave=int(inversion["nave"]),
            pitch_deg=float(inversion["pitch_deg"]),
            roll_deg=float(inversion["roll_deg"]),
            yaw_deg=float(inversion["yaw_deg"]),
        )

        # [quality]
        quality_opts = QualityOptions(
            min_correl=float(quality["min_correl"]),
            max_std=float(quality["max_std"]),
        )

        return ProcessingConfig(
            capture_dir=str(source["capture_dir"]),
            pattern=str(source["pattern"]),
            pad_time_gaps=bool(source["pad_time_gaps"]),
            sample_interval_s=float(source["sample_interval_s"]),
            output_dir=str(output["output_dir"]),
            sound_speed=float(instrument["sound_speed"]),
            velocity_bounds=velocity_bounds,
            unwrap=unwrap_opts,
            inversion=inversion_opts,
            quality=quality_opts,
            n_jobs=int(processing["n_jobs"]),
            progress=bool(processing["progress"]),
            verbose=bool(processing["verbose"]),
        )
    except ConfigError:
        raise
    except KeyError as exc:
        raise ConfigError(f"Missing configuration key: {exc}") from exc
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid configuration value: {exc}") from exc


def _read_packaged_default_config() -> dict[str, Any]:
    """Load packaged defaults from default_config.toml."""
    from importlib.resources import files

    default_path = files("mfdop").joinpath("config/default_config.toml")
    with default_path.open("rb") as fp:
        return tomllib.load(fp)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override into base, returning a new dict."""
    out = deepcopy(base)
    for key, value in override.items():
        if key in out and isinstance(out[key], dict) and isinstance(value, dict):
            out[key] = _deep_merge(out[key], value)
        else:
            out[key] = deepcopy(value)
    return out


def _check_known_keys(defaults: dict[str, Any], user_cfg: dict[str, Any]) -> None:
    """Reject sections and keys that have no packaged default (likely typos)."""
    for section, table in user_cfg.items():
        if section not in defaults:
            raise ConfigError(f"Unknown configuration section: [{section}]")
        if not isinstance(table, dict):
            raise ConfigError(f"Configuration entry '{section}' must be a table")
        for key in table:
            if key not in defaults[section]:
                raise ConfigError(f"Unknown configuration key: {section}.{key}")


def _as_float_tuple(value: Any, *, length: int) -> tuple[float, ...]:
    if not isinstance(value, list) or len(value) != length:
        raise ConfigError(f"Expected an array of length {length}")
    try:
        return tuple(float(v) for v in value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Expected float array of length {length}") from exc
