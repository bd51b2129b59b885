"""CLI entrypoint for mfdop.

This file orchestrates the file-based batch pipeline:
- Read/validate a TOML config via :mod:`mfdop.init_config`.
- Create a run directory under `<output_dir>/runs/<run_id>/`.
- For each capture `.npz` in `capture_dir` (natural sort order): optionally
  pad dropped pings, process its head (unwrap -> velocity -> high-grade) and
  write `<capture>_<head>.npz` into the run directory.
- Write `run_meta.json` with the settings and per-capture NaN summaries.

How to run
----------

`python -m mfdop.run path/to/config.toml`

or, once installed, `mfdop-run path/to/config.toml`. Without an argument the
packaged defaults are used, which requires `capture_dir` to be set there.
"""

from __future__ import annotations

import sys
from dataclasses import asdict
from pathlib import Path

from . import __version__
from .errors import ConfigError
from .heads import process_head
from .init_config import ProcessingConfig, read_file
from .io import find_captures, init_run_dir, load_capture, pad_capture_gaps, save_result, write_meta_json
from .utils import timestamp_str


def run(config_file: str | Path | None = None) -> Path:
    """Run the MFDop processing chain.

    Args:
        config_file: Path to a TOML config file. If None, packaged defaults are used.

    Returns:
        run_dir (Path): Path to the run directory where results are stored.
    """

    print("\n\nStarting MFDop processing...")

    config_path = Path(config_file) if config_file else None
    if config_path is not None:
        print(f"Config file: {config_path}")

    print("\nReading config...")
    cfg = read_file(config_path)
    if not cfg.capture_dir:
        raise ConfigError("input.capture_dir must be set in the configuration")

    _print_config_summary(cfg)

    captures = find_captures(cfg.capture_dir, cfg.pattern)
    if not captures:
        print(f"No files matching '{cfg.pattern}' in {cfg.capture_dir}; nothing to do.")

    output_dir = Path(cfg.output_dir) if cfg.output_dir else Path(cfg.capture_dir) / "L1"
    run_dir = init_run_dir(output_dir, timestamp_str())
    print(f"\nRun directory: {run_dir}")

    summaries: dict[str, dict[str, int]] = {}
    for i, capture_path in enumerate(captures):
        print(f"\n[{i + 1}/{len(captures)}] {capture_path.name}")
        capture = load_capture(capture_path, sound_speed=cfg.sound_speed)
        if cfg.pad_time_gaps:
            n_before = capture.shape[1]
            capture = pad_capture_gaps(capture, cfg.sample_interval_s)
            if capture.shape[1] != n_before:
                print(f"Padded {capture.shape[1] - n_before} dropped ping(s) with NaN")

        result = process_head(capture, cfg)
        out_path = save_result(run_dir / f"{capture_path.stem}_{result.head}.npz", result)
        print(f"Writing: {out_path.name}")
        summaries[out_path.name] = result.summary()

    meta = {
        "mfdop_version": __version__,
        "config_file": str(config_path) if config_path else None,
        "config": asdict(cfg),
        "captures": [p.name for p in captures],
        "summaries": summaries,
    }
    print("Writing run metadata: run_meta.json")
    write_meta_json(run_dir / "run_meta.json", meta)

    print(f"Done. Run directory: {run_dir}")
    return run_dir


def _print_config_summary(cfg: ProcessingConfig) -> None:
    print("Config summary:")
    print(f"  capture_dir: {cfg.capture_dir}")
    print(f"  pattern: {cfg.pattern}")
    print(f"  output_dir: {cfg.output_dir or '(capture_dir/L1)'}")
    print(f"  sound_speed: {cfg.sound_speed}")
    print(f"  hybrid_mode: {cfg.unwrap.hybrid_mode}")
    print(f"  min_correl (unwrap): {cfg.unwrap.min_correl}")
    print(f"  nave: {cfg.inversion.nave}")
    print(f"  pitch/roll/yaw [deg]: ({cfg.inversion.pitch_deg}, "
          f"{cfg.inversion.roll_deg}, {cfg.inversion.yaw_deg})")


def main(argv: list[str] | None = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    config_file = Path(argv[0]) if argv and argv[0] else None
    run(config_file)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
