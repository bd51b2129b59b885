"""Tests for the noise model, output masking and record validation."""

import numpy as np
import pytest

from mfdop.errors import ConfigError
from mfdop.quality import (
    EPS,
    bin_max_correlation,
    correlation_phase_std,
    inverse_variance_weights,
    mask_low_quality,
)
from mfdop.records import Capture, VelocityResult

from . import FREQS


def test_correlation_phase_std_clipping():
    std = correlation_phase_std(np.array([100.0, 150.0, 0.0, 1.0, np.nan]))
    assert std[0] == 0.0 and std[1] == 0.0
    assert std[2] == pytest.approx(np.sqrt(-2 * np.log(0.01)))
    assert std[3] == std[2]
    assert np.isnan(std[4])


def test_inverse_variance_weights():
    w = inverse_variance_weights(np.array([100.0, 60.0, np.nan]), 0.5)
    assert w[0] == pytest.approx(1 / EPS)
    assert w[1] == pytest.approx(1 / (np.sqrt(-2 * np.log(0.6)) * 0.5) ** 2)
    assert w[2] == 0.0

    capped = inverse_variance_weights(np.array([100.0]), 0.5, max_weight=1e6)
    assert capped[0] == pytest.approx(1e6)
    assert np.array_equal(inverse_variance_weights(None, 0.5, shape=(2, 2)), np.ones((2, 2)))


def test_bin_max_correlation():
    correl = np.full((2, 6, 3, 2), 30.0)
    correl[0, 1, 2, 1] = 70.0
    correl[1] = np.nan

    best = bin_max_correlation(correl, nave=3)
    assert best.shape == (2, 2)
    assert best[0].tolist() == [70.0, 30.0]
    assert np.all(np.isnan(best[1]))


def test_mask_low_quality():
    times, ranges = np.arange(2.0), np.arange(2.0)
    result = VelocityResult(times=times, ranges=ranges,
                            u=np.ones((2, 2)), u_std=np.array([[0.1, 0.5], [0.1, 0.1]]),
                            w=np.ones((2, 2)), w_std=np.full((2, 2), 0.1))
    correl = np.full((2, 2, 3, 1), 80.0)
    correl[1, 0] = 20.0

    masked = mask_low_quality(result, correl, min_correl=40.0, max_std=0.2)

    assert np.isnan(masked.u[0, 1]) and np.isnan(masked.u[1, 0])
    assert masked.u[0, 0] == 1.0 and masked.u[1, 1] == 1.0
    assert np.isnan(masked.w[1, 0]) and np.isfinite(masked.w[0, 1])
    assert masked.v is None
    # Input untouched
    assert np.all(np.isfinite(result.u))


def test_capture_shape_validation():
    phase = np.zeros((2, 4, 3))
    capture = Capture(phase=phase, correl=None, freqs=FREQS, ranges=[0.1, 0.2],
                      ping_interval=0.01, pulse_lag=0.01, beam_names=("Aux_2",))
    assert capture.shape == (2, 4, 3, 1)

    with pytest.raises(ConfigError):
        Capture(phase=phase, correl=np.zeros((2, 4, 2)), freqs=FREQS, ranges=[0.1, 0.2],
                ping_interval=0.01, pulse_lag=0.01, beam_names=("Aux_2",))
    with pytest.raises(ConfigError):
        Capture(phase=phase, correl=None, freqs=FREQS[:2], ranges=[0.1, 0.2],
                ping_interval=0.01, pulse_lag=0.01, beam_names=("Aux_2",))
    with pytest.raises(ConfigError):
        Capture(phase=phase, correl=None, freqs=FREQS, ranges=[0.1, 0.2],
                ping_interval=0.01, pulse_lag=0.01, beam_names=("A", "B"))
    with pytest.raises(ConfigError):
        Capture(phase=phase, correl=None, freqs=FREQS, ranges=[0.1, 0.2],
                ping_interval=0.0, pulse_lag=0.01, beam_names=("Aux_2",))
