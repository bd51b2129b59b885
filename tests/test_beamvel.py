"""Tests for the single-beam weighted velocity estimator."""

import numpy as np
import pytest

from mfdop.beamvel import beam2u
from mfdop.errors import ConfigError
from mfdop.quality import correlation_phase_std

from . import DEFAULT_TEST_SEED, FREQS, SOUND_SPEED

PING_INTERVAL = 0.01
AMBV = SOUND_SPEED / (4 * FREQS * PING_INTERVAL)


def phase_from_beam_velocity(vb):
    """Unwrapped phase (R, T, F, 1) for beam velocities (R, T)."""
    return (vb[..., np.newaxis] * np.pi / AMBV)[..., np.newaxis]


def test_constant_velocity_recovered():
    vb = np.full((3, 7), 0.25)
    result = beam2u(phase_from_beam_velocity(vb), FREQS, PING_INTERVAL, correl=None)

    assert result.velocity.shape == (3, 7)
    assert np.allclose(result.velocity, 0.25)
    assert np.allclose(result.ambiguity, AMBV)
    assert result.beam_velocity.shape == (3, 7, 3, 1)


def test_even_nave_rejected():
    with pytest.raises(ConfigError):
        beam2u(np.zeros((2, 6, 3, 1)), FREQS, PING_INTERVAL, nave=2)


def test_nave3_equal_weights_is_plain_mean():
    rng = np.random.default_rng(DEFAULT_TEST_SEED)
    phase = rng.uniform(-2, 2, size=(2, 9, 3, 1))
    correl = np.full(phase.shape, 80.0)
    times = np.arange(9) * PING_INTERVAL

    result = beam2u(phase, FREQS, PING_INTERVAL, correl=correl, nave=3, times=times)

    assert result.bin_centers.tolist() == [1, 4, 7]
    assert np.allclose(result.times, times[[1, 4, 7]])

    # Weights differ per frequency but not in time, so each frequency's
    # window mean enters with the same weight as in a plain per-bin average
    vb = phase[..., 0] / np.pi * AMBV
    sigma = correlation_phase_std(80.0) * AMBV / np.pi
    w = 1 / sigma ** 2
    for k, centre in enumerate([1, 4, 7]):
        window = vb[:, centre - 1:centre + 2, :]  # (R, 3, F)
        expected = np.sum(window * w, axis=(1, 2)) / (3 * np.sum(w))
        assert np.allclose(result.velocity[:, k], expected)
        assert np.allclose(result.velocity_std[:, k], np.sqrt(1 / (3 * np.sum(w))))


def test_uniform_weights_std():
    vb = np.full((1, 5), -0.1)
    result = beam2u(phase_from_beam_velocity(vb), FREQS, PING_INTERVAL, nave=5)
    assert result.velocity.shape == (1, 1)
    assert result.velocity[0, 0] == pytest.approx(-0.1)
    assert result.velocity_std[0, 0] == pytest.approx(np.sqrt(1 / 15))


def test_empty_bins_are_nan():
    phase = phase_from_beam_velocity(np.full((2, 6), 0.3))
    phase[0, :3] = np.nan
    correl = np.full(phase.shape, 90.0)
    correl[1, 3:] = np.nan

    result = beam2u(phase, FREQS, PING_INTERVAL, correl=correl, nave=3)

    assert np.isnan(result.velocity[0, 0]) and np.isnan(result.velocity_std[0, 0])
    assert np.isnan(result.velocity[1, 1]) and np.isnan(result.velocity_std[1, 1])
    assert result.velocity[0, 1] == pytest.approx(0.3)
    assert result.velocity[1, 0] == pytest.approx(0.3)
    assert result.summary()["velocity"] == 2


def test_std_from_correlation():
    phase = phase_from_beam_velocity(np.zeros((1, 1)))
    correl = np.full(phase.shape, 60.0)
    result = beam2u(phase, FREQS, PING_INTERVAL, correl=correl)

    sigma = np.sqrt(-2 * np.log(0.6)) * AMBV / np.pi
    assert result.velocity_std[0, 0] == pytest.approx(np.sqrt(1 / np.sum(1 / sigma ** 2)))


def test_three_dimensional_input():
    phase = phase_from_beam_velocity(np.full((2, 3), 0.05))[..., 0]
    result = beam2u(phase, FREQS, PING_INTERVAL, correl=np.full(phase.shape, 70.0))
    assert np.allclose(result.velocity, 0.05)
    assert result.beam_names == ("Beam_1",)
