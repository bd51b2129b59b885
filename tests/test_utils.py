"""Tests for the general helpers."""

import numpy as np
import pytest

from mfdop.errors import ConfigError
from mfdop.utils import (
    find_time_gaps,
    pad_time_axis,
    resolve_n_jobs,
    time_bin_centers,
    time_bin_indices,
    wrap_to_pi,
    wrap_velocity,
)


def test_wrap_to_pi_range():
    phase = np.linspace(-20, 20, 401)
    wrapped = wrap_to_pi(phase)
    assert np.all(wrapped >= -np.pi) and np.all(wrapped < np.pi)
    assert np.allclose(np.exp(1j * wrapped), np.exp(1j * phase))


def test_wrap_velocity_half_ambiguity():
    assert wrap_velocity(0.9, 2.0) == pytest.approx(0.9)
    assert wrap_velocity(1.2, 2.0) == pytest.approx(-0.8)
    assert wrap_velocity(-3.1, 2.0) == pytest.approx(0.9)


@pytest.mark.parametrize(
    "n_time, nave, expected",
    [
        (5, 1, [0, 1, 2, 3, 4]),
        (10, 3, [1, 4, 7]),
        (11, 5, [2, 7]),
        (4, 5, []),
    ],
)
def test_time_bin_centers(n_time, nave, expected):
    assert time_bin_centers(n_time, nave).tolist() == expected


@pytest.mark.parametrize("nave", [0, 2, 4, -1])
def test_time_bin_centers_rejects_even_or_nonpositive(nave):
    with pytest.raises(ConfigError):
        time_bin_centers(10, nave)


def test_time_bin_indices():
    idx = time_bin_indices(7, 3)
    assert idx.tolist() == [[0, 1, 2], [3, 4, 5]]


def test_find_time_gaps_maps_onto_uniform_grid():
    times = np.array([0.0, 0.1, 0.2, 0.5, 0.6])
    uniform, index_map = find_time_gaps(times, 0.1)

    assert index_map.tolist() == [0, 1, 2, 5, 6]
    assert uniform.size == 7
    assert np.allclose(uniform[index_map], times)


def test_find_time_gaps_without_gaps_is_identity():
    times = np.arange(6) * 0.01
    uniform, index_map = find_time_gaps(times, 0.01)
    assert np.array_equal(index_map, np.arange(6))
    assert np.allclose(uniform, times)


def test_pad_time_axis_inserts_nan_columns():
    arr = np.arange(10, dtype=float).reshape(2, 5)
    index_map = np.array([0, 1, 2, 5, 6])
    padded = pad_time_axis(arr, index_map, 7)

    assert padded.shape == (2, 7)
    assert np.all(np.isnan(padded[:, 3:5]))
    assert np.array_equal(padded[:, index_map], arr)


def test_pad_time_axis_length_mismatch():
    with pytest.raises(ValueError):
        pad_time_axis(np.zeros((2, 4)), np.array([0, 1, 2]), 5)


def test_resolve_n_jobs():
    assert resolve_n_jobs(3) == 3
    assert resolve_n_jobs(0) >= 1
    assert resolve_n_jobs(None) >= 1
