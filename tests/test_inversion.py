"""Tests for the Main head beam-to-Cartesian inversion."""

import numpy as np
import pytest

from mfdop.ambiguity import beam_nyquist_velocities
from mfdop.errors import ConfigError
from mfdop.geometry import Channel, MainHeadGeometry
from mfdop.inversion import beam2uvw, beam_transform_matrix, pitch_roll_rotation

from . import DEFAULT_TEST_SEED, FREQS, SOUND_SPEED

PING_INTERVAL = 0.01
RANGES = np.array([0.3, 0.45, 0.6])
BEAMS = MainHeadGeometry().beam_names


def synth_main_phase(uvw, n_time=4, a=None):
    """Unwrapped phase (R, T, F, 5) for a uniform (u, v, w) field."""
    a = beam_transform_matrix() if a is None else a
    vb = a @ np.asarray(uvw)  # (5,)
    ambv = beam_nyquist_velocities(FREQS, RANGES, PING_INTERVAL,
                                   MainHeadGeometry().baselines, SOUND_SPEED)  # (R, F, 5)
    phase = vb[np.newaxis, np.newaxis, :] * np.pi / ambv  # (R, F, 5)
    return np.repeat(phase[:, np.newaxis], n_time, axis=1)


def test_transform_matrix_rows_are_unit_vectors():
    a = beam_transform_matrix()
    assert a.shape == (5, 3)
    assert np.allclose(np.linalg.norm(a, axis=1), 1.0)
    assert np.linalg.matrix_rank(a) == 3
    # Centre beam only sees w, positive toward the transducer (looking down)
    assert np.allclose(a[4], [0.0, 0.0, 1.0])


def test_pitch_roll_rotation_properties():
    assert np.allclose(pitch_roll_rotation(0.0, 0.0), np.eye(3))

    rot = pitch_roll_rotation(5.0, -3.0)
    assert np.allclose(rot @ rot.T, np.eye(3))
    assert np.linalg.det(rot) == pytest.approx(1.0)

    p, r = np.deg2rad(5.0), np.deg2rad(-3.0)
    normal = np.cross([np.cos(p), 0, np.sin(p)], [0, np.cos(r), np.sin(r)])
    normal /= np.linalg.norm(normal)
    assert np.allclose(rot @ [0.0, 0.0, 1.0], normal)


@pytest.mark.parametrize("correl", [None, 90.0])
def test_exact_inversion(correl):
    uvw = np.array([0.12, -0.2, 0.05])
    phase = synth_main_phase(uvw)
    correl = None if correl is None else np.full(phase.shape, correl)

    result = beam2uvw(phase, FREQS, PING_INTERVAL, RANGES, BEAMS, correl=correl)

    assert result.u.shape == (3, 4)
    assert np.allclose(result.u, uvw[0])
    assert np.allclose(result.v, uvw[1])
    assert np.allclose(result.w, uvw[2])
    assert np.all(result.u_std > 0)
    assert result.components == ("u", "v", "w")


def test_one_beam_missing_still_accurate():
    uvw = np.array([-0.3, 0.1, 0.02])
    phase = synth_main_phase(uvw)
    phase[..., 2] = np.nan
    correl = np.full(phase.shape, 80.0)

    result = beam2uvw(phase, FREQS, PING_INTERVAL, RANGES, BEAMS, correl=correl)
    assert np.all(np.isfinite(result.u))
    assert np.allclose(np.stack([result.u, result.v, result.w], axis=-1), uvw)


def test_centre_beam_only_is_nan():
    phase = synth_main_phase([0.1, -0.2, 0.05])
    phase[..., :4] = np.nan
    correl = np.full(phase.shape, 80.0)

    result = beam2uvw(phase, FREQS, PING_INTERVAL, RANGES, BEAMS, correl=correl)
    for comp in ("u", "v", "w", "u_std", "v_std", "w_std"):
        assert np.all(np.isnan(getattr(result, comp))), comp


def test_opposite_beam_pair_is_nan():
    # Beam_1 and Beam_4 plus the centre beam only span a plane
    phase = synth_main_phase([0.1, -0.2, 0.05])
    phase[..., [1, 2]] = np.nan
    correl = np.full(phase.shape, 80.0)

    result = beam2uvw(phase, FREQS, PING_INTERVAL, RANGES, BEAMS, correl=correl)
    assert np.all(np.isnan(result.u)) and np.all(np.isnan(result.v_std))


def test_all_missing_bins_are_nan():
    phase = synth_main_phase([0.1, 0.1, 0.1])
    phase[0] = np.nan
    result = beam2uvw(phase, FREQS, PING_INTERVAL, RANGES, BEAMS)
    assert np.all(np.isnan(result.u[0])) and np.all(np.isnan(result.w_std[0]))
    assert np.all(np.isfinite(result.u[1:]))


def test_missing_beam_name_rejected():
    phase = synth_main_phase([0, 0, 0])
    names = list(BEAMS)
    names[3] = "Beam_X"
    with pytest.raises(ConfigError):
        beam2uvw(phase, FREQS, PING_INTERVAL, RANGES, names)


def test_shuffled_beam_order():
    uvw = np.array([0.05, 0.15, -0.1])
    phase = synth_main_phase(uvw)
    perm = [4, 2, 0, 3, 1]
    names = [BEAMS[i] for i in perm]

    ref = beam2uvw(phase, FREQS, PING_INTERVAL, RANGES, BEAMS)
    result = beam2uvw(phase[..., perm], FREQS, PING_INTERVAL, RANGES, names)

    assert np.allclose(result.u, ref.u) and np.allclose(result.w, ref.w)
    assert result.beam_names == tuple(names)
    assert np.allclose(result.beam_velocity, ref.beam_velocity[..., perm])
    assert np.allclose(result.ambiguity, ref.ambiguity[..., perm])
    assert np.allclose(result.transform, ref.transform[perm])


def test_yaw_rotates_horizontal_components():
    uvw = np.array([0.1, 0.2, 0.05])
    phase = synth_main_phase(uvw)

    result = beam2uvw(phase, FREQS, PING_INTERVAL, RANGES, BEAMS, yaw_deg=90.0)
    assert np.allclose(result.u, -0.2)
    assert np.allclose(result.v, 0.1)
    assert np.allclose(result.w, 0.05)


def test_pitch_roll_corrected_inversion():
    uvw = np.array([0.2, -0.05, 0.08])
    a_tilted = beam_transform_matrix(pitch_deg=4.0, roll_deg=-2.5)
    phase = synth_main_phase(uvw, a=a_tilted)

    corrected = beam2uvw(phase, FREQS, PING_INTERVAL, RANGES, BEAMS, pitch_deg=4.0, roll_deg=-2.5)
    assert np.allclose(corrected.u, uvw[0])
    assert np.allclose(corrected.v, uvw[1])
    assert np.allclose(corrected.w, uvw[2])

    uncorrected = beam2uvw(phase, FREQS, PING_INTERVAL, RANGES, BEAMS)
    assert not np.allclose(uncorrected.u, uvw[0])


def test_nave3_bins_noisy_data():
    rng = np.random.default_rng(DEFAULT_TEST_SEED)
    uvw = np.array([0.1, -0.1, 0.0])
    phase = synth_main_phase(uvw, n_time=10)
    phase = phase + rng.normal(0, 0.01, size=phase.shape)
    times = 100.0 + np.arange(10) * PING_INTERVAL

    result = beam2uvw(phase, FREQS, PING_INTERVAL, RANGES, BEAMS,
                      correl=np.full(phase.shape, 95.0), nave=3, times=times, n_jobs=2)

    assert result.bin_centers.tolist() == [1, 4, 7]
    assert np.allclose(result.times, times[[1, 4, 7]])
    assert np.allclose(result.u, 0.1, atol=0.01)
    assert np.allclose(result.w, 0.0, atol=0.01)


def test_even_nave_rejected():
    phase = synth_main_phase([0, 0, 0])
    with pytest.raises(ConfigError):
        beam2uvw(phase, FREQS, PING_INTERVAL, RANGES, BEAMS, nave=4)


def test_channel_polarity_flips_beam_velocity():
    uvw = np.array([0.15, 0.05, -0.08])
    phase = synth_main_phase(uvw)
    channels = list(MainHeadGeometry().channels)
    channels[2] = Channel("Beam_3", 0.10, polarity=-1)
    flipped = MainHeadGeometry(channels=tuple(channels))

    phase[..., 2] *= -1
    result = beam2uvw(phase, FREQS, PING_INTERVAL, RANGES, BEAMS, geometry=flipped)

    assert np.allclose(result.u, uvw[0])
    assert np.allclose(result.v, uvw[1])
    assert np.allclose(result.w, uvw[2])
    assert not np.allclose(beam2uvw(phase, FREQS, PING_INTERVAL, RANGES, BEAMS).u, uvw[0])
