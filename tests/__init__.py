"""Tests for the mfdop package."""

import numpy as np

DEFAULT_TEST_SEED = 42

FREQS = np.array([300e3, 500e3, 700e3])
SOUND_SPEED = 1500.0
TAU = 5e-4


def wrap(phase):
    """Wrap into (-pi, pi]."""
    return np.angle(np.exp(1j * phase))


def synth_phase(velocity, freqs=FREQS, tau=TAU, sound_speed=SOUND_SPEED):
    """Wrapped phases (..., F) produced by a velocity field (...)."""
    k_vec = sound_speed / (4 * np.pi * tau * np.asarray(freqs))
    return wrap(np.asarray(velocity)[..., np.newaxis] / k_vec)
