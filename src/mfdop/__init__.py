"""Multi-frequency Doppler sonar (MFDop) velocity processing package.

Converts wrapped multi-frequency pulse-pair phases into calibrated velocity
profiles: phase unwrapping across carrier frequencies, beam velocities from
the beam geometry, and weighted least-squares conversion to flume (u, v, w).

Usage:
    import mfdop

    unw = mfdop.unwrap_beat_ls(phase, freqs, tau, correl=correl)
    uvw = mfdop.beam2uvw(unw.phase, freqs, ping_interval, ranges, beam_names, correl=correl)

    # The file-based batch pipeline lives in `mfdop.run`.
"""

__version__ = "1.0.0"

from .errors import ConfigError, GeometryError
from .ambiguity import ambiguity_velocity, beam_half_angle, beam_nyquist_velocities, nyquist_velocity
from .geometry import AUX_HEADS, HEAD_NAMES, AuxHead, Channel, MainHeadGeometry
from .init_config import InversionOptions, ProcessingConfig, QualityOptions, UnwrapOptions, read_file
from .records import BeamVelocityResult, Capture, FrequencyRoles, HeadResult, UnwrapResult, VelocityResult
from .unwrap import despike_high_frequency, frequency_roles, unwrap_beat_ls
from .beamvel import beam2u
from .inversion import beam2uvw, beam_transform_matrix, pitch_roll_rotation
from .quality import mask_low_quality
from .heads import process_head

__all__ = [
    # Errors
    'ConfigError', 'GeometryError',

    # Ambiguity velocities
    'ambiguity_velocity', 'nyquist_velocity', 'beam_half_angle', 'beam_nyquist_velocities',

    # Geometry
    'Channel', 'MainHeadGeometry', 'AuxHead', 'AUX_HEADS', 'HEAD_NAMES',

    # Configuration
    'read_file', 'ProcessingConfig', 'UnwrapOptions', 'InversionOptions', 'QualityOptions',

    # Records
    'Capture', 'FrequencyRoles', 'UnwrapResult', 'BeamVelocityResult',
    'VelocityResult', 'HeadResult',

    # Processing
    'unwrap_beat_ls', 'frequency_roles', 'despike_high_frequency',
    'beam2u', 'beam2uvw', 'beam_transform_matrix', 'pitch_roll_rotation',
    'mask_low_quality', 'process_head',
]
