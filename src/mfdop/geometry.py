"""Transducer layouts of the MFDop heads.

The Main head is a centre transmitter/receiver (Beam_CL) surrounded by four
outboard receivers in an 'X' mounting. Viewed from above, with the flume
axes x (shoreward) and y (cross-tank) rotated 45 degrees from the
instrument axes x' and y':

                (Beam_4)            (+y)   (+x)
                   |                   \\    /
        (Beam_3)--(CL)--(Beam_2)        \\  /
                   |
                (Beam_1)

Beam names are the ones assigned in the acquisition software. Aux1 is a
single vertical beam and Aux2 a single horizontal beam.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np


@dataclass(frozen=True)
class Channel:
    """One acoustic channel (beam).

    baseline_m is the separation between the outboard receiver and the centre
    transmitter; 0 marks a normal-incidence beam. A polarity of +1 means a
    positive beam velocity points toward the transducer.
    """

    name: str
    baseline_m: float = 0.0
    polarity: int = 1


@dataclass(frozen=True)
class MainHeadGeometry:
    """Five-beam Main head geometry.

    channels are listed in the canonical order expected by the
    beam-to-Cartesian matrix: Beam_1, Beam_2, Beam_3, Beam_4, Beam_CL.
    """

    channels: tuple[Channel, ...] = field(default_factory=lambda: (
        Channel("Beam_1", 0.10),
        Channel("Beam_2", 0.10),
        Channel("Beam_3", 0.10),
        Channel("Beam_4", 0.10),
        Channel("Beam_CL", 0.0),
    ))
    # Full opening angle between centre and outboard beams at the reference range
    opening_angle_deg: float = 14.0
    # Horizontal rotation from instrument (x', y') to flume (x, y) axes
    mount_rotation_deg: float = -45.0

    @property
    def beam_names(self) -> tuple[str, ...]:
        return tuple(ch.name for ch in self.channels)

    @property
    def baselines(self) -> np.ndarray:
        return np.array([ch.baseline_m for ch in self.channels])

    @property
    def polarities(self) -> np.ndarray:
        return np.array([ch.polarity for ch in self.channels], dtype=float)


@dataclass(frozen=True)
class AuxHead:
    """Single-beam auxiliary head and the velocity component it measures."""

    beam_name: str
    component: str
    sign: int


HEAD_NAMES = ("Main", "Aux1", "Aux2")

AUX_HEADS = {
    "Aux1": AuxHead("Aux_1H", component="w", sign=1),   # vertical beam
    "Aux2": AuxHead("Aux_2", component="v", sign=-1),   # horizontal beam, facing -y
}
