"""Strength model: static participants and their fixed-point shares.

A participant's normalized share is its strength as a fixed-point
fraction of the field's total strength::

    normalized_share(i) = floor(strength(i) * PRECISION / total_strength)

Each share is floored independently, so the six canonical shares sum to
9997 rather than 10000.  The residual is an accepted rounding artifact
and is never redistributed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from exacta_race.core.race_config import RaceConfig


@dataclass(frozen=True, slots=True)
class Participant:
    """One runner in the field.  Immutable once built."""

    id: int
    name: str
    strength: int
    normalized_share: int
    base_speed: int

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "strength": self.strength,
            "normalized_share": self.normalized_share,
            "base_speed": self.base_speed,
        }


def normalized_share(strength: int, total_strength: int, precision: int) -> int:
    """Floor-divided fixed-point share of ``strength`` in ``total_strength``."""
    return (strength * precision) // total_strength


def build_field(config: RaceConfig) -> List[Participant]:
    """Build the participant list for ``config``, ordered by id."""
    total = config.total_strength
    return [
        Participant(
            id=i,
            name=name,
            strength=strength,
            normalized_share=normalized_share(strength, total, config.precision),
            base_speed=config.base_speed_offset + strength,
        )
        for i, (name, strength) in enumerate(zip(config.names, config.strengths))
    ]


def find_participant(field: List[Participant], participant_id: int) -> Optional[Participant]:
    """Return the participant with ``participant_id`` or ``None`` when out of range."""
    if 0 <= participant_id < len(field):
        return field[participant_id]
    return None
