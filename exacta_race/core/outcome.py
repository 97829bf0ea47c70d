"""Outcome engine math: seeded weighted draw without replacement.

The draw is fully deterministic in the seed.  One LCG state threads
through the whole race and is advanced twice per finishing position, in
this order::

    selection draw, finish-time draw, selection draw, finish-time draw, ...

Selection at position ``k``:

1. ``remaining`` = sum of raw strengths of runners not yet placed
   (stop early if it is ``0``).
2. ``draw = next_state mod remaining``.
3. Scan runners in ascending id order, accumulating the strengths of the
   ones still available; pick the first whose running total exceeds
   ``draw``.

The scan order is part of the observable contract: changing it changes
which runner a given ``draw`` selects.

The reference generator works on unsigned 64-bit state with wrapping
multiply/add before the ``2^31`` reduction.  Because ``2^31`` divides
``2^64`` the wrap never changes the reduced value, so plain integer
arithmetic reproduces it exactly.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence, Tuple

from exacta_race.core.race_config import RaceConfig


@dataclass(frozen=True, slots=True)
class DrawResult:
    """Finish order and per-position finish times for one seed."""

    rankings: Tuple[int, ...]
    finish_times: Tuple[int, ...]


class LinearCongruentialGenerator:
    """``next = (state * A + C) mod M`` with mutable state."""

    __slots__ = ("state", "multiplier", "increment", "modulus")

    def __init__(self, seed: int, multiplier: int, increment: int, modulus: int):
        self.state = seed
        self.multiplier = multiplier
        self.increment = increment
        self.modulus = modulus

    @classmethod
    def from_config(cls, seed: int, config: RaceConfig) -> LinearCongruentialGenerator:
        return cls(seed, config.lcg_multiplier, config.lcg_increment, config.lcg_modulus)

    def next(self) -> int:
        self.state = (self.state * self.multiplier + self.increment) % self.modulus
        return self.state


def select_weighted(strengths: Sequence[int], available: Sequence[bool], draw: int) -> int:
    """Index of the first available runner whose cumulative strength exceeds ``draw``.

    ``draw`` must be below the total strength of the available runners.
    """
    cumulative = 0
    for i, strength in enumerate(strengths):
        if not available[i]:
            continue
        cumulative += strength
        if draw < cumulative:
            return i
    raise ValueError(f"draw {draw} exceeds remaining strength {cumulative}")


def draw_finish_order(seed: int, config: RaceConfig) -> DrawResult:
    """Run the weighted draw for ``seed`` and return the full finish order."""
    rng = LinearCongruentialGenerator.from_config(seed, config)
    strengths = config.strengths
    available: List[bool] = [True] * len(strengths)
    rankings: List[int] = []
    finish_times: List[int] = []

    for position in range(len(strengths)):
        remaining = sum(s for s, free in zip(strengths, available) if free)
        if remaining == 0:
            break

        selected = select_weighted(strengths, available, rng.next() % remaining)
        available[selected] = False
        rankings.append(selected)

        jitter = rng.next() % config.finish_time_jitter
        finish_times.append(
            config.finish_time_base + config.finish_time_step * position + jitter
        )

    return DrawResult(rankings=tuple(rankings), finish_times=tuple(finish_times))
