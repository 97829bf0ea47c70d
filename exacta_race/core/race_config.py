"""Race configuration: every domain constant in one place.

This module is the **registry** for the constants that define a race:
the field of participants, their strengths, the fixed-point precision,
the exacta payout table, the RNG constants and the phase timings.
Nowhere else in the codebase should these numbers be hard-coded.

Architecture
------------
:class:`RaceConfig` is a frozen dataclass.  The named constructor
:meth:`RaceConfig.canonical` returns the six-runner field the payout
table was hand-tuned against.  Variants for experiments are derived with
:func:`dataclasses.replace`; ``__post_init__`` re-validates them.

Typical usage::

    from exacta_race.core.race_config import RaceConfig

    cfg = RaceConfig.canonical()
    field = build_field(cfg)

    # Shorter betting window for a demo deployment:
    from dataclasses import replace
    demo_cfg = replace(cfg, betting_window_sec=120)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

# ---------------------------------------------------------------------------
# Canonical constants
# ---------------------------------------------------------------------------

#: Fixed-point scale for shares and probabilities (4 decimal places).
PRECISION: Final[int] = 10_000

#: Canonical participant names, indexed by participant id.
CANONICAL_NAMES: Final[tuple[str, ...]] = (
    "Thunder Bolt",
    "Silver Arrow",
    "Golden Star",
    "Dark Knight",
    "Wild Spirit",
    "Lucky Charm",
)

#: Canonical strengths, strictly decreasing by id.  Sum = 21.
CANONICAL_STRENGTHS: Final[tuple[int, ...]] = (6, 5, 4, 3, 2, 1)

#: Canonical exacta multipliers as ``(first, second, multiplier)``.
#: Exactly 30 off-diagonal cells; every unlisted pair pays nothing.
CANONICAL_ODDS: Final[tuple[tuple[int, int, int], ...]] = (
    (0, 5, 60), (0, 4, 30), (0, 3, 10), (0, 2, 3), (0, 1, 2),
    (1, 5, 175), (1, 4, 125), (1, 3, 20), (1, 2, 5), (1, 0, 3),
    (2, 5, 100), (2, 4, 80), (2, 3, 8), (2, 1, 6), (2, 0, 4),
    (3, 5, 500), (3, 4, 250), (3, 2, 12), (3, 1, 15), (3, 0, 8),
    (4, 5, 1000), (4, 3, 300), (4, 2, 100), (4, 1, 150), (4, 0, 40),
    (5, 4, 1500), (5, 3, 600), (5, 2, 200), (5, 1, 250), (5, 0, 80),
)

#: glibc LCG constants.
LCG_MULTIPLIER: Final[int] = 1_103_515_245
LCG_INCREMENT: Final[int] = 12_345
LCG_MODULUS: Final[int] = 2 ** 31

#: Largest accepted seed (unsigned 64-bit).
MAX_SEED: Final[int] = 2 ** 64 - 1

#: Largest balance an account may reach, including any payout still
#: pending on open wagers.  Matches the signed 64-bit ``accounts.balance``
#: column, so a settlement credit can always be stored.
MAX_BALANCE: Final[int] = 2 ** 63 - 1


@dataclass(frozen=True)
class RaceConfig:
    """Immutable configuration bundle for a race field.

    Attributes:
        names: Display name per participant id.
        strengths: Raw integer strength per participant id.  These are the
            sampling weights of the outcome engine.
        odds: Populated exacta cells as ``(first, second, multiplier)``.

        --- Fixed-point model ---
        precision: Scale of normalized shares and probabilities.
        base_speed_offset: ``base_speed = base_speed_offset + strength``.
            Published with each participant; not used by sampling.

        --- RNG ---
        lcg_multiplier / lcg_increment / lcg_modulus:
            ``next = (state * A + C) mod M``.

        --- Finish times ---
        finish_time_base: Time of the winner before jitter.
        finish_time_step: Added per finishing position.
        finish_time_jitter: Jitter is ``state mod finish_time_jitter``.

        --- Phase timings (cycle driver only) ---
        betting_window_sec: How long a race accepts wagers.
        race_duration_sec: How long a started race runs before the draw.
    """

    names: tuple[str, ...]
    strengths: tuple[int, ...]
    odds: tuple[tuple[int, int, int], ...]

    precision: int = PRECISION
    base_speed_offset: int = 14

    lcg_multiplier: int = LCG_MULTIPLIER
    lcg_increment: int = LCG_INCREMENT
    lcg_modulus: int = LCG_MODULUS

    finish_time_base: int = 50
    finish_time_step: int = 2
    finish_time_jitter: int = 5

    betting_window_sec: int = 14 * 60
    race_duration_sec: int = 60

    def __post_init__(self) -> None:
        if len(self.strengths) < 2:
            raise ValueError("A race needs at least two participants")
        if len(self.names) != len(self.strengths):
            raise ValueError(
                f"names ({len(self.names)}) and strengths "
                f"({len(self.strengths)}) must have the same length"
            )
        if any(s <= 0 for s in self.strengths):
            raise ValueError(f"Strengths must be positive, got {self.strengths!r}")
        n = len(self.strengths)
        for first, second, multiplier in self.odds:
            if not (0 <= first < n and 0 <= second < n):
                raise ValueError(f"Odds cell ({first}, {second}) is out of range")
            if first == second:
                raise ValueError(f"Odds cell ({first}, {second}) is on the diagonal")
            if multiplier < 0:
                raise ValueError(
                    f"Odds cell ({first}, {second}) has negative multiplier {multiplier}"
                )
        if self.precision <= 0 or self.lcg_modulus <= 0 or self.finish_time_jitter <= 0:
            raise ValueError("precision, lcg_modulus and finish_time_jitter must be positive")

    @property
    def num_participants(self) -> int:
        return len(self.strengths)

    @property
    def total_strength(self) -> int:
        return sum(self.strengths)

    # ------------------------------------------------------------------ #
    #  Named constructors                                                  #
    # ------------------------------------------------------------------ #

    @classmethod
    def canonical(cls) -> RaceConfig:
        """Return the canonical six-runner field and its payout table."""
        return cls(
            names=CANONICAL_NAMES,
            strengths=CANONICAL_STRENGTHS,
            odds=CANONICAL_ODDS,
        )
