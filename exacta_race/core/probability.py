"""Theoretical exacta probabilities in fixed point.

Every function here is **pure**.  The values are for auditing and
display only; the outcome engine samples on raw integer strengths and
never reads these numbers.

For an ordered pair ``(i, j)``::

    p_first   = floor(S[i] * P / total)
    p_second  = floor(S[j] * P / (total - S[i]))
    P(i -> j) = floor(p_first * p_second / P)

with ``P`` the fixed-point precision.  Each step floors, so the results
are slightly below the exact rational probabilities.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List

from exacta_race.core.odds_table import OddsTable
from exacta_race.core.race_config import RaceConfig


@dataclass(frozen=True, slots=True)
class ExactaProbability:
    """One row of the probability table."""

    first: int
    second: int
    probability: int   # scaled by precision
    multiplier: int

    def to_dict(self) -> dict:
        return {
            "first": self.first,
            "second": self.second,
            "probability": self.probability,
            "multiplier": self.multiplier,
        }


def exacta_probability(config: RaceConfig, first: int, second: int) -> int:
    """Fixed-point probability that ``first`` wins and ``second`` runs second.

    Returns ``0`` when the ids are equal or either is out of range.
    """
    n = config.num_participants
    if first == second or not (0 <= first < n) or not (0 <= second < n):
        return 0

    precision = config.precision
    total = config.total_strength
    s_first = config.strengths[first]
    s_second = config.strengths[second]

    p_first = (s_first * precision) // total
    remaining = total - s_first
    p_second_given_first = (s_second * precision) // remaining
    return (p_first * p_second_given_first) // precision


def probability_table(config: RaceConfig, odds: OddsTable) -> List[ExactaProbability]:
    """Probability and multiplier for every pair that has a payout.

    Pairs with a ``0`` multiplier are omitted, not zero-filled.  Rows are
    ordered by ``(first, second)``.
    """
    return [
        ExactaProbability(
            first=first,
            second=second,
            probability=exacta_probability(config, first, second),
            multiplier=mult,
        )
        for first, second, mult in odds.paying_pairs()
    ]
