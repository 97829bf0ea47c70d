"""
Odds-table audit.

Checks the hand-tuned payout table against the strength model two ways:

    1. Theoretical: expected return per unit staked on each exacta,
       ``probability * multiplier`` in fixed point.  A value above
       ``precision`` means the pair pays out more than it takes in on
       average (an overlay for the bettor).
    2. Empirical: runs the outcome draw for many seeds and compares the
       observed exacta frequencies with the theoretical probabilities.

Read-only: nothing here feeds back into sampling or settlement.

Usage::

    report = audit_report(RaceConfig.canonical(), n_races=20000, base_seed=7)
    print(report["max_abs_deviation"], report["overlays"])
"""

import logging
from typing import Dict, List, Optional

import numpy as np

from exacta_race.core.odds_table import OddsTable
from exacta_race.core.outcome import draw_finish_order
from exacta_race.core.probability import probability_table
from exacta_race.core.race_config import MAX_SEED, RaceConfig

logger = logging.getLogger(__name__)


def expected_returns(config: RaceConfig, odds: Optional[OddsTable] = None) -> List[Dict]:
    """Probability, multiplier and fixed-point expected return per paying pair."""
    odds = odds or OddsTable.from_config(config)
    rows = []
    for entry in probability_table(config, odds):
        expected = entry.probability * entry.multiplier
        rows.append({
            "first": entry.first,
            "second": entry.second,
            "probability": entry.probability,
            "multiplier": entry.multiplier,
            "expected_return": expected,
            "overlay": expected > config.precision,
        })
    return rows


def sample_seeds(n_races: int, base_seed: int) -> List[int]:
    """``n_races`` reproducible 64-bit seeds derived from ``base_seed``."""
    rng = np.random.default_rng(base_seed)
    hi = rng.integers(0, 2 ** 32, size=n_races, dtype=np.uint64)
    lo = rng.integers(0, 2 ** 32, size=n_races, dtype=np.uint64)
    return [(int(h) << 32 | int(l)) & MAX_SEED for h, l in zip(hi, lo)]


def empirical_frequencies(config: RaceConfig, n_races: int, base_seed: int = 0) -> np.ndarray:
    """
    Count winning exactas over ``n_races`` seeded draws.

    Returns an ``n x n`` int64 matrix; cell ``[i, j]`` counts races won by
    ``i`` with ``j`` second.
    """
    if n_races <= 0:
        raise ValueError("n_races must be positive")

    n = config.num_participants
    firsts = np.empty(n_races, dtype=np.int64)
    seconds = np.empty(n_races, dtype=np.int64)
    for k, seed in enumerate(sample_seeds(n_races, base_seed)):
        rankings = draw_finish_order(seed, config).rankings
        firsts[k] = rankings[0]
        seconds[k] = rankings[1]

    counts = np.zeros((n, n), dtype=np.int64)
    np.add.at(counts, (firsts, seconds), 1)
    return counts


def audit_report(
    config: RaceConfig,
    n_races: int = 10_000,
    base_seed: int = 0,
    odds: Optional[OddsTable] = None,
) -> Dict:
    """Theoretical vs observed exacta frequencies plus overlay summary."""
    odds = odds or OddsTable.from_config(config)
    rows = expected_returns(config, odds)
    counts = empirical_frequencies(config, n_races, base_seed)

    theoretical = np.array([r["probability"] for r in rows], dtype=np.float64) / config.precision
    observed = np.array(
        [counts[r["first"], r["second"]] for r in rows], dtype=np.float64
    ) / n_races
    deviation = np.abs(observed - theoretical)

    for row, obs in zip(rows, observed):
        row["observed"] = round(float(obs), 6)

    returns = np.array([r["expected_return"] for r in rows], dtype=np.float64) / config.precision
    report = {
        "n_races": n_races,
        "base_seed": base_seed,
        "pairs": rows,
        "max_abs_deviation": round(float(deviation.max()), 6) if rows else 0.0,
        "mean_expected_return": round(float(returns.mean()), 6) if rows else 0.0,
        "overlays": [(r["first"], r["second"]) for r in rows if r["overlay"]],
    }
    logger.info(
        "Odds audit: %d races, max deviation %.4f, %d overlay pair(s)",
        n_races, report["max_abs_deviation"], len(report["overlays"]),
    )
    return report
