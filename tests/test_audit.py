"""
Tests for the odds-table audit
Run with: pytest tests/test_audit.py -v
"""

from dataclasses import replace

import numpy as np
import pytest

from exacta_race.core.odds_table import OddsTable
from exacta_race.core.race_config import RaceConfig
from exacta_race.services.audit import (
    audit_report,
    empirical_frequencies,
    expected_returns,
    sample_seeds,
)


CFG = RaceConfig.canonical()


class TestExpectedReturns:

    def test_one_row_per_paying_pair(self):
        assert len(expected_returns(CFG)) == 30

    def test_favourite_pair_not_an_overlay(self):
        row = next(r for r in expected_returns(CFG) if (r["first"], r["second"]) == (0, 1))

        assert row["expected_return"] == 952 * 2
        assert row["overlay"] is False

    def test_longshot_pair_is_an_overlay(self):
        row = next(r for r in expected_returns(CFG) if (r["first"], r["second"]) == (5, 4))

        assert row["expected_return"] == 47 * 1500
        assert row["overlay"] is True

    def test_custom_odds(self):
        rows = expected_returns(CFG, OddsTable(6, {(0, 1): 20}))

        assert len(rows) == 1
        assert rows[0]["overlay"] is True


class TestSampling:

    def test_seeds_reproducible(self):
        assert sample_seeds(10, 3) == sample_seeds(10, 3)
        assert sample_seeds(10, 3) != sample_seeds(10, 4)

    def test_seeds_in_range(self):
        for seed in sample_seeds(200, 1):
            assert 0 <= seed < 2 ** 64

    def test_frequency_matrix(self):
        counts = empirical_frequencies(CFG, 500, base_seed=1)

        assert counts.shape == (6, 6)
        assert counts.sum() == 500
        assert np.all(np.diag(counts) == 0)

    def test_rejects_non_positive_race_count(self):
        with pytest.raises(ValueError):
            empirical_frequencies(CFG, 0)


class TestAuditReport:

    @pytest.fixture(scope="class")
    def report(self):
        return audit_report(CFG, n_races=5000, base_seed=11)

    def test_overlays(self, report):
        assert (5, 4) in report["overlays"]
        assert (0, 5) in report["overlays"]
        assert (0, 1) not in report["overlays"]

    def test_observed_close_to_theoretical(self, report):
        assert report["max_abs_deviation"] < 0.05

    def test_strongest_first_beats_weakest_first(self, report):
        observed = {(r["first"], r["second"]): r["observed"] for r in report["pairs"]}

        from_0 = sum(v for (f, _), v in observed.items() if f == 0)
        from_5 = sum(v for (f, _), v in observed.items() if f == 5)
        assert from_0 > from_5

    def test_report_shape(self, report):
        assert report["n_races"] == 5000
        assert len(report["pairs"]) == 30
        assert report["mean_expected_return"] > 0

    def test_report_with_smaller_field(self):
        cfg = replace(CFG, names=("A", "B", "C"), strengths=(3, 2, 1), odds=((0, 1, 2), (2, 1, 9)))

        report = audit_report(cfg, n_races=300, base_seed=0)

        assert len(report["pairs"]) == 2
        assert report["n_races"] == 300
