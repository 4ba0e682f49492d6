"""
Tests for coverage and goodness-of-fit calibration studies.
"""

import pytest
import numpy as np

from seufit.exceptions import ConfigurationError
from seufit.validation.calibration import (
    CalibrationReport,
    run_coverage_study,
    run_gof_calibration,
    simulate_counts,
)


CAMPAIGN_LET = np.array([5.0, 8.0, 12.0, 16.0, 20.0, 30.0, 40.0, 60.0, 80.0, 100.0])


class TestSimulation:
    """Test synthetic count generation."""

    def test_reproducible(self, true_theta):
        a = simulate_counts(true_theta, CAMPAIGN_LET, 1e7, np.random.default_rng([1, 0]))
        b = simulate_counts(true_theta, CAMPAIGN_LET, 1e7, np.random.default_rng([1, 0]))
        np.testing.assert_array_equal(a, b)

    def test_below_threshold_is_zero(self, true_theta):
        counts = simulate_counts(true_theta, np.array([1.0, 2.0]), 1e9, np.random.default_rng(0))
        np.testing.assert_array_equal(counts, [0, 0])

    def test_mean_matches_model(self, true_theta):
        rng = np.random.default_rng(0)
        draws = np.array([
            simulate_counts(true_theta, np.array([100.0]), 1e7, rng)[0] for _ in range(2000)
        ])
        expected = true_theta.cross_section(100.0) * 1e7
        assert draws.mean() == pytest.approx(expected, rel=0.05)


class TestCalibrationReport:
    """Test the report container."""

    def test_failure_rate(self):
        report = CalibrationReport("coverage", n_trials=10, n_successful=8, seed=1, passed=True)
        assert report.failure_rate == pytest.approx(0.2)
        assert report.to_dict()["kind"] == "coverage"

    def test_unknown_method(self, true_theta):
        with pytest.raises(ConfigurationError):
            run_coverage_study(true_theta, CAMPAIGN_LET, 1e8, n_trials=1, method="normal")


@pytest.mark.slow
class TestCalibrationStudies:
    """Monte Carlo calibration of intervals and the deviance test."""

    def test_percentile_coverage(self, true_theta):
        report = run_coverage_study(
            true_theta,
            CAMPAIGN_LET,
            1e8,
            n_trials=30,
            n_bootstrap=100,
            seed=11,
            method="percentile",
        )
        assert report.n_successful >= 25
        assert report.details["methods_used"] == ["percentile"]
        assert 0.75 <= report.details["pooled_coverage"] <= 1.0

    def test_bca_coverage(self, true_theta):
        report = run_coverage_study(
            true_theta,
            CAMPAIGN_LET,
            1e8,
            n_trials=40,
            n_bootstrap=200,
            seed=17,
            method="bca",
        )
        assert report.n_successful >= 34
        assert report.details["methods_used"] == ["bca"]
        assert report.details["target_range"] == [0.90, 0.98]
        # 40 trials resolve pooled coverage to a few percent around the target
        assert 0.82 <= report.details["pooled_coverage"] <= 1.0
        for name, coverage in report.details["coverage"].items():
            assert coverage >= 0.7, name

    def test_gof_acceptance(self, true_theta):
        report = run_gof_calibration(true_theta, CAMPAIGN_LET, 1e8, n_trials=200, seed=5)
        assert report.n_successful >= 190
        assert report.details["pass_fraction"] >= 0.9
        assert report.passed
