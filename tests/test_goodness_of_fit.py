"""
Tests for the Poisson deviance goodness-of-fit test.
"""

import pytest
import numpy as np
from scipy import stats

from seufit.models.goodness_of_fit import (
    GoodnessOfFitResult,
    GoodnessOfFitTester,
    TestNotApplicable,
    pearson_residuals,
    poisson_deviance,
)
from seufit.models.weibull import expected_counts
from seufit.observations import ObservationSet


class TestDeviance:
    """Test the deviance statistic and residuals."""

    def test_zero_for_perfect_fit(self):
        counts = np.array([3.0, 12.0, 40.0])
        assert poisson_deviance(counts, counts) == pytest.approx(0.0, abs=1e-12)

    def test_zero_counts_contribute_twice_lambda(self):
        assert poisson_deviance(np.array([0, 0]), np.array([0.5, 1.5])) == pytest.approx(4.0)

    def test_known_value(self):
        counts = np.array([10.0])
        lam = np.array([8.0])
        expected = 2 * (10 * np.log(10 / 8) - 2)
        assert poisson_deviance(counts, lam) == pytest.approx(expected)

    def test_residual_floor(self):
        r = pearson_residuals(np.array([1.0, 5.0]), np.array([0.001, 4.0]))
        assert r[0] == pytest.approx((1.0 - 0.001) / np.sqrt(0.1))
        assert r[1] == pytest.approx(0.5)


class TestGoodnessOfFitTester:
    """Test the test outcome types."""

    def test_applicable_result(self, true_theta):
        let = np.array([5.0, 8.0, 12.0, 20.0, 30.0, 40.0, 60.0, 80.0])
        obs = ObservationSet.from_arrays(let, [2, 10, 25, 45, 62, 70, 80, 84], 1e7)
        outcome = GoodnessOfFitTester().test(true_theta, obs)

        assert isinstance(outcome, GoodnessOfFitResult)
        assert outcome.applicable
        assert outcome.degrees_of_freedom == 4
        lam = expected_counts(true_theta, obs.let, obs.fluence)
        assert outcome.deviance == pytest.approx(poisson_deviance(obs.counts, lam))
        assert outcome.p_value == pytest.approx(stats.chi2.sf(outcome.deviance, 4), abs=1e-12)
        assert outcome.residuals.shape == (8,)
        assert outcome.to_dict()["applicable"] is True

    def test_not_applicable_with_few_points(self, true_theta, small_sample_observations):
        outcome = GoodnessOfFitTester().test(true_theta, small_sample_observations)

        assert isinstance(outcome, TestNotApplicable)
        assert not outcome.applicable
        assert outcome.degrees_of_freedom == 1
        assert len(outcome.residuals) == 5
        assert "degrees of freedom" in outcome.reason

    def test_censored_points_included(self, end_to_end_fit, censored_observations):
        outcome = GoodnessOfFitTester().test(end_to_end_fit.theta_hat, censored_observations)
        assert outcome.degrees_of_freedom == 6
        assert len(outcome.residuals) == 10

    def test_gross_misfit_rejected(self):
        obs = ObservationSet.from_arrays(
            [5.0, 10.0, 20.0, 40.0, 60.0, 80.0, 100.0],
            [100, 5, 100, 5, 100, 5, 100],
            1e7,
        )
        outcome = GoodnessOfFitTester().test((1e-5, 1.0, 2.0, 10.0), obs)
        assert outcome.applicable
        assert outcome.p_value < 1e-6
