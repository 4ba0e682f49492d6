"""
Tests for percentile and BCA confidence intervals.
"""

import pytest
import numpy as np
from scipy import stats

from seufit.exceptions import NotApplicable
from seufit.models.bootstrap import BootstrapEngine
from seufit.models.intervals import (
    IntervalMethod,
    IntervalSelector,
    acceleration,
    bca_intervals,
    bca_levels,
    bias_correction,
    choose_method,
    jackknife_estimates,
    percentile_intervals,
)


@pytest.fixture
def normal_samples():
    rng = np.random.default_rng(5)
    theta_hat = np.array([1e-5, 2.0, 1.5, 20.0])
    scale = np.array([1e-6, 0.3, 0.2, 2.0])
    return theta_hat, theta_hat + scale * rng.normal(size=(20000, 4))


@pytest.fixture
def end_to_end_bootstrap(end_to_end_fit, end_to_end_observations):
    engine = BootstrapEngine(n_bootstrap=100, seed=1, use_parallel=False, emit_warnings=False)
    return engine.run(end_to_end_fit, end_to_end_observations)


class TestPercentileIntervals:
    """Test percentile intervals."""

    def test_matches_quantiles(self, normal_samples):
        theta_hat, samples = normal_samples
        intervals = percentile_intervals(samples, theta_hat, 0.95)

        assert len(intervals) == 4
        for ci in intervals:
            column = samples[:, ci.parameter_index]
            assert ci.lower == pytest.approx(np.quantile(column, 0.025))
            assert ci.upper == pytest.approx(np.quantile(column, 0.975))
            assert ci.method is IntervalMethod.PERCENTILE
            assert ci.estimate == theta_hat[ci.parameter_index]

    def test_names_in_order(self, normal_samples):
        theta_hat, samples = normal_samples
        names = [ci.name for ci in percentile_intervals(samples, theta_hat)]
        assert names == ["sigma_sat", "let_th", "s", "w"]

    def test_too_few_samples(self):
        with pytest.raises(NotApplicable):
            percentile_intervals(np.ones((1, 4)), np.ones(4))


class TestBCA:
    """Test bias-corrected and accelerated intervals."""

    def test_reduces_to_percentile_without_bias_or_acceleration(self, normal_samples):
        theta_hat, samples = normal_samples
        bca = bca_intervals(samples, theta_hat, np.zeros(4), 0.95)
        pct = percentile_intervals(samples, theta_hat, 0.95)

        for b, p in zip(bca, pct):
            assert b.method is IntervalMethod.BCA
            width = p.upper - p.lower
            assert b.lower == pytest.approx(p.lower, abs=0.02 * width)
            assert b.upper == pytest.approx(p.upper, abs=0.02 * width)

    def test_bias_shifts_interval(self, normal_samples):
        theta_hat, samples = normal_samples
        # Estimate far in the lower tail of its own bootstrap distribution
        shifted = theta_hat - 1.0 * np.array([1e-6, 0.3, 0.2, 2.0])
        z0 = bias_correction(samples, shifted)
        assert np.all(z0 < 0)

        bca = bca_intervals(samples, shifted, np.zeros(4))
        pct = percentile_intervals(samples, shifted)
        for b, p in zip(bca, pct):
            assert b.upper < p.upper

    def test_bias_correction_clipped(self):
        samples = np.tile(np.arange(10.0), (4, 1)).T
        z0 = bias_correction(samples, np.full(4, 100.0))
        assert np.all(np.isfinite(z0))
        assert z0[0] == pytest.approx(stats.norm.ppf(1 - 0.05))

    def test_levels_without_adjustment(self):
        lo, hi = bca_levels(0.0, 0.0, 0.95)
        assert lo == pytest.approx(0.025)
        assert hi == pytest.approx(0.975)

    def test_levels_fall_back_when_denominator_vanishes(self):
        z = stats.norm.ppf(0.025)
        lo, _ = bca_levels(0.0, 1.0 / z, 0.95)
        assert lo == pytest.approx(0.025)

    def test_acceleration_zero_when_folds_agree(self):
        np.testing.assert_array_equal(acceleration(np.ones((5, 4))), np.zeros(4))

    def test_acceleration_formula(self):
        jack = np.array([[1.0], [2.0], [6.0]])
        d = jack.mean(axis=0) - jack
        expected = np.sum(d ** 3) / (6 * np.sum(d ** 2) ** 1.5)
        assert acceleration(jack)[0] == pytest.approx(expected)


class TestJackknife:
    """Test leave-one-observation-out refits."""

    def test_one_fold_per_observation(self, end_to_end_fit, end_to_end_observations):
        jack = jackknife_estimates(end_to_end_fit, end_to_end_observations)
        assert jack.shape[1] == 4
        assert 3 <= jack.shape[0] <= 8

    def test_not_applicable_with_too_few_folds(self, end_to_end_fit, end_to_end_observations):
        with pytest.raises(NotApplicable):
            jackknife_estimates(end_to_end_fit, end_to_end_observations, min_folds=100)


class TestIntervalSelector:
    """Test the method decision rule."""

    def test_choose_method(self):
        assert choose_method(381, False, 0.99)[0] is IntervalMethod.BCA
        assert choose_method(30, False, 0.99)[0] is IntervalMethod.PERCENTILE
        assert choose_method(381, True, 0.99)[0] is IntervalMethod.PERCENTILE
        method, reason = choose_method(381, False, 0.5)
        assert method is IntervalMethod.PERCENTILE
        assert "success rate" in reason

    def test_bca_for_large_clean_sample(
        self, end_to_end_fit, end_to_end_observations, end_to_end_bootstrap
    ):
        selection = IntervalSelector().select(
            end_to_end_fit,
            end_to_end_observations,
            end_to_end_bootstrap.samples,
            success_rate=1.0,
        )
        assert selection.method is IntervalMethod.BCA
        assert selection.acceleration is not None
        assert selection.n_jackknife_folds >= 3
        assert len(selection.intervals) == 4
        assert all(ci.lower <= ci.upper for ci in selection.intervals)

    def test_percentile_with_censored(
        self, end_to_end_fit, end_to_end_observations, end_to_end_bootstrap
    ):
        selection = IntervalSelector().select(
            end_to_end_fit,
            end_to_end_observations,
            end_to_end_bootstrap.samples,
            success_rate=1.0,
            has_censored=True,
        )
        assert selection.method is IntervalMethod.PERCENTILE
        assert "censored" in selection.reason

    def test_percentile_when_jackknife_unavailable(
        self, end_to_end_fit, end_to_end_observations, end_to_end_bootstrap
    ):
        selector = IntervalSelector(min_jackknife_folds=100)
        selection = selector.select(
            end_to_end_fit,
            end_to_end_observations,
            end_to_end_bootstrap.samples,
            success_rate=1.0,
        )
        assert selection.method is IntervalMethod.PERCENTILE
        assert "jackknife" in selection.reason

    def test_to_dict(self, end_to_end_fit, end_to_end_observations, end_to_end_bootstrap):
        d = IntervalSelector().select(
            end_to_end_fit, end_to_end_observations, end_to_end_bootstrap.samples, 1.0
        ).to_dict()
        assert d["method"] in ("bca", "percentile")
        assert len(d["intervals"]) == 4
