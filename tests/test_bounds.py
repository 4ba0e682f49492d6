"""
Tests for data-driven parameter bounds.
"""

import pytest
import numpy as np

from seufit.exceptions import ConfigurationError
from seufit.models.bounds import BoundsEstimator, ParameterBounds
from seufit.observations import ObservationSet


class TestBoundsEstimator:
    """Test bounds and initial guess derivation."""

    def test_reference_campaign(self, end_to_end_bounds):
        np.testing.assert_allclose(end_to_end_bounds.lower, [4.1e-6, 0.0, 0.1, 0.1])
        np.testing.assert_allclose(end_to_end_bounds.upper, [8.2e-5, 5.0, 10.0, 150.0])
        np.testing.assert_allclose(end_to_end_bounds.initial, [9.84e-6, 4.0, 2.0, 25.0])

    def test_zero_counts_ignored(self, censored_observations, end_to_end_bounds):
        bounds = BoundsEstimator().estimate(censored_observations)
        np.testing.assert_allclose(bounds.lower, end_to_end_bounds.lower)
        np.testing.assert_allclose(bounds.upper, end_to_end_bounds.upper)

    def test_initial_clipped_into_box(self):
        obs = ObservationSet.from_arrays([0.5, 1.0, 2.0, 3.0], [1, 2, 3, 4], 1e6)
        bounds = BoundsEstimator().estimate(obs)
        # min LET - 1 < 0
        assert bounds.initial[1] == 0.0
        assert np.all(bounds.initial >= bounds.lower)
        assert np.all(bounds.initial <= bounds.upper)

    def test_width_upper_bound_never_below_lower(self):
        obs = ObservationSet.from_arrays([10.0, 10.0, 10.0, 10.01], [1, 2, 3, 4], 1e6)
        bounds = BoundsEstimator().estimate(obs)
        assert bounds.upper[3] >= bounds.lower[3]

    def test_too_few_informative(self):
        obs = ObservationSet.from_arrays([5.0, 10.0, 20.0, 40.0], [0, 3, 5, 9], 1e7)
        with pytest.raises(ConfigurationError, match="at least 4"):
            BoundsEstimator().estimate(obs)


class TestParameterBounds:
    """Test the bounds container."""

    def test_rejects_inverted_box(self):
        with pytest.raises(ConfigurationError):
            ParameterBounds(lower=[1, 0, 0.1, 0.1], upper=[0.5, 1, 10, 1], initial=[1, 0, 1, 1])

    def test_arrays_read_only(self, end_to_end_bounds):
        with pytest.raises(ValueError):
            end_to_end_bounds.lower[0] = 0.0

    def test_normalized_mapping(self, end_to_end_bounds):
        x = end_to_end_bounds.to_normalized(end_to_end_bounds.initial)
        assert np.all((x >= 0) & (x <= 1))
        np.testing.assert_allclose(end_to_end_bounds.from_normalized(x), end_to_end_bounds.initial)

    def test_from_normalized_clips(self, end_to_end_bounds):
        theta = end_to_end_bounds.from_normalized(np.array([-0.5, 1.5, 0.5, 0.5]))
        assert theta[0] == end_to_end_bounds.lower[0]
        assert theta[1] == end_to_end_bounds.upper[1]

    def test_on_bound(self, end_to_end_bounds):
        theta = end_to_end_bounds.initial.copy()
        assert end_to_end_bounds.on_bound(theta) == []

        theta[1] = end_to_end_bounds.upper[1]
        theta[2] = end_to_end_bounds.lower[2]
        assert end_to_end_bounds.on_bound(theta) == ["let_th", "s"]

    def test_as_scipy(self, end_to_end_bounds):
        pairs = end_to_end_bounds.as_scipy()
        assert len(pairs) == 4
        assert pairs[2] == (0.1, 10.0)
