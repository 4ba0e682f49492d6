"""
Pytest configuration and fixtures for cross-section analysis tests.
"""

import pytest
import numpy as np
from pathlib import Path
import tempfile
import shutil

from seufit.config import BootstrapConfig, Config, FitConfig, ParallelConfig
from seufit.models.bounds import BoundsEstimator
from seufit.models.fit import MLEFitter
from seufit.models.weibull import WeibullParameters, expected_counts
from seufit.observations import ObservationSet


END_TO_END_LET = [5.0, 10.0, 15.0, 20.0, 30.0, 40.0, 60.0, 80.0]
END_TO_END_COUNTS = [3, 12, 28, 45, 62, 71, 78, 82]


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test outputs."""
    d = Path(tempfile.mkdtemp())
    yield d
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture
def true_theta():
    """Known Weibull parameters for synthetic data."""
    return WeibullParameters(sigma_sat=8.5e-6, let_th=3.0, s=1.5, w=20.0)


@pytest.fixture
def end_to_end_data():
    """Reference campaign: 8 LET points at 1e7 particles/cm^2."""
    return {
        "let": np.array(END_TO_END_LET),
        "counts": np.array(END_TO_END_COUNTS),
        "fluence": 1e7,
    }


@pytest.fixture
def end_to_end_observations(end_to_end_data):
    return ObservationSet.from_arrays(
        end_to_end_data["let"],
        end_to_end_data["counts"],
        end_to_end_data["fluence"],
    )


@pytest.fixture
def end_to_end_fit(end_to_end_observations):
    """Quiet single-start fit of the reference campaign."""
    fitter = MLEFitter(emit_warnings=False)
    return fitter.fit(end_to_end_observations)


@pytest.fixture
def censored_observations():
    """Reference campaign plus two zero-count points below threshold."""
    let = [1.0, 2.0] + END_TO_END_LET
    counts = [0, 0] + END_TO_END_COUNTS
    return ObservationSet.from_arrays(let, counts, 1e7)


@pytest.fixture
def small_sample_observations():
    """Sparse campaign with fewer than 50 events in total."""
    return ObservationSet.from_arrays(
        [8.0, 15.0, 25.0, 40.0, 60.0],
        [1, 3, 6, 8, 9],
        1e6,
    )


@pytest.fixture
def synthetic_observations(true_theta):
    """Large-sample Poisson draw from ``true_theta``."""
    rng = np.random.default_rng(42)
    let = np.array([5.0, 8.0, 12.0, 16.0, 20.0, 30.0, 40.0, 60.0, 80.0, 100.0])
    fluence = np.full_like(let, 1e8)
    counts = rng.poisson(expected_counts(true_theta, let, fluence))
    return ObservationSet.from_arrays(let, counts, fluence)


@pytest.fixture
def end_to_end_bounds(end_to_end_observations):
    return BoundsEstimator().estimate(end_to_end_observations)


@pytest.fixture
def fast_config():
    """Small sequential bootstrap for quick pipeline runs."""
    return Config(
        fit=FitConfig(n_starts=2),
        bootstrap=BootstrapConfig(n_bootstrap=100, seed=7, use_parallel=False),
        parallel=ParallelConfig(n_jobs=1),
    )
