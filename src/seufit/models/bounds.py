"""
Data-driven parameter bounds and starting point for the Weibull fit.
"""

from dataclasses import dataclass

import numpy as np

from seufit.exceptions import ConfigurationError
from seufit.models.weibull import (
    N_PARAMS,
    PARAMETER_NAMES,
    SHAPE_MAX,
    SHAPE_MIN,
    WeibullParameters,
)
from seufit.observations import ObservationSet
from seufit.logging import get_logger

logger = get_logger()

MIN_INFORMATIVE_OBSERVATIONS = N_PARAMS
W_MIN = 0.1


@dataclass(frozen=True)
class ParameterBounds:
    """Box constraints and initial guess in PARAMETER_NAMES order."""

    lower: np.ndarray
    upper: np.ndarray
    initial: np.ndarray

    def __post_init__(self):
        for name in ("lower", "upper", "initial"):
            arr = np.array(getattr(self, name), dtype=float)
            arr.setflags(write=False)
            object.__setattr__(self, name, arr)
        if np.any(self.lower > self.upper):
            raise ConfigurationError(
                f"Lower bounds exceed upper bounds: {self.lower} > {self.upper}"
            )

    @property
    def width(self) -> np.ndarray:
        return self.upper - self.lower

    def clip(self, theta: np.ndarray) -> np.ndarray:
        return np.clip(np.asarray(theta, dtype=float), self.lower, self.upper)

    def on_bound(self, theta: np.ndarray, rtol: float = 1e-9) -> list[str]:
        """Names of parameters within ``rtol`` (relative to the box width) of a bound."""
        theta = np.asarray(theta, dtype=float)
        tol = rtol * np.maximum(self.width, np.finfo(float).tiny)
        hits = (np.abs(theta - self.lower) <= tol) | (np.abs(self.upper - theta) <= tol)
        return [name for name, hit in zip(PARAMETER_NAMES, hits) if hit]

    def as_scipy(self) -> list[tuple[float, float]]:
        return list(zip(self.lower.tolist(), self.upper.tolist()))

    def to_normalized(self, theta: np.ndarray) -> np.ndarray:
        """Map parameters onto the unit box."""
        width = np.where(self.width > 0, self.width, 1.0)
        return (np.asarray(theta, dtype=float) - self.lower) / width

    def from_normalized(self, x: np.ndarray) -> np.ndarray:
        """Map unit-box coordinates back to parameters, clipped to the box."""
        return self.clip(self.lower + np.clip(x, 0.0, 1.0) * self.width)

    def initial_parameters(self) -> WeibullParameters:
        return WeibullParameters.from_array(self.initial)

    def to_dict(self) -> dict:
        return {
            name: {"lower": float(lo), "upper": float(hi), "initial": float(x0)}
            for name, lo, hi, x0 in zip(PARAMETER_NAMES, self.lower, self.upper, self.initial)
        }


class BoundsEstimator:
    """
    Derive physically motivated bounds from informative observations.

    - sigma_sat in [0.5, 10] x the largest observed cross-section
    - LET_th in [0, min LET]
    - S in [0.1, 10]
    - W in [0.1, 2 x LET range]

    The initial guess is (1.2 x max observed sigma, min LET - 1, 2,
    LET range / 3), clipped into the box.
    """

    def __init__(self, min_observations: int = MIN_INFORMATIVE_OBSERVATIONS):
        self.min_observations = min_observations

    def estimate(self, observations: ObservationSet) -> ParameterBounds:
        """
        Compute bounds for the given observations.

        Zero-count observations are ignored.

        Raises:
            ConfigurationError: fewer than ``min_observations`` informative points
        """
        informative = observations.informative()
        n_info = len(informative)
        if n_info < self.min_observations:
            raise ConfigurationError(
                f"Need at least {self.min_observations} observations with nonzero counts "
                f"to identify the 4-parameter Weibull model, got {n_info}"
            )

        let = informative.let
        obs_sigma = informative.observed_cross_section
        max_sigma = float(np.max(obs_sigma))
        min_let = float(np.min(let))
        let_range = float(np.max(let) - min_let)

        lower = np.array([0.5 * max_sigma, 0.0, SHAPE_MIN, W_MIN])
        upper = np.array([10.0 * max_sigma, min_let, SHAPE_MAX, max(2.0 * let_range, W_MIN)])

        initial = np.array([1.2 * max_sigma, min_let - 1.0, 2.0, let_range / 3.0])
        initial = np.clip(initial, lower, upper)

        bounds = ParameterBounds(lower=lower, upper=upper, initial=initial)
        logger.debug(f"Parameter bounds: {bounds.to_dict()}")
        return bounds
