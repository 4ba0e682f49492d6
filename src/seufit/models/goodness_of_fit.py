"""
Poisson deviance goodness-of-fit test.

    D = 2 * sum_{N>0} [N log(N / lambda) - (N - lambda)] + 2 * sum_{N=0} lambda

evaluated over all observations (censored included) at theta_hat and
compared against chi2(n - 4).
"""

from dataclasses import dataclass
from typing import Union

import numpy as np

from seufit.models.weibull import N_PARAMS, ThetaLike, expected_counts
from seufit.observations import ObservationSet
from seufit.utils.stats import chi2_pvalue
from seufit.logging import get_logger

logger = get_logger()

MIN_DOF = 3
RESIDUAL_LAMBDA_FLOOR = 0.1


def poisson_deviance(counts: np.ndarray, lam: np.ndarray) -> float:
    """Poisson deviance; zero-count terms reduce to 2 * lambda."""
    counts = np.asarray(counts, dtype=float)
    lam = np.asarray(lam, dtype=float)

    has_events = counts > 0
    n = counts[has_events]
    mu = lam[has_events]
    informative = np.sum(n * np.log(n / mu) - (n - mu))
    censored = np.sum(lam[~has_events])
    return float(2.0 * (informative + censored))


def pearson_residuals(counts: np.ndarray, lam: np.ndarray) -> np.ndarray:
    """(N - lambda) / sqrt(max(lambda, 0.1))"""
    counts = np.asarray(counts, dtype=float)
    lam = np.asarray(lam, dtype=float)
    return (counts - lam) / np.sqrt(np.maximum(lam, RESIDUAL_LAMBDA_FLOOR))


@dataclass(frozen=True)
class GoodnessOfFitResult:
    """Deviance test outcome."""

    deviance: float
    degrees_of_freedom: int
    p_value: float
    residuals: np.ndarray

    @property
    def applicable(self) -> bool:
        return True

    @property
    def reduced_deviance(self) -> float:
        return self.deviance / self.degrees_of_freedom

    def to_dict(self) -> dict:
        return {
            "applicable": True,
            "deviance": self.deviance,
            "degrees_of_freedom": self.degrees_of_freedom,
            "p_value": self.p_value,
            "residuals": self.residuals.tolist(),
        }


@dataclass(frozen=True)
class TestNotApplicable:
    """Marker returned when too few degrees of freedom remain for the test."""

    __test__ = False

    reason: str
    degrees_of_freedom: int
    deviance: float
    residuals: np.ndarray

    @property
    def applicable(self) -> bool:
        return False

    def to_dict(self) -> dict:
        return {
            "applicable": False,
            "reason": self.reason,
            "degrees_of_freedom": self.degrees_of_freedom,
            "deviance": self.deviance,
            "residuals": self.residuals.tolist(),
        }


GoodnessOfFitOutcome = Union[GoodnessOfFitResult, TestNotApplicable]


class GoodnessOfFitTester:
    """Deviance-based goodness-of-fit test with Pearson residuals."""

    def __init__(self, n_params: int = N_PARAMS, min_dof: int = MIN_DOF):
        self.n_params = n_params
        self.min_dof = min_dof

    def test(self, theta: ThetaLike, observations: ObservationSet) -> GoodnessOfFitOutcome:
        """
        Test the fit against every observation.

        Args:
            theta: Fitted parameters
            observations: All observations, censored ones included

        Returns:
            GoodnessOfFitResult, or TestNotApplicable when df < min_dof
        """
        lam = expected_counts(theta, observations.let, observations.fluence)
        counts = observations.counts
        deviance = poisson_deviance(counts, lam)
        residuals = pearson_residuals(counts, lam)
        df = len(observations) - self.n_params

        if df < self.min_dof:
            reason = (
                f"{df} degrees of freedom (< {self.min_dof}); "
                f"inspect Pearson residuals instead"
            )
            logger.info(f"Goodness-of-fit test not applicable: {reason}")
            return TestNotApplicable(
                reason=reason,
                degrees_of_freedom=df,
                deviance=deviance,
                residuals=residuals,
            )

        p_value = chi2_pvalue(deviance, df)
        logger.info(f"Deviance D={deviance:.3f} on {df} dof, p={p_value:.4f}")
        if p_value < 0.05:
            logger.warning(f"GOF: poor fit (p={p_value:.4f}, D/df={deviance / df:.2f})")

        return GoodnessOfFitResult(
            deviance=deviance,
            degrees_of_freedom=df,
            p_value=p_value,
            residuals=residuals,
        )
