"""
Zero-event (censored) observations.

Observations with no upsets carry no shape information for the fit; they
are excluded from the maximum-likelihood fit and summarized by a one-sided
Poisson upper limit on the cross-section instead:

    sigma_upper = Q / fluence,   Q = 0.5 * chi2.ppf(CL, 2) = -ln(1 - CL)

which is 2.996 at 95% confidence. After fitting, the curve is checked
against every upper limit; violations are reported, never corrected.
"""

from dataclasses import dataclass
import warnings

import numpy as np
from scipy import stats

from seufit.exceptions import ModelInconsistency
from seufit.models.weibull import ThetaLike, cross_section
from seufit.observations import Observation, ObservationSet
from seufit.logging import get_logger

logger = get_logger()


def poisson_upper_limit_multiplier(confidence_level: float = 0.95) -> float:
    """
    Upper limit on the Poisson mean after observing zero events.

    Args:
        confidence_level: One-sided confidence level

    Returns:
        Q with P(N = 0 | mean = Q) = 1 - confidence_level
    """
    if not 0.0 < confidence_level < 1.0:
        raise ValueError("confidence_level must be strictly between 0 and 1")
    return float(0.5 * stats.chi2.ppf(confidence_level, 2))


@dataclass(frozen=True)
class UpperLimit:
    """Cross-section upper limit for a zero-event observation."""

    let: float
    fluence: float
    sigma_upper: float
    confidence_level: float

    def to_dict(self) -> dict:
        return {
            "let": self.let,
            "fluence": self.fluence,
            "sigma_upper": self.sigma_upper,
            "confidence_level": self.confidence_level,
        }


@dataclass(frozen=True)
class ConsistencyViolation:
    """A censored point where the fitted curve exceeds the upper limit."""

    let: float
    sigma_fit: float
    sigma_upper: float

    @property
    def ratio(self) -> float:
        return self.sigma_fit / self.sigma_upper

    def describe(self) -> str:
        return (
            f"Fitted cross-section {self.sigma_fit:.3e} at LET={self.let:g} exceeds "
            f"the zero-event upper limit {self.sigma_upper:.3e} ({self.ratio:.2f}x)"
        )

    def to_dict(self) -> dict:
        return {
            "let": self.let,
            "sigma_fit": self.sigma_fit,
            "sigma_upper": self.sigma_upper,
            "ratio": self.ratio,
        }


@dataclass(frozen=True)
class CensoredSplit:
    """Partition of observations into informative and censored subsets."""

    informative: ObservationSet
    censored: ObservationSet

    @property
    def all_censored(self) -> bool:
        return len(self.informative) == 0

    @property
    def has_censored(self) -> bool:
        return len(self.censored) > 0


@dataclass(frozen=True)
class AllCensoredResult:
    """Outcome when no observation has any upsets; only limits are available."""

    upper_limits: tuple[UpperLimit, ...]

    def to_dict(self) -> dict:
        return {
            "all_censored": True,
            "upper_limits": [u.to_dict() for u in self.upper_limits],
        }


class ZeroEventHandler:
    """Separate censored observations and compute their upper limits."""

    def __init__(self, confidence_level: float = 0.95, emit_warnings: bool = True):
        self.confidence_level = confidence_level
        self.emit_warnings = emit_warnings
        self.multiplier = poisson_upper_limit_multiplier(confidence_level)

    def split(self, observations: ObservationSet) -> CensoredSplit:
        split = CensoredSplit(
            informative=observations.informative(),
            censored=observations.censored(),
        )
        logger.debug(
            f"Split {len(observations)} observations: {len(split.informative)} informative, "
            f"{len(split.censored)} censored"
        )
        return split

    def upper_limit(self, observation: Observation) -> UpperLimit:
        return UpperLimit(
            let=observation.let,
            fluence=observation.fluence,
            sigma_upper=self.multiplier / observation.fluence,
            confidence_level=self.confidence_level,
        )

    def upper_limits(self, censored: ObservationSet) -> tuple[UpperLimit, ...]:
        return tuple(self.upper_limit(obs) for obs in censored)

    def all_censored_result(self, observations: ObservationSet) -> AllCensoredResult:
        limits = self.upper_limits(observations)
        logger.info(
            f"All {len(limits)} observations have zero counts; "
            f"reporting upper limits only"
        )
        return AllCensoredResult(upper_limits=limits)

    def check_consistency(
        self,
        theta: ThetaLike,
        limits: tuple[UpperLimit, ...],
    ) -> list[ConsistencyViolation]:
        """
        Compare the fitted curve against each censored upper limit.

        Args:
            theta: Fitted parameters
            limits: Upper limits of the censored observations

        Returns:
            One ConsistencyViolation per limit exceeded (possibly empty)
        """
        if not limits:
            return []

        let = np.array([u.let for u in limits])
        sigma_fit = np.atleast_1d(cross_section(let, theta))

        violations = [
            ConsistencyViolation(let=u.let, sigma_fit=float(s), sigma_upper=u.sigma_upper)
            for u, s in zip(limits, sigma_fit)
            if s > u.sigma_upper
        ]

        for v in violations:
            msg = v.describe()
            logger.warning(f"CONSISTENCY: {msg}")
            if self.emit_warnings:
                warnings.warn(msg, ModelInconsistency, stacklevel=2)

        return violations
