"""
Bootstrap confidence intervals: percentile and bias-corrected accelerated.

BCA is used only when asymptotic conditions hold (enough events, no
censored observations, a healthy bootstrap) and the acceleration can be
estimated from leave-one-observation-out refits; every other case falls
back to the percentile interval.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import numpy as np
from scipy import stats

from seufit.exceptions import NotApplicable
from seufit.models.fit import FitResult, MLEFitter, MIN_EVENTS_ASYMPTOTIC
from seufit.models.weibull import PARAMETER_NAMES
from seufit.observations import ObservationSet
from seufit.utils.stats import clip_probability
from seufit.logging import get_logger

logger = get_logger()

BCA_DENOMINATOR_EPS = 1e-8


class IntervalMethod(Enum):
    PERCENTILE = "percentile"
    BCA = "bca"


@dataclass(frozen=True)
class ConfidenceInterval:
    """Two-sided confidence interval for one parameter."""

    parameter_index: int
    name: str
    estimate: float
    lower: float
    upper: float
    method: IntervalMethod
    confidence_level: float = 0.95

    @property
    def width(self) -> float:
        return self.upper - self.lower

    def contains(self, value: float) -> bool:
        return self.lower <= value <= self.upper

    def to_dict(self) -> dict:
        return {
            "parameter": self.name,
            "parameter_index": self.parameter_index,
            "estimate": self.estimate,
            "lower": self.lower,
            "upper": self.upper,
            "method": self.method.value,
            "confidence_level": self.confidence_level,
        }


def _check_samples(samples: np.ndarray) -> np.ndarray:
    samples = np.asarray(samples, dtype=float)
    if samples.ndim != 2 or samples.shape[1] != len(PARAMETER_NAMES):
        raise ValueError(f"Expected samples of shape (B, {len(PARAMETER_NAMES)}), got {samples.shape}")
    if len(samples) < 2:
        raise NotApplicable(f"Need at least 2 bootstrap samples, got {len(samples)}")
    return samples


def percentile_intervals(
    samples: np.ndarray,
    theta_hat: np.ndarray,
    confidence_level: float = 0.95,
) -> list[ConfidenceInterval]:
    """
    Percentile intervals [P(alpha/2), P(1 - alpha/2)] of each marginal.

    Args:
        samples: Bootstrap theta* rows
        theta_hat: Point estimate (reported alongside)
        confidence_level: Two-sided confidence level

    Returns:
        One ConfidenceInterval per parameter
    """
    samples = _check_samples(samples)
    alpha = 1.0 - confidence_level
    lower = np.quantile(samples, alpha / 2.0, axis=0)
    upper = np.quantile(samples, 1.0 - alpha / 2.0, axis=0)

    return [
        ConfidenceInterval(
            parameter_index=i,
            name=name,
            estimate=float(theta_hat[i]),
            lower=float(lower[i]),
            upper=float(upper[i]),
            method=IntervalMethod.PERCENTILE,
            confidence_level=confidence_level,
        )
        for i, name in enumerate(PARAMETER_NAMES)
    ]


def jackknife_estimates(
    fit: FitResult,
    observations: ObservationSet,
    fitter: Optional[MLEFitter] = None,
    min_folds: int = 3,
) -> np.ndarray:
    """
    Leave-one-observation-out refits.

    Each fold drops one observation and refits warm-started at theta_hat
    within the original bounds. Folds that fail to converge are dropped.

    Returns:
        Array of shape (n_valid_folds, 4)

    Raises:
        NotApplicable: fewer than ``min_folds`` valid folds
    """
    if fitter is None:
        fitter = MLEFitter(emit_warnings=False)

    estimates = []
    for i in range(len(observations)):
        reduced = observations.without(i)
        if reduced.total_events == 0:
            continue
        result = fitter.fit(reduced, bounds=fit.bounds, initial=fit.theta, variant=fit.variant)
        if result.converged and np.isfinite(result.final_nll):
            estimates.append(result.theta)
        else:
            logger.debug(f"Jackknife fold {i} dropped: {result.status.value}")

    if len(estimates) < min_folds:
        raise NotApplicable(
            f"Only {len(estimates)} valid jackknife folds (need {min_folds})"
        )
    return np.vstack(estimates)


def acceleration(jackknife: np.ndarray) -> np.ndarray:
    """BCA acceleration a = sum(d^3) / (6 * sum(d^2)^1.5), d = mean - theta_(-i)."""
    jackknife = np.asarray(jackknife, dtype=float)
    d = jackknife.mean(axis=0) - jackknife
    num = np.sum(d ** 3, axis=0)
    den = 6.0 * np.sum(d ** 2, axis=0) ** 1.5
    with np.errstate(divide="ignore", invalid="ignore"):
        a = np.where(den > 0, num / den, 0.0)
    return a


def bias_correction(samples: np.ndarray, theta_hat: np.ndarray) -> np.ndarray:
    """z0 = Phi^-1(fraction of theta* below theta_hat), fraction clipped away from 0 and 1."""
    samples = np.asarray(samples, dtype=float)
    frac = np.mean(samples < np.asarray(theta_hat, dtype=float), axis=0)
    return stats.norm.ppf(clip_probability(frac, len(samples)))


def bca_levels(z0: float, a: float, confidence_level: float = 0.95) -> tuple[float, float]:
    """Adjusted lower and upper percentile levels for one parameter."""
    alpha = 1.0 - confidence_level
    levels = []
    for q in (alpha / 2.0, 1.0 - alpha / 2.0):
        z = stats.norm.ppf(q)
        num = z0 + z
        den = 1.0 - a * num
        if abs(den) < BCA_DENOMINATOR_EPS:
            levels.append(q)
        else:
            levels.append(float(stats.norm.cdf(z0 + num / den)))
    return levels[0], levels[1]


def bca_intervals(
    samples: np.ndarray,
    theta_hat: np.ndarray,
    accel: np.ndarray,
    confidence_level: float = 0.95,
) -> list[ConfidenceInterval]:
    """
    Bias-corrected and accelerated intervals.

    Args:
        samples: Bootstrap theta* rows
        theta_hat: Point estimate
        accel: Per-parameter acceleration (see ``acceleration``)
        confidence_level: Two-sided confidence level

    Returns:
        One ConfidenceInterval per parameter
    """
    samples = _check_samples(samples)
    theta_hat = np.asarray(theta_hat, dtype=float)
    z0 = bias_correction(samples, theta_hat)

    intervals = []
    for i, name in enumerate(PARAMETER_NAMES):
        lo_level, hi_level = bca_levels(float(z0[i]), float(accel[i]), confidence_level)
        intervals.append(
            ConfidenceInterval(
                parameter_index=i,
                name=name,
                estimate=float(theta_hat[i]),
                lower=float(np.quantile(samples[:, i], lo_level)),
                upper=float(np.quantile(samples[:, i], hi_level)),
                method=IntervalMethod.BCA,
                confidence_level=confidence_level,
            )
        )
    return intervals


def choose_method(
    n_events: int,
    has_censored: bool,
    success_rate: float,
    min_events: int = MIN_EVENTS_ASYMPTOTIC,
    success_rate_threshold: float = 0.9,
) -> tuple[IntervalMethod, str]:
    """
    Decide between BCA and percentile from the data alone.

    Returns:
        (method, reason); BCA still requires a computable acceleration
    """
    if n_events < min_events:
        return IntervalMethod.PERCENTILE, f"{n_events} events < {min_events}"
    if has_censored:
        return IntervalMethod.PERCENTILE, "censored observations present"
    if success_rate < success_rate_threshold:
        return (
            IntervalMethod.PERCENTILE,
            f"bootstrap success rate {success_rate:.1%} < {success_rate_threshold:.0%}",
        )
    return IntervalMethod.BCA, f"{n_events} events, no censored observations"


@dataclass
class IntervalSelection:
    """Chosen interval method with its intervals and the reason for the choice."""

    method: IntervalMethod
    intervals: list[ConfidenceInterval]
    reason: str
    acceleration: Optional[np.ndarray] = None
    n_jackknife_folds: int = 0
    notes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "method": self.method.value,
            "reason": self.reason,
            "intervals": [ci.to_dict() for ci in self.intervals],
            "acceleration": (
                None if self.acceleration is None
                else dict(zip(PARAMETER_NAMES, self.acceleration.tolist()))
            ),
            "n_jackknife_folds": self.n_jackknife_folds,
            "notes": list(self.notes),
        }


class IntervalSelector:
    """Pick and compute percentile or BCA intervals for a bootstrap distribution."""

    def __init__(
        self,
        confidence_level: float = 0.95,
        min_events: int = MIN_EVENTS_ASYMPTOTIC,
        success_rate_threshold: float = 0.9,
        min_jackknife_folds: int = 3,
        fitter: Optional[MLEFitter] = None,
    ):
        self.confidence_level = confidence_level
        self.min_events = min_events
        self.success_rate_threshold = success_rate_threshold
        self.min_jackknife_folds = min_jackknife_folds
        self.fitter = fitter or MLEFitter(emit_warnings=False)

    @classmethod
    def from_config(cls, config) -> "IntervalSelector":
        return cls(
            confidence_level=config.intervals.confidence_level,
            min_events=config.intervals.min_events_asymptotic,
            success_rate_threshold=config.bootstrap.success_rate_threshold,
            min_jackknife_folds=config.intervals.min_jackknife_folds,
            fitter=MLEFitter.from_config(config.fit, emit_warnings=False),
        )

    def select(
        self,
        fit: FitResult,
        observations: ObservationSet,
        samples: np.ndarray,
        success_rate: float,
        has_censored: bool = False,
    ) -> IntervalSelection:
        """
        Compute intervals with the method the data supports.

        Args:
            fit: Point estimate on ``observations``
            observations: Observations the fit used (informative subset)
            samples: Successful bootstrap theta* rows
            success_rate: Bootstrap success rate
            has_censored: Whether the full data had censored observations

        Returns:
            IntervalSelection

        Raises:
            NotApplicable: too few bootstrap samples for any interval
        """
        theta_hat = fit.theta
        method, reason = choose_method(
            fit.n_events,
            has_censored,
            success_rate,
            self.min_events,
            self.success_rate_threshold,
        )

        if method is IntervalMethod.BCA:
            try:
                jack = jackknife_estimates(
                    fit, observations, self.fitter, self.min_jackknife_folds
                )
            except NotApplicable as e:
                logger.info(f"BCA unavailable, using percentile intervals: {e}")
                method = IntervalMethod.PERCENTILE
                reason = f"jackknife unavailable: {e}"
            else:
                accel = acceleration(jack)
                intervals = bca_intervals(samples, theta_hat, accel, self.confidence_level)
                logger.info(f"Using BCA intervals ({reason})")
                return IntervalSelection(
                    method=IntervalMethod.BCA,
                    intervals=intervals,
                    reason=reason,
                    acceleration=accel,
                    n_jackknife_folds=len(jack),
                )

        intervals = percentile_intervals(samples, theta_hat, self.confidence_level)
        logger.info(f"Using percentile intervals ({reason})")
        return IntervalSelection(
            method=IntervalMethod.PERCENTILE,
            intervals=intervals,
            reason=reason,
        )
