"""
Weibull cross-section model and Poisson likelihood.

The cross-section as a function of LET is

    sigma(LET) = 0                                            LET <= LET_th
    sigma(LET) = sigma_sat * (1 - exp(-((LET - LET_th) / W)^S))   otherwise

and the expected number of upsets at an observation is
lambda = sigma(LET) * fluence. Counts are Poisson, so the negative
log-likelihood (dropping the log N! constant) is

    NLL = sum_i [lambda_i - N_i * log(lambda_i)]

Expected counts are floored at 1e-12 before the logarithm and the
N_i * log(lambda_i) term is exactly zero for N_i = 0. Evaluation never
raises for numerical reasons: invalid regions evaluate to +inf so the
optimizer rejects them uniformly.
"""

from dataclasses import dataclass
from typing import Sequence, Union

import numpy as np

from seufit.exceptions import ConfigurationError
from seufit.observations import ObservationSet

PARAMETER_NAMES = ("sigma_sat", "let_th", "s", "w")
N_PARAMS = len(PARAMETER_NAMES)

LAMBDA_FLOOR = 1e-12
SHAPE_MIN = 0.1
SHAPE_MAX = 10.0


@dataclass(frozen=True)
class WeibullParameters:
    """
    Parameter vector theta = (sigma_sat, LET_th, S, W).

    - sigma_sat: saturation cross-section (> 0)
    - let_th: threshold LET (>= 0)
    - s: shape exponent in [0.1, 10]
    - w: width (> 0)
    """

    sigma_sat: float
    let_th: float
    s: float
    w: float

    def __post_init__(self):
        values = self.as_array()
        if not np.all(np.isfinite(values)):
            raise ConfigurationError(f"Non-finite Weibull parameters: {values}")
        if self.sigma_sat <= 0:
            raise ConfigurationError(f"sigma_sat must be positive, got {self.sigma_sat}")
        if self.let_th < 0:
            raise ConfigurationError(f"let_th must be non-negative, got {self.let_th}")
        if not SHAPE_MIN <= self.s <= SHAPE_MAX:
            raise ConfigurationError(
                f"s must lie in [{SHAPE_MIN}, {SHAPE_MAX}], got {self.s}"
            )
        if self.w <= 0:
            raise ConfigurationError(f"w must be positive, got {self.w}")

    def as_array(self) -> np.ndarray:
        return np.array([self.sigma_sat, self.let_th, self.s, self.w], dtype=float)

    @classmethod
    def from_array(cls, values: Sequence[float]) -> "WeibullParameters":
        values = np.asarray(values, dtype=float)
        if values.shape != (N_PARAMS,):
            raise ConfigurationError(f"Expected {N_PARAMS} parameters, got shape {values.shape}")
        return cls(*(float(v) for v in values))

    def to_dict(self) -> dict[str, float]:
        return dict(zip(PARAMETER_NAMES, self.as_array().tolist()))

    def cross_section(self, let: Union[float, np.ndarray]) -> Union[float, np.ndarray]:
        return cross_section(let, self)


ThetaLike = Union[WeibullParameters, Sequence[float], np.ndarray]


def _unpack(theta: ThetaLike) -> tuple[float, float, float, float]:
    if isinstance(theta, WeibullParameters):
        return theta.sigma_sat, theta.let_th, theta.s, theta.w
    values = np.asarray(theta, dtype=float).ravel()
    if values.size != N_PARAMS:
        raise ValueError(f"Expected {N_PARAMS} parameters, got {values.size}")
    return float(values[0]), float(values[1]), float(values[2]), float(values[3])


def cross_section(
    let: Union[float, np.ndarray],
    theta: ThetaLike,
) -> Union[float, np.ndarray]:
    """
    Evaluate the Weibull cross-section.

    Points at or below the threshold are exactly zero.

    Args:
        let: LET value(s)
        theta: Parameters (WeibullParameters or array in PARAMETER_NAMES order)

    Returns:
        Cross-section with the shape of ``let``
    """
    sigma_sat, let_th, s, w = _unpack(theta)
    let_arr = np.atleast_1d(np.asarray(let, dtype=float))
    sigma = np.zeros_like(let_arr)

    above = let_arr > let_th
    if np.any(above):
        z = (let_arr[above] - let_th) / w
        with np.errstate(over="ignore", invalid="ignore"):
            sigma[above] = sigma_sat * -np.expm1(-np.power(z, s))

    if np.ndim(let) == 0:
        return float(sigma[0])
    return sigma


def expected_counts(
    theta: ThetaLike,
    let: np.ndarray,
    fluence: np.ndarray,
) -> np.ndarray:
    """Expected counts lambda_i = sigma_i * fluence_i, floored at LAMBDA_FLOOR."""
    sigma = np.atleast_1d(cross_section(np.asarray(let, dtype=float), theta))
    with np.errstate(invalid="ignore"):
        return np.maximum(sigma * np.asarray(fluence, dtype=float), LAMBDA_FLOOR)


@dataclass(frozen=True)
class LikelihoodEvaluation:
    """Outcome of a likelihood evaluation; invalid regions carry value=+inf."""

    value: float
    valid: bool
    reason: str = ""

    @classmethod
    def rejected(cls, reason: str) -> "LikelihoodEvaluation":
        return cls(value=float("inf"), valid=False, reason=reason)


def evaluate_nll(
    theta: ThetaLike,
    let: np.ndarray,
    counts: np.ndarray,
    fluence: np.ndarray,
) -> LikelihoodEvaluation:
    """
    Poisson negative log-likelihood with explicit handling of edge cases.

    Args:
        theta: Parameters
        let: LET per observation
        counts: Observed counts per observation
        fluence: Fluence per observation

    Returns:
        LikelihoodEvaluation; never raises for numerical reasons
    """
    try:
        sigma_sat, let_th, s, w = _unpack(theta)
    except (TypeError, ValueError) as e:
        return LikelihoodEvaluation.rejected(f"malformed parameters: {e}")

    if not np.all(np.isfinite([sigma_sat, let_th, s, w])):
        return LikelihoodEvaluation.rejected("non-finite parameters")
    if sigma_sat <= 0 or s <= 0 or w <= 0:
        return LikelihoodEvaluation.rejected("sigma_sat, s and w must be positive")

    counts = np.asarray(counts, dtype=float)
    with np.errstate(all="ignore"):
        lam = expected_counts((sigma_sat, let_th, s, w), let, fluence)
        log_term = np.zeros_like(lam)
        has_events = counts > 0
        log_term[has_events] = counts[has_events] * np.log(lam[has_events])
        value = float(np.sum(lam - log_term))

    if not np.isfinite(value):
        return LikelihoodEvaluation.rejected("non-finite likelihood")
    return LikelihoodEvaluation(value=value, valid=True)


def negative_log_likelihood(
    theta: ThetaLike,
    let: np.ndarray,
    counts: np.ndarray,
    fluence: np.ndarray,
) -> float:
    """NLL value, +inf for rejected regions."""
    return evaluate_nll(theta, let, counts, fluence).value


def nll_gradient(
    theta: ThetaLike,
    let: np.ndarray,
    counts: np.ndarray,
    fluence: np.ndarray,
) -> np.ndarray:
    """
    Analytic gradient of the NLL with respect to (sigma_sat, LET_th, S, W).

    With u = ((LET - LET_th)/W)^S and sigma = sigma_sat * (1 - e^-u):
        dsigma/dsigma_sat = 1 - e^-u
        dsigma/du         = sigma_sat * e^-u
        du/dLET_th        = -S * u / (LET - LET_th)
        du/dS             = u * log((LET - LET_th)/W)
        du/dW             = -S * u / W
    Observations at or below threshold, or whose expected count sits on the
    floor, contribute nothing.
    """
    sigma_sat, let_th, s, w = _unpack(theta)
    let = np.asarray(let, dtype=float)
    counts = np.asarray(counts, dtype=float)
    fluence = np.asarray(fluence, dtype=float)

    grad = np.zeros(N_PARAMS)
    above = let > let_th
    if not np.any(above) or w <= 0 or s <= 0:
        return grad

    L = let[above]
    N = counts[above]
    F = fluence[above]

    with np.errstate(all="ignore"):
        dist = L - let_th
        z = dist / w
        u = np.power(z, s)
        one_minus = -np.expm1(-u)
        sigma = sigma_sat * one_minus
        lam = sigma * F

        active = lam > LAMBDA_FLOOR
        safe_lam = np.where(active, lam, 1.0)
        dnll_dsigma = np.where(active, (1.0 - N / safe_lam) * F, 0.0)

        dsigma_du = sigma_sat * np.exp(-u)
        du_dlet_th = -s * u / dist
        du_ds = u * np.log(z)
        du_dw = -s * u / w

        grad[0] = np.sum(dnll_dsigma * one_minus)
        grad[1] = np.sum(dnll_dsigma * dsigma_du * du_dlet_th)
        grad[2] = np.sum(dnll_dsigma * dsigma_du * du_ds)
        grad[3] = np.sum(dnll_dsigma * dsigma_du * du_dw)

    return np.nan_to_num(grad, nan=0.0, posinf=0.0, neginf=0.0)


class PoissonLikelihood:
    """
    Negative log-likelihood bound to a fixed set of observations.

    Caches the observation arrays so repeated evaluations inside the
    optimizer do not rebuild them.
    """

    def __init__(self, observations: ObservationSet):
        self.observations = observations
        self.let = np.array(observations.let)
        self.counts = np.array(observations.counts, dtype=float)
        self.fluence = np.array(observations.fluence)

    @classmethod
    def from_arrays(
        cls,
        let: np.ndarray,
        counts: np.ndarray,
        fluence: np.ndarray,
    ) -> "PoissonLikelihood":
        return cls(ObservationSet.from_arrays(let, counts, fluence))

    def __len__(self) -> int:
        return len(self.let)

    def evaluate(self, theta: ThetaLike) -> LikelihoodEvaluation:
        return evaluate_nll(theta, self.let, self.counts, self.fluence)

    def nll(self, theta: ThetaLike) -> float:
        return self.evaluate(theta).value

    def gradient(self, theta: ThetaLike) -> np.ndarray:
        return nll_gradient(theta, self.let, self.counts, self.fluence)

    def expected_counts(self, theta: ThetaLike) -> np.ndarray:
        return expected_counts(theta, self.let, self.fluence)
