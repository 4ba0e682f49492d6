"""
Asymptotic parameter covariance from the observed information matrix.

Only trusted when the informative event total is large (N >= 50 by
default); below that the likelihood surface is too far from quadratic and
the caller should rely on the bootstrap instead.
"""

from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np
from scipy import linalg

from seufit.exceptions import NotApplicable
from seufit.models.fit import FitResult, MIN_EVENTS_ASYMPTOTIC
from seufit.models.weibull import PARAMETER_NAMES, PoissonLikelihood
from seufit.observations import ObservationSet
from seufit.utils.stats import compute_correlation_matrix
from seufit.logging import get_logger

logger = get_logger()


def numerical_hessian(
    func: Callable[[np.ndarray], float],
    x: np.ndarray,
    steps: np.ndarray,
) -> np.ndarray:
    """
    Central finite-difference Hessian.

    Args:
        func: Scalar function of a parameter vector
        x: Point of evaluation
        steps: Per-parameter step sizes

    Returns:
        Symmetrized Hessian matrix
    """
    x = np.asarray(x, dtype=float)
    steps = np.asarray(steps, dtype=float)
    n = len(x)
    f0 = func(x)
    H = np.zeros((n, n))

    for i in range(n):
        ei = np.zeros(n)
        ei[i] = steps[i]
        f_plus = func(x + ei)
        f_minus = func(x - ei)
        H[i, i] = (f_plus - 2.0 * f0 + f_minus) / steps[i] ** 2

        for j in range(i + 1, n):
            ej = np.zeros(n)
            ej[j] = steps[j]
            f_pp = func(x + ei + ej)
            f_pm = func(x + ei - ej)
            f_mp = func(x - ei + ej)
            f_mm = func(x - ei - ej)
            H[i, j] = (f_pp - f_pm - f_mp + f_mm) / (4.0 * steps[i] * steps[j])
            H[j, i] = H[i, j]

    return 0.5 * (H + H.T)


@dataclass(frozen=True)
class CovarianceResult:
    """Asymptotic covariance at the MLE."""

    covariance: np.ndarray
    standard_errors: np.ndarray
    correlation: np.ndarray
    hessian: np.ndarray
    condition_number: float
    used_pseudo_inverse: bool = False

    def to_dict(self) -> dict:
        return {
            "standard_errors": dict(zip(PARAMETER_NAMES, self.standard_errors.tolist())),
            "covariance": self.covariance.tolist(),
            "correlation": self.correlation.tolist(),
            "condition_number": self.condition_number,
            "used_pseudo_inverse": self.used_pseudo_inverse,
        }


class HessianCovariance:
    """
    Invert the numerical Hessian of the NLL at the MLE.

    Raises NotApplicable when the event total is too small or the Hessian is
    not finite or not positive definite.
    """

    def __init__(
        self,
        min_events: int = MIN_EVENTS_ASYMPTOTIC,
        relative_step: float = 1e-4,
    ):
        self.min_events = min_events
        self.relative_step = relative_step

    def is_applicable(self, n_events: int) -> bool:
        return n_events >= self.min_events

    def compute(
        self,
        fit: FitResult,
        observations: ObservationSet,
        steps: Optional[np.ndarray] = None,
    ) -> CovarianceResult:
        """
        Compute the covariance at ``fit.theta_hat``.

        Args:
            fit: Fit on ``observations``
            observations: The observations the fit used
            steps: Override for finite-difference steps

        Returns:
            CovarianceResult

        Raises:
            NotApplicable: precondition or positive-definiteness failure
        """
        n_events = observations.total_events
        if not self.is_applicable(n_events):
            raise NotApplicable(
                f"Hessian covariance needs at least {self.min_events} events, got {n_events}"
            )

        theta = fit.theta
        if steps is None:
            # Floor the scale with a fraction of the box so a parameter at zero still moves
            scale = np.maximum(np.abs(theta), 1e-3 * fit.bounds.width)
            scale = np.where(scale > 0, scale, 1e-6)
            steps = self.relative_step * scale

        likelihood = PoissonLikelihood(observations)
        H = numerical_hessian(likelihood.nll, theta, steps)

        if not np.all(np.isfinite(H)):
            raise NotApplicable("Hessian has non-finite entries at the MLE")

        # Positive definiteness is checked on the step-scaled matrix
        eig = linalg.eigvalsh(H * np.outer(steps, steps))
        if eig[0] < -1e-10 * max(abs(eig[-1]), abs(eig[0])):
            raise NotApplicable(
                f"Hessian is not positive definite (smallest eigenvalue {eig[0]:.3e})"
            )

        used_pinv = False
        try:
            cov = linalg.inv(H)
            if not np.all(np.isfinite(cov)):
                raise linalg.LinAlgError("non-finite inverse")
        except linalg.LinAlgError:
            logger.debug("Hessian is singular; using pseudo-inverse")
            cov = linalg.pinvh(H)
            used_pinv = True

        cov = 0.5 * (cov + cov.T)
        diag = np.diag(cov)
        if np.any(diag < 0):
            bad = [n for n, d in zip(PARAMETER_NAMES, diag) if d < 0]
            raise NotApplicable(
                f"Hessian is not positive definite (negative variance for {', '.join(bad)})"
            )

        try:
            s = linalg.svdvals(H)
            cond = float(s[0] / s[-1]) if s[-1] > 0 else float("inf")
        except linalg.LinAlgError:
            cond = float("inf")

        result = CovarianceResult(
            covariance=cov,
            standard_errors=np.sqrt(diag),
            correlation=compute_correlation_matrix(cov),
            hessian=H,
            condition_number=cond,
            used_pseudo_inverse=used_pinv,
        )
        logger.debug(
            f"Hessian covariance: SE={dict(zip(PARAMETER_NAMES, result.standard_errors))}, "
            f"cond={cond:.2e}"
        )
        return result
