"""
Maximum-likelihood fitting of the Weibull cross-section.

Two stages in bound-normalized coordinates:
1. L-BFGS-B minimization of the Poisson NLL (stops on either tolerance)
2. Projected Newton refinement until both the max projected-gradient
   tolerance (absolute, unit-box coordinates) and the relative NLL-change
   tolerance hold

followed by status classification, non-fatal optimization warnings and
multi-start stability.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional
import warnings

import numpy as np
from scipy.optimize import minimize

from seufit.exceptions import OptimizationWarning
from seufit.models.bounds import BoundsEstimator, ParameterBounds
from seufit.models.weibull import (
    PoissonLikelihood,
    WeibullParameters,
    cross_section,
)
from seufit.observations import ObservationSet
from seufit.logging import get_logger

logger = get_logger()

MIN_EVENTS_ASYMPTOTIC = 50


class FitStatus(Enum):
    """Terminal optimizer states."""
    CONVERGED = "converged"
    MAX_ITER_EXCEEDED = "max_iter_exceeded"
    BOUNDARY_STALL = "boundary_stall"
    LINE_SEARCH_FAILURE = "line_search_failure"
    TOLERANCE_NOT_MET = "tolerance_not_met"


class FitVariant(Enum):
    """Analysis variant, selected once per analysis by classify_variant."""
    STANDARD = "standard"
    SMALL_SAMPLE = "small_sample"
    WITH_ZEROS = "with_zeros"


def classify_variant(
    n_events: int,
    has_zeros: bool,
    min_events: int = MIN_EVENTS_ASYMPTOTIC,
) -> FitVariant:
    """
    Select the analysis variant.

    Args:
        n_events: Total counts over informative observations
        has_zeros: Whether any observation is censored (zero counts)
        min_events: Event total at which asymptotic methods are trusted

    Returns:
        WITH_ZEROS if censored points exist, SMALL_SAMPLE below
        ``min_events``, STANDARD otherwise
    """
    if has_zeros:
        return FitVariant.WITH_ZEROS
    if n_events < min_events:
        return FitVariant.SMALL_SAMPLE
    return FitVariant.STANDARD


@dataclass(frozen=True)
class FitResult:
    """Result of a maximum-likelihood fit."""

    theta_hat: WeibullParameters
    converged: bool
    iterations: int
    final_nll: float
    variant: FitVariant
    status: FitStatus

    bounds: ParameterBounds
    n_observations: int
    n_events: int

    gradient_norm: float = 0.0
    n_function_evals: int = 0
    message: str = ""
    warnings: tuple[str, ...] = ()
    parameters_on_bound: tuple[str, ...] = ()

    @property
    def theta(self) -> np.ndarray:
        return self.theta_hat.as_array()

    def predict(self, let: np.ndarray) -> np.ndarray:
        """Fitted cross-section at the given LET values."""
        return cross_section(let, self.theta_hat)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "theta_hat": self.theta_hat.to_dict(),
            "converged": self.converged,
            "status": self.status.value,
            "variant": self.variant.value,
            "iterations": self.iterations,
            "n_function_evals": self.n_function_evals,
            "final_nll": self.final_nll,
            "gradient_norm": self.gradient_norm,
            "n_observations": self.n_observations,
            "n_events": self.n_events,
            "parameters_on_bound": list(self.parameters_on_bound),
            "bounds": self.bounds.to_dict(),
            "message": self.message,
            "warnings": list(self.warnings),
        }


def _gradient_jacobian(gradient, x: np.ndarray, h: float = 1e-5) -> np.ndarray:
    """Symmetrized finite-difference Jacobian of the gradient, kept inside [0, 1]."""
    n = len(x)
    J = np.empty((n, n))
    for j in range(n):
        hi = min(x[j] + h, 1.0)
        lo = max(x[j] - h, 0.0)
        xp = x.copy()
        xm = x.copy()
        xp[j] = hi
        xm[j] = lo
        J[:, j] = (gradient(xp) - gradient(xm)) / (hi - lo)
    return 0.5 * (J + J.T)


def _newton_step(hessian: np.ndarray, gradient: np.ndarray, max_tries: int = 8):
    """Newton step on a Hessian shifted until positive definite; None if hopeless."""
    if not np.all(np.isfinite(hessian)):
        return None
    n = len(gradient)
    scale = max(float(np.max(np.abs(np.diag(hessian)))), 1e-12)
    mu = 0.0
    for _ in range(max_tries):
        shifted = hessian + mu * np.eye(n)
        try:
            np.linalg.cholesky(shifted)
        except np.linalg.LinAlgError:
            mu = 1e-8 * scale if mu == 0.0 else 100.0 * mu
            continue
        return -np.linalg.solve(shifted, gradient)
    return None


@dataclass
class _RunOutcome:
    x: np.ndarray
    status: int
    success: bool
    nit: int = 0
    nfev: int = 0
    message: str = ""
    restarts: int = 0


class MLEFitter:
    """
    Fit the Weibull cross-section by bounded maximum likelihood.

    Optimization runs on the unit box x = (theta - lo) / (hi - lo) so that
    parameters spanning many orders of magnitude (sigma_sat ~ 1e-6 cm^2,
    LET ~ 10 MeV cm^2/mg) are equally well conditioned.
    """

    def __init__(
        self,
        ftol: float = 1e-10,
        gtol: float = 1e-8,
        max_iterations: int = 10000,
        bound_rtol: float = 1e-9,
        refine_steps: int = 50,
        emit_warnings: bool = True,
    ):
        """
        Initialize fitter.

        Args:
            ftol: Relative function-value tolerance,
                |f_k - f_k+1| / max(|f_k|, |f_k+1|, 1)
            gtol: Absolute max projected-gradient tolerance in unit-box
                coordinates
            max_iterations: Iteration budget over all optimizer restarts
            bound_rtol: Relative distance (of box width) counted as on-bound
            refine_steps: Maximum projected Newton steps after L-BFGS-B
            emit_warnings: Emit OptimizationWarning via ``warnings.warn``
        """
        self.ftol = ftol
        self.gtol = gtol
        self.max_iterations = max_iterations
        self.bound_rtol = bound_rtol
        self.refine_steps = refine_steps
        self.emit_warnings = emit_warnings

    @classmethod
    def from_config(cls, fit_config, emit_warnings: bool = True) -> "MLEFitter":
        return cls(
            ftol=fit_config.ftol,
            gtol=fit_config.gtol,
            max_iterations=fit_config.max_iterations,
            bound_rtol=fit_config.bound_rtol,
            refine_steps=fit_config.refine_steps,
            emit_warnings=emit_warnings,
        )

    def fit(
        self,
        observations: ObservationSet,
        bounds: Optional[ParameterBounds] = None,
        initial: Optional[np.ndarray] = None,
        variant: Optional[FitVariant] = None,
    ) -> FitResult:
        """
        Fit the model to observations.

        Args:
            observations: Observations to fit (zero counts are allowed and
                contribute lambda_i to the NLL)
            bounds: Parameter box; estimated from the data if omitted
            initial: Starting point; ``bounds.initial`` if omitted
            variant: Analysis variant to record; classified from the data
                if omitted

        Returns:
            FitResult with the best-effort estimate
        """
        if bounds is None:
            bounds = BoundsEstimator().estimate(observations)
        if variant is None:
            variant = classify_variant(observations.total_events, observations.has_censored)

        likelihood = PoissonLikelihood(observations)
        x0 = bounds.to_normalized(bounds.clip(bounds.initial if initial is None else initial))

        outcome = self._minimize(likelihood, bounds, x0)

        x = outcome.x
        change = np.inf
        n_refine = 0
        if outcome.status != 1 and np.isfinite(likelihood.nll(bounds.from_normalized(x))):
            x, change, n_refine = self._refine(likelihood, bounds, x)

        theta = bounds.from_normalized(x)
        nll = likelihood.nll(theta)
        pg_norm = self._projected_gradient_norm(likelihood, bounds, x)
        on_bound = tuple(bounds.on_bound(theta, self.bound_rtol))

        converged = (
            outcome.status != 1
            and np.isfinite(nll)
            and pg_norm <= self.gtol
            and change <= self.ftol
        )

        messages = []
        if outcome.status == 1:
            status = FitStatus.MAX_ITER_EXCEEDED
            messages.append(
                f"Optimizer reached the iteration budget ({self.max_iterations}) "
                f"without meeting tolerances"
            )
        elif not converged and outcome.status == 2:
            status = FitStatus.LINE_SEARCH_FAILURE
            messages.append(
                f"Optimizer terminated abnormally: {outcome.message} "
                f"(projected gradient {pg_norm:.2e})"
            )
        elif not converged:
            status = FitStatus.TOLERANCE_NOT_MET
            messages.append(
                f"Projected gradient {pg_norm:.2e} (gtol {self.gtol:.0e}) or relative "
                f"NLL change {change:.2e} (ftol {self.ftol:.0e}) not met after "
                f"{n_refine} refinement steps"
            )
        elif on_bound:
            status = FitStatus.BOUNDARY_STALL
            messages.append(f"Parameter(s) on bound: {', '.join(on_bound)}")
        else:
            status = FitStatus.CONVERGED

        self._report(messages)

        return FitResult(
            theta_hat=WeibullParameters.from_array(theta),
            converged=bool(converged),
            iterations=outcome.nit + n_refine,
            final_nll=float(nll),
            variant=variant,
            status=status,
            bounds=bounds,
            n_observations=len(observations),
            n_events=observations.total_events,
            gradient_norm=float(pg_norm),
            n_function_evals=outcome.nfev,
            message=outcome.message,
            warnings=tuple(messages),
            parameters_on_bound=on_bound,
        )

    def _report(self, messages) -> None:
        for msg in messages:
            if self.emit_warnings:
                logger.warning(f"FIT: {msg}")
                warnings.warn(msg, OptimizationWarning, stacklevel=3)
            else:
                logger.debug(f"FIT: {msg}")

    def _minimize(
        self,
        likelihood: PoissonLikelihood,
        bounds: ParameterBounds,
        x0: np.ndarray,
    ) -> _RunOutcome:
        """L-BFGS-B with one warm restart after an abnormal line-search exit."""
        width = bounds.width

        def objective(x):
            theta = bounds.from_normalized(x)
            value = likelihood.nll(theta)
            grad = likelihood.gradient(theta) * width
            return value, grad

        outcome = _RunOutcome(x=np.asarray(x0, dtype=float), status=2, success=False)
        remaining = self.max_iterations

        for attempt in range(2):
            res = minimize(
                objective,
                outcome.x,
                jac=True,
                method="L-BFGS-B",
                bounds=[(0.0, 1.0)] * len(x0),
                options={
                    "ftol": self.ftol,
                    "gtol": self.gtol,
                    "maxiter": remaining,
                    "maxfun": 20 * self.max_iterations,
                },
            )
            outcome.x = np.asarray(res.x, dtype=float)
            outcome.status = int(res.status)
            outcome.success = bool(res.success)
            outcome.nit += int(res.nit)
            outcome.nfev += int(res.nfev)
            outcome.message = str(res.message)
            outcome.restarts = attempt
            remaining = self.max_iterations - outcome.nit

            if res.status != 2 or remaining <= 0:
                break
            logger.debug(f"Restarting L-BFGS-B after abnormal exit: {res.message}")

        if remaining <= 0 and not outcome.success:
            outcome.status = 1
        return outcome

    def _refine(
        self,
        likelihood: PoissonLikelihood,
        bounds: ParameterBounds,
        x: np.ndarray,
    ) -> tuple[np.ndarray, float, int]:
        """
        Projected Newton refinement of an L-BFGS-B solution.

        Parameters held on a bound by an outward gradient stay fixed; the
        others take damped Newton steps with backtracking. A step that
        cannot lower the NLL at all means the point is stationary to
        floating-point resolution and counts as zero change.

        Returns:
            (x, relative NLL change of the last step, steps taken)
        """
        def value(x):
            return likelihood.nll(bounds.from_normalized(x))

        def gradient(x):
            return likelihood.gradient(bounds.from_normalized(x)) * bounds.width

        x = np.asarray(x, dtype=float).copy()
        f = value(x)
        change = np.inf
        steps = 0

        for _ in range(self.refine_steps):
            g = gradient(x)
            free = ~(((x <= 0.0) & (g > 0)) | ((x >= 1.0) & (g < 0)))
            if not np.any(free):
                change = 0.0
                break
            if np.max(np.abs(g[free])) <= self.gtol and change <= self.ftol:
                break

            H = _gradient_jacobian(gradient, x)[np.ix_(free, free)]
            step = _newton_step(H, g[free])
            if step is None:
                break
            p = np.zeros_like(x)
            p[free] = step
            slope = float(g @ p)

            t = 1.0
            accepted = False
            while t > 1e-10:
                x_new = np.clip(x + t * p, 0.0, 1.0)
                f_new = value(x_new)
                if np.isfinite(f_new) and f_new <= f + 1e-4 * t * slope:
                    accepted = True
                    break
                t *= 0.5

            if not accepted:
                change = 0.0
                break

            change = abs(f - f_new) / max(abs(f), abs(f_new), 1.0)
            x, f = x_new, f_new
            steps += 1

        return x, change, steps

    @staticmethod
    def _projected_gradient_norm(
        likelihood: PoissonLikelihood,
        bounds: ParameterBounds,
        x: np.ndarray,
    ) -> float:
        """Max |projected gradient| in unit-box coordinates."""
        g = likelihood.gradient(bounds.from_normalized(x)) * bounds.width
        at_lower = (x <= 0.0) & (g > 0)
        at_upper = (x >= 1.0) & (g < 0)
        g = np.where(at_lower | at_upper, 0.0, g)
        return float(np.max(np.abs(g))) if g.size else 0.0

    def fit_multistart(
        self,
        observations: ObservationSet,
        bounds: Optional[ParameterBounds] = None,
        n_starts: int = 5,
        seed: int = 42,
        variant: Optional[FitVariant] = None,
        jitter: float = 0.2,
    ) -> tuple[FitResult, list[FitResult]]:
        """
        Fit from several starting points and keep the best.

        The first start is the bounds' initial guess; the others jitter it
        in unit-box coordinates.

        Returns:
            (best_result, all_results); best is the lowest-NLL converged fit,
            or the lowest-NLL fit if none converged
        """
        if bounds is None:
            bounds = BoundsEstimator().estimate(observations)

        rng = np.random.default_rng(seed)
        x_init = bounds.to_normalized(bounds.initial)
        starts = [bounds.initial]
        for _ in range(max(n_starts, 1) - 1):
            x = np.clip(x_init + rng.normal(0.0, jitter, size=x_init.shape), 0.01, 0.99)
            starts.append(bounds.from_normalized(x))

        quiet = MLEFitter(
            ftol=self.ftol,
            gtol=self.gtol,
            max_iterations=self.max_iterations,
            bound_rtol=self.bound_rtol,
            refine_steps=self.refine_steps,
            emit_warnings=False,
        )
        all_results = []
        for i, start in enumerate(starts):
            result = quiet.fit(observations, bounds=bounds, initial=start, variant=variant)
            logger.debug(
                f"Start {i}: NLL={result.final_nll:.6f} status={result.status.value}"
            )
            all_results.append(result)

        ranked = sorted(all_results, key=lambda r: (not r.converged, r.final_nll))
        best = ranked[0]
        self._report(best.warnings)

        if len(all_results) >= 3:
            self._check_multistart_stability(ranked)

        return best, all_results

    def _check_multistart_stability(
        self,
        results: list[FitResult],
        tolerance: float = 0.05,
    ) -> bool:
        """Log when the best converged solutions disagree in predicted cross-section."""
        converged = [r for r in results if r.converged][:3]
        if len(converged) < 2:
            return True

        let = np.linspace(
            converged[0].bounds.upper[1],
            converged[0].bounds.upper[1] + max(converged[0].bounds.upper[3], 1.0),
            20,
        )
        curves = [r.predict(let) for r in converged]
        diffs = [
            np.linalg.norm(curves[i] - curves[j]) / (np.linalg.norm(curves[i]) + 1e-300)
            for i in range(len(curves))
            for j in range(i + 1, len(curves))
        ]
        max_diff = max(diffs)
        if max_diff > tolerance:
            logger.info(
                f"Multistart solutions differ by {max_diff:.1%} in predicted cross-section; "
                f"keeping the lowest-NLL fit"
            )
            return False
        return True

