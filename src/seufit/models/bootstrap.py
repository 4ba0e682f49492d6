"""
Parametric Poisson bootstrap for the Weibull fit.

Each iteration draws synthetic counts N*_i ~ Poisson(lambda_i) from the
fitted model, refits warm-started at theta_hat within the original bounds
and records theta* on success. Iterations are independent: iteration b
seeds its own generator from (seed, b), so results do not depend on
scheduling, worker count or completion order.
"""

from dataclasses import dataclass, field
from functools import partial
from typing import Optional, Union
import threading
import time
import warnings

import numpy as np
import pandas as pd
from scipy import stats

from seufit.exceptions import ConfigurationError, LowSuccessRate
from seufit.models.bounds import ParameterBounds
from seufit.models.fit import FitResult, FitVariant, MLEFitter, MIN_EVENTS_ASYMPTOTIC
from seufit.models.weibull import N_PARAMS, PARAMETER_NAMES, PoissonLikelihood
from seufit.observations import ObservationSet
from seufit.utils.parallel import chunked, parallel_map
from seufit.utils.stats import clopper_pearson_ci, relative_matrix_difference
from seufit.logging import ProgressLogger, get_logger

logger = get_logger()

N_BOOTSTRAP_LARGE_SAMPLE = 10000
N_BOOTSTRAP_SMALL_SAMPLE = 20000
MIN_COUNT_PER_LET = 5


def select_n_bootstrap(
    n_events: int,
    min_count: int,
    min_events: int = MIN_EVENTS_ASYMPTOTIC,
    min_count_per_let: int = MIN_COUNT_PER_LET,
) -> int:
    """
    Number of bootstrap iterations for the data at hand.

    Args:
        n_events: Total informative event count
        min_count: Smallest count among informative observations
        min_events: Event total considered large-sample
        min_count_per_let: Per-LET count considered large-sample

    Returns:
        10000 for well-populated data, 20000 otherwise
    """
    if n_events >= min_events and min_count >= min_count_per_let:
        return N_BOOTSTRAP_LARGE_SAMPLE
    return N_BOOTSTRAP_SMALL_SAMPLE


@dataclass(frozen=True)
class BootstrapSample:
    """Outcome of one bootstrap iteration."""

    index: int
    theta_star: Optional[np.ndarray]
    success: bool
    n_redraws: int = 0
    reason: str = ""


class BootstrapDistribution:
    """
    Append-only accumulator of bootstrap outcomes.

    ``record`` is lock-guarded so several producers may feed it. Successful
    samples are ordered by iteration index when finalized.
    """

    def __init__(self, n_params: int = N_PARAMS):
        self.n_params = n_params
        self._lock = threading.Lock()
        self._successes: list[tuple[int, np.ndarray]] = []
        self._samples: Optional[np.ndarray] = None
        self.n_failed = 0
        self.n_redraws = 0
        self.n_completed = 0

    def record(self, sample: BootstrapSample) -> None:
        with self._lock:
            if self._samples is not None:
                raise RuntimeError("Bootstrap distribution is already finalized")
            self.n_completed += 1
            self.n_redraws += sample.n_redraws
            if sample.success and sample.theta_star is not None:
                self._successes.append((sample.index, np.asarray(sample.theta_star, dtype=float)))
            else:
                self.n_failed += 1

    def finalize(self) -> np.ndarray:
        with self._lock:
            if self._samples is None:
                ordered = sorted(self._successes, key=lambda item: item[0])
                if ordered:
                    samples = np.vstack([theta for _, theta in ordered])
                else:
                    samples = np.empty((0, self.n_params))
                samples.setflags(write=False)
                self._samples = samples
                self._successes = []
            return self._samples

    @property
    def is_finalized(self) -> bool:
        return self._samples is not None

    @property
    def samples(self) -> np.ndarray:
        return self.finalize()

    @property
    def n_success(self) -> int:
        if self._samples is not None:
            return len(self._samples)
        return len(self._successes)

    @property
    def success_rate(self) -> float:
        if self.n_completed == 0:
            return 0.0
        return self.n_success / self.n_completed


@dataclass(frozen=True)
class BootstrapDiagnostics:
    """Quality indicators for a bootstrap distribution."""

    success_rate: float
    success_rate_ci: tuple[float, float]
    low_success_rate: bool
    skewness: np.ndarray
    skewed_parameters: tuple[str, ...]
    covariance_difference: Optional[float]
    covariance_stable: Optional[bool]

    def to_dict(self) -> dict:
        return {
            "success_rate": self.success_rate,
            "success_rate_ci": list(self.success_rate_ci),
            "low_success_rate": self.low_success_rate,
            "skewness": dict(zip(PARAMETER_NAMES, self.skewness.tolist())),
            "skewed_parameters": list(self.skewed_parameters),
            "covariance_difference": self.covariance_difference,
            "covariance_stable": self.covariance_stable,
        }


def compute_diagnostics(
    samples: np.ndarray,
    n_completed: int,
    success_rate_threshold: float = 0.9,
    skew_threshold: float = 0.5,
    stability_threshold: float = 0.1,
) -> BootstrapDiagnostics:
    """
    Success rate, marginal skewness and split-half covariance stability.

    Args:
        samples: Successful theta* rows in iteration order
        n_completed: Iterations that ran to completion
        success_rate_threshold: Rate below which results are lower-confidence
        skew_threshold: |skewness| above which a marginal is flagged
        stability_threshold: Relative covariance difference flagged as unstable

    Returns:
        BootstrapDiagnostics
    """
    n_success = len(samples)
    rate = n_success / n_completed if n_completed > 0 else 0.0
    rate_ci = clopper_pearson_ci(n_success, n_completed)

    if n_success >= 3:
        with np.errstate(all="ignore"):
            skew = np.nan_to_num(stats.skew(samples, axis=0, bias=False), nan=0.0)
    else:
        skew = np.zeros(samples.shape[1] if samples.ndim == 2 else N_PARAMS)
    skewed = tuple(n for n, s in zip(PARAMETER_NAMES, skew) if abs(s) > skew_threshold)

    cov_diff: Optional[float] = None
    cov_stable: Optional[bool] = None
    half = n_success // 2
    if half > samples.shape[1]:
        first = samples[:half]
        second = samples[half:2 * half]
        scale = np.std(samples, axis=0, ddof=1)
        cov_diff = relative_matrix_difference(
            np.cov(first, rowvar=False), np.cov(second, rowvar=False), scale
        )
        cov_stable = cov_diff <= stability_threshold

    return BootstrapDiagnostics(
        success_rate=rate,
        success_rate_ci=rate_ci,
        low_success_rate=rate < success_rate_threshold,
        skewness=skew,
        skewed_parameters=skewed,
        covariance_difference=cov_diff,
        covariance_stable=cov_stable,
    )


@dataclass
class BootstrapResult:
    """Finalized bootstrap distribution with diagnostics."""

    theta_hat: np.ndarray
    samples: np.ndarray
    n_requested: int
    n_completed: int
    n_failed: int
    n_redraws: int
    diagnostics: BootstrapDiagnostics

    seed: int = 42
    stopped_early: bool = False
    stop_reason: str = ""
    warnings: list[str] = field(default_factory=list)

    @property
    def n_success(self) -> int:
        return len(self.samples)

    @property
    def success_rate(self) -> float:
        return self.diagnostics.success_rate

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame(np.asarray(self.samples), columns=list(PARAMETER_NAMES))

    def summary(self) -> dict:
        """Get summary statistics."""
        per_param = {}
        for i, name in enumerate(PARAMETER_NAMES):
            column = self.samples[:, i] if self.n_success else np.array([np.nan])
            per_param[name] = {
                "theta_hat": float(self.theta_hat[i]),
                "mean": float(np.mean(column)),
                "std": float(np.std(column, ddof=1)) if self.n_success > 1 else float("nan"),
                "median": float(np.median(column)),
                "q025": float(np.quantile(column, 0.025)),
                "q975": float(np.quantile(column, 0.975)),
            }
        return {
            "n_requested": self.n_requested,
            "n_completed": self.n_completed,
            "n_success": self.n_success,
            "n_failed": self.n_failed,
            "n_redraws": self.n_redraws,
            "seed": self.seed,
            "stopped_early": self.stopped_early,
            "stop_reason": self.stop_reason,
            "parameters": per_param,
            "diagnostics": self.diagnostics.to_dict(),
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class _IterationJob:
    """Everything a worker needs; shared read-only across iterations."""

    let: np.ndarray
    fluence: np.ndarray
    expected: np.ndarray
    theta_hat: np.ndarray
    bounds: ParameterBounds
    variant: FitVariant
    seed: int
    min_informative_points: int
    max_redraws: int
    ftol: float
    gtol: float
    max_iterations: int
    bound_rtol: float
    refine_steps: int


def _run_iteration(job: _IterationJob, index: int) -> BootstrapSample:
    """One bootstrap iteration: draw, filter degenerate samples, refit."""
    rng = np.random.default_rng([job.seed, index])

    counts = None
    n_redraws = 0
    for attempt in range(job.max_redraws + 1):
        draw = rng.poisson(job.expected)
        if np.count_nonzero(draw) >= job.min_informative_points:
            counts = draw
            n_redraws = attempt
            break

    if counts is None:
        return BootstrapSample(
            index=index,
            theta_star=None,
            success=False,
            n_redraws=job.max_redraws,
            reason="degenerate",
        )

    fitter = MLEFitter(
        ftol=job.ftol,
        gtol=job.gtol,
        max_iterations=job.max_iterations,
        bound_rtol=job.bound_rtol,
        refine_steps=job.refine_steps,
        emit_warnings=False,
    )
    try:
        synthetic = ObservationSet.from_arrays(job.let, counts, job.fluence)
        fit = fitter.fit(
            synthetic, bounds=job.bounds, initial=job.theta_hat, variant=job.variant
        )
    except (ConfigurationError, ArithmeticError, np.linalg.LinAlgError) as e:
        logger.debug(f"Bootstrap iteration {index} failed: {e}")
        return BootstrapSample(index, None, False, n_redraws, reason=str(e))

    if not fit.converged or not np.isfinite(fit.final_nll):
        return BootstrapSample(index, None, False, n_redraws, reason=fit.status.value)

    return BootstrapSample(index, fit.theta, True, n_redraws)


class BootstrapEngine:
    """
    Parametric Poisson bootstrap with parallel refitting.

    Work is scheduled in chunks; the stop flag (``cancel()``) and the
    optional timeout are checked between chunks and in-flight iterations
    always complete.
    """

    def __init__(
        self,
        n_bootstrap: Optional[int] = None,
        seed: int = 42,
        n_jobs: int = -1,
        backend: str = "loky",
        batch_size: Union[int, str] = "auto",
        use_parallel: bool = True,
        chunk_size: int = 500,
        timeout_seconds: Optional[float] = None,
        min_informative_points: int = 3,
        max_redraws: int = 100,
        success_rate_threshold: float = 0.9,
        skew_threshold: float = 0.5,
        stability_threshold: float = 0.1,
        min_events: int = MIN_EVENTS_ASYMPTOTIC,
        min_count_per_let: int = MIN_COUNT_PER_LET,
        show_progress: bool = False,
        fitter: Optional[MLEFitter] = None,
        emit_warnings: bool = True,
    ):
        """
        Initialize bootstrap engine.

        Args:
            n_bootstrap: Iteration count override (None selects 10000/20000)
            seed: Base seed; iteration b uses default_rng([seed, b])
            n_jobs: Number of parallel jobs (-1 for auto)
            backend: Joblib backend
            batch_size: Joblib batch size
            use_parallel: Whether to use parallel execution
            chunk_size: Iterations dispatched between stop-flag checks
            timeout_seconds: Optional wall-clock budget
            min_informative_points: Minimum LET points with N* > 0
            max_redraws: Redraws allowed for a degenerate sample
            success_rate_threshold: LowSuccessRate threshold
            skew_threshold: Skewness flag threshold
            stability_threshold: Split-half covariance flag threshold
            min_events: Event total considered large-sample
            min_count_per_let: Per-LET count considered large-sample
            show_progress: Show a tqdm progress bar per chunk
            fitter: Fitter whose tolerances the refits reuse
            emit_warnings: Emit LowSuccessRate via ``warnings.warn``
        """
        self.n_bootstrap = n_bootstrap
        self.seed = seed
        self.n_jobs = n_jobs
        self.backend = backend
        self.batch_size = batch_size
        self.use_parallel = use_parallel
        self.chunk_size = chunk_size
        self.timeout_seconds = timeout_seconds
        self.min_informative_points = min_informative_points
        self.max_redraws = max_redraws
        self.success_rate_threshold = success_rate_threshold
        self.skew_threshold = skew_threshold
        self.stability_threshold = stability_threshold
        self.min_events = min_events
        self.min_count_per_let = min_count_per_let
        self.show_progress = show_progress
        self.fitter = fitter or MLEFitter(emit_warnings=False)
        self.emit_warnings = emit_warnings

        self._stop = threading.Event()

    @classmethod
    def from_config(cls, config, emit_warnings: bool = True) -> "BootstrapEngine":
        bc = config.bootstrap
        return cls(
            n_bootstrap=bc.n_bootstrap,
            seed=bc.seed,
            n_jobs=config.parallel.n_jobs,
            backend=config.parallel.backend,
            batch_size=config.parallel.batch_size,
            use_parallel=bc.use_parallel,
            chunk_size=bc.chunk_size,
            timeout_seconds=bc.timeout_seconds,
            min_informative_points=bc.min_informative_points,
            max_redraws=bc.max_redraws,
            success_rate_threshold=bc.success_rate_threshold,
            skew_threshold=bc.skew_threshold,
            stability_threshold=bc.stability_threshold,
            min_events=config.intervals.min_events_asymptotic,
            min_count_per_let=config.intervals.min_count_per_let,
            show_progress=bc.show_progress,
            fitter=MLEFitter.from_config(config.fit, emit_warnings=False),
            emit_warnings=emit_warnings,
        )

    def cancel(self) -> None:
        """Request a cooperative stop; takes effect before the next chunk."""
        self._stop.set()

    def reset(self) -> None:
        """Clear a pending stop request."""
        self._stop.clear()

    @property
    def cancelled(self) -> bool:
        return self._stop.is_set()

    def resolve_n_bootstrap(self, observations: ObservationSet) -> int:
        if self.n_bootstrap is not None:
            return self.n_bootstrap
        counts = observations.counts
        return select_n_bootstrap(
            observations.total_events,
            int(np.min(counts)) if len(counts) else 0,
            self.min_events,
            self.min_count_per_let,
        )

    def run(self, fit: FitResult, observations: ObservationSet) -> BootstrapResult:
        """
        Run the bootstrap around a fit.

        Args:
            fit: Fit of ``observations`` supplying theta_hat and bounds
            observations: The observations the fit used

        Returns:
            BootstrapResult with the finalized distribution and diagnostics

        A cancel requested before the call stops the run before its first
        chunk. The request is consumed when the run ends.
        """
        n_total = self.resolve_n_bootstrap(observations)
        likelihood = PoissonLikelihood(observations)

        job = _IterationJob(
            let=likelihood.let,
            fluence=likelihood.fluence,
            expected=likelihood.expected_counts(fit.theta_hat),
            theta_hat=fit.theta,
            bounds=fit.bounds,
            variant=fit.variant,
            seed=self.seed,
            min_informative_points=min(self.min_informative_points, len(observations)),
            max_redraws=self.max_redraws,
            ftol=self.fitter.ftol,
            gtol=self.fitter.gtol,
            max_iterations=self.fitter.max_iterations,
            bound_rtol=self.fitter.bound_rtol,
            refine_steps=self.fitter.refine_steps,
        )
        worker = partial(_run_iteration, job)

        logger.info(f"Starting bootstrap with {n_total} iterations (seed={self.seed})")

        distribution = BootstrapDistribution()
        progress = ProgressLogger(n_total, "Bootstrap", logger)
        deadline = (
            time.monotonic() + self.timeout_seconds if self.timeout_seconds else None
        )
        stop_reason = ""

        for chunk in chunked(range(n_total), self.chunk_size):
            if self._stop.is_set():
                stop_reason = "cancelled"
                break
            if deadline is not None and time.monotonic() >= deadline:
                stop_reason = "timeout"
                break

            if self.use_parallel:
                samples = parallel_map(
                    worker,
                    chunk,
                    n_jobs=self.n_jobs,
                    backend=self.backend,
                    batch_size=self.batch_size,
                    desc="Bootstrap",
                    show_progress=self.show_progress,
                )
            else:
                samples = [worker(i) for i in chunk]

            for sample in samples:
                distribution.record(sample)
            progress.update(len(chunk), f"{distribution.n_failed} failed")

        self.reset()

        samples = distribution.finalize()
        progress.done(stop_reason)

        diagnostics = compute_diagnostics(
            samples,
            distribution.n_completed,
            success_rate_threshold=self.success_rate_threshold,
            skew_threshold=self.skew_threshold,
            stability_threshold=self.stability_threshold,
        )

        messages = []
        if diagnostics.low_success_rate:
            messages.append(
                f"Bootstrap success rate {diagnostics.success_rate:.1%} is below "
                f"{self.success_rate_threshold:.0%}; intervals are lower-confidence"
            )
        if diagnostics.skewed_parameters:
            logger.info(
                f"Skewed bootstrap marginals (|skew| > {self.skew_threshold}): "
                f"{', '.join(diagnostics.skewed_parameters)}"
            )
        if diagnostics.covariance_stable is False:
            messages.append(
                f"Bootstrap covariance differs by {diagnostics.covariance_difference:.1%} "
                f"between halves; consider more iterations"
            )
        if stop_reason:
            messages.append(
                f"Bootstrap stopped early ({stop_reason}) after "
                f"{distribution.n_completed} of {n_total} iterations"
            )

        for msg in messages:
            logger.warning(f"BOOTSTRAP: {msg}")
        if diagnostics.low_success_rate and self.emit_warnings:
            warnings.warn(messages[0], LowSuccessRate, stacklevel=2)

        logger.info(
            f"Bootstrap complete: {len(samples)}/{distribution.n_completed} successful "
            f"({diagnostics.success_rate:.1%}), {distribution.n_redraws} redraws"
        )

        return BootstrapResult(
            theta_hat=fit.theta,
            samples=samples,
            n_requested=n_total,
            n_completed=distribution.n_completed,
            n_failed=distribution.n_failed,
            n_redraws=distribution.n_redraws,
            diagnostics=diagnostics,
            seed=self.seed,
            stopped_early=bool(stop_reason),
            stop_reason=stop_reason,
            warnings=messages,
        )
