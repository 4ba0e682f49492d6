"""
Statistical calibration of the cross-section analysis.

This module provides:
1. Interval coverage: how often bootstrap intervals contain the true
   parameters over repeated synthetic experiments
2. Goodness-of-fit calibration: how often the deviance test accepts data
   generated exactly from the assumed model

Synthetic experiments draw Poisson counts from a known Weibull curve at
the given LET points and fluences.
"""

from collections import Counter
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Optional

import numpy as np

from seufit.exceptions import ConfigurationError, NotApplicable
from seufit.models.bootstrap import BootstrapEngine
from seufit.models.bounds import BoundsEstimator
from seufit.models.fit import MLEFitter, classify_variant
from seufit.models.goodness_of_fit import GoodnessOfFitTester
from seufit.models.intervals import (
    IntervalMethod,
    IntervalSelector,
    acceleration,
    bca_intervals,
    jackknife_estimates,
    percentile_intervals,
)
from seufit.models.weibull import PARAMETER_NAMES, ThetaLike, expected_counts
from seufit.observations import ObservationSet
from seufit.utils.parallel import parallel_map
from seufit.logging import get_logger

logger = get_logger()

COVERAGE_TARGETS = {
    IntervalMethod.BCA: (0.90, 0.98),
    IntervalMethod.PERCENTILE: (0.85, 0.99),
}


@dataclass
class CalibrationReport:
    """Report from a calibration study."""
    kind: str
    n_trials: int
    n_successful: int
    seed: int
    passed: bool
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def failure_rate(self) -> float:
        if self.n_trials == 0:
            return 0.0
        return 1.0 - self.n_successful / self.n_trials

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "n_trials": self.n_trials,
            "n_successful": self.n_successful,
            "seed": self.seed,
            "passed": self.passed,
            **self.details,
        }


def simulate_counts(
    theta: ThetaLike,
    let: np.ndarray,
    fluence: np.ndarray,
    rng: np.random.Generator,
) -> np.ndarray:
    """Draw Poisson counts from the Weibull model at the given LET points."""
    let = np.asarray(let, dtype=float)
    fluence = np.broadcast_to(np.asarray(fluence, dtype=float), let.shape)
    return rng.poisson(expected_counts(theta, let, fluence))


def _fit_synthetic(observations: ObservationSet, fitter: MLEFitter):
    informative = observations.informative()
    bounds = BoundsEstimator().estimate(informative)
    variant = classify_variant(informative.total_events, observations.has_censored)
    fit = fitter.fit(informative, bounds=bounds, variant=variant)
    return informative, fit


def _run_coverage_trial(
    trial: int,
    theta_true: np.ndarray,
    let: np.ndarray,
    fluence: np.ndarray,
    seed: int,
    n_bootstrap: int,
    method: str,
    confidence_level: float,
) -> Optional[dict]:
    """Run one synthetic experiment; None when the trial cannot be analyzed."""
    rng = np.random.default_rng([seed, trial])
    counts = simulate_counts(theta_true, let, fluence, rng)
    observations = ObservationSet.from_arrays(let, counts, fluence)

    fitter = MLEFitter(emit_warnings=False)
    try:
        informative, fit = _fit_synthetic(observations, fitter)
    except ConfigurationError:
        return None
    if not fit.converged:
        return None

    engine = BootstrapEngine(
        n_bootstrap=n_bootstrap,
        seed=seed + trial,
        use_parallel=False,
        fitter=fitter,
        emit_warnings=False,
    )
    boot = engine.run(fit, informative)

    try:
        if method == "percentile":
            used = IntervalMethod.PERCENTILE
            intervals = percentile_intervals(boot.samples, fit.theta, confidence_level)
        elif method == "bca":
            used = IntervalMethod.BCA
            jack = jackknife_estimates(fit, informative, fitter)
            intervals = bca_intervals(
                boot.samples, fit.theta, acceleration(jack), confidence_level
            )
        else:
            selection = IntervalSelector(confidence_level=confidence_level, fitter=fitter).select(
                fit, informative, boot.samples, boot.success_rate,
                has_censored=observations.has_censored,
            )
            used = selection.method
            intervals = selection.intervals
    except NotApplicable:
        return None

    covered = [ci.contains(float(theta_true[ci.parameter_index])) for ci in intervals]
    return {"covered": covered, "method": used.value}


def run_coverage_study(
    theta_true: ThetaLike,
    let: np.ndarray,
    fluence: np.ndarray,
    n_trials: int = 200,
    n_bootstrap: int = 500,
    seed: int = 42,
    method: str = "auto",
    confidence_level: float = 0.95,
    n_jobs: int = 1,
    show_progress: bool = False,
) -> CalibrationReport:
    """
    Estimate interval coverage over repeated synthetic experiments.

    Args:
        theta_true: True Weibull parameters
        let: LET points of the synthetic campaign
        fluence: Fluence per point (scalar broadcast)
        n_trials: Number of synthetic experiments
        n_bootstrap: Bootstrap iterations per experiment
        seed: Base seed; trial t draws from default_rng([seed, t])
        method: "auto" (IntervalSelector), "percentile" or "bca"
        confidence_level: Nominal interval coverage
        n_jobs: Parallel workers across trials
        show_progress: Show a progress bar

    Returns:
        CalibrationReport with per-parameter and pooled coverage
    """
    if method not in ("auto", "percentile", "bca"):
        raise ConfigurationError(f"Unknown interval method: {method}")

    theta_true = np.asarray(
        theta_true.as_array() if hasattr(theta_true, "as_array") else theta_true, dtype=float
    )
    let = np.asarray(let, dtype=float)
    fluence = np.broadcast_to(np.asarray(fluence, dtype=float), let.shape).copy()

    logger.info(
        f"Running coverage study: {n_trials} trials, {n_bootstrap} bootstraps each "
        f"(method={method})"
    )

    trial_fn = partial(
        _run_coverage_trial,
        theta_true=theta_true,
        let=let,
        fluence=fluence,
        seed=seed,
        n_bootstrap=n_bootstrap,
        method=method,
        confidence_level=confidence_level,
    )
    outcomes = parallel_map(
        trial_fn,
        list(range(n_trials)),
        n_jobs=n_jobs,
        desc="Coverage trials",
        show_progress=show_progress,
    )
    outcomes = [o for o in outcomes if o is not None]

    if not outcomes:
        logger.error("All coverage trials failed")
        return CalibrationReport(
            kind="coverage",
            n_trials=n_trials,
            n_successful=0,
            seed=seed,
            passed=False,
            details={"error": "All trials failed"},
        )

    covered = np.array([o["covered"] for o in outcomes], dtype=bool)
    per_param = covered.mean(axis=0)
    pooled = float(covered.mean())
    method_counts = Counter(o["method"] for o in outcomes)
    methods_used = sorted(method_counts)

    dominant = IntervalMethod(method_counts.most_common(1)[0][0])
    lo, hi = COVERAGE_TARGETS[dominant]
    passed = lo <= pooled <= hi

    logger.info(f"  Pooled coverage: {pooled:.3f} (target [{lo}, {hi}] for {dominant.value})")
    for name, cov in zip(PARAMETER_NAMES, per_param):
        logger.info(f"    {name}: {cov:.3f}")
    logger.info(f"  Coverage calibration: {'PASSED' if passed else 'FAILED'}")

    return CalibrationReport(
        kind="coverage",
        n_trials=n_trials,
        n_successful=len(outcomes),
        seed=seed,
        passed=passed,
        details={
            "confidence_level": confidence_level,
            "method": method,
            "methods_used": methods_used,
            "pooled_coverage": pooled,
            "coverage": dict(zip(PARAMETER_NAMES, per_param.tolist())),
            "target_range": [lo, hi],
            "n_bootstrap": n_bootstrap,
        },
    )


def _run_gof_trial(
    trial: int,
    theta_true: np.ndarray,
    let: np.ndarray,
    fluence: np.ndarray,
    seed: int,
) -> float:
    """Deviance p-value for one synthetic experiment (nan when not available)."""
    rng = np.random.default_rng([seed, trial])
    counts = simulate_counts(theta_true, let, fluence, rng)
    observations = ObservationSet.from_arrays(let, counts, fluence)

    try:
        _, fit = _fit_synthetic(observations, MLEFitter(emit_warnings=False))
    except ConfigurationError:
        return np.nan

    outcome = GoodnessOfFitTester().test(fit.theta_hat, observations)
    if not outcome.applicable:
        return np.nan
    return outcome.p_value


def run_gof_calibration(
    theta_true: ThetaLike,
    let: np.ndarray,
    fluence: np.ndarray,
    n_trials: int = 200,
    seed: int = 42,
    alpha: float = 0.05,
    min_pass_fraction: float = 0.9,
    n_jobs: int = 1,
    show_progress: bool = False,
) -> CalibrationReport:
    """
    Fraction of model-generated experiments the deviance test accepts.

    Args:
        theta_true: True Weibull parameters
        let: LET points (at least 7 so that df >= 3)
        fluence: Fluence per point (scalar broadcast)
        n_trials: Number of synthetic experiments
        seed: Base seed
        alpha: Test level
        min_pass_fraction: Fraction of trials with p > alpha required to pass
        n_jobs: Parallel workers across trials
        show_progress: Show a progress bar

    Returns:
        CalibrationReport with the acceptance fraction
    """
    theta_true = np.asarray(
        theta_true.as_array() if hasattr(theta_true, "as_array") else theta_true, dtype=float
    )
    let = np.asarray(let, dtype=float)
    fluence = np.broadcast_to(np.asarray(fluence, dtype=float), let.shape).copy()

    logger.info(f"Running goodness-of-fit calibration: {n_trials} trials")

    trial_fn = partial(_run_gof_trial, theta_true=theta_true, let=let, fluence=fluence, seed=seed)
    p_values = np.array(
        parallel_map(
            trial_fn,
            list(range(n_trials)),
            n_jobs=n_jobs,
            desc="GOF trials",
            show_progress=show_progress,
        ),
        dtype=float,
    )
    p_values = p_values[np.isfinite(p_values)]

    if len(p_values) == 0:
        logger.error("All goodness-of-fit trials failed")
        return CalibrationReport(
            kind="goodness_of_fit",
            n_trials=n_trials,
            n_successful=0,
            seed=seed,
            passed=False,
            details={"error": "All trials failed"},
        )

    pass_fraction = float(np.mean(p_values > alpha))
    passed = pass_fraction >= min_pass_fraction

    logger.info(f"  Acceptance at alpha={alpha}: {pass_fraction:.3f} (need >= {min_pass_fraction})")
    logger.info(f"  Goodness-of-fit calibration: {'PASSED' if passed else 'FAILED'}")

    return CalibrationReport(
        kind="goodness_of_fit",
        n_trials=n_trials,
        n_successful=len(p_values),
        seed=seed,
        passed=passed,
        details={
            "alpha": alpha,
            "pass_fraction": pass_fraction,
            "min_pass_fraction": min_pass_fraction,
            "p_values": p_values.tolist(),
        },
    )
