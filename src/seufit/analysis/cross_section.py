"""
End-to-end Weibull cross-section analysis.

Runs the full workflow on one set of (LET, count, fluence) observations:
split censored points, fit the informative subset, quantify uncertainty
(Hessian covariance where valid, parametric bootstrap always), choose the
interval method and test goodness-of-fit against every observation.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Sequence, Union
import json

import numpy as np

from seufit.config import Config, get_config
from seufit.exceptions import ConfigurationError, NotApplicable
from seufit.models.bootstrap import BootstrapEngine, BootstrapResult
from seufit.models.bounds import BoundsEstimator
from seufit.models.censoring import ConsistencyViolation, UpperLimit, ZeroEventHandler
from seufit.models.covariance import CovarianceResult, HessianCovariance
from seufit.models.fit import FitResult, FitVariant, MLEFitter, classify_variant
from seufit.models.goodness_of_fit import GoodnessOfFitOutcome, GoodnessOfFitTester
from seufit.models.intervals import (
    ConfidenceInterval,
    IntervalMethod,
    IntervalSelection,
    IntervalSelector,
)
from seufit.observations import ObservationSet
from seufit.logging import get_logger, log_context, setup_logging

logger = get_logger()


class NumpyEncoder(json.JSONEncoder):
    """JSON encoder that handles numpy types."""
    def default(self, obj):
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.floating):
            return float(obj)
        if isinstance(obj, np.bool_):
            return bool(obj)
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        return super().default(obj)


@dataclass
class AnalysisResult:
    """Complete results from a cross-section analysis."""

    n_observations: int
    n_events: int
    confidence_level: float

    upper_limits: tuple[UpperLimit, ...] = ()
    all_censored: bool = False

    fit: Optional[FitResult] = None
    variant: Optional[FitVariant] = None
    covariance: Optional[CovarianceResult] = None
    bootstrap: Optional[BootstrapResult] = None
    interval_selection: Optional[IntervalSelection] = None
    goodness_of_fit: Optional[GoodnessOfFitOutcome] = None
    consistency_violations: list[ConsistencyViolation] = field(default_factory=list)

    warnings: list[str] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)
    timings: dict[str, float] = field(default_factory=dict)

    config: Optional[dict] = None
    seed: int = 42

    @property
    def converged(self) -> bool:
        return self.fit is not None and self.fit.converged

    @property
    def theta_hat(self) -> Optional[np.ndarray]:
        return None if self.fit is None else self.fit.theta

    @property
    def intervals(self) -> list[ConfidenceInterval]:
        if self.interval_selection is None:
            return []
        return self.interval_selection.intervals

    @property
    def interval_method(self) -> Optional[IntervalMethod]:
        return None if self.interval_selection is None else self.interval_selection.method

    @property
    def interval_method_reason(self) -> str:
        return "" if self.interval_selection is None else self.interval_selection.reason

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "n_observations": self.n_observations,
            "n_events": self.n_events,
            "confidence_level": self.confidence_level,
            "all_censored": self.all_censored,
            "variant": None if self.variant is None else self.variant.value,
            "fit": None if self.fit is None else self.fit.to_dict(),
            "covariance": None if self.covariance is None else self.covariance.to_dict(),
            "bootstrap": None if self.bootstrap is None else self.bootstrap.summary(),
            "intervals": [ci.to_dict() for ci in self.intervals],
            "interval_method": None if self.interval_method is None else self.interval_method.value,
            "interval_method_reason": self.interval_method_reason,
            "upper_limits": [u.to_dict() for u in self.upper_limits],
            "goodness_of_fit": (
                None if self.goodness_of_fit is None else self.goodness_of_fit.to_dict()
            ),
            "consistency_violations": [v.to_dict() for v in self.consistency_violations],
            "warnings": list(self.warnings),
            "notes": list(self.notes),
            "timings": dict(self.timings),
            "seed": self.seed,
            "config": self.config,
        }

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, cls=NumpyEncoder)

    def save(self, path: Path) -> None:
        """Save results to JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            f.write(self.to_json())

    def summary_string(self) -> str:
        """Get human-readable summary."""
        cl = f"{self.confidence_level:.0%}"
        lines = [
            "=== Weibull Cross-Section Fit ===",
            f"Observations: {self.n_observations} ({self.n_events} events, "
            f"{len(self.upper_limits)} censored)",
            "",
        ]

        if self.all_censored:
            lines.append(f"All observations censored; {cl} upper limits only:")
            for u in self.upper_limits:
                lines.append(f"  LET={u.let:g}: sigma < {u.sigma_upper:.3e}")
            return "\n".join(lines)

        fit = self.fit
        lines.append(
            f"Fit: {fit.status.value} after {fit.iterations} iterations, "
            f"NLL = {fit.final_nll:.4f} (variant: {self.variant.value})"
        )
        by_name = {ci.name: ci for ci in self.intervals}
        for name, value in fit.theta_hat.to_dict().items():
            ci = by_name.get(name)
            if ci is not None:
                lines.append(f"  {name:>9} = {value:.4g}  [{ci.lower:.4g}, {ci.upper:.4g}]")
            else:
                lines.append(f"  {name:>9} = {value:.4g}")
        if self.interval_selection is not None:
            lines.append(
                f"  ({cl} {self.interval_method.value} intervals: {self.interval_method_reason})"
            )

        if self.goodness_of_fit is not None:
            lines.append("")
            gof = self.goodness_of_fit
            if gof.applicable:
                lines.append(
                    f"Deviance: D = {gof.deviance:.2f}, df = {gof.degrees_of_freedom}, "
                    f"p = {gof.p_value:.4f}"
                )
            else:
                lines.append(f"Goodness-of-fit not applicable: {gof.reason}")

        if self.warnings:
            lines.append("")
            lines.extend(f"WARNING: {w}" for w in self.warnings)

        return "\n".join(lines)


class CrossSectionAnalysis:
    """
    Weibull cross-section analysis pipeline.

    Only ConfigurationError aborts a run; every other condition degrades
    to a more conservative method and is recorded on the result.
    """

    def __init__(self, config: Optional[Config] = None, emit_warnings: bool = True):
        self.config = config or get_config()
        self.emit_warnings = emit_warnings

        self.handler = ZeroEventHandler(self.config.confidence_level, emit_warnings=emit_warnings)
        self.bounds_estimator = BoundsEstimator()
        self.fitter = MLEFitter.from_config(self.config.fit, emit_warnings=emit_warnings)
        self.hessian = HessianCovariance(min_events=self.config.intervals.min_events_asymptotic)
        self.bootstrap = BootstrapEngine.from_config(self.config, emit_warnings=emit_warnings)
        self.selector = IntervalSelector.from_config(self.config)
        self.gof_tester = GoodnessOfFitTester()

    def cancel(self) -> None:
        """Stop the bootstrap at its next chunk boundary, or before its first if not yet running."""
        self.bootstrap.cancel()

    def run(self, observations: ObservationSet) -> AnalysisResult:
        """
        Run the complete analysis.

        Args:
            observations: Ordered observations, one per tested LET

        Returns:
            AnalysisResult with all statistics

        Raises:
            ConfigurationError: empty input or fewer than 4 informative points
        """
        if len(observations) == 0:
            raise ConfigurationError("No observations to analyze")

        cl = self.config.confidence_level
        seed = self.config.bootstrap.seed
        logger.info(
            f"Starting cross-section analysis: {len(observations)} observations, "
            f"{observations.total_events} events"
        )

        split = self.handler.split(observations)
        limits = self.handler.upper_limits(split.censored)

        result = AnalysisResult(
            n_observations=len(observations),
            n_events=observations.total_events,
            confidence_level=cl,
            upper_limits=limits,
            config=self.config.model_dump(mode="json"),
            seed=seed,
        )

        if split.all_censored:
            result.upper_limits = self.handler.all_censored_result(observations).upper_limits
            result.all_censored = True
            return result

        informative = split.informative
        variant = classify_variant(
            informative.total_events,
            split.has_censored,
            self.config.intervals.min_events_asymptotic,
        )
        result.variant = variant
        logger.info(f"Analysis variant: {variant.value}")

        with log_context("Maximum-likelihood fit", timings=result.timings):
            bounds = self.bounds_estimator.estimate(informative)
            if self.config.fit.n_starts > 1:
                fit, _ = self.fitter.fit_multistart(
                    informative,
                    bounds=bounds,
                    n_starts=self.config.fit.n_starts,
                    seed=seed,
                    variant=variant,
                )
            else:
                fit = self.fitter.fit(informative, bounds=bounds, variant=variant)
        result.fit = fit
        result.warnings.extend(fit.warnings)

        if split.has_censored:
            violations = self.handler.check_consistency(fit.theta_hat, limits)
            result.consistency_violations = violations
            result.warnings.extend(v.describe() for v in violations)

        if self.hessian.is_applicable(informative.total_events):
            with log_context("Hessian covariance", timings=result.timings):
                try:
                    result.covariance = self.hessian.compute(fit, informative)
                except NotApplicable as e:
                    logger.info(f"Hessian covariance unavailable, relying on bootstrap: {e}")
                    result.notes.append(f"Hessian covariance unavailable: {e}")

        with log_context("Parametric bootstrap", timings=result.timings):
            boot = self.bootstrap.run(fit, informative)
        result.bootstrap = boot
        result.warnings.extend(boot.warnings)

        with log_context("Confidence intervals", timings=result.timings):
            try:
                result.interval_selection = self.selector.select(
                    fit,
                    informative,
                    boot.samples,
                    boot.success_rate,
                    has_censored=split.has_censored,
                )
            except NotApplicable as e:
                logger.warning(f"INTERVALS: no confidence intervals available: {e}")
                result.warnings.append(f"No confidence intervals available: {e}")

        with log_context("Goodness of fit", timings=result.timings):
            result.goodness_of_fit = self.gof_tester.test(fit.theta_hat, observations)

        logger.info(result.summary_string())
        return result


def run_analysis(
    let: Union[Sequence[float], np.ndarray],
    counts: Union[Sequence[int], np.ndarray],
    fluence: Union[float, Sequence[float], np.ndarray],
    config: Optional[Config] = None,
    confidence_level: Optional[float] = None,
    n_bootstrap: Optional[int] = None,
    seed: Optional[int] = None,
    n_jobs: Optional[int] = None,
    emit_warnings: bool = True,
) -> AnalysisResult:
    """
    Analyze (LET, count, fluence) arrays.

    Args:
        let: LET per observation
        counts: Upset counts per observation
        fluence: Fluence per observation (scalar broadcast)
        config: Base configuration (default: global config)
        confidence_level: Override confidence level
        n_bootstrap: Override bootstrap iterations
        seed: Override bootstrap seed
        n_jobs: Override worker count
        emit_warnings: Emit non-fatal conditions through ``warnings.warn``

    Returns:
        AnalysisResult
    """
    config = (config or get_config()).with_overrides(
        confidence_level=confidence_level,
        n_bootstrap=n_bootstrap,
        seed=seed,
        n_jobs=n_jobs,
    )
    setup_logging(config.log_level, config.log_file)
    observations = ObservationSet.from_arrays(let, counts, fluence)
    return CrossSectionAnalysis(config, emit_warnings=emit_warnings).run(observations)
