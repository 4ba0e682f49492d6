"""Weibull cross-section model, fitting and uncertainty quantification."""

from seufit.models.weibull import (
    PARAMETER_NAMES,
    WeibullParameters,
    LikelihoodEvaluation,
    PoissonLikelihood,
    cross_section,
    expected_counts,
    evaluate_nll,
    negative_log_likelihood,
    nll_gradient,
)
from seufit.models.bounds import BoundsEstimator, ParameterBounds
from seufit.models.fit import MLEFitter, FitResult, FitStatus, FitVariant, classify_variant
from seufit.models.censoring import (
    ZeroEventHandler,
    UpperLimit,
    CensoredSplit,
    ConsistencyViolation,
    AllCensoredResult,
    poisson_upper_limit_multiplier,
)
from seufit.models.covariance import HessianCovariance, CovarianceResult, numerical_hessian
from seufit.models.bootstrap import (
    BootstrapEngine,
    BootstrapSample,
    BootstrapDistribution,
    BootstrapDiagnostics,
    BootstrapResult,
    select_n_bootstrap,
)
from seufit.models.intervals import (
    IntervalSelector,
    IntervalSelection,
    ConfidenceInterval,
    IntervalMethod,
    percentile_intervals,
    bca_intervals,
    jackknife_estimates,
)
from seufit.models.goodness_of_fit import (
    GoodnessOfFitTester,
    GoodnessOfFitResult,
    TestNotApplicable,
    poisson_deviance,
    pearson_residuals,
)

__all__ = [
    "PARAMETER_NAMES",
    "WeibullParameters",
    "LikelihoodEvaluation",
    "PoissonLikelihood",
    "cross_section",
    "expected_counts",
    "evaluate_nll",
    "negative_log_likelihood",
    "nll_gradient",
    "BoundsEstimator",
    "ParameterBounds",
    "MLEFitter",
    "FitResult",
    "FitStatus",
    "FitVariant",
    "classify_variant",
    "ZeroEventHandler",
    "UpperLimit",
    "CensoredSplit",
    "ConsistencyViolation",
    "AllCensoredResult",
    "poisson_upper_limit_multiplier",
    "HessianCovariance",
    "CovarianceResult",
    "numerical_hessian",
    "BootstrapEngine",
    "BootstrapSample",
    "BootstrapDistribution",
    "BootstrapDiagnostics",
    "BootstrapResult",
    "select_n_bootstrap",
    "IntervalSelector",
    "IntervalSelection",
    "ConfidenceInterval",
    "IntervalMethod",
    "percentile_intervals",
    "bca_intervals",
    "jackknife_estimates",
    "GoodnessOfFitTester",
    "GoodnessOfFitResult",
    "TestNotApplicable",
    "poisson_deviance",
    "pearson_residuals",
]
