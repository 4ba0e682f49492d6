"""
Weibull cross-section analysis for single-event-upset test data.

This package fits the 4-parameter Weibull cross-section model to
accelerator (LET, count, fluence) measurements under Poisson counting
statistics, including:
- Bounded maximum-likelihood fitting with data-driven bounds
- Zero-event observations treated as censored points with upper limits
- Hessian covariance and parametric Poisson bootstrap uncertainties
- Percentile or bias-corrected accelerated confidence intervals
- Poisson deviance goodness-of-fit testing
"""

__version__ = "1.0.0"
__author__ = "Research Software Engineering"

from seufit.config import Config, get_config, set_config
from seufit.exceptions import (
    SEUFitError,
    ConfigurationError,
    NotApplicable,
    OptimizationWarning,
    ModelInconsistency,
    LowSuccessRate,
)
from seufit.observations import Observation, ObservationSet
from seufit.models.weibull import WeibullParameters, cross_section
from seufit.models.fit import MLEFitter, FitResult
from seufit.models.bootstrap import BootstrapEngine
from seufit.analysis.cross_section import CrossSectionAnalysis, AnalysisResult, run_analysis

__all__ = [
    "__version__",
    "Config",
    "get_config",
    "set_config",
    "SEUFitError",
    "ConfigurationError",
    "NotApplicable",
    "OptimizationWarning",
    "ModelInconsistency",
    "LowSuccessRate",
    "Observation",
    "ObservationSet",
    "WeibullParameters",
    "cross_section",
    "MLEFitter",
    "FitResult",
    "BootstrapEngine",
    "CrossSectionAnalysis",
    "AnalysisResult",
    "run_analysis",
]
