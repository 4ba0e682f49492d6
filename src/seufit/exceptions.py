"""Exception and warning types for the cross-section analysis.

Only ``ConfigurationError`` aborts an analysis. ``NotApplicable`` is raised
by components whose preconditions do not hold and is always caught by the
caller, which then falls back to a more robust method. The warning
categories describe non-fatal conditions that are recorded on the results.
"""


class SEUFitError(Exception):
    """Base exception for all analysis errors."""


class ConfigurationError(SEUFitError, ValueError):
    """Raised for invalid or insufficient input data or configuration."""


class NotApplicable(SEUFitError):
    """Raised when a method's preconditions are not met for the data at hand."""


class SEUFitWarning(UserWarning):
    """Base category for non-fatal analysis conditions."""


class OptimizationWarning(SEUFitWarning):
    """Optimizer hit its iteration budget, stalled, or ended on a bound."""


class ModelInconsistency(SEUFitWarning):
    """Fitted curve exceeds the upper limit of a zero-event observation."""


class LowSuccessRate(SEUFitWarning):
    """Fewer bootstrap refits succeeded than the configured threshold."""
