"""
Statistical calibration of the analysis.

This module provides tools for:
- Interval coverage on synthetic experiments with known truth
- Goodness-of-fit acceptance under the assumed model
"""

from seufit.validation.calibration import (
    CalibrationReport,
    simulate_counts,
    run_coverage_study,
    run_gof_calibration,
)

__all__ = [
    "CalibrationReport",
    "simulate_counts",
    "run_coverage_study",
    "run_gof_calibration",
]
