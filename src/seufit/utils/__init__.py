"""Utility modules for the cross-section analysis."""

from seufit.utils.parallel import parallel_map, get_n_workers, chunked
from seufit.utils.stats import (
    chi2_pvalue,
    clopper_pearson_ci,
    clip_probability,
    compute_correlation_matrix,
    relative_matrix_difference,
)

__all__ = [
    "parallel_map",
    "get_n_workers",
    "chunked",
    "chi2_pvalue",
    "clopper_pearson_ci",
    "clip_probability",
    "compute_correlation_matrix",
    "relative_matrix_difference",
]
