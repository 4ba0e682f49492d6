"""
Statistical utilities for cross-section analysis.
"""

import numpy as np
from scipy import stats


def chi2_pvalue(chi2_stat: float, ndof: int) -> float:
    """
    Compute p-value from chi-squared statistic.

    Args:
        chi2_stat: Chi-squared test statistic
        ndof: Number of degrees of freedom

    Returns:
        p-value (probability of observing chi2 >= chi2_stat under null)
    """
    if ndof <= 0:
        return np.nan
    return float(1.0 - stats.chi2.cdf(chi2_stat, ndof))


def clopper_pearson_ci(
    k: int,
    n: int,
    alpha: float = 0.05,
) -> tuple[float, float]:
    """
    Clopper-Pearson exact binomial confidence interval.

    Args:
        k: Number of successes
        n: Number of trials
        alpha: Significance level (default 0.05 for 95% CI)

    Returns:
        (lower, upper) confidence interval bounds
    """
    if n == 0:
        return (0.0, 1.0)

    if k == 0:
        lower = 0.0
    else:
        lower = float(stats.beta.ppf(alpha / 2, k, n - k + 1))

    if k == n:
        upper = 1.0
    else:
        upper = float(stats.beta.ppf(1 - alpha / 2, k + 1, n - k))

    return (lower, upper)


def clip_probability(p, n: int):
    """Keep an empirical fraction from n samples away from exactly 0 or 1."""
    eps = 0.5 / max(n, 1)
    clipped = np.clip(p, eps, 1.0 - eps)
    if np.ndim(clipped) == 0:
        return float(clipped)
    return clipped


def compute_correlation_matrix(
    covariance: np.ndarray,
) -> np.ndarray:
    """
    Convert covariance matrix to correlation matrix.

    Args:
        covariance: Covariance matrix

    Returns:
        Correlation matrix
    """
    std = np.sqrt(np.clip(np.diag(covariance), 0.0, None))
    std_outer = np.outer(std, std)

    # Handle zero variances
    with np.errstate(divide="ignore", invalid="ignore"):
        corr = covariance / std_outer
        corr = np.where(std_outer > 0, corr, 0)

    np.fill_diagonal(corr, 1.0)

    return corr


def relative_matrix_difference(
    cov_a: np.ndarray,
    cov_b: np.ndarray,
    scale: np.ndarray,
) -> float:
    """
    Relative Frobenius difference between two covariance estimates.

    Both matrices are normalized by ``outer(scale, scale)`` first so that
    parameters with very different magnitudes contribute comparably.

    Args:
        cov_a: First covariance matrix
        cov_b: Second covariance matrix
        scale: Per-parameter standard deviations used for normalization

    Returns:
        ||A - B||_F / mean(||A||_F, ||B||_F) of the normalized matrices
    """
    scale = np.asarray(scale, dtype=float)
    norm = np.outer(scale, scale)
    with np.errstate(divide="ignore", invalid="ignore"):
        a = np.where(norm > 0, cov_a / norm, 0.0)
        b = np.where(norm > 0, cov_b / norm, 0.0)

    denom = 0.5 * (np.linalg.norm(a) + np.linalg.norm(b))
    if denom == 0 or not np.isfinite(denom):
        return 0.0
    return float(np.linalg.norm(a - b) / denom)
