"""
Statistics Primitives

Pure functions over finite sequences of reals shared by every analytics
module. All functions are total: inputs too short to define a statistic, or
with zero variance, return a documented sentinel instead of raising.
"""

from typing import Sequence, Tuple

import numpy as np
from scipy import stats

from stochrisk.engine.models import SeriesStats

# Sentinel for kurtosis on under-determined input: the normal value, so that
# excess kurtosis reads as 0.
NORMAL_KURTOSIS = 3.0


def _as_array(data: Sequence[float]) -> np.ndarray:
    return np.asarray(data, dtype=float).ravel()


def mean(data: Sequence[float]) -> float:
    """Arithmetic mean; 0 for an empty sequence."""
    x = _as_array(data)
    if x.size == 0:
        return 0.0
    return float(x.mean())


def variance(data: Sequence[float]) -> float:
    """Sample variance (divisor n-1); 0 for n < 2."""
    x = _as_array(data)
    if x.size < 2:
        return 0.0
    return float(x.var(ddof=1))


def std(data: Sequence[float]) -> float:
    """Sample standard deviation (divisor n-1); 0 for n < 2."""
    return float(np.sqrt(variance(data)))


def percentile(data: Sequence[float], p: float) -> float:
    """Percentile with linear interpolation between order statistics (R-7).

    Args:
        data: Observations
        p: Percentile in [0, 100]

    Returns:
        Interpolated order statistic, 0 for an empty sequence
    """
    x = _as_array(data)
    if x.size == 0:
        return 0.0
    return float(np.percentile(x, p))


def rank(data: Sequence[float]) -> np.ndarray:
    """Ascending ranks 1..n; ties are broken by original position (stable sort)."""
    x = _as_array(data)
    order = np.argsort(x, kind="stable")
    ranks = np.empty(x.size, dtype=float)
    ranks[order] = np.arange(1, x.size + 1, dtype=float)
    return ranks


def skewness(data: Sequence[float]) -> float:
    """Third standardised moment, averaged over n.

    Observations are standardised with the sample standard deviation.
    Returns 0 for n < 3 or zero variance.
    """
    x = _as_array(data)
    if x.size < 3:
        return 0.0
    s = std(x)
    if s == 0:
        return 0.0
    z = (x - x.mean()) / s
    return float(np.mean(z ** 3))


def kurtosis(data: Sequence[float]) -> float:
    """Fourth standardised moment (raw, not excess), averaged over n.

    Returns NORMAL_KURTOSIS for n < 4 or zero variance. Excess kurtosis is
    ``kurtosis(data) - 3``.
    """
    x = _as_array(data)
    if x.size < 4:
        return NORMAL_KURTOSIS
    s = std(x)
    if s == 0:
        return NORMAL_KURTOSIS
    z = (x - x.mean()) / s
    return float(np.mean(z ** 4))


def autocorrelation(data: Sequence[float], lag: int = 1) -> float:
    """Biased sample autocorrelation at ``lag``.

    The denominator is the mean-centred sum of squares over the full series.
    Returns 0 when n <= lag or the series is constant.
    """
    x = _as_array(data)
    n = x.size
    if n <= lag:
        return 0.0
    centred = x - x.mean()
    denominator = float(np.sum(centred ** 2))
    if denominator == 0:
        return 0.0
    numerator = float(np.sum(centred[: n - lag] * centred[lag:]))
    return numerator / denominator


def z_score(value: float, mu: float, sigma: float) -> float:
    """Standard score of ``value``; 0 when sigma is 0."""
    if sigma == 0:
        return 0.0
    return (value - mu) / sigma


def normal_cdf(x: float) -> float:
    """Standard normal cumulative distribution function."""
    return float(stats.norm.cdf(x))


def normal_quantile(p: float) -> float:
    """Standard normal quantile (inverse CDF) for p in (0, 1)."""
    return float(stats.norm.ppf(p))


def normal_log_likelihood(data: Sequence[float], mu: float, sigma: float) -> float:
    """Gaussian log-likelihood of ``data`` under N(mu, sigma^2).

    Returns -inf when sigma is not positive.
    """
    if sigma <= 0:
        return float("-inf")
    x = _as_array(data)
    n = x.size
    ll = -n / 2 * np.log(2 * np.pi) - n * np.log(sigma)
    ll -= 0.5 * float(np.sum(((x - mu) / sigma) ** 2))
    return float(ll)


def information_criteria(log_likelihood: float, k: int, n: int) -> Tuple[float, float]:
    """AIC and BIC for a fit with ``k`` parameters on ``n`` observations.

    AIC = 2k - 2LL, BIC = k ln(n) - 2LL. A -inf log-likelihood yields +inf
    for both.
    """
    if np.isneginf(log_likelihood):
        return float("inf"), float("inf")
    aic = 2 * k - 2 * log_likelihood
    bic = k * np.log(max(n, 1)) - 2 * log_likelihood
    return float(aic), float(bic)


def log_returns(values: Sequence[float]) -> np.ndarray:
    """Log returns over consecutive strictly positive observations."""
    x = _as_array(values)
    if x.size < 2:
        return np.array([], dtype=float)
    prev, curr = x[:-1], x[1:]
    mask = (prev > 0) & (curr > 0)
    return np.log(curr[mask] / prev[mask])


def simple_returns(values: Sequence[float]) -> np.ndarray:
    """Simple returns, skipping steps whose previous value is 0."""
    x = _as_array(values)
    if x.size < 2:
        return np.array([], dtype=float)
    prev, curr = x[:-1], x[1:]
    mask = prev != 0
    return (curr[mask] - prev[mask]) / prev[mask]


def ols_line(x: Sequence[float], y: Sequence[float]) -> Tuple[float, float]:
    """Ordinary least squares slope and intercept of y on x.

    Returns (0, mean(y)) when x has no variation.
    """
    xa = _as_array(x)
    ya = _as_array(y)
    n = xa.size
    if n == 0:
        return 0.0, 0.0
    denominator = n * float(np.sum(xa * xa)) - float(np.sum(xa)) ** 2
    if denominator == 0:
        return 0.0, float(ya.mean())
    slope = (n * float(np.sum(xa * ya)) - float(np.sum(xa)) * float(np.sum(ya))) / denominator
    intercept = (float(np.sum(ya)) - slope * float(np.sum(xa))) / n
    return slope, intercept


def series_stats(values: Sequence[float]) -> SeriesStats:
    """Summary statistics of the finite values of a series.

    ``degenerate`` is set when fewer than two finite values remain or the
    standard deviation is 0, so a 0 skewness is not read as symmetry.
    """
    x = _as_array(values)
    x = x[np.isfinite(x)]
    if x.size == 0:
        return SeriesStats(mean=0.0, std=0.0, min=0.0, max=0.0, skewness=0.0, degenerate=True)
    s = std(x)
    return SeriesStats(
        mean=mean(x),
        std=s,
        min=float(x.min()),
        max=float(x.max()),
        skewness=skewness(x),
        degenerate=bool(x.size < 2 or s == 0),
    )
