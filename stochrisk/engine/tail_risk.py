"""
Tail Risk Analysis Module

Extreme value analysis of a return series: Hill and Pickands tail-index
estimators, a Generalized Pareto fit to threshold exceedances (method of
moments), extreme quantiles under Normal and GPD assumptions and a
Jarque-Bera comparison against the normal distribution.
"""

from typing import List, Sequence

import numpy as np
import structlog
from scipy import stats as sp_stats

from stochrisk.engine import stats
from stochrisk.engine.models import (
    ExtremeQuantile,
    GPDFit,
    TailComparison,
    TailIndex,
    TailRiskReport,
)

logger = structlog.get_logger(__name__)

DEFAULT_THRESHOLD_PERCENTILE = 95.0
DEFAULT_PROBABILITIES = (0.99, 0.999, 0.9999)
MIN_EXCEEDANCES = 10
SHAPE_BOUNDS = (-0.5, 1.0)
MIN_SCALE = 0.001
JARQUE_BERA_CRITICAL = 5.99  # chi-square(2) at 5%
FAT_TAIL_EXCESS_KURTOSIS = 1.0
FAT_TAIL_SHAPE = 0.1


# ---------------------------------------------------------------------------
# Tail index
# ---------------------------------------------------------------------------


def hill_estimator(sorted_desc: np.ndarray, k: int) -> float:
    """Hill estimator over the top ``k`` order statistics.

    Returns 1 when k < 2 or the k-th largest value is not positive.
    """
    if k < 2 or k > sorted_desc.size or sorted_desc[k - 1] <= 0:
        return 1.0
    anchor = sorted_desc[k - 1]
    top = sorted_desc[:k - 1]
    top = top[top > 0]
    return float(np.sum(np.log(top / anchor)) / (k - 1))


def pickands_estimator(sorted_desc: np.ndarray, k: int) -> float:
    """Pickands estimator from the k/4, k/2 and k order statistics.

    Returns 1 when k/4 < 1, when the k-th order statistic is unavailable or
    when tied order statistics make the ratio undefined.
    """
    k2 = k // 2
    k4 = k // 4
    if k4 < 1 or k >= sorted_desc.size:
        return 1.0
    x4, x2, xk = sorted_desc[k4], sorted_desc[k2], sorted_desc[k]
    if x2 == xk or x4 == x2:
        return 1.0
    return float(np.log((x4 - x2) / (x2 - xk)) / np.log(2))


def estimate_tail_index(data: Sequence[float]) -> TailIndex:
    """Hill and Pickands estimates with k = floor(sqrt(n)) and an asymptotic Hill CI."""
    sorted_desc = np.sort(np.asarray(data, dtype=float))[::-1]
    k = int(np.floor(np.sqrt(sorted_desc.size)))
    hill = hill_estimator(sorted_desc, k)
    se = hill / np.sqrt(k) if k > 0 else 0.0
    return TailIndex(
        hill_estimator=hill,
        pickands_estimator=pickands_estimator(sorted_desc, k),
        confidence_interval=(float(hill - 1.96 * se), float(hill + 1.96 * se)),
    )


# ---------------------------------------------------------------------------
# Generalized Pareto
# ---------------------------------------------------------------------------


def fit_gpd(data: Sequence[float], threshold_percentile: float = DEFAULT_THRESHOLD_PERCENTILE) -> GPDFit:
    """Method-of-moments GPD fit to exceedances over a percentile threshold.

    With fewer than 10 exceedances, or exceedances with no spread, the fit
    is degenerate: shape 0 and scale equal to the exceedance std (or 1).

    Args:
        data: Return series
        threshold_percentile: Threshold percentile in [0, 100]

    Returns:
        GPDFit with shape clamped to [-0.5, 1], scale >= 0.001 and a
        Kolmogorov-Smirnov p-value as goodness of fit
    """
    x = np.asarray(data, dtype=float)
    threshold = stats.percentile(x, threshold_percentile)
    exceedances = x[x > threshold] - threshold
    n_exc = int(exceedances.size)
    var_exc = stats.variance(exceedances)

    if n_exc < MIN_EXCEEDANCES or var_exc == 0:
        logger.warning(
            "fit_gpd: too few exceedances, returning degenerate fit",
            n_exceedances=n_exc,
            threshold=threshold,
        )
        return GPDFit(
            shape=0.0,
            scale=stats.std(exceedances) or 1.0,
            threshold=threshold,
            n_exceedances=n_exc,
            goodness_of_fit=1.0,
            degenerate=True,
        )

    mean_exc = stats.mean(exceedances)
    ratio = mean_exc ** 2 / var_exc
    shape = float(np.clip(0.5 * (ratio - 1), *SHAPE_BOUNDS))
    scale = max(MIN_SCALE, 0.5 * mean_exc * (ratio + 1))

    # scipy's genpareto shape c has the opposite sign convention to this MoM xi
    ks = sp_stats.kstest(exceedances, 'genpareto', args=(-shape, 0.0, scale))

    return GPDFit(
        shape=shape,
        scale=float(scale),
        threshold=threshold,
        n_exceedances=n_exc,
        goodness_of_fit=float(ks.pvalue),
    )


def extreme_quantiles(
    data: Sequence[float],
    gpd: GPDFit,
    probabilities: Sequence[float] = DEFAULT_PROBABILITIES,
) -> List[ExtremeQuantile]:
    """Quantiles at each probability under Normal and fitted-GPD assumptions."""
    x = np.asarray(data, dtype=float)
    n = x.size
    mu = stats.mean(x)
    sigma = stats.std(x)
    exceed_rate = gpd.n_exceedances / n if n else 0.0

    out = []
    for p in probabilities:
        q_normal = mu + stats.normal_quantile(p) * sigma
        tail_prob = 1 - p
        if exceed_rate == 0:
            q_gpd = gpd.threshold
        elif abs(gpd.shape) < 0.001:
            q_gpd = gpd.threshold + gpd.scale * np.log(exceed_rate / tail_prob)
        else:
            q_gpd = gpd.threshold + gpd.scale / gpd.shape * ((exceed_rate / tail_prob) ** gpd.shape - 1)
        out.append(
            ExtremeQuantile(
                probability=p,
                quantile_normal=float(q_normal),
                quantile_gpd=float(q_gpd),
                ratio=float(q_gpd / (q_normal or 1.0)),
            )
        )
    return out


# ---------------------------------------------------------------------------
# Normality comparison
# ---------------------------------------------------------------------------


def _heaviness(excess_kurtosis: float) -> str:
    if excess_kurtosis < -0.5:
        return 'light'
    if excess_kurtosis < 1:
        return 'normal'
    if excess_kurtosis < 5:
        return 'heavy'
    return 'very_heavy'


def compare_to_normal(data: Sequence[float]) -> TailComparison:
    """Skewness, kurtosis and Jarque-Bera test against the normal distribution."""
    x = np.asarray(data, dtype=float)
    n = x.size
    skew = stats.skewness(x)
    kurt = stats.kurtosis(x)
    excess = kurt - stats.NORMAL_KURTOSIS
    jb = n / 6 * (skew ** 2 + 0.25 * excess ** 2)
    return TailComparison(
        skewness=skew,
        kurtosis=kurt,
        excess_kurtosis=excess,
        jarque_bera_stat=float(jb),
        is_normal_rejected=bool(jb > JARQUE_BERA_CRITICAL),
        tail_heaviness=_heaviness(excess),
    )


def analyze_tail_risk(
    returns: Sequence[float],
    threshold_percentile: float = DEFAULT_THRESHOLD_PERCENTILE,
    probabilities: Sequence[float] = DEFAULT_PROBABILITIES,
) -> TailRiskReport:
    """Full EVT analysis of a return series.

    Fat tails are reported when excess kurtosis exceeds 1 or the GPD shape
    exceeds 0.1.
    """
    x = np.asarray(returns, dtype=float)
    tail_index = estimate_tail_index(x)
    gpd = fit_gpd(x, threshold_percentile)
    quantiles = extreme_quantiles(x, gpd, probabilities)
    comparison = compare_to_normal(x)
    fat = comparison.excess_kurtosis > FAT_TAIL_EXCESS_KURTOSIS or gpd.shape > FAT_TAIL_SHAPE

    logger.info(
        "analyze_tail_risk: tail analysis complete",
        num_observations=int(x.size),
        has_fat_tails=fat,
        gpd_shape=gpd.shape,
        excess_kurtosis=comparison.excess_kurtosis,
    )

    return TailRiskReport(
        has_fat_tails=bool(fat),
        tail_index=tail_index,
        gpd_fit=gpd,
        extreme_quantiles=tuple(quantiles),
        comparison_to_normal=comparison,
    )
