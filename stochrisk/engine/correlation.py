"""
Correlation and Regime Analysis Module

Pairwise correlation (Pearson, Spearman, Kendall), correlation matrices with
significance-tiered key relationships, rolling correlations and detection of
correlation regime breaks between pairs of series.
"""

from datetime import datetime
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import structlog

from stochrisk.engine import stats
from stochrisk.engine.errors import InvalidInputError
from stochrisk.engine.models import (
    CorrelationMatrix,
    CorrelationReport,
    KeyRelationship,
    RegimeChange,
    RollingCorrelation,
    TimeSeries,
    severity_tier,
)

logger = structlog.get_logger(__name__)

CORRELATION_METHODS = ('pearson', 'spearman', 'kendall')
DEFAULT_WINDOW = 60
REGIME_CHANGE_THRESHOLD = 0.3
TREND_THRESHOLD = 0.1

SeriesInput = Union[Sequence[TimeSeries], Mapping[str, Sequence[float]]]


# ---------------------------------------------------------------------------
# Pairwise correlation
# ---------------------------------------------------------------------------


def _aligned(x: Sequence[float], y: Sequence[float]) -> Tuple[np.ndarray, np.ndarray]:
    xa = np.asarray(x, dtype=float).ravel()
    ya = np.asarray(y, dtype=float).ravel()
    n = min(xa.size, ya.size)
    return xa[:n], ya[:n]


def _complete_pairs(x: Sequence[float], y: Sequence[float]) -> Tuple[np.ndarray, np.ndarray]:
    # positions where either value is missing or non-finite are dropped pairwise
    xa, ya = _aligned(x, y)
    keep = np.isfinite(xa) & np.isfinite(ya)
    return xa[keep], ya[keep]


def pearson(x: Sequence[float], y: Sequence[float]) -> float:
    """Sample Pearson correlation over the common prefix of x and y.

    Positions where either value is NaN are skipped. Returns 0 for fewer
    than 3 complete points or a constant input.
    """
    xa, ya = _complete_pairs(x, y)
    n = xa.size
    if n < 3:
        return 0.0
    sx = stats.std(xa)
    sy = stats.std(ya)
    if sx == 0 or sy == 0:
        return 0.0
    r = float(np.sum((xa - xa.mean()) * (ya - ya.mean()))) / ((n - 1) * sx * sy)
    return float(np.clip(r, -1.0, 1.0))


def spearman(x: Sequence[float], y: Sequence[float]) -> float:
    """Pearson correlation of the stable ascending ranks."""
    xa, ya = _complete_pairs(x, y)
    if xa.size < 3:
        return 0.0
    return pearson(stats.rank(xa), stats.rank(ya))


def kendall_tau(x: Sequence[float], y: Sequence[float]) -> float:
    """Kendall's tau-a: (concordant - discordant) / C(n, 2).

    Tied pairs count as neither concordant nor discordant.
    """
    xa, ya = _complete_pairs(x, y)
    n = xa.size
    if n < 3:
        return 0.0
    dx = np.sign(xa[:, None] - xa[None, :])
    dy = np.sign(ya[:, None] - ya[None, :])
    net = float(np.triu(dx * dy, k=1).sum())
    return net / (n * (n - 1) / 2)


_METHODS = {
    'pearson': pearson,
    'spearman': spearman,
    'kendall': kendall_tau,
}


def correlation(x: Sequence[float], y: Sequence[float], method: str = 'pearson') -> float:
    """Correlation of two series by the named method.

    Raises:
        InvalidInputError: If ``method`` is not pearson, spearman or kendall
    """
    if method not in _METHODS:
        raise InvalidInputError(f"Unknown correlation method: {method!r}")
    return _METHODS[method](x, y)


def _is_degenerate(x: Sequence[float], y: Sequence[float]) -> bool:
    xa, ya = _complete_pairs(x, y)
    return xa.size < 3 or stats.std(xa) == 0 or stats.std(ya) == 0


def _to_mapping(series: SeriesInput) -> Tuple[Dict[str, np.ndarray], Dict[str, Tuple[datetime, ...]]]:
    if isinstance(series, Mapping):
        values = {str(k): np.asarray(v, dtype=float).ravel() for k, v in series.items()}
        return values, {}
    values = {}
    dates = {}
    for ts in series:
        values[ts.name] = ts.as_array()
        dates[ts.name] = ts.timestamps
    return values, dates


# ---------------------------------------------------------------------------
# Matrix and relationships
# ---------------------------------------------------------------------------


def correlation_matrix(series: SeriesInput, method: str = 'pearson') -> CorrelationMatrix:
    """Build the symmetric correlation matrix over all series.

    Args:
        series: TimeSeries list or name -> values mapping (order preserved)
        method: pearson, spearman or kendall

    Returns:
        CorrelationMatrix with exact unit diagonal; pairs whose correlation
        fell back to 0 on degenerate input are listed in ``degenerate_pairs``
    """
    if method not in _METHODS:
        raise InvalidInputError(f"Unknown correlation method: {method!r}")

    values, _ = _to_mapping(series)
    names = list(values)
    n = len(names)
    matrix = np.eye(n)
    degenerate = []

    for i in range(n):
        for j in range(i + 1, n):
            a, b = values[names[i]], values[names[j]]
            c = _METHODS[method](a, b)
            matrix[i, j] = c
            matrix[j, i] = c
            if _is_degenerate(a, b):
                degenerate.append((names[i], names[j]))

    if degenerate:
        logger.warning(
            "correlation_matrix: degenerate pairs set to 0",
            pairs=degenerate,
        )

    upper = matrix[np.triu_indices(n, k=1)]
    logger.info(
        "correlation_matrix: correlation computed",
        method=method,
        num_variables=n,
        avg_correlation=float(upper.mean()) if upper.size else 0.0,
    )

    return CorrelationMatrix(
        variables=tuple(names),
        values=tuple(tuple(float(v) for v in row) for row in matrix),
        method=method,
        degenerate_pairs=tuple(degenerate),
    )


def _strength(abs_corr: float) -> str:
    if abs_corr >= 0.8:
        return 'very_strong'
    if abs_corr >= 0.6:
        return 'strong'
    if abs_corr >= 0.4:
        return 'moderate'
    return 'weak'


def correlation_p_value(r: float, n_obs: int) -> float:
    """Two-sided p-value of t = r * sqrt((n-2)/(1-r^2)) under a normal reference."""
    denom = 1 - r * r
    if denom <= 0:
        return 0.0
    t_stat = r * np.sqrt(max(n_obs - 2, 0) / denom)
    return float(2 * (1 - stats.normal_cdf(abs(t_stat))))


def key_relationships(matrix: CorrelationMatrix, series: SeriesInput) -> List[KeyRelationship]:
    """Classify every off-diagonal pair by strength, sorted by |correlation| descending."""
    values, _ = _to_mapping(series)
    names = matrix.variables
    out = []
    for i in range(len(names)):
        for j in range(i + 1, len(names)):
            r = matrix.values[i][j]
            n_obs = _complete_pairs(values[names[i]], values[names[j]])[0].size
            out.append(
                KeyRelationship(
                    variable_a=names[i],
                    variable_b=names[j],
                    correlation=r,
                    strength=_strength(abs(r)),
                    direction='positive' if r >= 0 else 'negative',
                    significance=correlation_p_value(r, n_obs),
                )
            )
    out.sort(key=lambda rel: abs(rel.correlation), reverse=True)
    return out


# ---------------------------------------------------------------------------
# Rolling correlation and regimes
# ---------------------------------------------------------------------------


def rolling_correlation(
    a: Sequence[float],
    b: Sequence[float],
    window: int = DEFAULT_WINDOW,
    dates: Optional[Sequence[datetime]] = None,
    pair: Tuple[str, str] = ('a', 'b'),
) -> RollingCorrelation:
    """Fixed-window Pearson correlation walked across two series.

    The trend compares the mean of the first and second halves of the
    rolling values (more than 10 required, threshold +/-0.1).
    """
    xa, ya = _aligned(a, b)
    n = xa.size
    values = []
    out_dates = []
    for end in range(window, n + 1):
        values.append(pearson(xa[end - window:end], ya[end - window:end]))
        if dates is not None and end - 1 < len(dates):
            out_dates.append(dates[end - 1])

    trend = 'stable'
    if len(values) > 10:
        half = len(values) // 2
        diff = stats.mean(values[-half:]) - stats.mean(values[:half])
        if diff > TREND_THRESHOLD:
            trend = 'increasing'
        elif diff < -TREND_THRESHOLD:
            trend = 'decreasing'

    return RollingCorrelation(
        variable_pair=pair,
        dates=tuple(out_dates),
        values=tuple(values),
        current=values[-1] if values else 0.0,
        trend=trend,
    )


def detect_regime_changes(
    a: Sequence[float],
    b: Sequence[float],
    window: int = DEFAULT_WINDOW,
    dates: Optional[Sequence[datetime]] = None,
    pair: Tuple[str, str] = ('a', 'b'),
    threshold: float = REGIME_CHANGE_THRESHOLD,
) -> List[RegimeChange]:
    """Find correlation breaks between adjacent equal-length windows.

    Requires at least ``3 * window`` aligned points. After a break the scan
    jumps past the following window so reports do not overlap.
    """
    xa, ya = _aligned(a, b)
    n = xa.size
    changes: List[RegimeChange] = []
    if n < window * 3:
        return changes

    mid = window
    while mid <= n - window:
        before = pearson(xa[mid - window:mid], ya[mid - window:mid])
        after = pearson(xa[mid:mid + window], ya[mid:mid + window])
        delta = after - before
        if abs(delta) > threshold:
            changes.append(
                RegimeChange(
                    variable_pair=pair,
                    index=mid,
                    date=dates[mid] if dates is not None and mid < len(dates) else None,
                    correlation_before=before,
                    correlation_after=after,
                    change_magnitude=delta,
                    severity=severity_tier(delta),
                )
            )
            mid += window
        mid += 1

    return changes


def analyze_correlations(
    series: SeriesInput,
    method: str = 'pearson',
    window: int = DEFAULT_WINDOW,
    detect_regimes: bool = True,
) -> CorrelationReport:
    """Full correlation analysis over a panel of series.

    Args:
        series: TimeSeries list or name -> values mapping
        method: Correlation method for the matrix
        window: Rolling / regime window length
        detect_regimes: Whether to scan every pair for regime breaks

    Returns:
        CorrelationReport with matrix, key relationships, rolling
        correlations per pair and regime changes sorted by |change|
    """
    matrix = correlation_matrix(series, method=method)
    relationships = key_relationships(matrix, series)
    values, dates = _to_mapping(series)
    names = list(values)

    rolling = []
    regimes: List[RegimeChange] = []
    for i in range(len(names)):
        for j in range(i + 1, len(names)):
            pair = (names[i], names[j])
            pair_dates = dates.get(names[i])
            rolling.append(rolling_correlation(values[names[i]], values[names[j]], window, pair_dates, pair))
            if detect_regimes:
                regimes.extend(
                    detect_regime_changes(values[names[i]], values[names[j]], window, pair_dates, pair)
                )

    regimes.sort(key=lambda rc: abs(rc.change_magnitude), reverse=True)

    logger.info(
        "analyze_correlations: analysis complete",
        num_variables=len(names),
        method=method,
        num_strong=sum(1 for r in relationships if r.strength in ('strong', 'very_strong')),
        num_regime_changes=len(regimes),
    )

    return CorrelationReport(
        matrix=matrix,
        key_relationships=tuple(relationships),
        rolling_correlations=tuple(rolling),
        regime_changes=tuple(regimes),
    )
