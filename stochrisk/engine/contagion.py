"""
Contagion Detection Module

Detects high-volatility crisis windows on a proxy series, tests pairwise
correlation shifts between pre-crisis and crisis windows (Fisher z), groups
significant jumps into contagion events and summarises the cross-series
network: lag-1 spillover, degree centrality, correlation clusters and
systemic risk contribution.
"""

from datetime import timedelta
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import structlog

from stochrisk.engine import stats
from stochrisk.engine.correlation import pearson
from stochrisk.engine.models import (
    ContagionEvent,
    ContagionReport,
    CorrelationChange,
    CrisisPeriod,
    NetworkAnalysis,
    NodeScore,
    TimeSeries,
    severity_tier,
)

logger = structlog.get_logger(__name__)

VOL_WINDOW = 20
ANNUALIZATION = 252
VOL_THRESHOLD_STD = 2.0
MAX_CRISIS_PERIODS = 5
MIN_WINDOW_POINTS = 10
Z_CRITICAL = 1.96
CONTAGION_JUMP = 0.2
MIN_AFFECTED = 2
CENTRALITY_THRESHOLD = 0.5
CLUSTER_THRESHOLD = 0.7
FISHER_CLIP = 0.999999

SEVERITY_ORDER = {'critical': 4, 'high': 3, 'medium': 2, 'low': 1}


def _returns_with_dates(series: TimeSeries):
    values = series.as_array()
    prev, curr = values[:-1], values[1:]
    mask = prev != 0
    returns = (curr[mask] - prev[mask]) / prev[mask]
    dates = [d for d, keep in zip(series.timestamps[1:], mask) if keep]
    return returns, dates


# ---------------------------------------------------------------------------
# Crisis windows
# ---------------------------------------------------------------------------


def detect_crisis_periods(proxy: TimeSeries, window: int = VOL_WINDOW) -> List[CrisisPeriod]:
    """High-volatility runs of a proxy series.

    Rolling ``window``-period volatility (annualised by sqrt(252)) above its
    mean + 2 std marks a crisis; contiguous runs become one period, a run
    still open at the end closes at the last date, and at most 5 periods are
    returned.
    """
    returns, dates = _returns_with_dates(proxy)
    if returns.size < window:
        return []

    vols = np.array([
        stats.std(returns[i - window:i]) * np.sqrt(ANNUALIZATION)
        for i in range(window, returns.size + 1)
    ])
    threshold = stats.mean(vols) + VOL_THRESHOLD_STD * stats.std(vols)

    periods: List[CrisisPeriod] = []
    start = None
    for i, vol in enumerate(vols):
        date = dates[i + window - 1]
        if vol > threshold and start is None:
            start = date
        elif vol <= threshold and start is not None:
            periods.append(CrisisPeriod(name=f'High Volatility Period {len(periods) + 1}', start=start, end=date))
            start = None
    if start is not None:
        periods.append(CrisisPeriod(name=f'High Volatility Period {len(periods) + 1}', start=start, end=dates[-1]))

    return periods[:MAX_CRISIS_PERIODS]


# ---------------------------------------------------------------------------
# Correlation shifts
# ---------------------------------------------------------------------------


def fisher_z_test(r1: float, r2: float, n1: int, n2: int) -> float:
    """Two-sample Fisher z statistic for a difference of correlations."""
    z1 = np.arctanh(np.clip(r1, -FISHER_CLIP, FISHER_CLIP))
    z2 = np.arctanh(np.clip(r2, -FISHER_CLIP, FISHER_CLIP))
    se = np.sqrt(1 / (n1 - 3) + 1 / (n2 - 3))
    return float((z1 - z2) / se)


def _window(series: TimeSeries, start, end) -> np.ndarray:
    return np.array([v for d, v in zip(series.timestamps, series.values) if start <= d <= end], dtype=float)


def correlation_changes(
    series: Sequence[TimeSeries],
    crises: Sequence[CrisisPeriod],
) -> List[CorrelationChange]:
    """Pre-crisis vs crisis correlation for every pair and crisis.

    The pre-crisis window has the same length in days as the crisis and ends
    at the crisis start (both bounds inclusive). Pairs with fewer than 10
    points in either window are skipped. Sorted by |change| descending.
    """
    changes = []
    for crisis in crises:
        days = int(np.ceil((crisis.end - crisis.start).total_seconds() / 86400))
        pre_start = crisis.start - timedelta(days=days)
        for i in range(len(series)):
            for j in range(i + 1, len(series)):
                a, b = series[i], series[j]
                pre_a, pre_b = _window(a, pre_start, crisis.start), _window(b, pre_start, crisis.start)
                cri_a, cri_b = _window(a, crisis.start, crisis.end), _window(b, crisis.start, crisis.end)
                if pre_a.size < MIN_WINDOW_POINTS or cri_a.size < MIN_WINDOW_POINTS:
                    continue
                pre = pearson(pre_a, pre_b)
                during = pearson(cri_a, cri_b)
                z = fisher_z_test(pre, during, pre_a.size, cri_a.size)
                changes.append(
                    CorrelationChange(
                        pair=(a.name, b.name),
                        crisis_name=crisis.name,
                        pre_crisis_corr=pre,
                        crisis_corr=during,
                        change=during - pre,
                        is_significant=abs(z) > Z_CRITICAL,
                        z_stat=z,
                    )
                )
    changes.sort(key=lambda c: abs(c.change), reverse=True)
    return changes


def detect_contagion_events(
    changes: Sequence[CorrelationChange],
    crises: Sequence[CrisisPeriod],
) -> List[ContagionEvent]:
    """Group significant positive jumps (> 0.2) by source variable and crisis.

    A source with at least two such jumps in one crisis is an event dated at
    the crisis start; severity follows the mean jump. Sorted by severity.
    """
    starts = {c.name: c.start for c in crises}
    groups: Dict[Tuple[str, str], List[CorrelationChange]] = {}
    for change in changes:
        if change.is_significant and change.change > CONTAGION_JUMP:
            groups.setdefault((change.pair[0], change.crisis_name), []).append(change)

    events = []
    for (source, crisis_name), group in groups.items():
        if len(group) < MIN_AFFECTED:
            continue
        jump = stats.mean([c.change for c in group])
        events.append(
            ContagionEvent(
                date=starts[crisis_name],
                crisis_name=crisis_name,
                source_variable=source,
                affected_variables=tuple(c.pair[1] for c in group),
                severity=severity_tier(jump),
                correlation_before=stats.mean([c.pre_crisis_corr for c in group]),
                correlation_after=stats.mean([c.crisis_corr for c in group]),
                correlation_jump=jump,
            )
        )
    events.sort(key=lambda e: SEVERITY_ORDER[e.severity], reverse=True)
    return events


# ---------------------------------------------------------------------------
# Network
# ---------------------------------------------------------------------------


def spillover_index(series: Sequence[TimeSeries]) -> float:
    """Mean |lag-1 cross-correlation| of returns over ordered off-diagonal pairs."""
    n = len(series)
    if n < 2:
        return 0.0
    returns = [_returns_with_dates(s)[0] for s in series]
    total = 0.0
    for i in range(n):
        for j in range(n):
            if i == j:
                continue
            x, y = returns[i], returns[j]
            if x.size > 1 and y.size > 1:
                total += abs(pearson(x[1:], y[:-1]))
    return total / (n * (n - 1))


def network_analysis(series: Sequence[TimeSeries]) -> NetworkAnalysis:
    """Centrality, clusters and systemic contribution from return correlations.

    Centrality is the share of other variables with |corr| > 0.5; clusters
    are formed greedily in input order at |corr| > 0.7 (singletons dropped);
    systemic contribution is mean |corr| to all others.
    """
    n = len(series)
    names = [s.name for s in series]
    returns = [_returns_with_dates(s)[0] for s in series]
    corr = np.eye(n)
    for i in range(n):
        for j in range(i + 1, n):
            corr[i, j] = corr[j, i] = pearson(returns[i], returns[j])

    others = max(n - 1, 1)
    off = np.abs(corr) * (1 - np.eye(n))
    centrality = [NodeScore(variable=names[i], score=float(np.sum(off[i] > CENTRALITY_THRESHOLD) / others)) for i in range(n)]
    systemic = [NodeScore(variable=names[i], score=float(off[i].sum() / others)) for i in range(n)]
    centrality.sort(key=lambda s: s.score, reverse=True)
    systemic.sort(key=lambda s: s.score, reverse=True)

    clusters = []
    assigned = set()
    for i in range(n):
        if i in assigned:
            continue
        cluster = [names[i]]
        assigned.add(i)
        for j in range(i + 1, n):
            if j not in assigned and abs(corr[i, j]) > CLUSTER_THRESHOLD:
                cluster.append(names[j])
                assigned.add(j)
        if len(cluster) > 1:
            clusters.append(tuple(cluster))

    return NetworkAnalysis(
        centrality=tuple(centrality),
        clusters=tuple(clusters),
        systemic_risk_contribution=tuple(systemic),
    )


def detect_contagion(
    series: Sequence[TimeSeries],
    crisis_periods: Optional[Sequence[CrisisPeriod]] = None,
) -> ContagionReport:
    """Full contagion analysis over a panel of series.

    Args:
        series: Panel of series; the first is the volatility proxy when
            crisis periods are not supplied
        crisis_periods: Known crisis windows (auto-detected when None)

    Returns:
        ContagionReport; contagion is detected when any event is high or
        critical severity
    """
    if crisis_periods is None:
        crises = detect_crisis_periods(series[0]) if series else []
    else:
        crises = list(crisis_periods)

    changes = correlation_changes(series, crises)
    events = detect_contagion_events(changes, crises)
    spillover = spillover_index(series)
    network = network_analysis(series)
    detected = any(e.severity in ('high', 'critical') for e in events)

    logger.info(
        "detect_contagion: analysis complete",
        num_series=len(series),
        num_crises=len(crises),
        num_changes=len(changes),
        num_events=len(events),
        spillover_index=spillover,
        contagion_detected=detected,
    )

    return ContagionReport(
        contagion_detected=detected,
        crisis_periods=tuple(crises),
        contagion_events=tuple(events),
        correlation_changes=tuple(changes),
        spillover_index=spillover,
        network_analysis=network,
    )
