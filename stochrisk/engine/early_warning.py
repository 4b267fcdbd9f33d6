"""
Early Warning Module

Scans the outputs of the other analyses (risk metrics, correlation shifts,
anomaly results and event probabilities) against alert thresholds and
folds the alerts into a 0-100 composite risk score.
"""

from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import structlog

from stochrisk.engine.models import (
    AnomalyResult,
    CorrelationChange,
    EarlyWarningReport,
    EventProbability,
    RegimeChange,
    RiskMetrics,
    ThresholdConfig,
    WarningAlert,
)

logger = structlog.get_logger(__name__)

VAR_CRITICAL_MULTIPLIER = 1.5
DRAWDOWN_WARNING = 0.2
DRAWDOWN_CRITICAL = 0.3
CORRELATION_CRITICAL = 0.5
EVENT_CRITICAL = 0.5
EVENT_INCREASE = 0.1

ALERT_POINTS = {'critical': 25, 'warning': 15, 'info': 5}
SEVERITY_ORDER = {'critical': 0, 'warning': 1, 'info': 2}

# Anomaly severities collapse onto the three alert tiers
ANOMALY_ALERT_SEVERITY = {
    'critical': 'critical',
    'high': 'warning',
    'medium': 'warning',
    'low': 'info',
}

RISK_LEVELS = ((75, 'critical'), (50, 'high'), (25, 'medium'))


# ---------------------------------------------------------------------------
# Checks
# ---------------------------------------------------------------------------


def check_risk_metrics(metrics: RiskMetrics, thresholds: ThresholdConfig) -> List[WarningAlert]:
    """VaR(99%) above its threshold and drawdowns above 20%."""
    alerts = []
    if metrics.var_99 > thresholds.var_99_max:
        critical = metrics.var_99 > thresholds.var_99_max * VAR_CRITICAL_MULTIPLIER
        alerts.append(
            WarningAlert(
                severity='critical' if critical else 'warning',
                category='var',
                title='High VaR(99%)',
                message=f"VaR(99%) = {metrics.var_99:.1%} exceeds threshold {thresholds.var_99_max:.1%}",
                data={'var_99': metrics.var_99, 'threshold': thresholds.var_99_max},
            )
        )
    if metrics.max_drawdown > DRAWDOWN_WARNING:
        alerts.append(
            WarningAlert(
                severity='critical' if metrics.max_drawdown > DRAWDOWN_CRITICAL else 'warning',
                category='drawdown',
                title='Significant max drawdown',
                message=f"Max drawdown = {metrics.max_drawdown:.1%}",
                data={'max_drawdown': metrics.max_drawdown},
            )
        )
    return alerts


def _shift(change: Union[CorrelationChange, RegimeChange]) -> Tuple[Tuple[str, str], float]:
    if isinstance(change, RegimeChange):
        return change.variable_pair, change.change_magnitude
    return change.pair, change.change


def check_correlation_changes(
    changes: Sequence[Union[CorrelationChange, RegimeChange]],
    thresholds: ThresholdConfig,
) -> List[WarningAlert]:
    """Correlation shifts whose magnitude exceeds the threshold.

    Accepts crisis correlation changes from the contagion module as well as
    regime changes from the correlation module.
    """
    alerts = []
    for change in changes:
        pair, delta = _shift(change)
        if abs(delta) <= thresholds.correlation_change_max:
            continue
        direction = 'rose' if delta > 0 else 'fell'
        alerts.append(
            WarningAlert(
                severity='critical' if abs(delta) > CORRELATION_CRITICAL else 'warning',
                category='correlation',
                title='Correlation shift',
                message=f"Correlation {pair[0]}/{pair[1]} {direction} by {abs(delta):.2f}",
                data={'variable_pair': list(pair), 'change': delta},
            )
        )
    return alerts


def check_anomalies(anomalies: Mapping[str, AnomalyResult], thresholds: ThresholdConfig) -> List[WarningAlert]:
    """Anomalous observations whose signed deviation exceeds the z-score threshold."""
    alerts = []
    for variable, result in anomalies.items():
        detail = result.details
        if detail is None:
            continue
        z = detail.deviation if detail.direction == 'spike' else -detail.deviation
        if abs(z) <= thresholds.anomaly_z_score_max:
            continue
        alerts.append(
            WarningAlert(
                severity=ANOMALY_ALERT_SEVERITY[detail.severity],
                category='anomaly',
                title=f"Anomaly: {variable}",
                message=f"{variable} = {detail.value:.4f} (expected {detail.expected:.4f}, z-score {z:.2f})",
                data={'variable': variable, 'value': detail.value, 'expected': detail.expected, 'z_score': z},
            )
        )
    return alerts


def check_event_probabilities(events: Sequence[EventProbability], thresholds: ThresholdConfig) -> List[WarningAlert]:
    """High event probabilities, plus an info alert for each jump above 10pp."""
    alerts = []
    for event in events:
        data: Dict[str, Any] = event.model_dump()
        if event.probability > thresholds.event_probability_max:
            alerts.append(
                WarningAlert(
                    severity='critical' if event.probability > EVENT_CRITICAL else 'warning',
                    category='event_probability',
                    title=f"High probability: {event.event_name}",
                    message=(
                        f"P({event.event_name}) = {event.probability:.1%} "
                        f"[{event.ci_lower:.1%}, {event.ci_upper:.1%}]"
                    ),
                    data=data,
                )
            )
        if event.change_from_last > EVENT_INCREASE:
            alerts.append(
                WarningAlert(
                    severity='info',
                    category='event_change',
                    title=f"Rising probability: {event.event_name}",
                    message=f"P({event.event_name}) rose by {event.change_from_last * 100:.1f}pp",
                    data=data,
                )
            )
    return alerts


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


def composite_risk_score(
    alerts: Sequence[WarningAlert],
    risk_metrics: Optional[RiskMetrics] = None,
    events: Sequence[EventProbability] = (),
) -> int:
    """Alert points plus VaR(99%) x 100 plus the top event probability x 50.

    Each critical alert adds 25, warning 15 and info 5. The result is rounded
    half up and clamped to [0, 100].
    """
    score = float(sum(ALERT_POINTS[a.severity] for a in alerts))
    if risk_metrics is not None:
        score += risk_metrics.var_99 * 100
    if events:
        score += max(max(e.probability for e in events), 0.0) * 50
    return int(min(100.0, max(0.0, np.floor(score + 0.5))))


def risk_level(score: float) -> str:
    """Map a composite score onto low / medium / high / critical."""
    for floor, level in RISK_LEVELS:
        if score >= floor:
            return level
    return 'low'


def prioritize_alerts(alerts: Sequence[WarningAlert]) -> List[WarningAlert]:
    """Critical first, then warning, then info; stable within a tier."""
    return sorted(alerts, key=lambda a: SEVERITY_ORDER[a.severity])


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def run_early_warning(
    risk_metrics: Optional[RiskMetrics] = None,
    correlation_changes: Optional[Sequence[Union[CorrelationChange, RegimeChange]]] = None,
    anomalies: Optional[Mapping[str, AnomalyResult]] = None,
    events: Optional[Sequence[Union[EventProbability, Dict[str, Any]]]] = None,
    thresholds: Optional[Union[ThresholdConfig, Dict[str, Any]]] = None,
) -> EarlyWarningReport:
    """Scan risk signals and produce prioritized alerts with a composite score.

    Args:
        risk_metrics: VaR / drawdown metrics, with VaR as a fraction of value
        correlation_changes: Crisis correlation changes or regime changes
        anomalies: Anomaly results keyed by variable name
        events: Event probabilities, as models or mappings
        thresholds: Overrides for the default alert thresholds

    Returns:
        EarlyWarningReport with alerts sorted by severity, a 0-100 risk
        score and its risk level
    """
    if thresholds is None:
        config = ThresholdConfig()
    elif isinstance(thresholds, ThresholdConfig):
        config = thresholds
    else:
        config = ThresholdConfig.model_validate(thresholds)
    event_list = [e if isinstance(e, EventProbability) else EventProbability.model_validate(e) for e in events or ()]

    alerts: List[WarningAlert] = []
    if risk_metrics is not None:
        alerts.extend(check_risk_metrics(risk_metrics, config))
    if correlation_changes:
        alerts.extend(check_correlation_changes(correlation_changes, config))
    if anomalies:
        alerts.extend(check_anomalies(anomalies, config))
    if event_list:
        alerts.extend(check_event_probabilities(event_list, config))

    score = composite_risk_score(alerts, risk_metrics, event_list)
    level = risk_level(score)
    ordered = prioritize_alerts(alerts)

    logger.info(
        "run_early_warning: scan complete",
        risk_score=score,
        risk_level=level,
        num_alerts=len(ordered),
    )

    return EarlyWarningReport(
        risk_score=score,
        risk_level=level,
        alerts=tuple(ordered),
        summary=f"Risk level: {score}/100 ({level}). Alerts: {len(ordered)}.",
    )
