"""
Anomaly Detection Module

Flags a new observation against its history with z-score, Tukey IQR
fences, median absolute deviation, a trailing-window z-score or a majority
vote of the first three.
"""

from typing import Sequence

import numpy as np
import structlog

from stochrisk.engine import stats
from stochrisk.engine.errors import InvalidInputError
from stochrisk.engine.models import (
    AnomalyDetail,
    AnomalyResult,
    DetectionScore,
    HistoricalContext,
)

logger = structlog.get_logger(__name__)

DETECTION_METHODS = ('z_score', 'iqr', 'mad', 'rolling_std', 'ensemble')
ENSEMBLE_METHODS = ('z_score', 'iqr', 'mad')

Z_THRESHOLD = 3.0
IQR_MULTIPLIER = 1.5
MAD_SCALE = 0.6745
MAD_THRESHOLD = 3.5
ROLLING_WINDOW = 20
TREND_THRESHOLD = 0.05


def detect_z_score(value: float, history: Sequence[float], sensitivity: float = 1.0) -> DetectionScore:
    """|value - mean| / std against a threshold of 3 / sensitivity."""
    sigma = stats.std(history)
    score = abs(stats.z_score(value, stats.mean(history), sigma)) if sigma > 0 else 0.0
    threshold = Z_THRESHOLD / sensitivity
    return DetectionScore(method='z_score', score=score, threshold=threshold, is_anomaly=score > threshold)


def detect_iqr(value: float, history: Sequence[float], sensitivity: float = 1.0) -> DetectionScore:
    """Tukey fences at 1.5 IQR / sensitivity; score is 1 outside the fences."""
    q1 = stats.percentile(history, 25)
    q3 = stats.percentile(history, 75)
    spread = IQR_MULTIPLIER * (q3 - q1) / sensitivity
    score = 1.0 if value < q1 - spread or value > q3 + spread else 0.0
    return DetectionScore(method='iqr', score=score, threshold=0.0, is_anomaly=score > 0)


def detect_mad(value: float, history: Sequence[float], sensitivity: float = 1.0) -> DetectionScore:
    """Modified z-score 0.6745 |x - median| / MAD against 3.5 / sensitivity."""
    x = np.asarray(history, dtype=float)
    median = stats.percentile(x, 50)
    mad = stats.percentile(np.abs(x - median), 50)
    score = abs(MAD_SCALE * (value - median) / mad) if mad > 0 else 0.0
    threshold = MAD_THRESHOLD / sensitivity
    return DetectionScore(method='mad', score=float(score), threshold=threshold, is_anomaly=score > threshold)


def detect_rolling_std(
    value: float,
    history: Sequence[float],
    sensitivity: float = 1.0,
    window: int = ROLLING_WINDOW,
) -> DetectionScore:
    """z-score against only the trailing ``window`` observations."""
    score = detect_z_score(value, list(history)[-window:], sensitivity)
    return score.model_copy(update={'method': 'rolling_std'})


_DETECTORS = {
    'z_score': detect_z_score,
    'iqr': detect_iqr,
    'mad': detect_mad,
    'rolling_std': detect_rolling_std,
}


def _severity(deviation: float) -> str:
    if deviation > 5:
        return 'critical'
    if deviation > 4:
        return 'high'
    if deviation > 3:
        return 'medium'
    return 'low'


def historical_context(history: Sequence[float]) -> HistoricalContext:
    """Summary of the history with a trend from the first vs last half means.

    The trend is increasing/decreasing when the relative change exceeds 5%.
    """
    x = np.asarray(history, dtype=float)
    half = x.size // 2
    first = stats.mean(x[:half])
    second = stats.mean(x[x.size - half:]) if half else 0.0
    diff = (second - first) / (abs(first) + 0.0001)
    trend = 'stable'
    if diff > TREND_THRESHOLD:
        trend = 'increasing'
    elif diff < -TREND_THRESHOLD:
        trend = 'decreasing'

    return HistoricalContext(
        mean=stats.mean(x),
        std=stats.std(x),
        min=float(x.min()) if x.size else 0.0,
        max=float(x.max()) if x.size else 0.0,
        percentile_5=stats.percentile(x, 5),
        percentile_95=stats.percentile(x, 95),
        trend=trend,
    )


def detect_anomaly(
    current_value: float,
    history: Sequence[float],
    method: str = 'ensemble',
    sensitivity: float = 1.0,
) -> AnomalyResult:
    """Decide whether ``current_value`` is anomalous given ``history``.

    Args:
        current_value: New observation
        history: Past observations, oldest first
        method: One of DETECTION_METHODS; ensemble is a majority vote of
            z_score, iqr and mad
        sensitivity: Divides every threshold; higher flags more

    Returns:
        AnomalyResult with per-method scores, details when anomalous
        (deviation in historical standard deviations) and historical context

    Raises:
        InvalidInputError: On an unknown method or non-positive sensitivity
    """
    if method not in DETECTION_METHODS:
        raise InvalidInputError(f"Unknown detection method: {method!r}")
    if sensitivity <= 0:
        raise InvalidInputError(f"sensitivity must be positive, got {sensitivity}")

    context = historical_context(history)
    methods = ENSEMBLE_METHODS if method == 'ensemble' else (method,)
    scores = [_DETECTORS[m](current_value, history, sensitivity) for m in methods]

    votes = sum(1 for s in scores if s.is_anomaly)
    if method == 'ensemble':
        is_anomaly = votes >= int(np.ceil(len(scores) / 2))
    else:
        is_anomaly = scores[0].is_anomaly

    details = None
    if is_anomaly:
        signed = (current_value - context.mean) / context.std if context.std > 0 else 0.0
        details = AnomalyDetail(
            index=len(history),
            value=current_value,
            expected=context.mean,
            deviation=abs(signed),
            direction='spike' if signed > 0 else 'dip',
            severity=_severity(abs(signed)),
        )

    logger.info(
        "detect_anomaly: value scored",
        method=method,
        value=current_value,
        history_length=len(history),
        is_anomaly=is_anomaly,
    )

    return AnomalyResult(
        is_anomaly=is_anomaly,
        details=details,
        detection_scores=tuple(scores),
        historical_context=context,
    )
