"""
Backtesting and Calibration Module

Scores dated probabilistic predictions against realised binary outcomes:
hit rate, Brier score, log loss, AUC-ROC, a Hosmer-Lemeshow calibration test
with logit calibration slope, a reliability diagram and a scan for periods
of persistently high prediction error.
"""

import datetime as dt
import math
from typing import Dict, List, Sequence, Tuple

import numpy as np
import structlog

from stochrisk.engine import stats
from stochrisk.engine.errors import InvalidInputError, NotFoundError
from stochrisk.engine.models import (
    BacktestReport,
    CalibrationResult,
    FailurePeriod,
    MatchedRecord,
    OutcomeRecord,
    OverallMetrics,
    PredictionRecord,
    ReliabilityPoint,
)

logger = structlog.get_logger(__name__)

DEFAULT_BINS = 10
PROB_CLAMP = (0.001, 0.999)
HIT_THRESHOLD = 0.5
SLOPE_BOUNDS = (0.1, 3.0)
WELL_CALIBRATED_P = 0.05
WELL_CALIBRATED_SLOPE_TOL = 0.2
FAILURE_MSE = 0.3
MIN_FAILURE_WINDOW = 10


def _day(value) -> dt.date:
    return value.date() if isinstance(value, dt.datetime) else value


def match_records(
    predictions: Sequence[PredictionRecord],
    outcomes: Sequence[OutcomeRecord],
) -> List[MatchedRecord]:
    """Pair predictions with outcomes on (event_id, calendar day).

    Predictions without an outcome are dropped; a later outcome for the same
    key replaces an earlier one.
    """
    realised: Dict[Tuple[str, dt.date], bool] = {}
    for o in outcomes:
        realised[(o.event_id, _day(o.date))] = o.occurred

    matched = []
    for p in predictions:
        key = (p.event_id, _day(p.date))
        if key in realised:
            matched.append(
                MatchedRecord(
                    date=key[1],
                    event_id=p.event_id,
                    prediction=p.predicted_probability,
                    actual=realised[key],
                )
            )
    return matched


def _arrays(records: Sequence[MatchedRecord]) -> Tuple[np.ndarray, np.ndarray]:
    p = np.array([r.prediction for r in records], dtype=float)
    y = np.array([1.0 if r.actual else 0.0 for r in records])
    return p, y


# ---------------------------------------------------------------------------
# Scores
# ---------------------------------------------------------------------------


def hit_rate(predictions: Sequence[float], actuals: Sequence[bool]) -> float:
    """Share of correct calls at the 0.5 threshold (p >= 0.5 predicts the event)."""
    p = np.asarray(predictions, dtype=float)
    y = np.asarray(actuals, dtype=bool)
    if p.size == 0:
        return 0.0
    return float(np.mean((p >= HIT_THRESHOLD) == y))


def brier_score(predictions: Sequence[float], actuals: Sequence[bool]) -> float:
    """Mean squared error between probability and outcome."""
    p = np.asarray(predictions, dtype=float)
    y = np.asarray(actuals, dtype=float)
    if p.size == 0:
        return 0.0
    return float(np.mean((p - y) ** 2))


def log_loss(predictions: Sequence[float], actuals: Sequence[bool]) -> float:
    """Mean negative log-likelihood with probabilities clamped to [0.001, 0.999]."""
    p = np.clip(np.asarray(predictions, dtype=float), *PROB_CLAMP)
    y = np.asarray(actuals, dtype=bool)
    if p.size == 0:
        return 0.0
    return float(-np.mean(np.where(y, np.log(p), np.log(1 - p))))


def auc_roc(predictions: Sequence[float], actuals: Sequence[bool]) -> float:
    """Exact pairwise AUC; ties count 0.5, and 0.5 when either class is empty."""
    p = np.asarray(predictions, dtype=float)
    y = np.asarray(actuals, dtype=bool)
    pos = p[y]
    neg = p[~y]
    if pos.size == 0 or neg.size == 0:
        return 0.5
    diff = pos[:, None] - neg[None, :]
    concordant = float(np.sum(diff > 0)) + 0.5 * float(np.sum(diff == 0))
    return concordant / (pos.size * neg.size)


# ---------------------------------------------------------------------------
# Calibration
# ---------------------------------------------------------------------------


def reliability_diagram(
    predictions: Sequence[float],
    actuals: Sequence[bool],
    n_bins: int = DEFAULT_BINS,
) -> List[ReliabilityPoint]:
    """Observed vs predicted rate per equal-width probability bin.

    Bins are [lo, hi) except the last, which also holds p == 1. Empty bins
    report the midpoint as predicted average and a 0 actual rate.
    """
    if n_bins < 1:
        raise InvalidInputError(f"n_bins must be at least 1, got {n_bins}")
    p = np.asarray(predictions, dtype=float)
    y = np.asarray(actuals, dtype=float)
    width = 1.0 / n_bins

    points = []
    for i in range(n_bins):
        lo = i * width
        hi = (i + 1) * width
        mid = (lo + hi) / 2
        if i == n_bins - 1:
            mask = (p >= lo) & (p <= hi)
        else:
            mask = (p >= lo) & (p < hi)
        count = int(mask.sum())
        predicted_avg = float(p[mask].mean()) if count else mid
        actual_rate = float(y[mask].mean()) if count else 0.0
        points.append(
            ReliabilityPoint(
                bin_midpoint=mid,
                predicted_avg=predicted_avg,
                actual_rate=actual_rate,
                count=count,
                error=actual_rate - predicted_avg,
            )
        )
    return points


def _stirling_gamma(x: float) -> float:
    if x <= 0:
        return 1.0
    return math.sqrt(2 * math.pi / x) * (x / math.e) ** x


def hosmer_lemeshow_p_value(statistic: float, df: int) -> float:
    """Approximate upper-tail chi-square probability used for the HL test.

    Uses exp(-x/2) (x/2)^(df/2 - 1) / Gamma(df/2) with Stirling's Gamma,
    clamped to [0, 1].
    """
    if statistic <= 0:
        return 1.0
    half = statistic / 2
    # log space; large statistics underflow to 0
    log_value = -half + (df / 2 - 1) * math.log(half) - math.log(_stirling_gamma(df / 2))
    return float(min(1.0, max(0.0, math.exp(min(log_value, 0.0)))))


def _logit(p: np.ndarray) -> np.ndarray:
    q = np.clip(p, *PROB_CLAMP)
    return np.log(q / (1 - q))


def calibration_slope(predictions: Sequence[float], actuals: Sequence[bool]) -> Tuple[float, float]:
    """OLS of the outcome on logit(p); slope clamped to [0.1, 3].

    A zero or undefined slope is replaced by 1. The intercept is computed
    from the slope before clamping.
    """
    x = _logit(np.asarray(predictions, dtype=float))
    y = np.asarray(actuals, dtype=float)
    n = x.size
    if n == 0:
        return 1.0, 0.0
    denominator = n * float(np.sum(x * x)) - float(np.sum(x)) ** 2
    slope = 0.0
    if denominator != 0:
        slope = (n * float(np.sum(x * y)) - float(np.sum(x)) * float(np.sum(y))) / denominator
    if not np.isfinite(slope) or slope == 0:
        slope = 1.0
    intercept = (float(np.sum(y)) - slope * float(np.sum(x))) / n
    return float(np.clip(slope, *SLOPE_BOUNDS)), float(intercept)


def calibrate(
    predictions: Sequence[float],
    actuals: Sequence[bool],
    n_bins: int = DEFAULT_BINS,
) -> CalibrationResult:
    """Hosmer-Lemeshow statistic with df = max(1, n_bins - 2) and logit calibration line.

    Well calibrated when the HL p-value exceeds 0.05 and |slope - 1| < 0.2.
    """
    bins = reliability_diagram(predictions, actuals, n_bins)
    hl = 0.0
    for b in bins:
        if b.count == 0:
            continue
        expected = b.predicted_avg * b.count
        observed = b.actual_rate * b.count
        if expected > 0 and b.count - expected > 0:
            hl += (observed - expected) ** 2 / (expected * (1 - expected / b.count))

    p_value = hosmer_lemeshow_p_value(hl, max(1, n_bins - 2))
    slope, intercept = calibration_slope(predictions, actuals)
    return CalibrationResult(
        hosmer_lemeshow_stat=hl,
        p_value=p_value,
        calibration_slope=slope,
        calibration_intercept=intercept,
        is_well_calibrated=bool(p_value > WELL_CALIBRATED_P and abs(slope - 1) < WELL_CALIBRATED_SLOPE_TOL),
    )


def find_failure_periods(records: Sequence[MatchedRecord]) -> List[FailurePeriod]:
    """Windows of time-sorted records whose mean squared error exceeds 0.3.

    Window length is max(10, n // 10); after a flagged window the scan
    resumes at the first record past it.
    """
    ordered = sorted(records, key=lambda r: r.date)
    window = max(MIN_FAILURE_WINDOW, len(ordered) // 10)
    failures = []
    i = 0
    while i <= len(ordered) - window:
        chunk = ordered[i:i + window]
        errors = [(r.prediction - (1.0 if r.actual else 0.0)) ** 2 for r in chunk]
        avg_error = stats.mean(errors)
        if avg_error > FAILURE_MSE:
            failures.append(
                FailurePeriod(
                    start=chunk[0].date,
                    end=chunk[-1].date,
                    n_predictions=window,
                    avg_error=avg_error,
                )
            )
            i += window
        else:
            i += 1
    return failures


def run_backtest(
    predictions: Sequence[PredictionRecord],
    outcomes: Sequence[OutcomeRecord],
    n_bins: int = DEFAULT_BINS,
) -> BacktestReport:
    """Backtest dated predictions against realised outcomes.

    Args:
        predictions: Predicted probabilities keyed by (event_id, date)
        outcomes: Realised outcomes keyed by (event_id, date)
        n_bins: Calibration bin count

    Returns:
        BacktestReport with scores, calibration, reliability bins and
        failure periods

    Raises:
        NotFoundError: If no prediction matches an outcome
    """
    matched = match_records(predictions, outcomes)
    if not matched:
        raise NotFoundError("No matching predictions and outcomes found")

    p, y = _arrays(matched)
    actual = y.astype(bool)
    days = [r.date for r in matched]
    metrics = OverallMetrics(
        hit_rate=hit_rate(p, actual),
        brier_score=brier_score(p, actual),
        log_loss=log_loss(p, actual),
        auc_roc=auc_roc(p, actual),
        n_predictions=len(matched),
        period_start=min(days),
        period_end=max(days),
    )
    calibration = calibrate(p, actual, n_bins)
    failures = find_failure_periods(matched)

    logger.info(
        "run_backtest: backtest complete",
        num_predictions=len(predictions),
        num_matched=len(matched),
        brier_score=metrics.brier_score,
        auc_roc=metrics.auc_roc,
        well_calibrated=calibration.is_well_calibrated,
        num_failure_periods=len(failures),
    )

    return BacktestReport(
        overall_metrics=metrics,
        calibration=calibration,
        reliability_diagram=tuple(reliability_diagram(p, actual, n_bins)),
        failure_periods=tuple(failures),
    )
