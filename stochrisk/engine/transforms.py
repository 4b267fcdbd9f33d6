"""
Time-Series Transform Pipeline

Applies an ordered list of named operations to a TimeSeries. Each step may
shorten the series (differencing, rolling windows, resampling); the paired
timestamps are truncated identically and every step appends an entry to the
transformation log with the parameters actually used.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Sequence, Union

import numpy as np
import pandas as pd
import structlog

from stochrisk.engine import stats
from stochrisk.engine.errors import InvalidInputError
from stochrisk.engine.models import (
    TimeSeries,
    TransformLogEntry,
    TransformOperation,
    TransformResult,
    floats,
)

logger = structlog.get_logger(__name__)

DEFAULT_WINDOW = 20
DEFAULT_SPAN = 20
DEFAULT_WINSOR_PERCENTILE = 0.05
LOG_FLOOR = 1e-4

# pandas offset aliases for calendar resampling (pandas >= 2.2 names)
RESAMPLE_RULES = {
    'daily': 'D',
    'weekly': 'W',
    'monthly': 'ME',
    'quarterly': 'QE',
    'yearly': 'YE',
}

RESAMPLE_AGGREGATIONS = ('last', 'mean', 'sum', 'first')

# Default seasonal period per frequency; a period of 1 leaves the series as is
SEASONAL_PERIODS = {
    'daily': 7,
    'weekly': 52,
    'monthly': 12,
    'quarterly': 4,
    'yearly': 1,
}


class _Step(NamedTuple):
    values: np.ndarray
    dates: List[datetime]
    params: Dict[str, Any]
    affected: int
    notes: Optional[str] = None
    frequency: Optional[str] = None


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


def _normalize(values, dates, params, frequency) -> _Step:
    finite = values[np.isfinite(values)]
    if finite.size == 0:
        return _Step(values, dates, {'min': 0.0, 'max': 0.0}, 0, 'no finite values')
    lo = float(finite.min())
    hi = float(finite.max())
    span = (hi - lo) or 1.0
    return _Step((values - lo) / span, dates, {'min': lo, 'max': hi}, int(values.size))


def _standardize(values, dates, params, frequency) -> _Step:
    finite = values[np.isfinite(values)]
    mu = stats.mean(finite)
    sigma = stats.std(finite) or 1.0
    return _Step((values - mu) / sigma, dates, {'mean': mu, 'std': sigma}, int(finite.size))


def _difference(values, dates, params, frequency) -> _Step:
    order = int(params.get('order') or 1)
    current = values
    current_dates = list(dates)
    for _ in range(order):
        current = np.diff(current)
        current_dates = current_dates[1:]
    return _Step(current, current_dates, {'order': order}, max(0, int(values.size) - order))


def _log_transform(values, dates, params, frequency) -> _Step:
    offset = float(params.get('offset') or 0.0)
    transformed = np.log(np.maximum(LOG_FLOOR, values + offset))
    return _Step(transformed, dates, {'offset': offset}, int(values.size))


def _rolling(values, dates, window, func) -> _Step:
    out = [func(values[i - window + 1:i + 1]) for i in range(window - 1, values.size)]
    return _Step(np.asarray(out, dtype=float), list(dates[window - 1:]), {'window': window}, len(out))


def _rolling_mean(values, dates, params, frequency) -> _Step:
    window = int(params.get('window') or DEFAULT_WINDOW)
    return _rolling(values, dates, window, stats.mean)


def _rolling_std(values, dates, params, frequency) -> _Step:
    window = int(params.get('window') or DEFAULT_WINDOW)
    return _rolling(values, dates, window, stats.std)


def _ewma(values, dates, params, frequency) -> _Step:
    span = float(params.get('span') or DEFAULT_SPAN)
    alpha = 2.0 / (span + 1.0)
    if values.size == 0:
        return _Step(values, dates, {'span': span, 'alpha': alpha}, 0)
    out = np.empty_like(values)
    out[0] = values[0]
    for i in range(1, values.size):
        out[i] = alpha * values[i] + (1 - alpha) * out[i - 1]
    return _Step(out, dates, {'span': span, 'alpha': alpha}, int(values.size))


def _detrend(values, dates, params, frequency) -> _Step:
    index = np.arange(values.size, dtype=float)
    finite = np.isfinite(values)
    slope, intercept = stats.ols_line(index[finite], values[finite])
    detrended = values - (slope * index + intercept)
    return _Step(detrended, dates, {'slope': slope, 'intercept': intercept}, int(finite.sum()))


def _winsorize(values, dates, params, frequency) -> _Step:
    p = float(params.get('percentile') or DEFAULT_WINSOR_PERCENTILE)
    # bounds come from the observed values; missing positions pass through
    ordered = np.sort(values[np.isfinite(values)])
    n = ordered.size
    if n == 0:
        return _Step(values, dates, {'percentile': p}, 0)
    lower = float(ordered[int(np.floor(n * p))])
    upper = float(ordered[min(n - 1, int(np.floor(n * (1 - p))))])
    affected = int(np.sum(values < lower) + np.sum(values > upper))
    clamped = np.clip(values, lower, upper)
    return _Step(clamped, dates, {'percentile': p, 'lower_bound': lower, 'upper_bound': upper}, affected)


def _clip(values, dates, params, frequency) -> _Step:
    lo = params.get('min')
    hi = params.get('max')
    lo = float('-inf') if lo is None else float(lo)
    hi = float('inf') if hi is None else float(hi)
    affected = int(np.sum((values < lo) | (values > hi)))
    return _Step(np.clip(values, lo, hi), dates, {'min': lo, 'max': hi}, affected)


def _interpolate(values, dates, params, frequency) -> _Step:
    method = params.get('method') or 'linear'
    out = values.copy()
    valid = np.flatnonzero(np.isfinite(values))
    missing = np.flatnonzero(~np.isfinite(values))
    if valid.size == 0 or missing.size == 0:
        return _Step(out, dates, {'method': method}, 0)

    # np.interp holds the edge values constant outside the valid range,
    # which is carry-back before the first and carry-forward after the last
    out[missing] = np.interp(missing, valid, values[valid])
    return _Step(out, dates, {'method': method}, int(missing.size))


def _resample(values, dates, params, frequency) -> _Step:
    target = params.get('frequency') or params.get('target')
    if target not in RESAMPLE_RULES:
        raise InvalidInputError(f"Unknown resample frequency: {target!r}")
    how = params.get('how') or 'last'
    if how not in RESAMPLE_AGGREGATIONS:
        raise InvalidInputError(f"Unknown resample aggregation: {how!r}")
    if values.size == 0:
        return _Step(values, dates, {'frequency': target, 'how': how}, 0, frequency=target)

    series = pd.Series(values, index=pd.DatetimeIndex(dates))
    resampled = series.resample(RESAMPLE_RULES[target]).agg(how)
    if how == 'sum':
        # sum of an empty bin is 0, not NaN; drop bins with no observations
        counts = series.resample(RESAMPLE_RULES[target]).count()
        resampled = resampled[counts > 0]
    resampled = resampled.dropna()
    new_dates = [ts.to_pydatetime() for ts in resampled.index]
    return _Step(
        resampled.to_numpy(dtype=float),
        new_dates,
        {'frequency': target, 'how': how},
        int(resampled.size),
        frequency=target,
    )


def _seasonality_adjust(values, dates, params, frequency) -> _Step:
    period = int(params.get('period') or SEASONAL_PERIODS.get(frequency, 1))
    if period <= 1:
        return _Step(values, dates, {'period': period}, 0, 'period of 1 has no seasonal component')
    if values.size < 2 * period:
        return _Step(values, dates, {'period': period}, 0, 'fewer than two full seasonal cycles')

    phase = np.arange(values.size) % period
    overall = float(np.nanmean(values))
    adjusted = values.copy()
    factors = []
    for k in range(period):
        seasonal = float(np.nanmean(values[phase == k])) - overall
        adjusted[phase == k] -= seasonal
        factors.append(seasonal)
    return _Step(adjusted, dates, {'period': period, 'seasonal_factors': factors}, int(values.size))


OPERATIONS: Dict[str, Callable[..., _Step]] = {
    'resample': _resample,
    'interpolate': _interpolate,
    'normalize': _normalize,
    'standardize': _standardize,
    'difference': _difference,
    'log_transform': _log_transform,
    'rolling_mean': _rolling_mean,
    'rolling_std': _rolling_std,
    'ewma': _ewma,
    'detrend': _detrend,
    'seasonality_adjust': _seasonality_adjust,
    'winsorize': _winsorize,
    'clip': _clip,
}

OPERATION_TYPES = tuple(OPERATIONS)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


def apply_operations(
    series: TimeSeries,
    operations: Sequence[Union[TransformOperation, Dict[str, Any]]],
) -> TransformResult:
    """Apply transform operations to a series in the given order.

    Args:
        series: Input series
        operations: Ordered operations, as TransformOperation or
            ``{'type': ..., 'params': {...}}`` mappings

    Returns:
        TransformResult with the transformed series, one log entry per
        operation and summary statistics before and after

    Raises:
        InvalidInputError: If any operation type is unknown
    """
    ops = [op if isinstance(op, TransformOperation) else TransformOperation.model_validate(op) for op in operations]
    for op in ops:
        if op.type not in OPERATIONS:
            raise InvalidInputError(f"Unknown operation type: {op.type!r}")

    values = series.as_array()
    dates = list(series.timestamps)
    frequency = series.frequency
    log: List[TransformLogEntry] = []

    for op in ops:
        step = OPERATIONS[op.type](values, dates, dict(op.params), frequency)
        values = np.asarray(step.values, dtype=float)
        dates = list(step.dates)
        if step.frequency is not None:
            frequency = step.frequency
        log.append(
            TransformLogEntry(
                operation=op.type,
                params=step.params,
                affected_values=step.affected,
                notes=step.notes,
            )
        )
        logger.debug(
            "apply_operations: step applied",
            operation=op.type,
            affected_values=step.affected,
            length=int(values.size),
        )

    result = TransformResult(
        series=TimeSeries(
            name=series.name,
            timestamps=tuple(dates),
            values=floats(values),
            frequency=frequency,
        ),
        transformations=tuple(log),
        original_stats=stats.series_stats(series.values),
        processed_stats=stats.series_stats(values),
    )

    logger.info(
        "apply_operations: pipeline applied",
        series=series.name,
        num_operations=len(ops),
        input_length=len(series),
        output_length=int(values.size),
    )

    return result


def denormalize(values: Sequence[float], min_value: float, max_value: float) -> np.ndarray:
    """Invert ``normalize`` using the min/max recorded in its log entry."""
    span = (max_value - min_value) or 1.0
    return np.asarray(values, dtype=float) * span + min_value
