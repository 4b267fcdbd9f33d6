"""
Data Quality Validation Module

Rule-based checks on raw input series before they enter the analytics:
missing values, date ordering and duplicates, minimum length, outliers,
a crude stationarity screen and a range check. Strictness selects the rule
set; each series gets a 0-100 quality score.
"""

import datetime as dt
from typing import List, Optional, Sequence

import numpy as np
import structlog

from stochrisk.engine import stats
from stochrisk.engine.errors import InvalidInputError
from stochrisk.engine.models import (
    DataStatistics,
    PanelValidationReport,
    SeriesValidationReport,
    TimeSeries,
    ValidationIssue,
)

logger = structlog.get_logger(__name__)

MIN_LENGTH = 30
OUTLIER_SIGMA = 4.0
NULL_ERROR_SHARE = 0.1
STATIONARITY_MIN_LENGTH = 60
STATIONARITY_SIGMA = 0.5
RANGE_BOUNDS = (-1.0, 1.0)
MAX_REPORTED_INDICES = 10

STRICTNESS_RULES = {
    'lenient': ('no_nulls', 'monotonic_dates', 'minimum_length'),
    'standard': ('no_nulls', 'monotonic_dates', 'minimum_length', 'no_duplicates', 'no_outliers'),
    'strict': (
        'no_nulls', 'monotonic_dates', 'minimum_length', 'no_duplicates', 'no_outliers',
        'stationarity', 'range_check',
    ),
}


def _issue(severity, rule, variable, message, indices=()) -> ValidationIssue:
    return ValidationIssue(
        severity=severity,
        rule=rule,
        variable=variable,
        message=message,
        affected_indices=tuple(int(i) for i in list(indices)[:MAX_REPORTED_INDICES]),
    )


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


def check_no_nulls(name: str, values: np.ndarray) -> List[ValidationIssue]:
    missing = np.flatnonzero(np.isnan(values))
    if missing.size == 0:
        return []
    share = missing.size / values.size
    severity = 'error' if share > NULL_ERROR_SHARE else 'warning'
    return [_issue(severity, 'no_nulls', name, f"{missing.size} missing values ({share * 100:.1f}%)", missing)]


def check_monotonic_dates(name: str, dates: Sequence[dt.datetime]) -> List[ValidationIssue]:
    for i in range(1, len(dates)):
        if dates[i] <= dates[i - 1]:
            return [_issue('error', 'monotonic_dates', name, "Dates are not strictly increasing", (i - 1, i))]
    return []


def check_no_duplicates(name: str, dates: Sequence[dt.datetime]) -> List[ValidationIssue]:
    seen = set()
    duplicates = []
    for i, d in enumerate(dates):
        day = d.date() if isinstance(d, dt.datetime) else d
        if day in seen:
            duplicates.append(i)
        seen.add(day)
    if not duplicates:
        return []
    return [_issue('error', 'no_duplicates', name, f"{len(duplicates)} duplicated dates", duplicates)]


def check_minimum_length(name: str, values: np.ndarray, min_length: int = MIN_LENGTH) -> List[ValidationIssue]:
    if values.size >= min_length:
        return []
    return [_issue('error', 'minimum_length', name, f"Too few observations: {values.size} < {min_length}")]


def check_outliers(name: str, values: np.ndarray, threshold: float = OUTLIER_SIGMA) -> List[ValidationIssue]:
    valid = values[~np.isnan(values)]
    sigma = stats.std(valid)
    if sigma == 0:
        return []
    with np.errstate(invalid='ignore'):
        outliers = np.flatnonzero(np.abs(values - stats.mean(valid)) / sigma > threshold)
    if outliers.size == 0:
        return []
    return [_issue('warning', 'no_outliers', name, f"{outliers.size} outliers (>{threshold:g} sigma)", outliers)]


def check_stationarity(name: str, values: np.ndarray) -> List[ValidationIssue]:
    """Flags a shifting mean: any third of the series more than 0.5 std from the overall mean."""
    x = values[~np.isnan(values)]
    n = x.size
    if n < STATIONARITY_MIN_LENGTH:
        return []
    thirds = (x[:n // 3], x[n // 3:2 * n // 3], x[2 * n // 3:])
    overall = stats.mean(x)
    deviation = max(abs(stats.mean(t) - overall) for t in thirds)
    if deviation > STATIONARITY_SIGMA * stats.std(x):
        return [_issue('warning', 'stationarity', name, "Series may be non-stationary (shifting mean)")]
    return []


def check_range(name: str, values: np.ndarray, bounds=RANGE_BOUNDS) -> List[ValidationIssue]:
    lo, hi = bounds
    with np.errstate(invalid='ignore'):
        outside = np.flatnonzero((values < lo) | (values > hi))
    if outside.size == 0:
        return []
    return [_issue('warning', 'range_check', name, f"{outside.size} values outside [{lo:g}, {hi:g}]", outside)]


def compute_statistics(values: np.ndarray) -> DataStatistics:
    """Descriptive statistics over the non-missing values; zeros when none remain."""
    valid = values[~np.isnan(values)]
    if valid.size == 0:
        return DataStatistics(
            count=0, missing=int(values.size), min=0.0, max=0.0, mean=0.0, std=0.0,
            skewness=0.0, excess_kurtosis=0.0,
        )
    return DataStatistics(
        count=int(valid.size),
        missing=int(values.size - valid.size),
        min=float(valid.min()),
        max=float(valid.max()),
        mean=stats.mean(valid),
        std=stats.std(valid),
        skewness=stats.skewness(valid),
        excess_kurtosis=stats.kurtosis(valid) - stats.NORMAL_KURTOSIS,
    )


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def validate_series(
    name: str,
    values: Sequence[Optional[float]],
    dates: Optional[Sequence[dt.datetime]] = None,
    strictness: str = 'standard',
) -> SeriesValidationReport:
    """Run the rule set for ``strictness`` over one series.

    Args:
        name: Variable name used in issues
        values: Observations; None and NaN count as missing
        dates: Observation dates (date rules are skipped when None)
        strictness: lenient, standard or strict

    Returns:
        SeriesValidationReport; quality score is
        max(0, 100 - 20 * errors - 5 * warnings)

    Raises:
        InvalidInputError: On an unknown strictness
    """
    if strictness not in STRICTNESS_RULES:
        raise InvalidInputError(f"Unknown strictness: {strictness!r}")

    x = np.array([np.nan if v is None else v for v in values], dtype=float)
    dates = list(dates) if dates is not None else None

    issues: List[ValidationIssue] = []
    for rule in STRICTNESS_RULES[strictness]:
        if rule == 'no_nulls':
            issues += check_no_nulls(name, x)
        elif rule == 'monotonic_dates' and dates is not None:
            issues += check_monotonic_dates(name, dates)
        elif rule == 'no_duplicates' and dates is not None:
            issues += check_no_duplicates(name, dates)
        elif rule == 'minimum_length':
            issues += check_minimum_length(name, x)
        elif rule == 'no_outliers':
            issues += check_outliers(name, x)
        elif rule == 'stationarity':
            issues += check_stationarity(name, x)
        elif rule == 'range_check':
            issues += check_range(name, x)

    errors = sum(1 for i in issues if i.severity == 'error')
    warnings = len(issues) - errors
    missing = int(np.isnan(x).sum())

    return SeriesValidationReport(
        variable_name=name,
        is_valid=errors == 0,
        quality_score=float(max(0, 100 - 20 * errors - 5 * warnings)),
        completeness=1 - missing / x.size if x.size else 0.0,
        statistics=compute_statistics(x),
        issues=tuple(issues),
    )


def validate_panel(series: Sequence[TimeSeries], strictness: str = 'standard') -> PanelValidationReport:
    """Validate every series; the panel is valid when no series has an error."""
    reports = [validate_series(s.name, s.values, s.timestamps, strictness) for s in series]
    overall = stats.mean([r.quality_score for r in reports])
    is_valid = all(r.is_valid for r in reports)

    logger.info(
        "validate_panel: validation complete",
        num_series=len(reports),
        strictness=strictness,
        is_valid=is_valid,
        quality_score=overall,
    )

    return PanelValidationReport(
        is_valid=is_valid,
        overall_quality_score=overall,
        series_reports=tuple(reports),
    )
