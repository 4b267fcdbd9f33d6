"""
Unit tests for data_quality.py - Data Quality Validation Module

Tests cover:
- Individual rules and their severities
- Strictness rule sets and the quality score
- Panel aggregation
"""

import datetime as dt

import pytest
import numpy as np
from numpy.testing import assert_allclose

from stochrisk.engine.data_quality import (
    check_monotonic_dates,
    check_no_duplicates,
    compute_statistics,
    validate_panel,
    validate_series,
)
from stochrisk.engine.errors import InvalidInputError
from stochrisk.engine.models import TimeSeries


def _days(n, start=dt.datetime(2024, 1, 1)):
    return [start + dt.timedelta(days=i) for i in range(n)]


class TestNulls:
    """Tests for the missing-value rule."""

    def test_few_missing_is_warning(self):
        """5% missing is a warning and keeps the series valid."""
        values = list(np.linspace(0, 1, 40))
        values[3] = None
        values[7] = np.nan
        report = validate_series('cpi', values)

        assert report.is_valid
        assert report.quality_score == 95.0
        assert_allclose(report.completeness, 0.95)
        assert report.issues[0].rule == 'no_nulls'
        assert report.issues[0].severity == 'warning'
        assert report.issues[0].affected_indices == (3, 7)

    def test_many_missing_is_error(self):
        """More than 10% missing is an error."""
        values = list(np.linspace(0, 1, 40))
        for i in range(10):
            values[i] = None
        report = validate_series('cpi', values)

        assert not report.is_valid
        assert report.quality_score == 80.0
        assert len(report.issues[0].affected_indices) == 10

    def test_all_missing(self):
        """An all-missing series has zeroed statistics and no completeness."""
        report = validate_series('empty', [None] * 30)

        assert report.completeness == 0.0
        assert report.statistics.count == 0
        assert report.statistics.missing == 30


class TestDateRules:
    """Tests for monotonic_dates and no_duplicates."""

    def test_out_of_order(self):
        """The first backwards step is reported with both indices."""
        dates = _days(5)
        dates[2], dates[3] = dates[3], dates[2]
        issues = check_monotonic_dates('x', dates)

        assert len(issues) == 1
        assert issues[0].affected_indices == (2, 3)

    def test_duplicate_calendar_day(self):
        """Two timestamps on the same day count as a duplicate."""
        dates = [dt.datetime(2024, 1, 1, 9), dt.datetime(2024, 1, 1, 17), dt.datetime(2024, 1, 2)]
        issues = check_no_duplicates('x', dates)

        assert issues[0].severity == 'error'
        assert issues[0].affected_indices == (1,)

    def test_dates_skipped_when_absent(self):
        """Without dates only the value rules run."""
        report = validate_series('x', np.linspace(0, 1, 40))
        assert report.issues == ()
        assert report.quality_score == 100.0


class TestValueRules:
    """Tests for length, outlier, stationarity and range rules."""

    def test_minimum_length(self):
        """Fewer than 30 observations is an error."""
        report = validate_series('short', np.linspace(0, 1, 10))

        assert not report.is_valid
        assert [i.rule for i in report.issues] == ['minimum_length']

    def test_outlier_warning(self):
        """A value far beyond 4 sigma is a warning with its index."""
        values = np.linspace(0, 1, 100)
        values[50] = 100.0
        report = validate_series('spiky', values)

        assert report.is_valid
        assert report.issues[0].rule == 'no_outliers'
        assert report.issues[0].affected_indices == (50,)
        assert report.quality_score == 95.0

    def test_strict_adds_stationarity_and_range(self):
        """A trending series outside [-1, 1] only fails the strict rules."""
        values = np.linspace(0, 5, 100)

        assert validate_series('trend', values, strictness='standard').quality_score == 100.0
        strict = validate_series('trend', values, strictness='strict')
        assert {i.rule for i in strict.issues} == {'stationarity', 'range_check'}
        assert strict.quality_score == 90.0
        assert strict.is_valid

    def test_lenient_ignores_outliers(self):
        """Lenient validation does not check outliers."""
        values = np.linspace(0, 1, 100)
        values[50] = 100.0
        assert validate_series('spiky', values, strictness='lenient').issues == ()

    def test_unknown_strictness(self):
        """Unknown strictness raises InvalidInputError."""
        with pytest.raises(InvalidInputError, match="Unknown strictness"):
            validate_series('x', [1.0], strictness='paranoid')

    def test_statistics(self):
        """Statistics ignore missing values."""
        s = compute_statistics(np.array([1.0, 2.0, np.nan, 3.0]))

        assert s.count == 3
        assert s.missing == 1
        assert s.mean == 2.0
        assert s.min == 1.0
        assert s.max == 3.0


class TestValidatePanel:
    """Tests for validate_panel function."""

    def test_panel_aggregation(self):
        """Panel is invalid when any series has an error; score is the mean."""
        good = TimeSeries.from_values('good', np.linspace(0, 1, 40))
        short = TimeSeries.from_values('short', np.linspace(0, 1, 10))
        report = validate_panel([good, short])

        assert not report.is_valid
        assert report.overall_quality_score == 90.0
        assert [r.variable_name for r in report.series_reports] == ['good', 'short']
