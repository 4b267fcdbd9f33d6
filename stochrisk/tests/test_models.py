"""
Unit tests for models.py - value objects and the error hierarchy
"""

import datetime as dt

import pytest
import numpy as np
import pandas as pd
from pydantic import ValidationError

from stochrisk.engine.errors import (
    DegenerateInputError,
    EngineError,
    InvalidInputError,
    NotFoundError,
)
from stochrisk.engine.models import StressVariable, TimeSeries, severity_tier


class TestTimeSeries:
    """Tests for the TimeSeries model."""

    def test_from_values_generates_dates(self):
        """Daily timestamps are generated from the start date."""
        ts = TimeSeries.from_values('x', [1.0, 2.0, 3.0])

        assert len(ts) == 3
        assert ts.timestamps[0] == dt.datetime(2020, 1, 1)
        assert ts.timestamps[2] == dt.datetime(2020, 1, 3)
        assert ts.frequency == 'daily'

    def test_monthly_frequency(self):
        """Monthly series are stamped at month starts."""
        ts = TimeSeries.from_values('m', [1.0, 2.0], frequency='monthly')
        assert ts.timestamps[1] == dt.datetime(2020, 2, 1)

    def test_pandas_round_trip(self, sample_prices):
        """to_pandas and from_pandas preserve values and index."""
        back = TimeSeries.from_pandas(sample_prices.to_pandas())

        assert back == sample_prices
        assert isinstance(sample_prices.to_pandas().index, pd.DatetimeIndex)

    def test_length_mismatch(self):
        """Timestamps and values must align."""
        with pytest.raises(ValidationError, match="doesn't match"):
            TimeSeries(name='x', timestamps=(dt.datetime(2024, 1, 1),), values=(1.0, 2.0))

    def test_non_increasing_timestamps(self):
        """Timestamps must be strictly increasing."""
        day = dt.datetime(2024, 1, 1)
        with pytest.raises(ValidationError, match="strictly increasing"):
            TimeSeries(name='x', timestamps=(day, day), values=(1.0, 2.0))

    def test_nan_values_allowed(self):
        """Missing observations are carried as NaN."""
        ts = TimeSeries.from_values('x', [1.0, np.nan, 3.0])
        assert np.isnan(ts.as_array()[1])

    def test_frozen(self, sample_prices):
        """Models cannot be mutated after construction."""
        with pytest.raises(ValidationError):
            sample_prices.name = 'other'
        with pytest.raises(ValidationError):
            StressVariable(name='v').historical_std = 2.0


class TestSeverityTier:
    """Tests for severity_tier function."""

    @pytest.mark.parametrize('magnitude,tier', [
        (0.1, 'low'),
        (0.3, 'medium'),
        (-0.4, 'high'),
        (0.6, 'critical'),
    ])
    def test_tiers(self, magnitude, tier):
        """Tiers use the absolute magnitude."""
        assert severity_tier(magnitude) == tier


class TestErrors:
    """Tests for the engine error hierarchy."""

    def test_hierarchy(self):
        """Engine errors also subclass the matching builtin errors."""
        assert issubclass(InvalidInputError, ValueError)
        assert issubclass(NotFoundError, LookupError)
        assert issubclass(DegenerateInputError, InvalidInputError)
        for cls in (InvalidInputError, NotFoundError, DegenerateInputError):
            assert issubclass(cls, EngineError)
