"""
Unit tests for anomaly.py - Anomaly Detection Module
"""

import pytest
import numpy as np

from stochrisk.engine.anomaly import (
    detect_anomaly,
    detect_iqr,
    detect_mad,
    detect_rolling_std,
    detect_z_score,
    historical_context,
)
from stochrisk.engine.errors import InvalidInputError


@pytest.fixture
def stable_history():
    """200 observations around 100 with unit noise."""
    np.random.seed(42)
    return np.random.normal(100, 1, 200)


class TestDetectors:
    """Tests for the individual detectors."""

    def test_sensitivity_scales_threshold(self, stable_history):
        """Thresholds are divided by sensitivity."""
        assert detect_z_score(100.0, stable_history, sensitivity=2.0).threshold == 1.5
        assert detect_mad(100.0, stable_history, sensitivity=0.5).threshold == 7.0

    def test_constant_history(self):
        """Zero spread gives zero z and MAD scores while IQR fences collapse."""
        history = [5.0] * 30
        assert detect_z_score(6.0, history).score == 0.0
        assert detect_mad(6.0, history).score == 0.0
        assert detect_iqr(6.0, history).is_anomaly
        assert not detect_iqr(5.0, history).is_anomaly

    def test_rolling_window_only(self):
        """A jump relative to a calm recent window is flagged only by rolling_std."""
        np.random.seed(42)
        history = np.concatenate([np.random.normal(0, 10, 180), np.random.normal(0, 0.1, 20)])

        rolling = detect_rolling_std(2.0, history)
        assert rolling.method == 'rolling_std'
        assert rolling.is_anomaly
        assert not detect_z_score(2.0, history).is_anomaly


class TestDetectAnomaly:
    """Tests for detect_anomaly function."""

    def test_spike(self, stable_history):
        """A ten-sigma jump is a critical spike."""
        result = detect_anomaly(110.0, stable_history)

        assert result.is_anomaly
        assert [s.method for s in result.detection_scores] == ['z_score', 'iqr', 'mad']
        assert result.details.direction == 'spike'
        assert result.details.severity == 'critical'
        assert result.details.index == 200
        assert result.details.deviation > 5

    def test_dip(self, stable_history):
        """A large drop is reported as a dip."""
        result = detect_anomaly(90.0, stable_history, method='z_score')

        assert result.is_anomaly
        assert result.details.direction == 'dip'

    def test_normal_value(self, stable_history):
        """A value at the mean is not anomalous and carries no details."""
        result = detect_anomaly(100.0, stable_history)

        assert not result.is_anomaly
        assert result.details is None

    def test_ensemble_needs_majority(self):
        """One vote out of three is not enough."""
        result = detect_anomaly(6.0, [5.0] * 30)

        assert sum(s.is_anomaly for s in result.detection_scores) == 1
        assert not result.is_anomaly

    def test_unknown_method(self, stable_history):
        """Unknown methods raise InvalidInputError."""
        with pytest.raises(InvalidInputError, match="Unknown detection method"):
            detect_anomaly(1.0, stable_history, method='isolation_forest')

    def test_non_positive_sensitivity(self, stable_history):
        """Sensitivity must be positive."""
        with pytest.raises(InvalidInputError, match="sensitivity"):
            detect_anomaly(1.0, stable_history, sensitivity=0.0)


class TestHistoricalContext:
    """Tests for historical_context function."""

    @pytest.mark.parametrize('history,trend', [
        (np.linspace(1.0, 2.0, 100), 'increasing'),
        (np.linspace(2.0, 1.0, 100), 'decreasing'),
        (np.ones(100), 'stable'),
    ])
    def test_trend(self, history, trend):
        """Trend compares the first and last half means at a 5% threshold."""
        assert historical_context(history).trend == trend

    def test_summary(self, stable_history):
        """Percentiles bracket the mean."""
        ctx = historical_context(stable_history)

        assert ctx.min <= ctx.percentile_5 < ctx.mean < ctx.percentile_95 <= ctx.max
        assert 0.8 < ctx.std < 1.2
