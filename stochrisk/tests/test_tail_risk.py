"""
Unit tests for tail_risk.py - Tail Risk Analysis Module

Tests cover:
- Hill and Pickands estimators
- GPD fitting, including the degenerate path
- Extreme quantiles
- Normality comparison and the combined report
"""

import pytest
import numpy as np
from numpy.testing import assert_allclose

from stochrisk.engine.models import GPDFit
from stochrisk.engine.tail_risk import (
    analyze_tail_risk,
    compare_to_normal,
    estimate_tail_index,
    extreme_quantiles,
    fit_gpd,
    hill_estimator,
    pickands_estimator,
)


class TestTailIndex:
    """Tests for hill_estimator, pickands_estimator and estimate_tail_index."""

    def test_hill_on_pareto(self):
        """Hill recovers 1 / alpha for Pareto(alpha = 2) data."""
        np.random.seed(42)
        data = np.random.pareto(2.0, 5000) + 1.0
        idx = estimate_tail_index(data)

        assert 0.3 < idx.hill_estimator < 0.7
        lo, hi = idx.confidence_interval
        assert lo < idx.hill_estimator < hi

    def test_small_k_sentinels(self):
        """k too small for either estimator returns 1."""
        data = np.array([5.0, 4.0, 3.0])
        assert hill_estimator(data, 1) == 1.0
        assert pickands_estimator(data, 3) == 1.0

    def test_nonpositive_anchor(self):
        """A non-positive k-th order statistic returns 1."""
        assert hill_estimator(np.array([2.0, 1.0, -1.0]), 3) == 1.0


class TestFitGPD:
    """Tests for fit_gpd function."""

    def test_too_few_exceedances(self):
        """Fewer than 10 exceedances gives a degenerate zero-shape fit."""
        fit = fit_gpd(np.arange(50.0), 95)

        assert fit.degenerate
        assert fit.shape == 0.0
        assert fit.n_exceedances == 3
        assert_allclose(fit.scale, 1.0)

    def test_heavy_tail_fit(self, heavy_tailed_returns):
        """A 2000-point sample has 100 exceedances over the 95th percentile."""
        fit = fit_gpd(heavy_tailed_returns, 95)

        assert not fit.degenerate
        assert fit.n_exceedances == 100
        assert -0.5 <= fit.shape <= 1.0
        assert fit.scale >= 0.001
        assert 0.0 <= fit.goodness_of_fit <= 1.0


class TestExtremeQuantiles:
    """Tests for extreme_quantiles function."""

    def test_monotone_in_probability(self, heavy_tailed_returns):
        """Both quantile estimates increase with probability."""
        gpd = fit_gpd(heavy_tailed_returns)
        qs = extreme_quantiles(heavy_tailed_returns, gpd)

        assert [q.probability for q in qs] == [0.99, 0.999, 0.9999]
        assert qs[0].quantile_normal < qs[1].quantile_normal < qs[2].quantile_normal
        assert qs[0].quantile_gpd < qs[1].quantile_gpd < qs[2].quantile_gpd

    def test_zero_exceedances_returns_threshold(self):
        """Without exceedances the GPD quantile is the threshold."""
        gpd = GPDFit(shape=0.0, scale=1.0, threshold=2.5, n_exceedances=0, goodness_of_fit=1.0, degenerate=True)
        qs = extreme_quantiles([1.0, 2.0, 3.0], gpd, probabilities=(0.99,))
        assert qs[0].quantile_gpd == 2.5


class TestCompareToNormal:
    """Tests for compare_to_normal function."""

    def test_normal_sample(self, sample_returns):
        """Normal draws have near-zero excess kurtosis."""
        cmp = compare_to_normal(sample_returns)

        assert cmp.tail_heaviness == 'normal'
        assert_allclose(cmp.excess_kurtosis, cmp.kurtosis - 3)

    def test_jarque_bera_formula(self, heavy_tailed_returns):
        """JB = n / 6 (S^2 + EK^2 / 4) and rejects for heavy tails."""
        cmp = compare_to_normal(heavy_tailed_returns)
        n = len(heavy_tailed_returns)

        assert_allclose(cmp.jarque_bera_stat, n / 6 * (cmp.skewness ** 2 + cmp.excess_kurtosis ** 2 / 4))
        assert cmp.is_normal_rejected
        assert cmp.tail_heaviness in ('heavy', 'very_heavy')


class TestAnalyzeTailRisk:
    """Tests for analyze_tail_risk function."""

    def test_fat_tails_detected(self, heavy_tailed_returns):
        """Student-t(3) returns are flagged as fat tailed."""
        report = analyze_tail_risk(heavy_tailed_returns)

        assert report.has_fat_tails
        assert len(report.extreme_quantiles) == 3
        assert report.gpd_fit.n_exceedances == 100
