"""
Unit tests for sde.py - Stochastic Process Model Selection

Tests cover:
- Individual GBM / OU / Heston / Merton fits
- Series diagnostics
- AIC ranking, aliases and dropped fits in select_model
"""

import pytest
import numpy as np
from numpy.testing import assert_allclose

from stochrisk.engine.errors import DegenerateInputError, InvalidInputError
from stochrisk.engine.sde import (
    MODEL_KINDS,
    compute_series_diagnostics,
    fit_gbm,
    fit_heston,
    fit_merton_jump,
    fit_model,
    fit_ou,
    select_model,
)


class TestFitGBM:
    """Tests for fit_gbm function."""

    def test_recovers_daily_volatility(self, sample_prices):
        """Annualised sigma is close to 0.02 * sqrt(252) for daily data."""
        fit = fit_gbm(sample_prices.values, dt=1 / 252)

        assert fit.model_kind == 'gbm'
        assert 0.25 < fit.parameters.sigma < 0.40
        assert fit.n_params == 2
        assert fit.n_obs == len(sample_prices) - 1

    def test_aic_matches_likelihood(self, sample_prices):
        """AIC = 2k - 2LL."""
        fit = fit_gbm(sample_prices.values)
        assert_allclose(fit.aic, 2 * fit.n_params - 2 * fit.log_likelihood)

    def test_constant_series_raises(self):
        """Zero-variance returns cannot be fitted."""
        with pytest.raises(DegenerateInputError, match="zero variance"):
            fit_gbm([10.0] * 20)

    def test_too_short_raises(self):
        """Fewer than two returns cannot be fitted."""
        with pytest.raises(DegenerateInputError):
            fit_gbm([1.0, 2.0])


class TestFitOU:
    """Tests for fit_ou function."""

    def test_recovers_mean_and_speed(self, mean_reverting_levels):
        """AR(1) with phi = 0.5 around 5 gives mu ~ 5 and theta ~ ln 2 at dt = 1."""
        fit = fit_ou(mean_reverting_levels, dt=1.0)

        assert_allclose(fit.parameters.mu, 5.0, atol=0.1)
        assert 0.4 < fit.parameters.theta < 1.0
        assert fit.parameters.sigma > 0
        assert fit.n_obs == len(mean_reverting_levels) - 1
        assert fit.n_params == 3

    def test_constant_series_raises(self):
        """A constant lagged level has no regression."""
        with pytest.raises(DegenerateInputError):
            fit_ou([3.0] * 10)


class TestMomentMatchedFits:
    """Tests for fit_heston and fit_merton_jump."""

    def test_heston_likelihood_adjustment(self, sample_prices):
        """Heston LL is the Gaussian return LL scaled by 1.05."""
        gbm = fit_gbm(sample_prices.values)
        heston = fit_heston(sample_prices.values)

        assert_allclose(heston.log_likelihood, gbm.log_likelihood * 1.05)
        assert heston.parameters.rho == -0.7
        assert heston.parameters.kappa == 2.0
        assert heston.parameters.xi >= 0

    def test_merton_intensity_floor(self, sample_prices):
        """Jump intensity is at least 0.1 and jump std is positive."""
        fit = fit_merton_jump(sample_prices.values)

        assert fit.parameters.jump_intensity >= 0.1
        assert fit.parameters.jump_std > 0
        assert fit.n_params == 5


class TestDiagnostics:
    """Tests for compute_series_diagnostics function."""

    def test_mean_reversion_flag(self, mean_reverting_levels):
        """Returns of a stationary AR(1) are negatively autocorrelated."""
        diag = compute_series_diagnostics(mean_reverting_levels)

        assert diag.autocorrelation_lag1 < -0.1
        assert diag.has_mean_reversion

    def test_excess_kurtosis_consistent(self, sample_prices):
        """Excess kurtosis is kurtosis minus 3."""
        diag = compute_series_diagnostics(sample_prices.values)
        assert_allclose(diag.excess_kurtosis, diag.kurtosis - 3)


class TestSelectModel:
    """Tests for select_model and fit_model."""

    def test_ranks_by_aic(self, sample_prices):
        """Ranks run 1..N in ascending AIC order."""
        sel = select_model(sample_prices)
        aics = [f.aic for f in sel.ranking]

        assert [f.rank for f in sel.ranking] == list(range(1, len(sel.ranking) + 1))
        assert aics == sorted(aics)
        assert sel.recommended_model == sel.ranking[0].model_kind
        assert sel.series_name == 'SPX'
        assert set(sel.parameters) == set(sel.ranking[0].parameters.model_dump())

    def test_all_kinds_fitted(self, sample_prices):
        """A well-behaved series supports every model kind."""
        sel = select_model(sample_prices)
        assert {f.model_kind for f in sel.ranking} == set(MODEL_KINDS)
        assert sel.failed_models == ()

    def test_constant_series_drops_all(self):
        """Every fit is dropped for a constant series and none is recommended."""
        sel = select_model([5.0] * 30, name='flat')

        assert sel.recommended_model is None
        assert sel.ranking == ()
        assert set(sel.failed_models) == set(MODEL_KINDS)

    def test_alias_kinds(self, mean_reverting_levels):
        """Aliases resolve to canonical kinds."""
        sel = select_model(mean_reverting_levels, kinds=['ornstein_uhlenbeck', 'merton'])
        assert {f.model_kind for f in sel.ranking} == {'ou', 'merton_jump'}

    def test_empty_kind_list_raises(self, sample_prices):
        """An explicit empty kind list is rejected rather than widened to all."""
        with pytest.raises(InvalidInputError, match="At least one model kind required"):
            select_model(sample_prices, kinds=[])

    def test_unknown_kind_raises(self):
        """Unknown model kinds raise InvalidInputError."""
        with pytest.raises(InvalidInputError, match="Unknown model kind"):
            fit_model([1.0, 2.0, 3.0], 'cir')

    def test_deterministic(self, sample_prices):
        """Repeated selection is identical."""
        assert select_model(sample_prices) == select_model(sample_prices)
