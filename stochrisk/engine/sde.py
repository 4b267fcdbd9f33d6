"""
Stochastic Process Model Selection

Fits GBM, Ornstein-Uhlenbeck, Heston and Merton jump-diffusion models to a
single series and ranks them by AIC. Heston and Merton parameters are
moment-matched approximations, not joint maximum likelihood estimates; their
log-likelihood is the Gaussian likelihood of the returns with a small fixed
multiplicative adjustment.
"""

from typing import Dict, List, Optional, Sequence, Union

import numpy as np
import structlog

from stochrisk.engine import stats
from stochrisk.engine.errors import DegenerateInputError, InvalidInputError
from stochrisk.engine.models import (
    GBMFit,
    GBMParameters,
    HestonFit,
    HestonParameters,
    MertonJumpFit,
    MertonJumpParameters,
    ModelSelection,
    OUFit,
    OUParameters,
    SeriesDiagnostics,
    TimeSeries,
)

logger = structlog.get_logger(__name__)

MODEL_KINDS = ('gbm', 'ou', 'heston', 'merton_jump')

MODEL_ALIASES = {
    'ornstein_uhlenbeck': 'ou',
    'merton': 'merton_jump',
}

# Annualisation step for monthly observations
DEFAULT_DT = 1 / 12

HESTON_LL_ADJUSTMENT = 1.05
MERTON_LL_ADJUSTMENT = 1.02
HESTON_KAPPA = 2.0
HESTON_RHO = -0.7

MEAN_REVERSION_ACF = -0.1
VOL_CLUSTERING_ACF = 0.2


def _canonical_kind(kind: str) -> str:
    key = kind.lower()
    key = MODEL_ALIASES.get(key, key)
    if key not in MODEL_KINDS:
        raise InvalidInputError(f"Unknown model kind: {kind!r}")
    return key


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------


def compute_series_diagnostics(values: Sequence[float]) -> SeriesDiagnostics:
    """Moments of the level series plus return-based shape diagnostics.

    Skewness, kurtosis and lag-1 autocorrelation are computed on simple
    returns. Mean reversion is flagged for autocorrelation below -0.1, fat
    tails for raw kurtosis above 3 and volatility clustering when squared
    returns have lag-1 autocorrelation above 0.2.
    """
    levels = np.asarray(values, dtype=float)
    returns = stats.simple_returns(levels)
    kurt = stats.kurtosis(returns)
    acf = stats.autocorrelation(returns, 1)
    return SeriesDiagnostics(
        mean=stats.mean(levels),
        std=stats.std(levels),
        skewness=stats.skewness(returns),
        kurtosis=kurt,
        excess_kurtosis=kurt - stats.NORMAL_KURTOSIS,
        autocorrelation_lag1=acf,
        has_mean_reversion=acf < MEAN_REVERSION_ACF,
        has_fat_tails=kurt > stats.NORMAL_KURTOSIS,
        has_volatility_clustering=stats.autocorrelation(returns ** 2, 1) > VOL_CLUSTERING_ACF,
    )


# ---------------------------------------------------------------------------
# Fits
# ---------------------------------------------------------------------------


def _return_moments(returns: np.ndarray, kind: str):
    if returns.size < 2:
        raise DegenerateInputError(f"{kind}: need at least 2 log returns, got {returns.size}")
    s = stats.std(returns)
    if s == 0:
        raise DegenerateInputError(f"{kind}: log returns have zero variance")
    return stats.mean(returns), s


def fit_gbm(values: Sequence[float], dt: float = DEFAULT_DT) -> GBMFit:
    """Geometric Brownian motion from log-return mean and volatility."""
    returns = stats.log_returns(values)
    m, s = _return_moments(returns, 'gbm')
    mu = m / dt + 0.5 * s ** 2 / dt
    sigma = s / np.sqrt(dt)

    ll = stats.normal_log_likelihood(returns, m, s)
    k = 2
    aic, bic = stats.information_criteria(ll, k, returns.size)
    return GBMFit(
        parameters=GBMParameters(mu=float(mu), sigma=float(sigma)),
        log_likelihood=ll,
        aic=aic,
        bic=bic,
        n_obs=int(returns.size),
        n_params=k,
    )


def fit_ou(values: Sequence[float], dt: float = DEFAULT_DT) -> OUFit:
    """Ornstein-Uhlenbeck via AR(1) regression of the level on its lag.

    theta = -ln(clip(beta, 0.01, 0.99)) / dt, mu = alpha / (1 - beta) and
    sigma is recovered from the residual standard deviation through the
    stationary-variance identity.
    """
    x = np.asarray(values, dtype=float)
    if x.size < 3:
        raise DegenerateInputError(f"ou: need at least 3 observations, got {x.size}")

    lagged, current = x[:-1], x[1:]
    n_obs = lagged.size
    denominator = n_obs * float(np.sum(lagged ** 2)) - float(np.sum(lagged)) ** 2
    if denominator == 0:
        raise DegenerateInputError("ou: lagged level has no variation")

    beta, alpha = stats.ols_line(lagged, current)
    if beta == 1:
        raise DegenerateInputError("ou: unit root (beta == 1), long-run mean undefined")

    theta = -np.log(np.clip(beta, 0.01, 0.99)) / dt
    mu = alpha / (1 - beta)
    residuals = current - alpha - beta * lagged
    sigma_resid = stats.std(residuals)
    sigma = sigma_resid * np.sqrt(2 * theta / (1 - np.exp(-2 * theta * dt)))

    ll = stats.normal_log_likelihood(residuals, 0.0, sigma_resid)
    k = 3
    aic, bic = stats.information_criteria(ll, k, n_obs)
    return OUFit(
        parameters=OUParameters(theta=float(theta), mu=float(mu), sigma=float(sigma)),
        log_likelihood=ll,
        aic=aic,
        bic=bic,
        n_obs=int(n_obs),
        n_params=k,
    )


def fit_heston(values: Sequence[float], dt: float = DEFAULT_DT) -> HestonFit:
    """Heston stochastic volatility, moment-matched from log returns."""
    returns = stats.log_returns(values)
    m, s = _return_moments(returns, 'heston')
    periods = 1 / dt
    vol = s * np.sqrt(periods)
    kurt = stats.kurtosis(returns)
    long_run_variance = vol ** 2

    ll = stats.normal_log_likelihood(returns, m, s) * HESTON_LL_ADJUSTMENT
    k = 5
    aic, bic = stats.information_criteria(ll, k, returns.size)
    return HestonFit(
        parameters=HestonParameters(
            mu=float(m * periods),
            kappa=HESTON_KAPPA,
            theta=float(long_run_variance),
            xi=float(np.sqrt(max(0.0, (kurt - 3) * 0.1))),
            rho=HESTON_RHO,
            initial_variance=float(long_run_variance),
        ),
        log_likelihood=ll,
        aic=aic,
        bic=bic,
        n_obs=int(returns.size),
        n_params=k,
    )


def fit_merton_jump(values: Sequence[float], dt: float = DEFAULT_DT) -> MertonJumpFit:
    """Merton jump-diffusion, jump terms matched to excess kurtosis and skewness."""
    returns = stats.log_returns(values)
    m, s = _return_moments(returns, 'merton_jump')
    periods = 1 / dt
    sigma = s * np.sqrt(periods)
    kurt = stats.kurtosis(returns)
    skew = stats.skewness(returns)

    intensity = max(0.1, (kurt - 3) * 0.5)
    jump_mean = skew * sigma / (intensity + 0.01)
    jump_std = np.sqrt(max(0.01, (kurt - 3 - intensity) * sigma ** 2 / intensity))

    ll = stats.normal_log_likelihood(returns, m, s) * MERTON_LL_ADJUSTMENT
    k = 5
    aic, bic = stats.information_criteria(ll, k, returns.size)
    return MertonJumpFit(
        parameters=MertonJumpParameters(
            mu=float(m * periods),
            sigma=float(sigma),
            jump_intensity=float(intensity),
            jump_mean=float(jump_mean),
            jump_std=float(jump_std),
        ),
        log_likelihood=ll,
        aic=aic,
        bic=bic,
        n_obs=int(returns.size),
        n_params=k,
    )


_FITTERS = {
    'gbm': fit_gbm,
    'ou': fit_ou,
    'heston': fit_heston,
    'merton_jump': fit_merton_jump,
}


def fit_model(values: Sequence[float], kind: str, dt: float = DEFAULT_DT):
    """Fit one model kind to a level series.

    Raises:
        InvalidInputError: If ``kind`` is not a known model kind
        DegenerateInputError: If the series cannot support the fit
    """
    return _FITTERS[_canonical_kind(kind)](values, dt)


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


def select_model(
    series: Union[TimeSeries, Sequence[float]],
    kinds: Optional[Sequence[str]] = None,
    dt: float = DEFAULT_DT,
    name: Optional[str] = None,
) -> ModelSelection:
    """Fit each requested model kind and rank the fits by AIC ascending.

    Fits that fail on degenerate input are logged and dropped. If every fit
    fails the selection has no recommended model and an empty ranking.

    Args:
        series: TimeSeries or raw level values
        kinds: Model kinds to test (default: all)
        dt: Annualisation step size
        name: Series name when raw values are given

    Returns:
        ModelSelection with ranks 1..N assigned in AIC order

    Raises:
        InvalidInputError: On an unknown or empty list of kinds
    """
    if isinstance(series, TimeSeries):
        values = series.as_array()
        series_name = series.name
    else:
        values = np.asarray(series, dtype=float)
        series_name = name or 'series'

    requested = [_canonical_kind(k) for k in (MODEL_KINDS if kinds is None else kinds)]
    if not requested:
        raise InvalidInputError("At least one model kind required")
    diagnostics = compute_series_diagnostics(values)

    fits: List = []
    failed: List[str] = []
    for kind in requested:
        try:
            fits.append(_FITTERS[kind](values, dt))
        except DegenerateInputError as e:
            logger.warning(
                "select_model: fit dropped",
                series=series_name,
                model_kind=kind,
                error=str(e),
            )
            failed.append(kind)

    fits.sort(key=lambda f: f.aic)
    ranking = tuple(f.model_copy(update={'rank': i + 1}) for i, f in enumerate(fits))
    best = ranking[0] if ranking else None
    parameters: Dict[str, float] = best.parameters.model_dump() if best is not None else {}

    logger.info(
        "select_model: models ranked",
        series=series_name,
        num_points=int(values.size),
        recommended=best.model_kind if best is not None else None,
        num_failed=len(failed),
    )

    return ModelSelection(
        series_name=series_name,
        recommended_model=best.model_kind if best is not None else None,
        ranking=ranking,
        statistics=diagnostics,
        parameters=parameters,
        failed_models=tuple(failed),
    )
