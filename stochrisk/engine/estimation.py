"""
Parameter Estimation Module

Point estimates, approximate standard errors, 95% confidence intervals and
residual diagnostics for a single requested process model. Uses a daily
step by default, unlike the model selector which works on monthly data.
"""

from typing import Dict, NamedTuple, Tuple

import numpy as np
import structlog

from stochrisk.engine import stats
from stochrisk.engine.errors import DegenerateInputError, InvalidInputError
from stochrisk.engine.models import (
    EstimationDiagnostics,
    GBMFit,
    GBMParameters,
    HestonFit,
    HestonParameters,
    MertonJumpFit,
    MertonJumpParameters,
    OUFit,
    OUParameters,
    ParameterEstimate,
)

logger = structlog.get_logger(__name__)

DEFAULT_DT = 1 / 252
CI_Z = 1.96
JUMP_THRESHOLD_STD = 3.0
JARQUE_BERA_CRITICAL = 5.99  # chi-square(2) at 5%
HETEROSKEDASTICITY_ACF = 0.2
HESTON_RHO = -0.7
HESTON_DEFAULT_KAPPA = 2.0

ESTIMABLE_KINDS = ('gbm', 'ou', 'vasicek', 'ornstein_uhlenbeck', 'heston', 'merton_jump')


class _Estimate(NamedTuple):
    parameters: Dict[str, float]
    log_likelihood: float
    residuals: np.ndarray


def _gbm(values: np.ndarray, dt: float) -> _Estimate:
    returns = stats.log_returns(values)
    if returns.size < 2:
        raise DegenerateInputError(f"gbm: need at least 2 log returns, got {returns.size}")
    m = stats.mean(returns)
    var = stats.variance(returns)
    if var == 0:
        raise DegenerateInputError("gbm: log returns have zero variance")

    sigma = np.sqrt(var / dt)
    mu = m / dt + 0.5 * sigma ** 2
    residuals = (returns - m) / np.sqrt(var)
    n = returns.size
    ll = -n / 2 * np.log(2 * np.pi * var) - float(np.sum((returns - m) ** 2)) / (2 * var)
    return _Estimate({'mu': float(mu), 'sigma': float(sigma)}, float(ll), residuals)


def _ou(values: np.ndarray, dt: float) -> _Estimate:
    if values.size < 4:
        raise DegenerateInputError(f"ou: need at least 4 observations, got {values.size}")
    lagged, current = values[:-1], values[1:]
    n = lagged.size
    if n * float(np.sum(lagged ** 2)) - float(np.sum(lagged)) ** 2 == 0:
        raise DegenerateInputError("ou: lagged level has no variation")

    beta, alpha = stats.ols_line(lagged, current)
    if beta == 1:
        raise DegenerateInputError("ou: unit root (beta == 1), long-run mean undefined")
    theta = -np.log(np.clip(beta, 0.01, 0.99)) / dt
    mu = alpha / (1 - beta)

    residuals = current - (alpha + beta * lagged)
    ssr = float(np.sum(residuals ** 2))
    if ssr == 0:
        raise DegenerateInputError("ou: AR(1) fit is exact, residual variance is zero")
    sigma_resid = np.sqrt(ssr / (n - 2))
    sigma = sigma_resid * np.sqrt(2 * theta / (1 - np.exp(-2 * theta * dt)))

    # concentrated Gaussian likelihood of the AR(1) residuals
    ll = -n / 2 * np.log(2 * np.pi) - n / 2 * np.log(ssr / n) - n / 2
    return _Estimate({'theta': float(theta), 'mu': float(mu), 'sigma': float(sigma)}, float(ll), residuals)


def _heston(values: np.ndarray, dt: float) -> _Estimate:
    returns = stats.log_returns(values)
    squared = returns ** 2
    variance_process = _ou(squared, dt)
    long_run_variance = stats.mean(squared) / dt
    params = {
        'mu': stats.mean(returns) / dt,
        'kappa': variance_process.parameters['theta'] or HESTON_DEFAULT_KAPPA,
        'theta': long_run_variance,
        'xi': variance_process.parameters['sigma'] or float(np.sqrt(long_run_variance) * 0.5),
        'rho': HESTON_RHO,
        'initial_variance': float(squared[0] / dt),
    }
    return _Estimate(params, variance_process.log_likelihood, variance_process.residuals)


def _merton(values: np.ndarray, dt: float) -> _Estimate:
    gbm = _gbm(values, dt)
    returns = stats.log_returns(values)
    s = stats.std(returns)
    m = stats.mean(returns)
    jumps = returns[np.abs(returns - m) > JUMP_THRESHOLD_STD * s]

    intensity = jumps.size / (values.size * dt)
    jump_mean = stats.mean(jumps) if jumps.size > 0 else 0.0
    jump_std = stats.std(jumps) if jumps.size > 1 else s
    diffusion = np.sqrt(max(0.01, gbm.parameters['sigma'] ** 2 - intensity * jump_std ** 2))
    params = {
        'mu': gbm.parameters['mu'],
        'sigma': float(diffusion),
        'jump_intensity': float(intensity),
        'jump_mean': float(jump_mean),
        'jump_std': float(jump_std),
    }
    return _Estimate(params, gbm.log_likelihood, gbm.residuals)


_ESTIMATORS = {
    'gbm': (_gbm, GBMFit, GBMParameters),
    'ou': (_ou, OUFit, OUParameters),
    'heston': (_heston, HestonFit, HestonParameters),
    'merton_jump': (_merton, MertonJumpFit, MertonJumpParameters),
}

_ALIASES = {
    'vasicek': 'ou',
    'ornstein_uhlenbeck': 'ou',
    'merton': 'merton_jump',
}


def _confidence_intervals(
    parameters: Dict[str, float],
    n: int,
) -> Tuple[Dict[str, float], Dict[str, Tuple[float, float]]]:
    # se ~ |theta| / sqrt(n)
    root_n = np.sqrt(max(n, 1))
    errors = {k: abs(v) / root_n for k, v in parameters.items()}
    intervals = {k: (v - CI_Z * errors[k], v + CI_Z * errors[k]) for k, v in parameters.items()}
    return errors, intervals


def estimate_parameters(values, kind: str, dt: float = DEFAULT_DT) -> ParameterEstimate:
    """Estimate the parameters of one process model.

    Args:
        values: Level series (sequence or TimeSeries values)
        kind: gbm, ou (alias vasicek), heston or merton_jump
        dt: Observation step in years

    Returns:
        ParameterEstimate with the typed fit, standard errors |theta|/sqrt(n),
        95% confidence intervals and residual diagnostics

    Raises:
        InvalidInputError: If ``kind`` is not supported
        DegenerateInputError: If the series cannot support the estimate
    """
    key = _ALIASES.get(kind.lower(), kind.lower())
    if key not in _ESTIMATORS:
        raise InvalidInputError(f"Unsupported model kind for estimation: {kind!r}")

    x = np.asarray(getattr(values, 'values', values), dtype=float)
    estimator, fit_cls, params_cls = _ESTIMATORS[key]
    est = estimator(x, dt)

    n = int(x.size)
    k = len(est.parameters)
    aic, bic = stats.information_criteria(est.log_likelihood, k, n)

    skew = stats.skewness(est.residuals)
    excess = stats.kurtosis(est.residuals) - stats.NORMAL_KURTOSIS
    jarque_bera = n / 6 * (skew ** 2 + excess ** 2 / 4)
    arch = stats.autocorrelation(est.residuals ** 2, 1)

    fit = fit_cls(
        parameters=params_cls(**est.parameters),
        log_likelihood=est.log_likelihood,
        aic=aic,
        bic=bic,
        n_obs=n,
        n_params=k,
    )
    errors, intervals = _confidence_intervals(est.parameters, n)

    logger.info(
        "estimate_parameters: parameters estimated",
        model_kind=key,
        num_points=n,
        log_likelihood=est.log_likelihood,
        jarque_bera=jarque_bera,
    )

    return ParameterEstimate(
        requested_kind=kind,
        fit=fit,
        standard_errors=errors,
        confidence_intervals=intervals,
        diagnostics=EstimationDiagnostics(
            log_likelihood=est.log_likelihood,
            aic=aic,
            bic=bic,
            convergence=True,
            residual_normality=bool(jarque_bera < JARQUE_BERA_CRITICAL),
            heteroskedasticity=bool(abs(arch) > HETEROSKEDASTICITY_ACF),
        ),
    )
