"""
Copula Selection Module

Fits bivariate copula families to a pair of series and ranks them by AIC.
Parameters come from Kendall's tau inversions rather than full maximum
likelihood; each family's closed-form density is then evaluated at that
parameter. The Student-t likelihood reuses the Gaussian one scaled by a
constant, and Frank uses a linear tau-to-theta approximation.
"""

from typing import List, Optional, Sequence, Tuple

import numpy as np
import structlog
from scipy.stats import norm, t as student_t

from stochrisk.engine import stats
from stochrisk.engine.correlation import kendall_tau, pearson, spearman
from stochrisk.engine.errors import InvalidInputError
from stochrisk.engine.models import (
    ClaytonCopulaFit,
    ClaytonCopulaParameters,
    CopulaSelection,
    CorrelationMeasures,
    FrankCopulaFit,
    FrankCopulaParameters,
    GaussianCopulaFit,
    GaussianCopulaParameters,
    GumbelCopulaFit,
    GumbelCopulaParameters,
    StudentTCopulaFit,
    StudentTCopulaParameters,
    TailDependence,
)

logger = structlog.get_logger(__name__)

COPULA_FAMILIES = ('gaussian', 'clayton', 'gumbel', 'student_t', 'frank')

STUDENT_T_NU = 4.0
STUDENT_T_LL_SCALE = 0.95
FRANK_TAU_SLOPE = 5.736
MAX_TAU = 0.999
CLAMP_LO, CLAMP_HI = 0.001, 0.999
TAIL_THRESHOLD = 0.01
ASYMMETRY_THRESHOLD = 0.05


def to_pseudo_observations(data: Sequence[float]) -> np.ndarray:
    """Map observations to (0, 1) via rank / (n + 1)."""
    x = np.asarray(data, dtype=float).ravel()
    return stats.rank(x) / (x.size + 1)


# ---------------------------------------------------------------------------
# Log-likelihoods
# ---------------------------------------------------------------------------


def _gaussian_ll(u: np.ndarray, v: np.ndarray, rho: float) -> float:
    if abs(rho) >= 1:
        return float('-inf')
    x = norm.ppf(np.clip(u, CLAMP_LO, CLAMP_HI))
    y = norm.ppf(np.clip(v, CLAMP_LO, CLAMP_HI))
    r2 = rho * rho
    ll = -u.size / 2 * np.log(1 - r2)
    ll -= float(np.sum((r2 * (x * x + y * y) - 2 * rho * x * y) / (2 * (1 - r2))))
    return float(ll)


def _clayton_ll(u: np.ndarray, v: np.ndarray, theta: float) -> float:
    if theta <= 0:
        return float('-inf')
    ui = np.maximum(CLAMP_LO, u)
    vi = np.maximum(CLAMP_LO, v)
    with np.errstate(over='ignore', divide='ignore', invalid='ignore'):
        terms = (
            np.log(1 + theta)
            - (1 + theta) * np.log(ui)
            - (1 + theta) * np.log(vi)
            - (2 + 1 / theta) * np.log(ui ** -theta + vi ** -theta - 1)
        )
        ll = float(np.sum(terms))
    return ll if not np.isnan(ll) else float('-inf')


def _gumbel_ll(u: np.ndarray, v: np.ndarray, theta: float) -> float:
    if theta < 1:
        return float('-inf')
    ui = np.clip(u, CLAMP_LO, CLAMP_HI)
    vi = np.clip(v, CLAMP_LO, CLAMP_HI)
    lu = -np.log(ui)
    lv = -np.log(vi)
    with np.errstate(over='ignore', divide='ignore', invalid='ignore'):
        s = lu ** theta + lv ** theta
        a = s ** (1 / theta)
        terms = (
            -a
            + np.log(a + theta - 1)
            + (theta - 1) * (np.log(lu) + np.log(lv))
            + (1 / theta - 2) * np.log(s)
            - np.log(ui * vi)
        )
        ll = float(np.sum(terms))
    return ll if not np.isnan(ll) else float('-inf')


def _student_t_ll(u: np.ndarray, v: np.ndarray, rho: float, nu: float) -> float:
    return _gaussian_ll(u, v, rho) * STUDENT_T_LL_SCALE


def _frank_ll(u: np.ndarray, v: np.ndarray, theta: float) -> float:
    if abs(theta) < 0.001:
        return float('-inf')
    et = np.exp(-theta)
    etu = np.exp(-theta * u)
    etv = np.exp(-theta * v)
    num = -theta * (1 - et) * etu * etv
    den = ((1 - et) - (1 - etu) * (1 - etv)) ** 2
    mask = den > 0
    with np.errstate(divide='ignore'):
        ll = float(np.sum(np.log(np.abs(num[mask] / den[mask]))))
    return ll


def copula_log_likelihood(family: str, u: Sequence[float], v: Sequence[float], **params) -> float:
    """Evaluate a family's log-likelihood on pseudo-observations.

    Degenerate parameters (|rho| >= 1, theta outside the family's domain)
    give -inf rather than raising.
    """
    ua = np.asarray(u, dtype=float)
    va = np.asarray(v, dtype=float)
    if family == 'gaussian':
        return _gaussian_ll(ua, va, params['rho'])
    if family == 'clayton':
        return _clayton_ll(ua, va, params['theta'])
    if family == 'gumbel':
        return _gumbel_ll(ua, va, params['theta'])
    if family == 'student_t':
        return _student_t_ll(ua, va, params['rho'], params.get('nu', STUDENT_T_NU))
    if family == 'frank':
        return _frank_ll(ua, va, params['theta'])
    raise InvalidInputError(f"Unknown copula family: {family!r}")


# ---------------------------------------------------------------------------
# Fitting
# ---------------------------------------------------------------------------


def student_t_tail_dependence(rho: float, nu: float) -> float:
    """Symmetric tail coefficient 2 * T_{nu+1}(-sqrt((nu+1)(1-rho)/(1+rho)))."""
    if rho <= -1:
        return 0.0
    if rho >= 1:
        return 1.0
    x = np.sqrt((nu + 1) * (1 - rho) / (1 + rho))
    return float(2 * student_t.sf(x, df=nu + 1))


def fit_copula(u: Sequence[float], v: Sequence[float], family: str, tau: float):
    """Fit one copula family at its Kendall's tau inversion.

    Args:
        u: Pseudo-observations of the first series
        v: Pseudo-observations of the second series
        family: gaussian, clayton, gumbel, student_t or frank
        tau: Kendall's tau of the original pair

    Returns:
        Family-specific CopulaFit variant (rank 0 until ranked)
    """
    ua = np.asarray(u, dtype=float)
    va = np.asarray(v, dtype=float)
    n = ua.size
    tau_c = min(tau, MAX_TAU)

    if family == 'gaussian':
        rho = float(np.sin(np.pi * tau / 2))
        ll = _gaussian_ll(ua, va, rho)
        k = 1
        aic, bic = stats.information_criteria(ll, k, n)
        return GaussianCopulaFit(
            parameters=GaussianCopulaParameters(rho=rho),
            log_likelihood=ll, aic=aic, bic=bic, n_params=k,
            tail_lower=0.0, tail_upper=0.0,
        )

    if family == 'clayton':
        theta = max(0.01, 2 * tau_c / (1 - tau_c))
        ll = _clayton_ll(ua, va, theta)
        k = 1
        aic, bic = stats.information_criteria(ll, k, n)
        return ClaytonCopulaFit(
            parameters=ClaytonCopulaParameters(theta=theta),
            log_likelihood=ll, aic=aic, bic=bic, n_params=k,
            tail_lower=float(2 ** (-1 / theta)), tail_upper=0.0,
        )

    if family == 'gumbel':
        theta = max(1.0, 1 / (1 - tau_c))
        ll = _gumbel_ll(ua, va, theta)
        k = 1
        aic, bic = stats.information_criteria(ll, k, n)
        return GumbelCopulaFit(
            parameters=GumbelCopulaParameters(theta=theta),
            log_likelihood=ll, aic=aic, bic=bic, n_params=k,
            tail_lower=0.0, tail_upper=float(2 - 2 ** (1 / theta)),
        )

    if family == 'student_t':
        rho = float(np.sin(np.pi * tau / 2))
        ll = _student_t_ll(ua, va, rho, STUDENT_T_NU)
        k = 2
        aic, bic = stats.information_criteria(ll, k, n)
        tail = student_t_tail_dependence(rho, STUDENT_T_NU)
        return StudentTCopulaFit(
            parameters=StudentTCopulaParameters(rho=rho, nu=STUDENT_T_NU),
            log_likelihood=ll, aic=aic, bic=bic, n_params=k,
            tail_lower=tail, tail_upper=tail,
        )

    if family == 'frank':
        theta = FRANK_TAU_SLOPE * tau
        ll = _frank_ll(ua, va, theta)
        k = 1
        aic, bic = stats.information_criteria(ll, k, n)
        return FrankCopulaFit(
            parameters=FrankCopulaParameters(theta=theta),
            log_likelihood=ll, aic=aic, bic=bic, n_params=k,
            tail_lower=0.0, tail_upper=0.0,
        )

    raise InvalidInputError(f"Unknown copula family: {family!r}")


def tail_type(lower: float, upper: float, threshold: float = TAIL_THRESHOLD) -> str:
    """Classify tail dependence as none, lower, upper or both."""
    has_lower = lower > threshold
    has_upper = upper > threshold
    if has_lower and has_upper:
        return 'both'
    if has_lower:
        return 'lower'
    if has_upper:
        return 'upper'
    return 'none'


def select_copula(
    series_a: Sequence[float],
    series_b: Sequence[float],
    families: Optional[Sequence[str]] = None,
    variable_names: Tuple[str, str] = ('a', 'b'),
) -> CopulaSelection:
    """Fit each requested family to a pair of series and rank by AIC.

    Args:
        series_a: First series
        series_b: Second series, same length as the first
        families: Families to test (default: all five)
        variable_names: Names reported with the selection

    Returns:
        CopulaSelection whose recommended copula is the rank-1 family

    Raises:
        InvalidInputError: On unequal lengths or an unknown or empty family list
    """
    a = np.asarray(series_a, dtype=float).ravel()
    b = np.asarray(series_b, dtype=float).ravel()
    if a.size != b.size:
        raise InvalidInputError(f"Series lengths differ: {a.size} vs {b.size}")

    requested = list(COPULA_FAMILIES if families is None else families)
    unknown = [f for f in requested if f not in COPULA_FAMILIES]
    if unknown:
        raise InvalidInputError(f"Unknown copula family: {unknown[0]!r}")
    if not requested:
        raise InvalidInputError("At least one copula family required")

    u = to_pseudo_observations(a)
    v = to_pseudo_observations(b)
    measures = CorrelationMeasures(
        pearson=pearson(a, b),
        spearman=spearman(a, b),
        kendall_tau=kendall_tau(a, b),
    )

    fits: List = [fit_copula(u, v, family, measures.kendall_tau) for family in requested]
    fits.sort(key=lambda f: f.aic)
    ranking = tuple(f.model_copy(update={'rank': i + 1}) for i, f in enumerate(fits))
    best = ranking[0]

    tail = TailDependence(
        lambda_lower=best.tail_lower,
        lambda_upper=best.tail_upper,
        is_asymmetric=abs(best.tail_lower - best.tail_upper) > ASYMMETRY_THRESHOLD,
        tail_type=tail_type(best.tail_lower, best.tail_upper),
    )

    logger.info(
        "select_copula: copulas ranked",
        variables=list(variable_names),
        num_points=int(a.size),
        kendall_tau=measures.kendall_tau,
        recommended=best.family,
    )

    return CopulaSelection(
        variable_names=tuple(variable_names),
        recommended_copula=best.family,
        ranking=ranking,
        tail_dependence=tail,
        correlation_measures=measures,
    )
