"""
VaR / Expected Shortfall Module

Historical and parametric Value at Risk, Expected Shortfall, max drawdown,
marginal VaR per factor and stress VaR over simulated scenario outcomes.
Losses are positive numbers; a scenario matrix has one row per scenario and
one column per risk factor, aggregated with equal weights.
"""

from typing import List, Optional, Sequence

import numpy as np
import structlog

from stochrisk.engine import stats
from stochrisk.engine.errors import InvalidInputError
from stochrisk.engine.models import FactorRiskContribution, RiskMetrics, VaRReport

logger = structlog.get_logger(__name__)

# z-scores for the common confidence levels
Z_SCORES = {
    0.90: 1.28,
    0.95: 1.645,
    0.99: 2.326,
    0.995: 2.576,
}

MARGINAL_EPSILON = 0.01
DEFAULT_STRESS_FACTOR = 2.0


def portfolio_losses(scenarios) -> np.ndarray:
    """Collapse a scenario matrix to one loss per scenario (row mean).

    A flat vector is returned unchanged.
    """
    x = np.asarray(scenarios, dtype=float)
    if x.size == 0:
        return np.array([], dtype=float)
    if x.ndim == 1:
        return x
    return x.mean(axis=1)


def _var_index(n: int, confidence: float) -> int:
    return min(int(np.floor((1 - confidence) * n)), n - 1)


def historical_var(losses: Sequence[float], confidence: float) -> float:
    """Loss at the (1 - confidence) position of the descending-sorted losses.

    Returns 0 for an empty loss vector.
    """
    x = np.asarray(losses, dtype=float)
    if x.size == 0:
        return 0.0
    ordered = np.sort(x)[::-1]
    return float(ordered[_var_index(x.size, confidence)])


def expected_shortfall(losses: Sequence[float], confidence: float) -> float:
    """Mean of the descending-sorted losses up to and including the VaR position."""
    x = np.asarray(losses, dtype=float)
    if x.size == 0:
        return 0.0
    ordered = np.sort(x)[::-1]
    return float(ordered[:_var_index(x.size, confidence) + 1].mean())


def parametric_var(mu: float, sigma: float, confidence: float) -> float:
    """Normal VaR mu + z * sigma.

    Uses the fixed z table for 90/95/99/99.5% and the exact normal quantile
    for any other level.
    """
    z = Z_SCORES.get(round(confidence, 6))
    if z is None:
        z = stats.normal_quantile(confidence)
    return mu + z * sigma


def max_drawdown(returns: Sequence[float]) -> float:
    """Largest peak-to-trough decline of the wealth path prod(1 + r), in [0, 1]."""
    x = np.asarray(returns, dtype=float)
    if x.size == 0:
        return 0.0
    wealth = np.cumprod(1 + x)
    peaks = np.maximum.accumulate(np.concatenate(([1.0], wealth)))[1:]
    with np.errstate(divide='ignore', invalid='ignore'):
        drawdowns = np.where(peaks > 0, (peaks - wealth) / peaks, 1.0)
    return float(np.clip(np.max(drawdowns), 0.0, 1.0))


def compute_risk_metrics(losses: Sequence[float], portfolio_value: float = 1.0) -> RiskMetrics:
    """VaR/ES at 95% and 99% scaled by portfolio value, with drawdown and volatility."""
    x = np.asarray(losses, dtype=float)
    return RiskMetrics(
        var_95=historical_var(x, 0.95) * portfolio_value,
        var_99=historical_var(x, 0.99) * portfolio_value,
        es_95=expected_shortfall(x, 0.95) * portfolio_value,
        es_99=expected_shortfall(x, 0.99) * portfolio_value,
        max_drawdown=max_drawdown(x),
        volatility=stats.std(x),
    )


def marginal_var(scenarios, factor_index: int, epsilon: float = MARGINAL_EPSILON) -> float:
    """Finite-difference sensitivity of VaR(99%) to a +epsilon proportional shock of one factor."""
    matrix = np.asarray(scenarios, dtype=float)
    base = historical_var(portfolio_losses(matrix), 0.99)
    shocked = matrix.copy()
    shocked[:, factor_index] *= 1 + epsilon
    return (historical_var(portfolio_losses(shocked), 0.99) - base) / epsilon


def stress_var(scenarios, stress_factor: float = DEFAULT_STRESS_FACTOR) -> float:
    """VaR(99%) after multiplying every scenario value by ``stress_factor``."""
    stressed = np.asarray(scenarios, dtype=float) * stress_factor
    return historical_var(portfolio_losses(stressed), 0.99)


def analyze_var(
    scenarios,
    portfolio_value: float = 1.0,
    factor_names: Optional[Sequence[str]] = None,
) -> VaRReport:
    """VaR/ES report with a per-factor marginal VaR breakdown.

    Args:
        scenarios: Scenario matrix (scenarios x factors) or flat loss vector
        portfolio_value: Scale applied to the monetary metrics
        factor_names: Column names for the breakdown (default factor_0..)

    Returns:
        VaRReport with fractional VaR/ES, scaled RiskMetrics and, for a
        matrix input, marginal VaR per factor as a share of base VaR(99%)
    """
    matrix = np.asarray(scenarios, dtype=float)
    losses = portfolio_losses(matrix)

    breakdown: List[FactorRiskContribution] = []
    if matrix.ndim == 2 and matrix.size > 0:
        names = list(factor_names) if factor_names is not None else [f'factor_{i}' for i in range(matrix.shape[1])]
        if len(names) != matrix.shape[1]:
            raise InvalidInputError(f"Expected {matrix.shape[1]} factor names, got {len(names)}")
        base = historical_var(losses, 0.99)
        for i, name in enumerate(names):
            mvar = marginal_var(matrix, i)
            breakdown.append(
                FactorRiskContribution(
                    factor=name,
                    marginal_var=mvar,
                    contribution_pct=mvar / base * 100 if base != 0 else 0.0,
                )
            )

    report = VaRReport(
        var_95=historical_var(losses, 0.95),
        var_99=historical_var(losses, 0.99),
        es_95=expected_shortfall(losses, 0.95),
        es_99=expected_shortfall(losses, 0.99),
        metrics=compute_risk_metrics(losses, portfolio_value),
        breakdown=tuple(breakdown),
    )

    logger.info(
        "analyze_var: risk metrics computed",
        num_scenarios=int(losses.size),
        var_99=report.var_99,
        es_99=report.es_99,
        num_factors=len(breakdown),
    )

    return report
