"""
Stress Testing Module

Applies named macro scenarios and caller-supplied shock maps to a baseline
event probability, and measures per-variable sensitivity at fixed shock
magnitudes. Results carry structured flags for high-impact scenarios and
highly sensitive variables.
"""

import re
from typing import Dict, List, Optional, Sequence

import structlog

from stochrisk.engine.errors import InvalidInputError
from stochrisk.engine.models import (
    ScenarioResult,
    SensitivityResult,
    StressScenario,
    StressTestReport,
    StressVariable,
    WorstCase,
)

logger = structlog.get_logger(__name__)


# Macro scenario library: canonical factor name -> shock
STRESS_SCENARIOS = {
    'gfc_2008': {
        'name': 'GFC 2008',
        'description': 'Global Financial Crisis, extreme market stress',
        'shocks': {
            'equity_index': -0.40,
            'volatility': 3.0,
            'credit_spread': 2.5,
            'gdp_growth': -0.08,
            'unemployment': 0.50,
            'interest_rate': -0.02,
        },
    },
    'covid_2020': {
        'name': 'COVID-19 2020',
        'description': 'Pandemic shock, sudden economic stop',
        'shocks': {
            'equity_index': -0.35,
            'volatility': 4.0,
            'gdp_growth': -0.15,
            'unemployment': 1.0,
            'oil_price': -0.60,
            'consumer_spending': -0.30,
        },
    },
    'stagflation': {
        'name': 'Stagflation',
        'description': 'High inflation with low growth',
        'shocks': {
            'inflation': 0.08,
            'gdp_growth': -0.03,
            'interest_rate': 0.04,
            'equity_index': -0.20,
            'bond_yield': 0.03,
        },
    },
    'rate_shock': {
        'name': 'Rate Shock',
        'description': 'Sudden interest rate increase',
        'shocks': {
            'interest_rate': 0.03,
            'bond_yield': 0.04,
            'equity_index': -0.15,
            'real_estate': -0.20,
            'credit_spread': 0.5,
        },
    },
    'currency_crisis': {
        'name': 'Currency Crisis',
        'description': 'Domestic currency depreciation shock',
        'shocks': {
            'usd_pln': 0.30,
            'eur_pln': 0.25,
            'inflation': 0.05,
            'interest_rate': 0.03,
            'import_costs': 0.25,
        },
    },
}

SENSITIVITY_SHOCKS = (0.10, 0.25, 0.50)
PROBABILITY_BOUNDS = (0.01, 0.99)
HIGH_IMPACT_CHANGE_PCT = 50.0
HIGH_ELASTICITY = 1.0


def canonical_name(name: str) -> str:
    """Lowercase with whitespace runs replaced by underscores."""
    return re.sub(r'\s+', '_', name.lower())


def library_scenarios() -> List[StressScenario]:
    """The built-in macro scenarios as StressScenario values."""
    return [
        StressScenario(name=s['name'], description=s['description'], shocks=s['shocks'])
        for s in STRESS_SCENARIOS.values()
    ]


def run_scenario(
    base_probability: float,
    variables: Sequence[StressVariable],
    scenario: StressScenario,
) -> ScenarioResult:
    """Stress a baseline probability under one scenario.

    Each variable whose canonical name has a shock multiplies the running
    factor by (1 + |shock| * (1 + historical_std) * 0.5). The stressed
    probability is clamped to [0.01, 0.99].
    """
    multiplier = 1.0
    affected = []
    for var in variables:
        shock = scenario.shocks.get(canonical_name(var.name))
        if shock is None:
            continue
        multiplier *= 1 + abs(shock) * (1 + var.historical_std) * 0.5
        affected.append(var.name)

    stressed = min(PROBABILITY_BOUNDS[1], max(PROBABILITY_BOUNDS[0], base_probability * multiplier))
    change = stressed - base_probability
    return ScenarioResult(
        scenario_name=scenario.name,
        stressed_probability=stressed,
        change_from_base=change,
        change_pct=change / base_probability * 100 if base_probability > 0 else 0.0,
        affected_variables=tuple(affected),
    )


def sensitivity_analysis(
    base_probability: float,
    variables: Sequence[StressVariable],
    shocks: Sequence[float] = SENSITIVITY_SHOCKS,
) -> List[SensitivityResult]:
    """Shock each variable independently at each magnitude.

    Elasticity is (delta probability / base) / shock.
    """
    results = []
    for var in variables:
        for shock in shocks:
            impact = shock * var.historical_std * 0.3
            stressed = min(PROBABILITY_BOUNDS[1], base_probability * (1 + impact))
            delta = stressed - base_probability
            results.append(
                SensitivityResult(
                    variable=var.name,
                    shock_pct=shock,
                    probability_impact=delta,
                    elasticity=(delta / base_probability) / shock if base_probability > 0 else 0.0,
                )
            )
    return results


def run_stress_tests(
    base_probability: float,
    variables: Sequence[StressVariable],
    scenario: Optional[StressScenario] = None,
    custom_shocks: Optional[Dict[str, float]] = None,
) -> StressTestReport:
    """Run the scenario library plus any custom scenario and shock map.

    Args:
        base_probability: Baseline event probability in [0, 1]
        variables: Model variables with their historical volatility
        scenario: Optional extra named scenario
        custom_shocks: Optional shock map run as a scenario named "Custom"

    Returns:
        StressTestReport with per-scenario results, sensitivities, the worst
        case (first scenario with the highest stressed probability) and flags
    """
    if not 0.0 <= base_probability <= 1.0:
        raise InvalidInputError(f"base_probability must be in [0, 1], got {base_probability}")

    scenarios = library_scenarios()
    if scenario is not None:
        scenarios.append(scenario)
    if custom_shocks:
        scenarios.append(
            StressScenario(name='Custom', description='Caller-defined shocks', shocks=custom_shocks)
        )

    results = [run_scenario(base_probability, variables, s) for s in scenarios]
    sensitivity = sensitivity_analysis(base_probability, variables)

    worst = results[0]
    for r in results[1:]:
        if r.stressed_probability > worst.stressed_probability:
            worst = r

    sensitive: List[str] = []
    for s in sensitivity:
        if abs(s.elasticity) > HIGH_ELASTICITY and s.variable not in sensitive:
            sensitive.append(s.variable)

    report = StressTestReport(
        base_probability=base_probability,
        scenarios=tuple(results),
        sensitivity=tuple(sensitivity),
        worst_case=WorstCase(
            scenario=worst.scenario_name,
            probability=worst.stressed_probability,
            change_from_base=worst.change_from_base,
        ),
        high_impact_scenarios=tuple(r.scenario_name for r in results if r.change_pct > HIGH_IMPACT_CHANGE_PCT),
        sensitive_variables=tuple(sensitive),
        worst_case_exceeds_half=worst.stressed_probability > 0.5,
    )

    logger.info(
        "run_stress_tests: scenarios evaluated",
        base_probability=base_probability,
        num_scenarios=len(results),
        worst_case=worst.scenario_name,
        worst_probability=worst.stressed_probability,
    )

    return report
