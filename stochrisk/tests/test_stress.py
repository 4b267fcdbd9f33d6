"""
Unit tests for stress.py - Stress Testing Module
"""

import pytest
from numpy.testing import assert_allclose

from stochrisk.engine.errors import InvalidInputError
from stochrisk.engine.models import StressScenario, StressVariable
from stochrisk.engine.stress import (
    STRESS_SCENARIOS,
    canonical_name,
    library_scenarios,
    run_scenario,
    run_stress_tests,
    sensitivity_analysis,
)


@pytest.fixture
def market_variables():
    """Equity and volatility factors with unit historical std."""
    return [
        StressVariable(name='Equity Index', historical_std=1.0),
        StressVariable(name='Volatility', historical_std=1.0),
    ]


class TestScenarioLibrary:
    """Tests for the built-in scenarios."""

    def test_five_scenarios(self):
        """The library holds the five macro scenarios in order."""
        names = [s.name for s in library_scenarios()]
        assert names == ['GFC 2008', 'COVID-19 2020', 'Stagflation', 'Rate Shock', 'Currency Crisis']
        assert STRESS_SCENARIOS['gfc_2008']['shocks']['equity_index'] == -0.40

    def test_canonical_name(self):
        """Names are lowercased with whitespace runs collapsed to underscores."""
        assert canonical_name('Equity  Index') == 'equity_index'
        assert canonical_name('GDP\tGrowth') == 'gdp_growth'


class TestRunScenario:
    """Tests for run_scenario function."""

    def test_single_shock(self):
        """A -40% equity shock with zero std multiplies by 1.2."""
        gfc = library_scenarios()[0]
        result = run_scenario(0.1, [StressVariable(name='Equity Index')], gfc)

        assert_allclose(result.stressed_probability, 0.12)
        assert_allclose(result.change_pct, 20.0)
        assert result.affected_variables == ('Equity Index',)

    def test_clamped_to_upper_bound(self, market_variables):
        """Stressed probability never exceeds 0.99."""
        covid = library_scenarios()[1]
        assert run_scenario(0.5, market_variables, covid).stressed_probability == 0.99

    def test_unmatched_variables_unchanged(self):
        """A scenario that shocks none of the variables leaves the baseline."""
        scenario = StressScenario(name='Other', shocks={'oil_price': 0.5})
        result = run_scenario(0.3, [StressVariable(name='Equity Index')], scenario)

        assert result.stressed_probability == 0.3
        assert result.affected_variables == ()


class TestSensitivity:
    """Tests for sensitivity_analysis function."""

    def test_elasticity(self):
        """Elasticity is 0.3 * std below the clamp."""
        results = sensitivity_analysis(0.1, [StressVariable(name='x', historical_std=2.0)])

        assert [r.shock_pct for r in results] == [0.10, 0.25, 0.50]
        for r in results:
            assert_allclose(r.elasticity, 0.6)


class TestRunStressTests:
    """Tests for run_stress_tests function."""

    def test_worst_case_and_flags(self, market_variables):
        """COVID is the worst case; GFC and COVID are high impact."""
        report = run_stress_tests(0.1, market_variables)

        assert report.worst_case.scenario == 'COVID-19 2020'
        assert_allclose(report.worst_case.probability, 0.675)
        assert report.high_impact_scenarios == ('GFC 2008', 'COVID-19 2020')
        assert report.worst_case_exceeds_half
        assert report.sensitive_variables == ()

    def test_custom_shocks(self, market_variables):
        """Custom shocks run as a scenario named Custom after the library."""
        report = run_stress_tests(0.1, market_variables, custom_shocks={'equity_index': -0.2})

        assert len(report.scenarios) == 6
        assert report.scenarios[-1].scenario_name == 'Custom'
        assert report.scenarios[-1].affected_variables == ('Equity Index',)

    def test_extra_scenario(self, market_variables):
        """An extra named scenario is appended."""
        extra = StressScenario(name='Vol Spike', shocks={'volatility': 1.0})
        report = run_stress_tests(0.1, market_variables, scenario=extra)
        assert report.scenarios[-1].scenario_name == 'Vol Spike'

    def test_sensitive_variables(self):
        """Variables with elasticity above 1 are flagged once."""
        report = run_stress_tests(0.01, [StressVariable(name='Credit Spread', historical_std=5.0)])
        assert report.sensitive_variables == ('Credit Spread',)

    @pytest.mark.parametrize('base', [-0.1, 1.5])
    def test_invalid_base(self, base, market_variables):
        """A baseline outside [0, 1] raises InvalidInputError."""
        with pytest.raises(InvalidInputError, match="base_probability"):
            run_stress_tests(base, market_variables)
