"""
Unit tests for the runtime package - registry and execution wrappers
"""

import time

import pytest
import numpy as np
from numpy.testing import assert_allclose

from stochrisk.config import Settings
from stochrisk.engine.errors import InvalidInputError, NotFoundError
from stochrisk.engine.models import StressTestReport, StressVariable, VaRReport
from stochrisk.runtime import (
    ExecutionTimeoutError,
    Registry,
    build_registry,
    timed,
    with_retry,
    with_timeout,
)

ANALYSIS_IDS = (
    'anomaly', 'backtest', 'contagion', 'copula', 'correlation', 'data_quality', 'early_warning',
    'model_comparison', 'model_selection', 'parameter_estimation', 'stress_test',
    'stress_var', 'tail_risk', 'transform', 'var',
)


class TestRegistry:
    """Tests for the Registry class."""

    def test_register_and_run(self):
        """Registered callables are dispatched by id."""
        registry = Registry()
        registry.register('double', lambda x: 2 * x)

        assert 'double' in registry
        assert len(registry) == 1
        assert registry.run('double', 21) == 42

    def test_unknown_id(self):
        """Unknown ids raise NotFoundError, which is also a LookupError."""
        with pytest.raises(NotFoundError, match="Unknown analysis id"):
            Registry().get('missing')
        with pytest.raises(LookupError):
            Registry().run('missing')

    def test_duplicate_id(self):
        """Registering an id twice raises InvalidInputError."""
        registry = Registry()
        registry.register('a', len)
        with pytest.raises(InvalidInputError, match="already registered"):
            registry.register('a', len)


class TestWithRetry:
    """Tests for the with_retry decorator."""

    def test_recovers_with_backoff(self):
        """Transient failures are retried with doubling delays."""
        delays = []
        calls = {'n': 0}

        @with_retry(max_retries=3, base_delay=1.0, sleep=delays.append)
        def flaky():
            calls['n'] += 1
            if calls['n'] < 3:
                raise ConnectionError("transient")
            return 'ok'

        assert flaky() == 'ok'
        assert calls['n'] == 3
        assert delays == [1.0, 2.0]

    def test_exhausted(self):
        """The last exception propagates after max_retries retries."""
        delays = []
        calls = {'n': 0}

        @with_retry(max_retries=2, base_delay=0.5, sleep=delays.append)
        def broken():
            calls['n'] += 1
            raise RuntimeError("down")

        with pytest.raises(RuntimeError, match="down"):
            broken()
        assert calls['n'] == 3
        assert delays == [0.5, 1.0]

    def test_engine_errors_not_retried(self):
        """Engine request errors fail immediately."""
        delays = []
        calls = {'n': 0}

        @with_retry(max_retries=3, sleep=delays.append)
        def invalid():
            calls['n'] += 1
            raise InvalidInputError("bad request")

        with pytest.raises(InvalidInputError):
            invalid()
        assert calls['n'] == 1
        assert delays == []


class TestWithTimeout:
    """Tests for with_timeout and timed."""

    def test_fast_call_returns(self):
        """Calls inside the time limit return their result."""
        assert with_timeout(5.0)(lambda: 7)() == 7

    def test_slow_call_times_out(self):
        """Calls over the time limit raise ExecutionTimeoutError."""
        slow = with_timeout(0.05)(lambda: time.sleep(1.0))
        with pytest.raises(ExecutionTimeoutError):
            slow()

    def test_exceptions_propagate(self):
        """Errors raised by the wrapped call reach the caller unchanged."""
        def fail():
            raise InvalidInputError("nope")

        with pytest.raises(InvalidInputError, match="nope"):
            with_timeout(5.0)(fail)()

    def test_timed_preserves_result(self):
        """timed returns the wrapped result and keeps the function name."""
        def add(a, b):
            return a + b

        wrapped = timed(add)
        assert wrapped(2, 3) == 5
        assert wrapped.__name__ == 'add'


class TestBuildRegistry:
    """Tests for build_registry function."""

    def test_all_analyses_registered(self):
        """Every engine analysis has an id."""
        assert build_registry(Settings()).ids() == ANALYSIS_IDS

    def test_settings_become_defaults(self, scenario_matrix):
        """PORTFOLIO_VALUE is the default scale of the var analysis."""
        registry = build_registry(Settings(PORTFOLIO_VALUE=100.0))
        report = registry.run('var', scenario_matrix)

        assert isinstance(report, VaRReport)
        assert_allclose(report.metrics.var_99, report.var_99 * 100.0)

    def test_call_kwargs_override_settings(self, scenario_matrix):
        """Keyword arguments at call time win over settings."""
        registry = build_registry(Settings(PORTFOLIO_VALUE=100.0))
        report = registry.run('var', scenario_matrix, portfolio_value=5.0)
        assert_allclose(report.metrics.var_99, report.var_99 * 5.0)

    def test_stress_var_factor(self, scenario_matrix):
        """STRESS_FACTOR feeds the stress_var analysis."""
        once = build_registry(Settings(STRESS_FACTOR=1.0)).run('stress_var', scenario_matrix)
        thrice = build_registry(Settings(STRESS_FACTOR=3.0)).run('stress_var', scenario_matrix)
        assert_allclose(thrice, 3 * once)

    def test_engine_error_passes_through(self):
        """Request errors from the engine surface without retries."""
        registry = build_registry(Settings(RETRY_BASE_DELAY_S=0.0))
        with pytest.raises(InvalidInputError, match="base_probability"):
            registry.run('stress_test', 2.0, [StressVariable(name='Equity Index')])

    def test_stress_test_dispatch(self):
        """Positional arguments are forwarded to the engine function."""
        registry = build_registry(Settings())
        report = registry.run('stress_test', 0.1, [StressVariable(name='Equity Index', historical_std=0.5)])
        assert isinstance(report, StressTestReport)
        assert np.isfinite(report.worst_case.probability)


class TestSettings:
    """Tests for environment-driven configuration."""

    def test_defaults(self):
        """Defaults form a valid configuration."""
        settings = Settings()
        assert settings.CALIBRATION_BINS == 10
        assert settings.GPD_THRESHOLD_PERCENTILE == 95.0
        assert settings.MAX_RETRIES == 3

    def test_environment_override(self, monkeypatch):
        """Environment variables override defaults."""
        monkeypatch.setenv('ROLLING_WINDOW', '30')
        monkeypatch.setenv('STRESS_FACTOR', '1.5')
        settings = Settings()

        assert settings.ROLLING_WINDOW == 30
        assert settings.STRESS_FACTOR == 1.5
