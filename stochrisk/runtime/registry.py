"""
Analysis Registry

Maps analysis ids onto engine entry points so hosts can dispatch requests
by name. Registries are caller-constructed values; there is no global
instance.
"""

import functools
from typing import Any, Callable, Dict, Optional, Tuple

import structlog

from stochrisk.config import Settings, get_settings
from stochrisk.log_config import configure_logging
from stochrisk.engine import (
    analyze_correlations,
    analyze_tail_risk,
    analyze_var,
    apply_operations,
    compare_models,
    detect_anomaly,
    detect_contagion,
    estimate_parameters,
    run_backtest,
    run_early_warning,
    run_stress_tests,
    select_copula,
    select_model,
    stress_var,
    validate_panel,
)
from stochrisk.engine.errors import InvalidInputError, NotFoundError
from stochrisk.runtime.execution import timed, with_retry, with_timeout

logger = structlog.get_logger(__name__)


class Registry:
    """Id -> callable map with lookup errors typed for the engine."""

    def __init__(self) -> None:
        self._entries: Dict[str, Callable[..., Any]] = {}

    def register(self, analysis_id: str, fn: Callable[..., Any]) -> None:
        if analysis_id in self._entries:
            raise InvalidInputError(f"Analysis already registered: {analysis_id!r}")
        self._entries[analysis_id] = fn

    def get(self, analysis_id: str) -> Callable[..., Any]:
        try:
            return self._entries[analysis_id]
        except KeyError:
            raise NotFoundError(f"Unknown analysis id: {analysis_id!r}") from None

    def run(self, analysis_id: str, *args, **kwargs) -> Any:
        fn = self.get(analysis_id)
        logger.info("registry.run: dispatching", analysis_id=analysis_id)
        return fn(*args, **kwargs)

    def ids(self) -> Tuple[str, ...]:
        return tuple(sorted(self._entries))

    def __contains__(self, analysis_id: str) -> bool:
        return analysis_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)


def build_registry(settings: Optional[Settings] = None) -> Registry:
    """Registry of every engine analysis with settings mapped onto defaults.

    Each entry is timed, bounded by EXECUTION_TIMEOUT_S and retried with
    MAX_RETRIES / RETRY_BASE_DELAY_S. Call-time keyword arguments override
    the settings-derived defaults. Logging is configured at LOG_LEVEL.
    """
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL)

    entries = {
        'transform': apply_operations,
        'correlation': functools.partial(analyze_correlations, window=settings.ROLLING_WINDOW),
        'model_selection': functools.partial(select_model, dt=settings.SDE_DT),
        'parameter_estimation': functools.partial(estimate_parameters, dt=settings.ESTIMATION_DT),
        'copula': select_copula,
        'tail_risk': functools.partial(analyze_tail_risk, threshold_percentile=settings.GPD_THRESHOLD_PERCENTILE),
        'var': functools.partial(analyze_var, portfolio_value=settings.PORTFOLIO_VALUE),
        'stress_var': functools.partial(stress_var, stress_factor=settings.STRESS_FACTOR),
        'backtest': functools.partial(run_backtest, n_bins=settings.CALIBRATION_BINS),
        'stress_test': run_stress_tests,
        'contagion': detect_contagion,
        'model_comparison': compare_models,
        'anomaly': detect_anomaly,
        'data_quality': validate_panel,
        'early_warning': run_early_warning,
    }

    registry = Registry()
    for analysis_id, fn in entries.items():
        if isinstance(fn, functools.partial):
            functools.update_wrapper(fn, fn.func)
        wrapped = with_retry(settings.MAX_RETRIES, settings.RETRY_BASE_DELAY_S)(
            with_timeout(settings.EXECUTION_TIMEOUT_S)(timed(fn))
        )
        registry.register(analysis_id, wrapped)

    logger.info("build_registry: registry built", num_analyses=len(registry))
    return registry
