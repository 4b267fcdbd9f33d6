"""
Stochastic Risk Engine

Quantitative risk and model-selection analytics over numeric time series.
Pure computation modules operating on numpy arrays and frozen pydantic
result models.

Modules:
- stats: Shared statistics primitives
- transforms: Ordered preprocessing pipeline with a transformation log
- correlation: Pearson/Spearman/Kendall matrices, rolling correlation, regime changes
- sde: GBM / OU / Heston / Merton model selection by AIC
- estimation: Per-kind parameter estimation with standard errors and diagnostics
- copulas: Bivariate copula selection and tail dependence
- tail_risk: EVT tail index, GPD fit and extreme quantiles
- var: Historical/parametric VaR, Expected Shortfall, drawdown
- backtest: Probabilistic forecast scoring and calibration
- stress: Scenario library and sensitivity analysis
- contagion: Crisis detection, correlation shifts, network metrics
- comparator: Cross-model AIC ranking and pairwise comparison
- anomaly: Single-observation anomaly detection
- data_quality: Rule-based series validation
- early_warning: Threshold alerts and a composite risk score
"""

from .errors import DegenerateInputError, EngineError, InvalidInputError, NotFoundError
from .models import TimeSeries

# Transform pipeline
from .transforms import (
    apply_operations,
    denormalize,
    TransformOperation,
    OPERATION_TYPES,
)

# Correlation module
from .correlation import (
    pearson,
    spearman,
    kendall_tau,
    correlation,
    correlation_matrix,
    key_relationships,
    rolling_correlation,
    detect_regime_changes,
    analyze_correlations,
)

# SDE model selection and estimation
from .sde import (
    compute_series_diagnostics,
    fit_model,
    select_model,
    MODEL_KINDS,
)
from .estimation import estimate_parameters

# Copula module
from .copulas import (
    to_pseudo_observations,
    copula_log_likelihood,
    fit_copula,
    select_copula,
    tail_type,
    COPULA_FAMILIES,
)

# Tail risk module
from .tail_risk import (
    hill_estimator,
    pickands_estimator,
    estimate_tail_index,
    fit_gpd,
    extreme_quantiles,
    compare_to_normal,
    analyze_tail_risk,
)

# VaR module
from .var import (
    portfolio_losses,
    historical_var,
    expected_shortfall,
    parametric_var,
    max_drawdown,
    compute_risk_metrics,
    marginal_var,
    stress_var,
    analyze_var,
)

# Backtesting module
from .backtest import (
    match_records,
    hit_rate,
    brier_score,
    log_loss,
    auc_roc,
    reliability_diagram,
    calibrate,
    find_failure_periods,
    run_backtest,
)

# Stress testing module
from .stress import (
    canonical_name,
    run_scenario,
    sensitivity_analysis,
    run_stress_tests,
    STRESS_SCENARIOS,
)

# Contagion module
from .contagion import (
    detect_crisis_periods,
    correlation_changes,
    detect_contagion_events,
    spillover_index,
    network_analysis,
    detect_contagion,
)

from .comparator import compare_models
from .anomaly import detect_anomaly
from .data_quality import validate_series, validate_panel
from .early_warning import run_early_warning

__all__ = [
    # Errors and inputs
    'EngineError',
    'InvalidInputError',
    'NotFoundError',
    'DegenerateInputError',
    'TimeSeries',
    # Transforms
    'apply_operations',
    'denormalize',
    'TransformOperation',
    'OPERATION_TYPES',
    # Correlation
    'pearson',
    'spearman',
    'kendall_tau',
    'correlation',
    'correlation_matrix',
    'key_relationships',
    'rolling_correlation',
    'detect_regime_changes',
    'analyze_correlations',
    # SDE
    'compute_series_diagnostics',
    'fit_model',
    'select_model',
    'MODEL_KINDS',
    'estimate_parameters',
    # Copulas
    'to_pseudo_observations',
    'copula_log_likelihood',
    'fit_copula',
    'select_copula',
    'tail_type',
    'COPULA_FAMILIES',
    # Tail risk
    'hill_estimator',
    'pickands_estimator',
    'estimate_tail_index',
    'fit_gpd',
    'extreme_quantiles',
    'compare_to_normal',
    'analyze_tail_risk',
    # VaR
    'portfolio_losses',
    'historical_var',
    'expected_shortfall',
    'parametric_var',
    'max_drawdown',
    'compute_risk_metrics',
    'marginal_var',
    'stress_var',
    'analyze_var',
    # Backtesting
    'match_records',
    'hit_rate',
    'brier_score',
    'log_loss',
    'auc_roc',
    'reliability_diagram',
    'calibrate',
    'find_failure_periods',
    'run_backtest',
    # Stress testing
    'canonical_name',
    'run_scenario',
    'sensitivity_analysis',
    'run_stress_tests',
    'STRESS_SCENARIOS',
    # Contagion
    'detect_crisis_periods',
    'correlation_changes',
    'detect_contagion_events',
    'spillover_index',
    'network_analysis',
    'detect_contagion',
    # Comparison, anomaly and data quality
    'compare_models',
    'detect_anomaly',
    'validate_series',
    'validate_panel',
    # Early warning
    'run_early_warning',
]
