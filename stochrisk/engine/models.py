"""Pydantic value objects produced and consumed by the engine.

Every model is frozen: results are created by one computation and handed to
the next, never mutated in place. Fits are discriminated unions keyed on the
model kind / copula family, so each variant carries only its own parameters.
"""

from __future__ import annotations

import datetime as dt
from typing import Annotated, Any, Dict, Literal, Optional, Tuple, Union

import numpy as np
import pandas as pd
from pydantic import BaseModel, ConfigDict, Field, model_validator

FREQUENCIES = ("daily", "weekly", "monthly", "quarterly", "yearly")

Frequency = Literal["daily", "weekly", "monthly", "quarterly", "yearly"]
Severity = Literal["low", "medium", "high", "critical"]
Trend = Literal["stable", "increasing", "decreasing"]
AlertSeverity = Literal["critical", "warning", "info"]


class FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# Time series
# ---------------------------------------------------------------------------


class TimeSeries(FrozenModel):
    """Named, ordered sequence of (timestamp, value) observations.

    Values may contain NaN for missing observations (see the ``interpolate``
    transform). Timestamps must be strictly increasing.
    """

    name: str
    timestamps: Tuple[dt.datetime, ...]
    values: Tuple[float, ...]
    frequency: Frequency = "daily"

    @model_validator(mode="after")
    def _check_alignment(self) -> "TimeSeries":
        if len(self.timestamps) != len(self.values):
            raise ValueError(
                f"timestamps length {len(self.timestamps)} doesn't match values length {len(self.values)}"
            )
        for i in range(1, len(self.timestamps)):
            if self.timestamps[i] <= self.timestamps[i - 1]:
                raise ValueError(f"timestamps not strictly increasing at index {i}")
        return self

    @classmethod
    def from_values(
        cls,
        name: str,
        values,
        timestamps=None,
        frequency: str = "daily",
        start: str = "2020-01-01",
    ) -> "TimeSeries":
        """Build a series from raw values, generating timestamps when absent."""
        vals = tuple(float(v) for v in np.asarray(values, dtype=float).ravel())
        if timestamps is None:
            rule = {
                "daily": "D",
                "weekly": "W",
                "monthly": "MS",
                "quarterly": "QS",
                "yearly": "YS",
            }.get(frequency, "D")
            timestamps = pd.date_range(start, periods=len(vals), freq=rule)
        stamps = tuple(pd.Timestamp(t).to_pydatetime() for t in timestamps)
        return cls(name=name, timestamps=stamps, values=vals, frequency=frequency)

    @classmethod
    def from_pandas(cls, series: pd.Series, name: Optional[str] = None, frequency: str = "daily") -> "TimeSeries":
        """Build from a pandas Series with a DatetimeIndex."""
        return cls.from_values(
            name=name if name is not None else str(series.name),
            values=series.to_numpy(dtype=float),
            timestamps=pd.DatetimeIndex(series.index),
            frequency=frequency,
        )

    def to_pandas(self) -> pd.Series:
        return pd.Series(self.values, index=pd.DatetimeIndex(self.timestamps), name=self.name)

    def as_array(self) -> np.ndarray:
        return np.asarray(self.values, dtype=float)

    def __len__(self) -> int:
        return len(self.values)


class SeriesStats(FrozenModel):
    mean: float
    std: float
    min: float
    max: float
    skewness: float
    degenerate: bool = False  # std == 0 or fewer than 2 valid points


# ---------------------------------------------------------------------------
# Transform pipeline
# ---------------------------------------------------------------------------


class TransformOperation(FrozenModel):
    """One named step of the transform pipeline with its parameters."""

    type: str
    params: Dict[str, Any] = Field(default_factory=dict)


class TransformLogEntry(FrozenModel):
    operation: str
    params: Dict[str, Any]
    affected_values: int
    notes: Optional[str] = None


class TransformResult(FrozenModel):
    series: TimeSeries
    transformations: Tuple[TransformLogEntry, ...]
    original_stats: SeriesStats
    processed_stats: SeriesStats


# ---------------------------------------------------------------------------
# Stochastic process fits
# ---------------------------------------------------------------------------


class GBMParameters(FrozenModel):
    mu: float
    sigma: float


class OUParameters(FrozenModel):
    theta: float  # mean-reversion speed
    mu: float  # long-run mean
    sigma: float


class HestonParameters(FrozenModel):
    mu: float
    kappa: float
    theta: float  # long-run variance
    xi: float  # volatility of variance
    rho: float
    initial_variance: float


class MertonJumpParameters(FrozenModel):
    mu: float
    sigma: float
    jump_intensity: float
    jump_mean: float
    jump_std: float


class _FitBase(FrozenModel):
    log_likelihood: float
    aic: float
    bic: float
    n_obs: int
    n_params: int
    rank: int = 0


class GBMFit(_FitBase):
    model_kind: Literal["gbm"] = "gbm"
    parameters: GBMParameters


class OUFit(_FitBase):
    model_kind: Literal["ou"] = "ou"
    parameters: OUParameters


class HestonFit(_FitBase):
    model_kind: Literal["heston"] = "heston"
    parameters: HestonParameters


class MertonJumpFit(_FitBase):
    model_kind: Literal["merton_jump"] = "merton_jump"
    parameters: MertonJumpParameters


ModelFit = Annotated[
    Union[GBMFit, OUFit, HestonFit, MertonJumpFit],
    Field(discriminator="model_kind"),
]


class SeriesDiagnostics(FrozenModel):
    mean: float
    std: float
    skewness: float
    kurtosis: float
    excess_kurtosis: float
    autocorrelation_lag1: float
    has_mean_reversion: bool
    has_fat_tails: bool
    has_volatility_clustering: bool


class ModelSelection(FrozenModel):
    series_name: str
    recommended_model: Optional[str]
    ranking: Tuple[ModelFit, ...]
    statistics: SeriesDiagnostics
    parameters: Dict[str, float]
    failed_models: Tuple[str, ...] = ()


class EstimationDiagnostics(FrozenModel):
    log_likelihood: float
    aic: float
    bic: float
    convergence: bool
    residual_normality: bool
    heteroskedasticity: bool


class ParameterEstimate(FrozenModel):
    requested_kind: str
    fit: ModelFit
    standard_errors: Dict[str, float]
    confidence_intervals: Dict[str, Tuple[float, float]]
    diagnostics: EstimationDiagnostics


# ---------------------------------------------------------------------------
# Copulas
# ---------------------------------------------------------------------------


class GaussianCopulaParameters(FrozenModel):
    rho: float


class ClaytonCopulaParameters(FrozenModel):
    theta: float


class GumbelCopulaParameters(FrozenModel):
    theta: float


class StudentTCopulaParameters(FrozenModel):
    rho: float
    nu: float


class FrankCopulaParameters(FrozenModel):
    theta: float


class _CopulaFitBase(FrozenModel):
    log_likelihood: float
    aic: float
    bic: float
    n_params: int
    tail_lower: float = Field(ge=0.0, le=1.0)
    tail_upper: float = Field(ge=0.0, le=1.0)
    rank: int = 0


class GaussianCopulaFit(_CopulaFitBase):
    family: Literal["gaussian"] = "gaussian"
    parameters: GaussianCopulaParameters


class ClaytonCopulaFit(_CopulaFitBase):
    family: Literal["clayton"] = "clayton"
    parameters: ClaytonCopulaParameters


class GumbelCopulaFit(_CopulaFitBase):
    family: Literal["gumbel"] = "gumbel"
    parameters: GumbelCopulaParameters


class StudentTCopulaFit(_CopulaFitBase):
    family: Literal["student_t"] = "student_t"
    parameters: StudentTCopulaParameters


class FrankCopulaFit(_CopulaFitBase):
    family: Literal["frank"] = "frank"
    parameters: FrankCopulaParameters


CopulaFit = Annotated[
    Union[GaussianCopulaFit, ClaytonCopulaFit, GumbelCopulaFit, StudentTCopulaFit, FrankCopulaFit],
    Field(discriminator="family"),
]


class TailDependence(FrozenModel):
    lambda_lower: float
    lambda_upper: float
    is_asymmetric: bool
    tail_type: Literal["none", "lower", "upper", "both"]


class CorrelationMeasures(FrozenModel):
    pearson: float
    spearman: float
    kendall_tau: float


class CopulaSelection(FrozenModel):
    variable_names: Tuple[str, str]
    recommended_copula: str
    ranking: Tuple[CopulaFit, ...]
    tail_dependence: TailDependence
    correlation_measures: CorrelationMeasures


# ---------------------------------------------------------------------------
# Correlation
# ---------------------------------------------------------------------------


class CorrelationMatrix(FrozenModel):
    """Symmetric correlation matrix over an ordered list of variable names."""

    variables: Tuple[str, ...]
    values: Tuple[Tuple[float, ...], ...]
    method: str = "pearson"
    degenerate_pairs: Tuple[Tuple[str, str], ...] = ()

    @model_validator(mode="after")
    def _check_shape(self) -> "CorrelationMatrix":
        n = len(self.variables)
        if len(self.values) != n or any(len(row) != n for row in self.values):
            raise ValueError(f"correlation matrix must be {n}x{n}")
        for i in range(n):
            if self.values[i][i] != 1.0:
                raise ValueError(f"diagonal entry {i} must be 1")
            for j in range(i + 1, n):
                if self.values[i][j] != self.values[j][i]:
                    raise ValueError(f"matrix not symmetric at ({i}, {j})")
        return self

    def get(self, a: str, b: str) -> float:
        i = self.variables.index(a)
        j = self.variables.index(b)
        return self.values[i][j]

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(list(self.values), index=list(self.variables), columns=list(self.variables))


class KeyRelationship(FrozenModel):
    variable_a: str
    variable_b: str
    correlation: float
    strength: Literal["weak", "moderate", "strong", "very_strong"]
    direction: Literal["positive", "negative"]
    significance: float


class RollingCorrelation(FrozenModel):
    variable_pair: Tuple[str, str]
    dates: Tuple[dt.datetime, ...]
    values: Tuple[float, ...]
    current: float
    trend: Trend


class RegimeChange(FrozenModel):
    variable_pair: Tuple[str, str]
    index: int
    date: Optional[dt.datetime] = None
    correlation_before: float
    correlation_after: float
    change_magnitude: float
    severity: Severity


class CorrelationReport(FrozenModel):
    matrix: CorrelationMatrix
    key_relationships: Tuple[KeyRelationship, ...]
    rolling_correlations: Tuple[RollingCorrelation, ...]
    regime_changes: Tuple[RegimeChange, ...]


# ---------------------------------------------------------------------------
# Tail risk
# ---------------------------------------------------------------------------


class TailIndex(FrozenModel):
    hill_estimator: float
    pickands_estimator: float
    confidence_interval: Tuple[float, float]


class GPDFit(FrozenModel):
    shape: float
    scale: float
    threshold: float
    n_exceedances: int
    goodness_of_fit: float
    degenerate: bool = False


class ExtremeQuantile(FrozenModel):
    probability: float
    quantile_normal: float
    quantile_gpd: float
    ratio: float


class TailComparison(FrozenModel):
    skewness: float
    kurtosis: float
    excess_kurtosis: float
    jarque_bera_stat: float
    is_normal_rejected: bool
    tail_heaviness: Literal["light", "normal", "heavy", "very_heavy"]


class TailRiskReport(FrozenModel):
    has_fat_tails: bool
    tail_index: TailIndex
    gpd_fit: GPDFit
    extreme_quantiles: Tuple[ExtremeQuantile, ...]
    comparison_to_normal: TailComparison


# ---------------------------------------------------------------------------
# VaR / ES
# ---------------------------------------------------------------------------


class RiskMetrics(FrozenModel):
    var_95: float
    var_99: float
    es_95: float
    es_99: float
    max_drawdown: float = Field(ge=0.0, le=1.0)
    volatility: float = Field(ge=0.0)


class FactorRiskContribution(FrozenModel):
    factor: str
    marginal_var: float
    contribution_pct: float


class VaRReport(FrozenModel):
    var_95: float
    var_99: float
    es_95: float
    es_99: float
    metrics: RiskMetrics
    breakdown: Tuple[FactorRiskContribution, ...] = ()


# ---------------------------------------------------------------------------
# Backtesting
# ---------------------------------------------------------------------------


class PredictionRecord(FrozenModel):
    date: Union[dt.datetime, dt.date]
    event_id: str
    predicted_probability: float = Field(ge=0.0, le=1.0)


class OutcomeRecord(FrozenModel):
    date: Union[dt.datetime, dt.date]
    event_id: str
    occurred: bool


class MatchedRecord(FrozenModel):
    date: dt.date
    event_id: str
    prediction: float
    actual: bool


class OverallMetrics(FrozenModel):
    hit_rate: float
    brier_score: float
    log_loss: float
    auc_roc: float
    n_predictions: int
    period_start: dt.date
    period_end: dt.date


class CalibrationResult(FrozenModel):
    hosmer_lemeshow_stat: float
    p_value: float
    calibration_slope: float
    calibration_intercept: float
    is_well_calibrated: bool


class ReliabilityPoint(FrozenModel):
    bin_midpoint: float
    predicted_avg: float
    actual_rate: float
    count: int
    error: float


class FailurePeriod(FrozenModel):
    start: dt.date
    end: dt.date
    n_predictions: int
    avg_error: float


class BacktestReport(FrozenModel):
    overall_metrics: OverallMetrics
    calibration: CalibrationResult
    reliability_diagram: Tuple[ReliabilityPoint, ...]
    failure_periods: Tuple[FailurePeriod, ...]


# ---------------------------------------------------------------------------
# Stress testing
# ---------------------------------------------------------------------------


class StressVariable(FrozenModel):
    name: str
    current_value: float = 0.0
    historical_std: float = 0.0
    model_type: str = ""


class StressScenario(FrozenModel):
    name: str
    description: str = ""
    shocks: Dict[str, float]


class ScenarioResult(FrozenModel):
    scenario_name: str
    stressed_probability: float
    change_from_base: float
    change_pct: float
    affected_variables: Tuple[str, ...]


class SensitivityResult(FrozenModel):
    variable: str
    shock_pct: float
    probability_impact: float
    elasticity: float


class WorstCase(FrozenModel):
    scenario: str
    probability: float
    change_from_base: float


class StressTestReport(FrozenModel):
    base_probability: float
    scenarios: Tuple[ScenarioResult, ...]
    sensitivity: Tuple[SensitivityResult, ...]
    worst_case: WorstCase
    high_impact_scenarios: Tuple[str, ...]
    sensitive_variables: Tuple[str, ...]
    worst_case_exceeds_half: bool


# ---------------------------------------------------------------------------
# Contagion
# ---------------------------------------------------------------------------


class CrisisPeriod(FrozenModel):
    name: str
    start: dt.datetime
    end: dt.datetime


class CorrelationChange(FrozenModel):
    pair: Tuple[str, str]
    crisis_name: str
    pre_crisis_corr: float
    crisis_corr: float
    change: float
    is_significant: bool
    z_stat: float


class ContagionEvent(FrozenModel):
    date: dt.datetime
    crisis_name: str
    source_variable: str
    affected_variables: Tuple[str, ...]
    severity: Severity
    correlation_before: float
    correlation_after: float
    correlation_jump: float


class NodeScore(FrozenModel):
    variable: str
    score: float


class NetworkAnalysis(FrozenModel):
    centrality: Tuple[NodeScore, ...]
    clusters: Tuple[Tuple[str, ...], ...]
    systemic_risk_contribution: Tuple[NodeScore, ...]


class ContagionReport(FrozenModel):
    contagion_detected: bool
    crisis_periods: Tuple[CrisisPeriod, ...]
    contagion_events: Tuple[ContagionEvent, ...]
    correlation_changes: Tuple[CorrelationChange, ...]
    spillover_index: float
    network_analysis: NetworkAnalysis


# ---------------------------------------------------------------------------
# Model comparison
# ---------------------------------------------------------------------------


class ModelCandidate(FrozenModel):
    name: str
    predictions: Tuple[float, ...]
    n_parameters: int
    actuals: Optional[Tuple[bool, ...]] = None
    log_likelihood: Optional[float] = None
    model_type: str = ""
    parameters: Dict[str, float] = Field(default_factory=dict)


class ModelRanking(FrozenModel):
    model_name: str
    rank: int
    log_likelihood: float
    aic: float
    bic: float
    brier_score: float
    log_loss: float
    relative_score: float
    cv_score: Optional[float] = None


class PairwiseComparison(FrozenModel):
    model_a: str
    model_b: str
    likelihood_ratio: float
    vuong_stat: float
    preferred: Optional[str]  # None on the diagonal


class ComparisonReport(FrozenModel):
    winner: str
    ranking: Tuple[ModelRanking, ...]
    comparison_matrix: Tuple[Tuple[PairwiseComparison, ...], ...]


# ---------------------------------------------------------------------------
# Anomaly detection
# ---------------------------------------------------------------------------


class DetectionScore(FrozenModel):
    method: str
    score: float
    threshold: float
    is_anomaly: bool


class AnomalyDetail(FrozenModel):
    index: int
    value: float
    expected: float
    deviation: float
    direction: Literal["spike", "dip"]
    severity: Severity


class HistoricalContext(FrozenModel):
    mean: float
    std: float
    min: float
    max: float
    percentile_5: float
    percentile_95: float
    trend: Trend


class AnomalyResult(FrozenModel):
    is_anomaly: bool
    details: Optional[AnomalyDetail]
    detection_scores: Tuple[DetectionScore, ...]
    historical_context: HistoricalContext


# ---------------------------------------------------------------------------
# Early warning
# ---------------------------------------------------------------------------


class ThresholdConfig(FrozenModel):
    """Alert thresholds; VaR is a fraction of portfolio value."""

    var_99_max: float = 0.15
    correlation_change_max: float = 0.3
    anomaly_z_score_max: float = 3.0
    event_probability_max: float = 0.3


class EventProbability(FrozenModel):
    event_name: str
    probability: float = Field(ge=0.0, le=1.0)
    ci_lower: float = 0.0
    ci_upper: float = 1.0
    change_from_last: float = 0.0


class WarningAlert(FrozenModel):
    severity: AlertSeverity
    category: Literal["var", "drawdown", "correlation", "anomaly", "event_probability", "event_change"]
    title: str
    message: str
    data: Dict[str, Any] = Field(default_factory=dict)


class EarlyWarningReport(FrozenModel):
    risk_score: int = Field(ge=0, le=100)
    risk_level: Severity
    alerts: Tuple[WarningAlert, ...]
    summary: str


# ---------------------------------------------------------------------------
# Data quality
# ---------------------------------------------------------------------------


class ValidationIssue(FrozenModel):
    severity: Literal["error", "warning"]
    rule: str
    variable: str
    message: str
    affected_indices: Tuple[int, ...] = ()


class DataStatistics(FrozenModel):
    count: int
    missing: int
    min: float
    max: float
    mean: float
    std: float
    skewness: float
    excess_kurtosis: float


class SeriesValidationReport(FrozenModel):
    variable_name: str
    is_valid: bool
    quality_score: float
    completeness: float
    statistics: DataStatistics
    issues: Tuple[ValidationIssue, ...]


class PanelValidationReport(FrozenModel):
    is_valid: bool
    overall_quality_score: float
    series_reports: Tuple[SeriesValidationReport, ...]


def floats(values) -> Tuple[float, ...]:
    """Coerce an array-like into a tuple of Python floats."""
    return tuple(float(v) for v in np.asarray(values, dtype=float).ravel())


def severity_tier(magnitude: float) -> str:
    """Map a correlation jump magnitude onto a severity tier."""
    m = abs(magnitude)
    if m > 0.5:
        return "critical"
    if m > 0.35:
        return "high"
    if m > 0.25:
        return "medium"
    return "low"
