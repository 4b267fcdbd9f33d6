"""
Model Comparator Module

Ranks competing probabilistic models by AIC, scores them with Brier score
and log loss when outcomes are known, and builds a pairwise likelihood-ratio
/ Vuong comparison matrix.
"""

from typing import Mapping, Optional, Sequence, Union

import numpy as np
import structlog

from stochrisk.engine import stats
from stochrisk.engine.backtest import brier_score, log_loss
from stochrisk.engine.errors import InvalidInputError
from stochrisk.engine.models import (
    ComparisonReport,
    ModelCandidate,
    ModelRanking,
    PairwiseComparison,
)

logger = structlog.get_logger(__name__)

# Scores of an uninformative 0.5 forecast, used when outcomes are unknown
DEFAULT_BRIER = 0.25
DEFAULT_LOG_LOSS = 0.693


def estimate_log_likelihood(predictions: Sequence[float]) -> float:
    """Gaussian log-likelihood of the predictions around their own mean.

    Returns -inf when the sample variance is not positive.
    """
    x = np.asarray(predictions, dtype=float)
    var = stats.variance(x)
    if var <= 0:
        return float('-inf')
    return stats.normal_log_likelihood(x, stats.mean(x), np.sqrt(var))


def _log_likelihood(model: ModelCandidate) -> float:
    if model.log_likelihood is not None:
        return model.log_likelihood
    return estimate_log_likelihood(model.predictions)


def cv_score(predictions: Sequence[float], actuals: Sequence[bool]) -> float:
    """1 - mean squared error over the aligned prefix; 0 without outcomes."""
    n = min(len(predictions), len(actuals))
    if n == 0:
        return 0.0
    return 1.0 - brier_score(np.asarray(predictions[:n], dtype=float), np.asarray(actuals[:n], dtype=bool))


def _compare_pair(a: ModelCandidate, b: ModelCandidate) -> PairwiseComparison:
    ll_a = _log_likelihood(a)
    ll_b = _log_likelihood(b)
    delta = 0.0 if ll_a == ll_b else ll_a - ll_b
    with np.errstate(over='ignore'):
        ratio = float(np.exp(delta))
    n = len(a.predictions)
    aic_a = stats.information_criteria(ll_a, a.n_parameters, n)[0]
    aic_b = stats.information_criteria(ll_b, b.n_parameters, len(b.predictions))[0]
    return PairwiseComparison(
        model_a=a.name,
        model_b=b.name,
        likelihood_ratio=ratio,
        vuong_stat=delta / np.sqrt(n) if n > 0 else 0.0,
        preferred=a.name if aic_a < aic_b else b.name,
    )


def comparison_matrix(models: Sequence[ModelCandidate]):
    """Full ordered pairwise matrix; diagonal cells have ratio 1, Vuong 0 and no preference."""
    rows = []
    for a in models:
        row = []
        for b in models:
            if a is b:
                row.append(PairwiseComparison(model_a=a.name, model_b=b.name, likelihood_ratio=1.0, vuong_stat=0.0, preferred=None))
            else:
                row.append(_compare_pair(a, b))
        rows.append(tuple(row))
    return tuple(rows)


def compare_models(
    candidates: Sequence[Union[ModelCandidate, Mapping]],
    validation_actuals: Optional[Sequence[bool]] = None,
) -> ComparisonReport:
    """Rank candidate models and compare them pairwise.

    Args:
        candidates: At least two models (ModelCandidate or plain mappings)
        validation_actuals: Optional held-out outcomes; each model then gets
            cv_score = 1 - MSE over the aligned prefix

    Returns:
        ComparisonReport with the AIC winner, the ranking (relative score
        normalised over the finite AIC range) and the pairwise matrix

    Raises:
        InvalidInputError: If fewer than two models are supplied
    """
    models = [c if isinstance(c, ModelCandidate) else ModelCandidate.model_validate(c) for c in candidates]
    if len(models) < 2:
        raise InvalidInputError(f"At least two models required for comparison, got {len(models)}")

    rankings = []
    for model in models:
        n = len(model.predictions)
        ll = _log_likelihood(model)
        aic, bic = stats.information_criteria(ll, model.n_parameters, n)

        brier, loss = DEFAULT_BRIER, DEFAULT_LOG_LOSS
        if model.actuals is not None and len(model.actuals) == n and n > 0:
            brier = brier_score(model.predictions, model.actuals)
            loss = log_loss(model.predictions, model.actuals)

        rankings.append(
            ModelRanking(
                model_name=model.name,
                rank=0,
                log_likelihood=ll,
                aic=aic,
                bic=bic,
                brier_score=brier,
                log_loss=loss,
                relative_score=0.0,
                cv_score=cv_score(model.predictions, validation_actuals) if validation_actuals is not None else None,
            )
        )

    rankings.sort(key=lambda r: r.aic)

    finite = [r.aic for r in rankings if np.isfinite(r.aic)]
    lo = min(finite) if finite else 0.0
    hi = max(finite) if finite else 0.0
    ranked = []
    for i, r in enumerate(rankings):
        if not np.isfinite(r.aic):
            relative = 0.0
        elif hi == lo:
            relative = 1.0
        else:
            relative = 1 - (r.aic - lo) / (hi - lo)
        ranked.append(r.model_copy(update={'rank': i + 1, 'relative_score': float(relative)}))

    report = ComparisonReport(
        winner=ranked[0].model_name,
        ranking=tuple(ranked),
        comparison_matrix=comparison_matrix(models),
    )

    logger.info(
        "compare_models: models ranked",
        num_models=len(models),
        winner=report.winner,
        best_aic=ranked[0].aic,
    )

    return report
