"""
Unit tests for comparator.py - Model Comparator Module
"""

import pytest
import numpy as np
from numpy.testing import assert_allclose

from stochrisk.engine.comparator import (
    DEFAULT_BRIER,
    DEFAULT_LOG_LOSS,
    compare_models,
    cv_score,
    estimate_log_likelihood,
)
from stochrisk.engine.errors import InvalidInputError
from stochrisk.engine.models import ModelCandidate


@pytest.fixture
def two_models():
    """Two candidates with supplied log-likelihoods; A fits better."""
    return [
        ModelCandidate(name='A', predictions=(0.2, 0.4, 0.6, 0.8, 0.5), n_parameters=2, log_likelihood=-10.0),
        ModelCandidate(name='B', predictions=(0.3, 0.3, 0.7, 0.7, 0.5), n_parameters=2, log_likelihood=-20.0),
    ]


class TestLogLikelihood:
    """Tests for estimate_log_likelihood function."""

    def test_constant_predictions(self):
        """Zero variance gives -inf."""
        assert estimate_log_likelihood([0.5, 0.5, 0.5]) == float('-inf')

    def test_finite_for_varied_predictions(self):
        """Varied predictions give a finite likelihood."""
        assert np.isfinite(estimate_log_likelihood([0.1, 0.4, 0.7]))


class TestCvScore:
    """Tests for cv_score function."""

    def test_aligned_prefix(self):
        """Only the overlapping prefix is scored."""
        assert_allclose(cv_score([0.9, 0.1], [True, False, True]), 0.99)

    def test_no_outcomes(self):
        """Empty outcomes give 0."""
        assert cv_score([0.9], []) == 0.0


class TestCompareModels:
    """Tests for compare_models function."""

    def test_single_model_raises(self, two_models):
        """Fewer than two models raises InvalidInputError."""
        with pytest.raises(InvalidInputError, match="At least two models"):
            compare_models(two_models[:1])

    def test_ranking_by_aic(self, two_models):
        """Lower AIC wins and relative scores span [0, 1]."""
        report = compare_models(two_models)

        assert report.winner == 'A'
        assert [r.model_name for r in report.ranking] == ['A', 'B']
        assert [r.rank for r in report.ranking] == [1, 2]
        assert_allclose([r.aic for r in report.ranking], [24.0, 44.0])
        assert [r.relative_score for r in report.ranking] == [1.0, 0.0]

    def test_default_scores_without_outcomes(self, two_models):
        """Models without outcomes get the uninformative Brier score and log loss."""
        for r in compare_models(two_models).ranking:
            assert r.brier_score == DEFAULT_BRIER
            assert r.log_loss == DEFAULT_LOG_LOSS
            assert r.cv_score is None

    def test_scores_with_outcomes(self):
        """Matching outcomes are scored and validation outcomes give cv_score."""
        report = compare_models(
            [
                {'name': 'sharp', 'predictions': [0.9, 0.1, 0.8, 0.2], 'n_parameters': 1,
                 'actuals': [True, False, True, False]},
                {'name': 'vague', 'predictions': [0.6, 0.4, 0.55, 0.45], 'n_parameters': 1,
                 'actuals': [True, False, True, False]},
            ],
            validation_actuals=[True, False, True, False],
        )
        by_name = {r.model_name: r for r in report.ranking}

        assert_allclose(by_name['sharp'].brier_score, 0.025)
        assert by_name['sharp'].brier_score < by_name['vague'].brier_score
        assert_allclose(by_name['sharp'].cv_score, 0.975)

    def test_degenerate_model_ranked_last(self, two_models):
        """A constant-prediction model has infinite AIC and relative score 0."""
        flat = ModelCandidate(name='flat', predictions=(0.5, 0.5, 0.5), n_parameters=1)
        report = compare_models(two_models + [flat])
        last = report.ranking[-1]

        assert last.model_name == 'flat'
        assert last.aic == float('inf')
        assert last.relative_score == 0.0

    def test_comparison_matrix(self, two_models):
        """Diagonal is neutral; off-diagonal cells carry LR and Vuong statistics."""
        matrix = compare_models(two_models).comparison_matrix

        assert matrix[0][0].likelihood_ratio == 1.0
        assert matrix[0][0].vuong_stat == 0.0
        assert matrix[0][0].preferred is None
        assert_allclose(matrix[0][1].likelihood_ratio, np.exp(10.0))
        assert_allclose(matrix[0][1].vuong_stat, 10.0 / np.sqrt(5))
        assert matrix[0][1].preferred == 'A'
        assert matrix[1][0].preferred == 'A'
        assert_allclose(matrix[1][0].vuong_stat, -10.0 / np.sqrt(5))
