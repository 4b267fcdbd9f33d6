"""
Shared test fixtures for the stochrisk engine test suite.

Provides consistent test data across all test modules:
- Sample price series (geometric random walk) as TimeSeries
- Sample return vectors, normal and heavy tailed
- A correlated panel of series for correlation and contagion analysis
- Scenario matrices for VaR
"""

import pytest
import numpy as np
import pandas as pd

from stochrisk.engine.models import TimeSeries


@pytest.fixture
def sample_prices():
    """Geometric random-walk price series over 300 business days.

    Returns:
        TimeSeries: Daily prices starting near 100
    """
    np.random.seed(42)
    dates = pd.bdate_range('2023-01-02', periods=300)
    returns = np.random.normal(0.0005, 0.02, len(dates))
    prices = 100 * np.exp(np.cumsum(returns))
    return TimeSeries.from_values('SPX', prices, timestamps=dates)


@pytest.fixture
def mean_reverting_levels():
    """AR(1) levels around 5 with strong mean reversion (phi = 0.5).

    Returns:
        np.ndarray: 400 observations
    """
    np.random.seed(42)
    x = np.empty(400)
    x[0] = 5.0
    for i in range(1, 400):
        x[i] = 5.0 + 0.5 * (x[i - 1] - 5.0) + np.random.normal(0, 0.2)
    return x


@pytest.fixture
def sample_returns():
    """Normally distributed daily returns.

    Returns:
        np.ndarray: 1000 draws from N(0, 0.01^2)
    """
    np.random.seed(42)
    return np.random.normal(0, 0.01, 1000)


@pytest.fixture
def heavy_tailed_returns():
    """Student-t (df=3) returns with heavy tails.

    Returns:
        np.ndarray: 2000 draws scaled by 0.01
    """
    np.random.seed(42)
    return np.random.standard_t(3, 2000) * 0.01


@pytest.fixture
def correlated_panel():
    """Three price-like series over 250 business days.

    GOLD is driven by SPX, BOND is independent.

    Returns:
        List[TimeSeries]: [SPX, GOLD, BOND]
    """
    np.random.seed(42)
    dates = pd.bdate_range('2023-01-02', periods=250)
    base = np.random.normal(0, 0.01, len(dates))
    other = np.random.normal(0, 0.01, len(dates))
    noise = np.random.normal(0, 0.01, len(dates))

    spx = 100 * np.exp(np.cumsum(base))
    gold = 50 * np.exp(np.cumsum(0.8 * base + 0.2 * noise))
    bond = 80 * np.exp(np.cumsum(other))
    return [
        TimeSeries.from_values('SPX', spx, timestamps=dates),
        TimeSeries.from_values('GOLD', gold, timestamps=dates),
        TimeSeries.from_values('BOND', bond, timestamps=dates),
    ]


@pytest.fixture
def scenario_matrix():
    """Simulated loss scenarios (1000 scenarios x 3 factors).

    Returns:
        np.ndarray: Losses with different scale per factor
    """
    np.random.seed(42)
    return np.random.normal(0, [0.01, 0.02, 0.03], (1000, 3))
