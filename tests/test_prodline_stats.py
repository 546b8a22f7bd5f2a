import numpy as np
import pandas as pd
import pytest
from scipy.special import expit

from prodline_core import InvalidInputError
from prodline_stats import (
    add_reference_price_terms, bootstrap_ci, fit_binary_logit, fit_distributions,
    fit_multinomial_logit, fit_reference_price_logit, fit_regression,
    logit_win_probability, maximize_expected_profit
)


@pytest.fixture
def rng():
    return np.random.default_rng(2026)


@pytest.fixture
def purchase_data(rng):
    n = 500
    price = rng.uniform(5, 15, size=n)
    reference = price + rng.normal(0, 2, size=n)
    p = expit(4.0 - 0.4 * price + 0.3 * (reference - price))
    return pd.DataFrame({
        'price': price,
        'reference': reference,
        'purchase': rng.binomial(1, p),
    })


def test_regression_recovers_slope(rng):
    x = rng.normal(size=200)
    df = pd.DataFrame({'x': x, 'y': 2.0 + 3.0 * x + rng.normal(scale=0.5, size=200)})
    summary = fit_regression(df, "y ~ x")
    assert summary.params['x'] == pytest.approx(3.0, abs=0.2)
    assert summary.nobs == 200
    assert 0.9 < summary.rsquared <= 1.0
    assert 'x' in summary.anova.index


def test_regression_needs_rows():
    with pytest.raises(InvalidInputError):
        fit_regression(pd.DataFrame({'x': [], 'y': []}), "y ~ x")


def test_binary_logit(purchase_data):
    summary = fit_binary_logit(purchase_data, "purchase ~ price")
    assert summary.params['price'] < 0
    assert summary.odds_ratios['price'] == pytest.approx(np.exp(summary.params['price']))
    assert summary.confusion_matrix.shape == (2, 2)
    assert summary.confusion_matrix.sum() == len(purchase_data)
    assert 0.6 < summary.auc <= 1.0
    assert 0.0 <= summary.accuracy <= 1.0
    assert len(summary.probabilities) == len(purchase_data)


def test_binary_logit_threshold(purchase_data):
    with pytest.raises(InvalidInputError):
        fit_binary_logit(purchase_data, "purchase ~ price", threshold=1.5)


def test_reference_price_terms():
    df = pd.DataFrame({'price': [10.0, 8.0, 12.0], 'ref': [10.0, 10.0, 10.0]})
    out = add_reference_price_terms(df, 'price', 'ref')
    assert out['gain'].tolist() == [0.0, 2.0, 0.0]
    assert out['loss'].tolist() == [0.0, 0.0, 2.0]
    assert 'gain' not in df.columns
    with pytest.raises(InvalidInputError):
        add_reference_price_terms(df, 'price', 'missing')


def test_reference_price_logit(purchase_data):
    summary = fit_reference_price_logit(purchase_data, 'purchase', 'price', 'reference')
    assert list(summary.params.index) == ['Intercept', 'price', 'gain', 'loss']


def test_multinomial_logit(rng):
    n = 600
    x = rng.normal(size=n)
    utilities = np.column_stack([
        np.zeros(n),
        0.5 + 1.0 * x,
        -0.5 - 1.0 * x,
    ]) + rng.gumbel(size=(n, 3))
    labels = np.array(['a', 'b', 'c'])[utilities.argmax(axis=1)]
    df = pd.DataFrame({'x': x, 'brand': labels})

    summary = fit_multinomial_logit(df, 'brand', ['x'])
    assert summary.alternatives == ['a', 'b', 'c']
    assert summary.base_alternative == 'a'
    assert list(summary.params.columns) == ['b', 'c']
    assert summary.params.loc['x', 'b'] > 0
    assert summary.params.loc['x', 'c'] < 0
    assert summary.predicted_shares.sum() == pytest.approx(1.0)
    assert np.allclose(summary.predicted_shares, summary.observed_shares, atol=1e-3)


def test_multinomial_logit_needs_two_alternatives():
    df = pd.DataFrame({'x': [1.0, 2.0, 3.0], 'brand': ['a', 'a', 'a']})
    with pytest.raises(InvalidInputError):
        fit_multinomial_logit(df, 'brand', ['x'])


def test_fit_distributions_ranks_by_aic(rng):
    sample = rng.lognormal(mean=1.0, sigma=0.5, size=400)
    table = fit_distributions(sample)
    assert set(table['distribution']) == {"norm", "lognorm", "gamma", "expon", "weibull_min"}
    assert table['aic'].is_monotonic_increasing
    assert table.iloc[0]['distribution'] != 'expon'


def test_fit_distributions_skips_positive_support(rng):
    table = fit_distributions(rng.normal(size=100))
    assert table['distribution'].tolist() == ['norm']


def test_fit_distributions_bad_input():
    with pytest.raises(InvalidInputError):
        fit_distributions([1.0])
    with pytest.raises(InvalidInputError):
        fit_distributions([1.0, 2.0, 3.0], candidates=["not_a_distribution"])


def test_bootstrap_ci(rng):
    sample = rng.normal(loc=10.0, size=200)
    estimate, lower, upper = bootstrap_ci(sample, n_resamples=500, seed=1)
    assert lower <= estimate <= upper
    assert estimate == pytest.approx(sample.mean())
    assert bootstrap_ci(sample, n_resamples=500, seed=1) == (estimate, lower, upper)


def test_bootstrap_ci_bad_input():
    with pytest.raises(InvalidInputError):
        bootstrap_ci([])
    with pytest.raises(InvalidInputError):
        bootstrap_ci([1.0, 2.0], confidence=1.0)


def test_maximize_expected_profit_beats_grid():
    win = logit_win_probability(5.0, -0.5)
    best_x, best_profit = maximize_expected_profit(win, unit_cost=4.0, x0=8.0)

    grid = np.linspace(4.0, 20.0, 1601)
    grid_profit = max((x - 4.0) * win(x) for x in grid)
    assert best_profit >= grid_profit - 1e-4
    assert best_profit == pytest.approx((best_x - 4.0) * win(best_x))


def test_logit_win_probability():
    win = logit_win_probability(0.0, 1.0)
    assert win(0.0) == pytest.approx(0.5)
    assert win(10.0) > 0.99
