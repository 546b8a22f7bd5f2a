"""
PRODLINE Course Analytics
Model fitting helpers for the weekly marketing analytics exercises

Version: 1.2
Date: October 2026

Each helper is a thin wrapper around statsmodels, scipy or scikit-learn that
returns plain pandas/numpy structures, so an exercise reads as:
load data -> fit model -> print summary -> optionally optimize.

Exercises covered:
- Linear regression with a type-II ANOVA table
- Binary logit with confusion matrix and ROC/AUC
- Multinomial logit with predicted choice shares
- Reference-price (gain/loss) logit
- Maximum-likelihood distribution fitting ranked by AIC
- Bootstrap percentile confidence intervals
- BFGS maximisation of expected profit for a price or a bid
"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import statsmodels.formula.api as smf
from scipy import optimize, stats
from scipy.special import expit
from sklearn import metrics
from statsmodels.stats.anova import anova_lm

from prodline_core import InvalidInputError

logger = logging.getLogger(__name__)

DEFAULT_DISTRIBUTIONS = ("norm", "lognorm", "gamma", "expon", "weibull_min")
POSITIVE_SUPPORT = {"lognorm", "gamma", "expon", "weibull_min"}


def _require_rows(df: pd.DataFrame, label: str):
    if df is None or len(df) == 0:
        raise InvalidInputError(f"{label}: no observations")


# =============================================================================
# LINEAR REGRESSION / ANOVA
# =============================================================================

@dataclass
class RegressionSummary:
    """OLS fit with its ANOVA table."""
    params: pd.Series
    pvalues: pd.Series
    rsquared: float
    rsquared_adj: float
    nobs: int
    anova: pd.DataFrame
    model: object                    # statsmodels RegressionResults


def fit_regression(df: pd.DataFrame, formula: str, anova_type: int = 2) -> RegressionSummary:
    """Fit `formula` by OLS, e.g. 'sales ~ price + C(region)'."""
    _require_rows(df, "regression data")
    model = smf.ols(formula, data=df).fit()
    logger.debug("OLS %s: R2=%.4f on %d rows", formula, model.rsquared, int(model.nobs))

    return RegressionSummary(
        params=model.params,
        pvalues=model.pvalues,
        rsquared=float(model.rsquared),
        rsquared_adj=float(model.rsquared_adj),
        nobs=int(model.nobs),
        anova=anova_lm(model, typ=anova_type),
        model=model
    )


# =============================================================================
# BINARY LOGIT
# =============================================================================

@dataclass
class LogitSummary:
    """Binary logit fit with classification diagnostics."""
    params: pd.Series
    odds_ratios: pd.Series
    probabilities: pd.Series
    confusion_matrix: np.ndarray     # [[TN, FP], [FN, TP]]
    accuracy: float
    fpr: np.ndarray
    tpr: np.ndarray
    auc: float
    model: object                    # statsmodels BinaryResults


def fit_binary_logit(df: pd.DataFrame, formula: str, threshold: float = 0.5) -> LogitSummary:
    """Fit a binary logit, e.g. 'purchase ~ price + promo', and score it in-sample."""
    _require_rows(df, "logit data")
    if not 0 < threshold < 1:
        raise InvalidInputError(f"Threshold must be in (0, 1), got {threshold}")

    model = smf.logit(formula, data=df).fit(disp=0)
    probs = model.predict(df)
    y_true = np.asarray(model.model.endog, dtype=int)
    preds = (np.asarray(probs) >= threshold).astype(int)

    fpr, tpr, _ = metrics.roc_curve(y_true, probs)
    try:
        auc = metrics.roc_auc_score(y_true, probs)
    except ValueError:
        auc = float("nan")

    return LogitSummary(
        params=model.params,
        odds_ratios=np.exp(model.params),
        probabilities=pd.Series(np.asarray(probs), index=df.index, name="probability"),
        confusion_matrix=metrics.confusion_matrix(y_true, preds, labels=[0, 1]),
        accuracy=float(metrics.accuracy_score(y_true, preds)),
        fpr=fpr,
        tpr=tpr,
        auc=float(auc),
        model=model
    )


def add_reference_price_terms(df: pd.DataFrame, price_col: str, reference_col: str) -> pd.DataFrame:
    """
    Add gain/loss terms relative to a reference price.

    gain = max(reference - price, 0), loss = max(price - reference, 0)
    """
    for col in (price_col, reference_col):
        if col not in df.columns:
            raise InvalidInputError(f"Column {col!r} not found")
    diff = df[reference_col] - df[price_col]
    return df.assign(gain=diff.clip(lower=0), loss=(-diff).clip(lower=0))


def fit_reference_price_logit(df: pd.DataFrame,
                              outcome: str,
                              price_col: str,
                              reference_col: str,
                              extra_terms: Sequence[str] = (),
                              threshold: float = 0.5) -> LogitSummary:
    """Binary logit on price plus reference-price gain and loss terms."""
    work = add_reference_price_terms(df, price_col, reference_col)
    formula = " + ".join([price_col, "gain", "loss", *extra_terms])
    return fit_binary_logit(work, f"{outcome} ~ {formula}", threshold=threshold)


# =============================================================================
# MULTINOMIAL LOGIT
# =============================================================================

@dataclass
class MultinomialSummary:
    """Multinomial logit fit; params are relative to `base_alternative`."""
    params: pd.DataFrame
    alternatives: List[str]
    base_alternative: str
    predicted_shares: pd.Series
    observed_shares: pd.Series
    model: object                    # statsmodels MultinomialResults


def fit_multinomial_logit(df: pd.DataFrame, outcome: str, predictors: Sequence[str]) -> MultinomialSummary:
    """Fit a multinomial logit of the categorical `outcome` on `predictors`."""
    _require_rows(df, "multinomial logit data")
    if not predictors:
        raise InvalidInputError("Multinomial logit needs at least one predictor")

    codes, labels = pd.factorize(df[outcome], sort=True)
    if len(labels) < 2:
        raise InvalidInputError(f"Outcome {outcome!r} has fewer than two alternatives")
    alternatives = [str(a) for a in labels]

    work = df.assign(_choice=codes)
    model = smf.mnlogit(f"_choice ~ {' + '.join(predictors)}", data=work).fit(disp=0)

    params = pd.DataFrame(np.asarray(model.params),
                          index=model.params.index,
                          columns=alternatives[1:])
    predicted = pd.Series(np.asarray(model.predict(work)).mean(axis=0), index=alternatives)
    observed = pd.Series(np.bincount(codes, minlength=len(alternatives)) / len(codes),
                         index=alternatives)

    return MultinomialSummary(
        params=params,
        alternatives=alternatives,
        base_alternative=alternatives[0],
        predicted_shares=predicted,
        observed_shares=observed,
        model=model
    )


# =============================================================================
# DISTRIBUTION FITTING
# =============================================================================

def fit_distributions(sample, candidates: Sequence[str] = DEFAULT_DISTRIBUTIONS) -> pd.DataFrame:
    """
    Fit each candidate distribution by maximum likelihood.

    Positive-support distributions are fitted with location fixed at 0 and
    skipped when the sample has non-positive values.

    Returns:
        DataFrame sorted by AIC (best first)
    """
    x = np.asarray(sample, dtype=float)
    if x.ndim != 1 or len(x) < 2:
        raise InvalidInputError("Distribution fitting needs a 1-D sample of at least two values")
    if not np.isfinite(x).all():
        raise InvalidInputError("Sample contains non-finite values")

    rows = []
    for name in candidates:
        dist = getattr(stats, name, None)
        if not isinstance(dist, stats.rv_continuous):
            raise InvalidInputError(f"Unknown continuous distribution {name!r}")

        if name in POSITIVE_SUPPORT:
            if (x <= 0).any():
                logger.info("Skipping %s: sample has non-positive values", name)
                continue
            params = dist.fit(x, floc=0)
            num_free = len(params) - 1
        else:
            params = dist.fit(x)
            num_free = len(params)

        log_likelihood = float(dist.logpdf(x, *params).sum())
        ks = stats.kstest(x, name, args=params)
        rows.append({
            'distribution': name,
            'params': tuple(float(p) for p in params),
            'log_likelihood': log_likelihood,
            'aic': 2 * num_free - 2 * log_likelihood,
            'ks_statistic': float(ks.statistic),
            'ks_pvalue': float(ks.pvalue),
        })

    if not rows:
        raise InvalidInputError("No candidate distribution could be fitted")
    return pd.DataFrame(rows).sort_values('aic').reset_index(drop=True)


# =============================================================================
# BOOTSTRAP
# =============================================================================

def bootstrap_ci(sample,
                 statistic: Callable[[np.ndarray], float] = np.mean,
                 n_resamples: int = 2000,
                 confidence: float = 0.95,
                 seed: Optional[int] = None) -> Tuple[float, float, float]:
    """
    Percentile bootstrap confidence interval.

    Returns:
        (estimate on the full sample, lower bound, upper bound)
    """
    x = np.asarray(sample, dtype=float)
    if x.ndim != 1 or len(x) == 0:
        raise InvalidInputError("Bootstrap needs a non-empty 1-D sample")
    if not 0 < confidence < 1:
        raise InvalidInputError(f"Confidence must be in (0, 1), got {confidence}")
    if n_resamples < 1:
        raise InvalidInputError(f"n_resamples must be >= 1, got {n_resamples}")

    rng = np.random.default_rng(seed)
    idx = rng.integers(0, len(x), size=(n_resamples, len(x)))
    replicates = np.array([statistic(x[row]) for row in idx])

    alpha = (1 - confidence) / 2
    lower, upper = np.quantile(replicates, [alpha, 1 - alpha])
    return float(statistic(x)), float(lower), float(upper)


# =============================================================================
# EXPECTED PROFIT MAXIMISATION (PRICING / BIDDING)
# =============================================================================

def logit_win_probability(intercept: float, slope: float) -> Callable[[float], float]:
    """P(win | x) = 1 / (1 + exp(-(intercept + slope * x))) from a fitted logit."""
    return lambda x: float(expit(intercept + slope * x))


def maximize_expected_profit(win_probability: Callable[[float], float],
                             unit_cost: float,
                             x0: float) -> Tuple[float, float]:
    """
    Maximise (x - unit_cost) * P(win | x) over a price or bid x with BFGS.

    Returns:
        (best x, expected profit at best x)
    """
    def negative_profit(v):
        x = float(v[0])
        return -(x - unit_cost) * win_probability(x)

    result = optimize.minimize(negative_profit, x0=np.array([x0], dtype=float), method="BFGS")
    if not np.isfinite(result.fun):
        raise InvalidInputError(f"Expected profit diverged: {result.message}")
    logger.debug("BFGS finished in %d iterations: %s", result.nit, result.message)
    return float(result.x[0]), float(-result.fun)
