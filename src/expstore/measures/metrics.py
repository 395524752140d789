"""
Metric functions behind the built-in measures.

Each compute_* function takes a prediction and returns a float; each
*_obs_loss function returns one loss value per observation. sklearn does
the heavy lifting wherever it has the metric.
"""

from typing import Dict
import numpy as np
from scipy import stats
from sklearn.metrics import (
    accuracy_score,
    balanced_accuracy_score,
    mean_absolute_error,
    mean_squared_error,
    r2_score,
)

from expstore.data.prediction import PredictionClassif, PredictionRegr

EPS = 1e-15
"""Probability clip for log losses."""


# =============================================================================
# Classification
# =============================================================================


def compute_accuracy(p: PredictionClassif) -> float:
    return float(accuracy_score(p.truth.astype(str), p.response.astype(str)))


def compute_classification_error(p: PredictionClassif) -> float:
    return 1.0 - compute_accuracy(p)


def compute_balanced_accuracy(p: PredictionClassif) -> float:
    return float(balanced_accuracy_score(p.truth.astype(str), p.response.astype(str)))


def compute_logloss(p: PredictionClassif) -> float:
    return float(np.mean(logloss_obs_loss(p)))


def zero_one_obs_loss(p: PredictionClassif) -> np.ndarray:
    """1 where the response is wrong, 0 where it is right."""
    return (p.truth.astype(str) != p.response.astype(str)).astype(np.float64)


def accuracy_obs_loss(p: PredictionClassif) -> np.ndarray:
    """1 where the response is right, 0 where it is wrong."""
    return 1.0 - zero_one_obs_loss(p)


def logloss_obs_loss(p: PredictionClassif) -> np.ndarray:
    names = [str(c) for c in p.class_names]
    idx = np.asarray([names.index(str(t)) for t in p.truth], dtype=int)
    prob_truth = p.prob[np.arange(len(idx)), idx]
    return -np.log(np.clip(prob_truth, EPS, 1 - EPS))


# =============================================================================
# Regression
# =============================================================================


def compute_mse(p: PredictionRegr) -> float:
    return float(mean_squared_error(p.truth, p.response))


def compute_rmse(p: PredictionRegr) -> float:
    return float(np.sqrt(compute_mse(p)))


def compute_mae(p: PredictionRegr) -> float:
    return float(mean_absolute_error(p.truth, p.response))


def compute_rsq(p: PredictionRegr) -> float:
    if len(p) < 2:
        return float("nan")
    return float(r2_score(p.truth, p.response))


def squared_error_obs_loss(p: PredictionRegr) -> np.ndarray:
    return (p.truth - p.response) ** 2


def absolute_error_obs_loss(p: PredictionRegr) -> np.ndarray:
    return np.abs(p.truth - p.response)


# =============================================================================
# Aggregation functions
# =============================================================================


def mean_confidence_interval(scores: np.ndarray, level: float = 0.95) -> Dict[str, float]:
    """
    Mean of per-iteration scores with a Student-t confidence interval.

    Returns:
        {'estimate', 'lower', 'upper'}; bounds are NaN with fewer than 2 scores.
    """
    scores = np.asarray(scores, dtype=np.float64)
    scores = scores[~np.isnan(scores)]
    if scores.size == 0:
        return {"estimate": float("nan"), "lower": float("nan"), "upper": float("nan")}
    estimate = float(np.mean(scores))
    if scores.size < 2:
        return {"estimate": estimate, "lower": float("nan"), "upper": float("nan")}
    sem = float(stats.sem(scores))
    half = float(stats.t.ppf((1 + level) / 2, df=scores.size - 1)) * sem
    return {"estimate": estimate, "lower": estimate - half, "upper": estimate + half}
