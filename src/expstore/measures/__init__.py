"""
Measures for scoring and aggregating experiment results.

Usage:
    >>> from expstore.measures import create_measure, create_measures
    >>> acc = create_measure("classif.acc")
    >>> acc_micro = create_measure("classif.acc", average="micro")
    >>> rr.aggregate([acc, acc_micro])

Built-in keys:
    classif.acc, classif.ce, classif.bacc, classif.logloss,
    regr.mse, regr.rmse, regr.mae, regr.rsq, regr.mse.ci,
    time_train, time_predict
"""

from typing import Any, Callable, Dict, List, Optional, Sequence, Union
import logging

import numpy as np

from expstore.config import ScoringConfig
from expstore.constants import TASK_CLASSIF, TASK_REGR
from expstore.errors import ValidationError
from expstore.measures.base import (
    Aggregation,
    MacroAggregation,
    Measure,
    MicroAggregation,
    nanmean,
)
from expstore.measures import metrics

logger = logging.getLogger(__name__)


def _time_train(prediction, learner) -> float:
    return float("nan") if learner.state is None else learner.state.train_time


def _time_predict(prediction, learner) -> float:
    return float("nan") if learner.state is None else learner.state.predict_time


MEASURES: Dict[str, Callable[[], Measure]] = {
    "classif.acc": lambda: Measure(
        id="classif.acc", task_type=TASK_CLASSIF,
        score_fn=metrics.compute_accuracy, obs_loss_fn=metrics.accuracy_obs_loss,
        minimize=False, range=(0.0, 1.0),
    ),
    "classif.ce": lambda: Measure(
        id="classif.ce", task_type=TASK_CLASSIF,
        score_fn=metrics.compute_classification_error, obs_loss_fn=metrics.zero_one_obs_loss,
        range=(0.0, 1.0),
    ),
    "classif.bacc": lambda: Measure(
        id="classif.bacc", task_type=TASK_CLASSIF,
        score_fn=metrics.compute_balanced_accuracy,
        minimize=False, range=(0.0, 1.0),
    ),
    "classif.logloss": lambda: Measure(
        id="classif.logloss", task_type=TASK_CLASSIF, predict_type="prob",
        score_fn=metrics.compute_logloss, obs_loss_fn=metrics.logloss_obs_loss,
        range=(0.0, np.inf),
    ),
    "regr.mse": lambda: Measure(
        id="regr.mse", task_type=TASK_REGR,
        score_fn=metrics.compute_mse, obs_loss_fn=metrics.squared_error_obs_loss,
        range=(0.0, np.inf),
    ),
    # obs_loss is the squared error; the sqrt only applies after aggregation
    "regr.rmse": lambda: Measure(
        id="regr.rmse", task_type=TASK_REGR,
        score_fn=metrics.compute_rmse, obs_loss_fn=metrics.squared_error_obs_loss,
        range=(0.0, np.inf),
    ),
    "regr.mae": lambda: Measure(
        id="regr.mae", task_type=TASK_REGR,
        score_fn=metrics.compute_mae, obs_loss_fn=metrics.absolute_error_obs_loss,
        range=(0.0, np.inf),
    ),
    "regr.rsq": lambda: Measure(
        id="regr.rsq", task_type=TASK_REGR,
        score_fn=metrics.compute_rsq, minimize=False, range=(-np.inf, 1.0),
    ),
    "regr.mse.ci": lambda: Measure(
        id="regr.mse.ci", task_type=TASK_REGR,
        score_fn=metrics.compute_mse, obs_loss_fn=metrics.squared_error_obs_loss,
        aggregator=MacroAggregation(fn=metrics.mean_confidence_interval),
        range=(0.0, np.inf),
    ),
    "time_train": lambda: Measure(
        id="time_train", score_fn=_time_train, requires_learner=True, range=(0.0, np.inf),
    ),
    "time_predict": lambda: Measure(
        id="time_predict", score_fn=_time_predict, requires_learner=True, range=(0.0, np.inf),
    ),
}


def create_measure(key: str, average: str = "macro", id: Optional[str] = None) -> Measure:
    """
    Create a built-in measure.

    Args:
        key: One of MEASURES.
        average: 'macro' (score per iteration, then reduce) or 'micro'
            (pool predictions, then score).
        id: Override the measure id. Defaults to `key`, or `key.micro`
            when micro-averaged.

    Raises:
        ValueError: If key or average is unknown
    """
    if key not in MEASURES:
        raise ValueError(f"Unknown measure '{key}'. Available: {sorted(MEASURES)}")
    if average not in ("macro", "micro"):
        raise ValueError(f"average must be 'macro' or 'micro', got '{average}'")
    measure = MEASURES[key]()
    if average == "micro":
        measure.aggregator = MicroAggregation()
        measure.id = f"{key}.micro"
    if id is not None:
        measure.id = id
    return measure


def create_measures(keys: Sequence[str]) -> List[Measure]:
    return [create_measure(k) for k in keys]


def resolve_measures(
    measures: Union[None, str, Measure, Sequence[Union[str, Measure]]],
    task_type: Optional[str],
    config: Optional[ScoringConfig] = None,
) -> List[Measure]:
    """
    Turn user input into a list of Measure objects.

    A missing selection (None) falls back to `config.default_measures` for
    `task_type`; an explicit empty list selects no measures. Defaults are
    empty when there is no task type (empty result).

    Raises:
        ValidationError: On duplicate measure ids
    """
    if isinstance(measures, (str, Measure)):
        measures = [measures]
    if measures is None:
        if task_type is None:
            return []
        config = config or ScoringConfig()
        keys = config.default_measures.get(task_type, [])
        logger.debug(f"Using default measures for {task_type}: {keys}")
        return create_measures(keys)

    resolved = [create_measure(m) if isinstance(m, str) else m for m in measures]
    ids = [m.id for m in resolved]
    dupes = sorted({i for i in ids if ids.count(i) > 1})
    if dupes:
        raise ValidationError(f"Measure ids must be unique, duplicated: {dupes}")
    return resolved


__all__ = [
    "Aggregation",
    "MacroAggregation",
    "MicroAggregation",
    "Measure",
    "MEASURES",
    "create_measure",
    "create_measures",
    "resolve_measures",
    "nanmean",
]
