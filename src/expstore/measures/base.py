"""
Performance measures.

A measure knows three things:
- how to score one prediction (`score`)
- how to reduce an experiment to a single summary (`aggregate`)
- optionally, how to compute a loss per observation (`obs_loss`)

The aggregation strategy is a field of the measure, one of two variants:

    MacroAggregation(fn)  score every iteration separately, reduce the scores
                          with `fn` (default: arithmetic mean)
    MicroAggregation()    pool the predictions of all iterations, score once

`aggregate` receives the result view, not a score table, because only the
measure knows which of the two it needs.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple, Union
import logging

import numpy as np
import pandas as pd

from expstore.constants import PREDICT_SET_TEST, PREDICT_SETS, TASK_TYPES
from expstore.data.prediction import Prediction
from expstore.errors import CapabilityError, TypeMismatchError, ValidationError

logger = logging.getLogger(__name__)


# =============================================================================
# Aggregation strategies
# =============================================================================


def mean(scores: np.ndarray) -> float:
    """Arithmetic mean; NaN if any score is NaN or there are no scores."""
    scores = np.asarray(scores, dtype=np.float64)
    if scores.size == 0:
        return float("nan")
    return float(np.mean(scores))


def nanmean(scores: np.ndarray) -> float:
    """Mean over the non-missing scores. Opt in with MacroAggregation(fn=nanmean)."""
    scores = np.asarray(scores, dtype=np.float64)
    if scores.size == 0 or np.all(np.isnan(scores)):
        return float("nan")
    return float(np.nanmean(scores))


@dataclass(frozen=True)
class MacroAggregation:
    """Reduce per-iteration scores with `fn`."""

    fn: Callable[[np.ndarray], Any] = mean
    kind: str = field(default="macro", init=False)


@dataclass(frozen=True)
class MicroAggregation:
    """Score the pooled prediction once."""

    kind: str = field(default="micro", init=False)


Aggregation = Union[MacroAggregation, MicroAggregation]


# =============================================================================
# Measure
# =============================================================================


ScoreFn = Callable[..., float]
ObsLossFn = Callable[[Prediction], np.ndarray]


@dataclass
class Measure:
    """
    Performance measure.

    Attributes:
        id: Column name in score tables and key in aggregate results.
        score_fn: f(prediction) -> float, or f(prediction, learner) -> float
            when `requires_learner` is set.
        task_type: Task type the measure applies to (None = any).
        aggregator: MacroAggregation or MicroAggregation.
        obs_loss_fn: Optional f(prediction) -> per-observation losses.
        minimize: Whether smaller is better.
        predict_type: Predict type the prediction must carry.
        predict_sets: Predict sets scored by this measure.
        requires_learner: Pass the trained learner to `score_fn`.
        range: (lower, upper) bounds of the score.
    """

    id: str
    score_fn: ScoreFn
    task_type: Optional[str] = None
    aggregator: Aggregation = field(default_factory=MacroAggregation)
    obs_loss_fn: Optional[ObsLossFn] = None
    minimize: bool = True
    predict_type: str = "response"
    predict_sets: Tuple[str, ...] = (PREDICT_SET_TEST,)
    requires_learner: bool = False
    range: Tuple[float, float] = (-np.inf, np.inf)

    def __post_init__(self) -> None:
        if self.task_type is not None and self.task_type not in TASK_TYPES:
            raise ValidationError(f"task_type must be one of {list(TASK_TYPES)}, got '{self.task_type}'")
        self.predict_sets = tuple(self.predict_sets)
        bad = [s for s in self.predict_sets if s not in PREDICT_SETS]
        if not self.predict_sets or bad:
            raise ValidationError(f"predict_sets must be a non-empty subset of {list(PREDICT_SETS)}")
        if not isinstance(self.aggregator, (MacroAggregation, MicroAggregation)):
            raise ValidationError("aggregator must be MacroAggregation or MicroAggregation")

    def __repr__(self) -> str:
        return f"<Measure:{self.id}> ({self.aggregator.kind})"

    @property
    def average(self) -> str:
        return self.aggregator.kind

    @property
    def has_obs_loss(self) -> bool:
        return self.obs_loss_fn is not None

    def check_prediction(self, prediction: Prediction) -> None:
        if self.task_type is not None and prediction.task_type != self.task_type:
            raise TypeMismatchError(
                f"Measure '{self.id}' is for '{self.task_type}' predictions, "
                f"got '{prediction.task_type}'"
            )
        if self.predict_type not in prediction.predict_types:
            raise CapabilityError(
                f"Measure '{self.id}' needs predict_type '{self.predict_type}', "
                f"prediction has {prediction.predict_types}"
            )

    def score(self, prediction: Optional[Prediction], learner: Any = None) -> float:
        """
        Score a single prediction.

        A missing or empty prediction scores NaN.
        """
        if self.requires_learner:
            if learner is None:
                return float("nan")
            return float(self.score_fn(prediction, learner))
        if prediction is None or len(prediction) == 0:
            return float("nan")
        self.check_prediction(prediction)
        return float(self.score_fn(prediction))

    def obs_loss(self, prediction: Prediction) -> np.ndarray:
        """Per-observation losses, NaN for every row if the measure defines none."""
        if self.obs_loss_fn is None:
            return np.full(len(prediction), np.nan)
        self.check_prediction(prediction)
        return np.asarray(self.obs_loss_fn(prediction), dtype=np.float64)

    def aggregate(self, view: Any) -> Union[float, pd.Series]:
        """
        Aggregate over all iterations of `view`.

        Args:
            view: A result view exposing `score()` and `prediction()`.

        Returns:
            A float, or a named Series when the aggregation yields several
            values (e.g. estimate plus confidence bounds).
        """
        if isinstance(self.aggregator, MicroAggregation):
            if self.requires_learner:
                raise CapabilityError(f"Measure '{self.id}' cannot be micro-averaged")
            return self.score(view.prediction(self.predict_sets))

        table = view.score(measures=[self], ids=False, conditions=False, predictions=False)
        scores = table[self.id].to_numpy(dtype=np.float64) if len(table) else np.empty(0)
        value = self.aggregator.fn(scores)
        if isinstance(value, Mapping):
            return pd.Series(dict(value), dtype=np.float64)
        if isinstance(value, pd.Series):
            return value.astype(np.float64)
        return float(value)
