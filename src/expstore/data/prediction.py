"""
Prediction objects.

A prediction holds, for one predict set of one iteration, the row ids, the
true target values and whatever the learner produced (response, class
probabilities, standard errors, quantiles).

Predictions are treated as values: operations that change them
(`set_threshold`, `combine_predictions`) return new objects. The result
store relies on this to replace whole prediction fields instead of patching
shared objects.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union
import logging

import numpy as np
import pandas as pd

from expstore.config import TiesMethod
from expstore.constants import PREDICT_SET_TEST, PREDICT_SETS, TASK_CLASSIF, TASK_REGR
from expstore.errors import CapabilityError, TypeMismatchError, ValidationError

logger = logging.getLogger(__name__)


class Prediction(ABC):
    """
    Base class for predictions.

    Args:
        row_ids: Row ids of the predicted observations.
        truth: True target values.
        response: Predicted target values.
        predict_set: Which predict set the rows came from.
    """

    task_type: str = ""

    def __init__(
        self,
        row_ids: Sequence[Any],
        truth: Sequence[Any],
        response: Optional[Sequence[Any]] = None,
        predict_set: str = PREDICT_SET_TEST,
    ):
        if predict_set not in PREDICT_SETS:
            raise ValidationError(f"predict_set must be one of {list(PREDICT_SETS)}, got '{predict_set}'")
        self.row_ids = np.asarray(row_ids)
        self.truth = np.asarray(truth)
        self.response = None if response is None else np.asarray(response)
        self.predict_set = predict_set
        if len(self.truth) != len(self.row_ids):
            raise ValidationError(
                f"truth has {len(self.truth)} entries but there are {len(self.row_ids)} row ids"
            )
        if self.response is not None and len(self.response) != len(self.row_ids):
            raise ValidationError(
                f"response has {len(self.response)} entries but there are {len(self.row_ids)} row ids"
            )

    def __len__(self) -> int:
        return len(self.row_ids)

    def __repr__(self) -> str:
        return f"<{type(self).__name__}> for {len(self)} observations ({self.predict_set})"

    @property
    @abstractmethod
    def predict_types(self) -> List[str]:
        """Predict types present in this object."""
        pass

    @abstractmethod
    def to_frame(self) -> pd.DataFrame:
        """One row per observation: row_ids, truth, and all predicted columns."""
        pass

    @classmethod
    @abstractmethod
    def _combine(cls, predictions: List["Prediction"], predict_set: str) -> "Prediction":
        pass


# =============================================================================
# Classification
# =============================================================================


class PredictionClassif(Prediction):
    """
    Classification prediction.

    Args:
        class_names: Class labels, in the column order of `prob`.
        prob: Optional (n, n_classes) probability matrix.
    """

    task_type = TASK_CLASSIF

    def __init__(
        self,
        row_ids: Sequence[Any],
        truth: Sequence[Any],
        class_names: Sequence[Any],
        response: Optional[Sequence[Any]] = None,
        prob: Optional[np.ndarray] = None,
        predict_set: str = PREDICT_SET_TEST,
    ):
        super().__init__(row_ids, truth, response, predict_set)
        self.class_names = list(class_names)
        self.prob = None if prob is None else np.asarray(prob, dtype=np.float64).reshape(len(self.row_ids), -1)
        if self.prob is not None and self.prob.shape[1] != len(self.class_names):
            raise ValidationError(
                f"prob has {self.prob.shape[1]} columns but there are {len(self.class_names)} classes"
            )
        if self.response is None and self.prob is not None:
            self.response = np.asarray(self.class_names, dtype=object)[np.argmax(self.prob, axis=1)] \
                if len(self) else np.asarray([], dtype=object)
        if self.response is None:
            raise ValidationError("PredictionClassif needs a response or a prob matrix")

    @property
    def predict_types(self) -> List[str]:
        return ["response"] + (["prob"] if self.prob is not None else [])

    def to_frame(self) -> pd.DataFrame:
        frame = pd.DataFrame({
            "row_ids": self.row_ids,
            "truth": self.truth,
            "response": self.response,
        })
        if self.prob is not None:
            for j, name in enumerate(self.class_names):
                frame[f"prob.{name}"] = self.prob[:, j]
        return frame

    def confusion(self) -> pd.DataFrame:
        """Confusion matrix (rows = response, columns = truth)."""
        return pd.crosstab(
            pd.Categorical(self.response, categories=self.class_names),
            pd.Categorical(self.truth, categories=self.class_names),
            rownames=["response"],
            colnames=["truth"],
            dropna=False,
        )

    def set_threshold(
        self,
        threshold: Union[float, Mapping[Any, float]],
        ties_method: Union[TiesMethod, str] = TiesMethod.FIRST,
        rng: Optional[np.random.Generator] = None,
    ) -> "PredictionClassif":
        """
        Recompute the response from the probabilities.

        Binary tasks accept a single threshold for the first (positive) class:
        the positive class is predicted when its probability exceeds the
        threshold. Any task accepts a mapping class -> threshold; the response
        is the class with the largest prob / threshold ratio.

        Ties are resolved by `ties_method`: FIRST / LAST pick by class order,
        RANDOM draws uniformly from the tied classes using `rng`.

        Returns:
            A new PredictionClassif; self is not modified.
        """
        if self.prob is None:
            raise CapabilityError("set_threshold requires probabilities (predict_type 'prob')")
        ties_method = TiesMethod(ties_method)
        weights = self._threshold_weights(threshold)

        with np.errstate(divide="ignore", invalid="ignore"):
            scores = self.prob / weights
        scores = np.where(np.isnan(scores), -np.inf, scores)

        response = np.empty(len(self), dtype=object)
        if rng is None and ties_method == TiesMethod.RANDOM:
            rng = np.random.default_rng()
        for i, row in enumerate(scores):
            best = np.flatnonzero(row == row.max())
            if len(best) == 1 or ties_method == TiesMethod.FIRST:
                j = best[0]
            elif ties_method == TiesMethod.LAST:
                j = best[-1]
            else:
                j = rng.choice(best)
            response[i] = self.class_names[j]

        return PredictionClassif(
            row_ids=self.row_ids,
            truth=self.truth,
            class_names=self.class_names,
            response=response,
            prob=self.prob,
            predict_set=self.predict_set,
        )

    def _threshold_weights(self, threshold) -> np.ndarray:
        if isinstance(threshold, Mapping):
            missing = [c for c in self.class_names if c not in threshold]
            if missing:
                raise ValidationError(f"threshold is missing classes {missing}")
            weights = np.asarray([float(threshold[c]) for c in self.class_names])
            if np.any(weights < 0) or np.any(~np.isfinite(weights)):
                raise ValidationError("thresholds must be finite and non-negative")
            return weights
        if len(self.class_names) != 2:
            raise ValidationError(
                "A single threshold is only defined for binary classification; "
                "pass a mapping class -> threshold for multiclass tasks"
            )
        t = float(threshold)
        if not 0.0 <= t <= 1.0:
            raise ValidationError(f"threshold must be in [0, 1], got {t}")
        return np.asarray([t, 1.0 - t])

    @classmethod
    def _combine(cls, predictions: List["PredictionClassif"], predict_set: str) -> "PredictionClassif":
        class_names = predictions[0].class_names
        for p in predictions[1:]:
            if p.class_names != class_names:
                raise ValidationError("Cannot combine predictions with different class names")
        with_prob = all(p.prob is not None for p in predictions)
        return cls(
            row_ids=np.concatenate([p.row_ids for p in predictions]),
            truth=np.concatenate([p.truth for p in predictions]),
            class_names=class_names,
            response=np.concatenate([p.response for p in predictions]),
            prob=np.vstack([p.prob for p in predictions]) if with_prob else None,
            predict_set=predict_set,
        )


# =============================================================================
# Regression
# =============================================================================


class PredictionRegr(Prediction):
    """
    Regression prediction.

    Args:
        se: Optional standard errors.
        quantiles: Optional (n, n_probs) matrix of predicted quantiles.
        quantile_probs: Probabilities belonging to the columns of `quantiles`.
    """

    task_type = TASK_REGR

    def __init__(
        self,
        row_ids: Sequence[Any],
        truth: Sequence[float],
        response: Optional[Sequence[float]] = None,
        se: Optional[Sequence[float]] = None,
        quantiles: Optional[np.ndarray] = None,
        quantile_probs: Optional[Sequence[float]] = None,
        predict_set: str = PREDICT_SET_TEST,
    ):
        super().__init__(row_ids, np.asarray(truth, dtype=np.float64), response, predict_set)
        if self.response is not None:
            self.response = self.response.astype(np.float64)
        self.se = None if se is None else np.asarray(se, dtype=np.float64)
        self.quantiles = None if quantiles is None else np.asarray(quantiles, dtype=np.float64).reshape(len(self.row_ids), -1)
        self.quantile_probs = None if quantile_probs is None else [float(q) for q in quantile_probs]
        if self.quantiles is not None and (
            self.quantile_probs is None or len(self.quantile_probs) != self.quantiles.shape[1]
        ):
            raise ValidationError("quantile_probs must name every column of quantiles")

    @property
    def predict_types(self) -> List[str]:
        types = []
        if self.response is not None:
            types.append("response")
        if self.se is not None:
            types.append("se")
        if self.quantiles is not None:
            types.append("quantiles")
        return types

    def to_frame(self) -> pd.DataFrame:
        frame = pd.DataFrame({"row_ids": self.row_ids, "truth": self.truth})
        if self.response is not None:
            frame["response"] = self.response
        if self.se is not None:
            frame["se"] = self.se
        if self.quantiles is not None:
            for j, q in enumerate(self.quantile_probs):
                frame[f"q{q:g}"] = self.quantiles[:, j]
        return frame

    @classmethod
    def _combine(cls, predictions: List["PredictionRegr"], predict_set: str) -> "PredictionRegr":
        def _stack(attr):
            values = [getattr(p, attr) for p in predictions]
            if any(v is None for v in values):
                return None
            return np.concatenate(values) if values[0].ndim == 1 else np.vstack(values)

        probs = predictions[0].quantile_probs
        quantiles = _stack("quantiles")
        if quantiles is not None and any(p.quantile_probs != probs for p in predictions):
            quantiles = None
        return cls(
            row_ids=np.concatenate([p.row_ids for p in predictions]),
            truth=np.concatenate([p.truth for p in predictions]),
            response=_stack("response"),
            se=_stack("se"),
            quantiles=quantiles,
            quantile_probs=probs if quantiles is not None else None,
            predict_set=predict_set,
        )


# =============================================================================
# Pooling
# =============================================================================


def combine_predictions(predictions: Sequence[Prediction]) -> Optional[Prediction]:
    """
    Pool several predictions (e.g. from different iterations) into one.

    None entries are skipped. Returns None if nothing is left. The pooled
    object keeps the predict set of its inputs when they agree, otherwise
    it is tagged as 'test'.
    """
    predictions = [p for p in predictions if p is not None]
    if not predictions:
        return None
    if len(predictions) == 1:
        return predictions[0]
    cls = type(predictions[0])
    if any(type(p) is not cls for p in predictions):
        raise TypeMismatchError("Cannot combine predictions of different task types")
    sets = {p.predict_set for p in predictions}
    predict_set = sets.pop() if len(sets) == 1 else PREDICT_SET_TEST
    return cls._combine(list(predictions), predict_set)


def subset_predict_sets(
    predictions: Mapping[str, Prediction],
    predict_sets: Sequence[str],
) -> Optional[Prediction]:
    """Select the given predict sets from a per-set mapping and pool them."""
    return combine_predictions([predictions.get(s) for s in predict_sets])
