"""
Classification learners.

- LearnerClassifFeatureless: ignores features, predicts the class prior.
  Establishes the performance floor any real learner must beat.
- LearnerClassifLogistic: standardized logistic regression (sklearn).
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import logging

import numpy as np
from sklearn.linear_model import LogisticRegression
from sklearn.preprocessing import StandardScaler

from expstore.constants import TASK_CLASSIF
from expstore.data.prediction import PredictionClassif
from expstore.data.task import Task
from expstore.models.base import Learner

logger = logging.getLogger(__name__)


class LearnerClassif(Learner):
    """Base class for classification learners."""

    task_type = TASK_CLASSIF

    def __init__(self, id: str, predict_type: str = "response", **kwargs):
        kwargs.setdefault("predict_types", ("response", "prob"))
        super().__init__(id, predict_type=predict_type, **kwargs)

    def _make_prediction(
        self,
        task: Task,
        row_ids: np.ndarray,
        predict_set: str,
        prob: np.ndarray,
        class_names: List[Any],
    ) -> PredictionClassif:
        # Align model class order to the task's class order
        order = [class_names.index(c) if c in class_names else None for c in task.class_names]
        aligned = np.zeros((len(row_ids), len(task.class_names)))
        for j, idx in enumerate(order):
            if idx is not None:
                aligned[:, j] = prob[:, idx]
        response = np.asarray(task.class_names, dtype=object)[np.argmax(aligned, axis=1)]
        return PredictionClassif(
            row_ids=row_ids,
            truth=task.truth(row_ids),
            class_names=task.class_names,
            response=response,
            prob=aligned if self.predict_type == "prob" else None,
            predict_set=predict_set,
        )


# =============================================================================
# Featureless
# =============================================================================


@dataclass
class FeaturelessClassifModel:
    """Class frequencies seen during training."""

    class_names: List[Any]
    frequencies: np.ndarray
    features: List[str]


class LearnerClassifFeatureless(LearnerClassif):
    """
    Baseline: predict the class prior.

    Response is the most frequent training class (first in class order on
    ties); probabilities are the training class frequencies.
    """

    def __init__(self, predict_type: str = "response", **kwargs):
        super().__init__(
            "classif.featureless",
            predict_type=predict_type,
            properties=("featureless", "importance", "selected_features"),
            **kwargs,
        )

    def _train(self, task: Task, row_ids: np.ndarray) -> FeaturelessClassifModel:
        y = task.truth(row_ids)
        counts = np.asarray([np.sum(y == c) for c in task.class_names], dtype=np.float64)
        total = counts.sum()
        freqs = counts / total if total > 0 else np.full(len(counts), 1.0 / len(counts))
        return FeaturelessClassifModel(
            class_names=list(task.class_names),
            frequencies=freqs,
            features=list(task.feature_names),
        )

    def _predict(self, task: Task, row_ids: np.ndarray, predict_set: str) -> PredictionClassif:
        model = self.model
        prob = np.tile(model.frequencies, (len(row_ids), 1))
        return self._make_prediction(task, row_ids, predict_set, prob, model.class_names)

    def importance(self) -> Dict[str, float]:
        """All features have importance 0."""
        if self.model is None:
            raise RuntimeError("No model stored")
        return {f: 0.0 for f in self.model.features}

    def selected_features(self) -> List[str]:
        return []


# =============================================================================
# Logistic regression
# =============================================================================


@dataclass
class LogisticModel:
    scaler: StandardScaler
    classifier: LogisticRegression
    class_names: List[Any]


class LearnerClassifLogistic(LearnerClassif):
    """
    Logistic regression with feature standardization.

    Args:
        C: Inverse regularization strength.
        max_iter: Maximum solver iterations.
        class_weight: 'balanced' or None.
        random_state: Solver seed.
    """

    def __init__(
        self,
        predict_type: str = "response",
        C: float = 1.0,
        max_iter: int = 1000,
        class_weight: Optional[str] = None,
        random_state: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(
            "classif.log_reg",
            predict_type=predict_type,
            param_values={
                "C": C,
                "max_iter": max_iter,
                "class_weight": class_weight,
                "random_state": random_state,
            },
            **kwargs,
        )

    def _train(self, task: Task, row_ids: np.ndarray) -> LogisticModel:
        X = task.features(row_ids).to_numpy(dtype=np.float64)
        y = task.truth(row_ids)
        scaler = StandardScaler()
        X_scaled = scaler.fit_transform(X)
        classifier = LogisticRegression(**self.param_values)
        classifier.fit(X_scaled, y)
        logger.debug(f"LogisticRegression fitted: n_iter={classifier.n_iter_}")
        return LogisticModel(scaler=scaler, classifier=classifier, class_names=list(classifier.classes_))

    def _predict(self, task: Task, row_ids: np.ndarray, predict_set: str) -> PredictionClassif:
        model = self.model
        X = model.scaler.transform(task.features(row_ids).to_numpy(dtype=np.float64))
        prob = model.classifier.predict_proba(X)
        return self._make_prediction(task, row_ids, predict_set, prob, model.class_names)
