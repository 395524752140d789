"""
Regression learners.

- LearnerRegrFeatureless: ignores features, predicts a location estimate
  (mean or median), optionally with a dispersion as standard error or a set
  of empirical quantiles.
- LearnerRegrLinear: ordinary least squares (sklearn).
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence
import logging

import numpy as np
from sklearn.linear_model import LinearRegression

from expstore.constants import TASK_REGR
from expstore.data.prediction import PredictionRegr
from expstore.data.task import Task
from expstore.errors import CapabilityError, ValidationError
from expstore.models.base import Learner

logger = logging.getLogger(__name__)


class LearnerRegr(Learner):
    """
    Base class for regression learners.

    Quantile prediction needs `quantiles` (sorted probabilities in [0, 1]) and
    a `quantile_response` (the quantile reported as response). Setting either
    on a learner that cannot predict quantiles raises CapabilityError.
    """

    task_type = TASK_REGR

    def __init__(self, id: str, predict_type: str = "response", **kwargs):
        super().__init__(id, predict_type=predict_type, **kwargs)
        self._quantiles: Optional[List[float]] = None
        self._quantile_response: Optional[float] = None

    def _hash_extra(self) -> Dict[str, object]:
        return {"quantiles": self._quantiles, "quantile_response": self._quantile_response}

    def _require_quantile_support(self) -> None:
        if "quantiles" not in self.predict_types:
            raise CapabilityError(f"Learner '{self.id}' does not support predicting quantiles")

    @property
    def quantiles(self) -> Optional[List[float]]:
        return None if self._quantiles is None else list(self._quantiles)

    @quantiles.setter
    def quantiles(self, value: Sequence[float]) -> None:
        self._require_quantile_support()
        probs = [float(q) for q in value]
        if not probs:
            raise ValidationError("quantiles must not be empty")
        if any(not 0.0 <= q <= 1.0 for q in probs):
            raise ValidationError(f"quantiles must be in [0, 1], got {probs}")
        if probs != sorted(probs):
            raise ValidationError(f"quantiles must be sorted, got {probs}")
        self._quantiles = probs
        if len(probs) == 1:
            self._quantile_response = probs[0]

    @property
    def quantile_response(self) -> Optional[float]:
        return self._quantile_response

    @quantile_response.setter
    def quantile_response(self, value: float) -> None:
        self._require_quantile_support()
        value = float(value)
        if not 0.0 <= value <= 1.0:
            raise ValidationError(f"quantile_response must be in [0, 1], got {value}")
        self._quantile_response = value
        self._quantiles = sorted(set(self._quantiles or []) | {value})

    def _check_quantiles_configured(self) -> None:
        if self.predict_type == "quantiles" and (
            self._quantiles is None or self._quantile_response is None
        ):
            raise CapabilityError(
                "Quantiles 'quantiles' and response quantile 'quantile_response' must be set"
            )


# =============================================================================
# Featureless
# =============================================================================


@dataclass
class FeaturelessRegrModel:
    location: float
    dispersion: float
    quantiles: Optional[np.ndarray]
    features: List[str]


class LearnerRegrFeatureless(LearnerRegr):
    """
    Baseline: predict a constant.

    Args:
        robust: If True use median / MAD, otherwise mean / standard deviation.
        predict_type: 'response', 'se' or 'quantiles'.
    """

    def __init__(self, robust: bool = False, predict_type: str = "response", **kwargs):
        super().__init__(
            "regr.featureless",
            predict_type=predict_type,
            predict_types=("response", "se", "quantiles"),
            param_values={"robust": robust},
            properties=("featureless", "missings", "importance", "selected_features"),
            **kwargs,
        )

    def _train(self, task: Task, row_ids: np.ndarray) -> FeaturelessRegrModel:
        self._check_quantiles_configured()
        x = task.truth(row_ids).astype(np.float64)
        if len(x) == 0:
            raise ValidationError("Cannot train on zero rows")

        quantiles = None
        if self.predict_type == "quantiles":
            quantiles = np.quantile(x, self._quantiles)

        if self.param_values["robust"]:
            location = float(np.median(x))
            # Scaled MAD, consistent with the standard deviation for normal data
            dispersion = float(1.4826 * np.median(np.abs(x - location)))
        else:
            location = float(np.mean(x))
            dispersion = float(np.std(x, ddof=1)) if len(x) > 1 else float("nan")

        return FeaturelessRegrModel(
            location=location,
            dispersion=dispersion,
            quantiles=quantiles,
            features=list(task.feature_names),
        )

    def _predict(self, task: Task, row_ids: np.ndarray, predict_set: str) -> PredictionRegr:
        model = self.model
        n = len(row_ids)
        truth = task.truth(row_ids)

        if self.predict_type == "quantiles":
            self._check_quantiles_configured()
            quantiles = np.tile(model.quantiles, (n, 1))
            response_idx = self._quantiles.index(self._quantile_response)
            return PredictionRegr(
                row_ids=row_ids,
                truth=truth,
                response=quantiles[:, response_idx],
                quantiles=quantiles,
                quantile_probs=self._quantiles,
                predict_set=predict_set,
            )

        return PredictionRegr(
            row_ids=row_ids,
            truth=truth,
            response=np.full(n, model.location),
            se=np.full(n, model.dispersion) if self.predict_type == "se" else None,
            predict_set=predict_set,
        )

    def importance(self) -> Dict[str, float]:
        """All features have importance 0."""
        if self.model is None:
            raise RuntimeError("No model stored")
        return {f: 0.0 for f in self.model.features}

    def selected_features(self) -> List[str]:
        return []


# =============================================================================
# Linear regression
# =============================================================================


class LearnerRegrLinear(LearnerRegr):
    """Ordinary least squares on the numeric features."""

    def __init__(self, fit_intercept: bool = True, **kwargs):
        super().__init__(
            "regr.lm",
            predict_type="response",
            predict_types=("response",),
            param_values={"fit_intercept": fit_intercept},
            **kwargs,
        )

    def _train(self, task: Task, row_ids: np.ndarray) -> LinearRegression:
        X = task.features(row_ids).to_numpy(dtype=np.float64)
        y = task.truth(row_ids).astype(np.float64)
        return LinearRegression(**self.param_values).fit(X, y)

    def _predict(self, task: Task, row_ids: np.ndarray, predict_set: str) -> PredictionRegr:
        X = task.features(row_ids).to_numpy(dtype=np.float64)
        return PredictionRegr(
            row_ids=row_ids,
            truth=task.truth(row_ids),
            response=self.model.predict(X),
            predict_set=predict_set,
        )
