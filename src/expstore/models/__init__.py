"""
Learners for expstore.

The store treats learners as opaque collaborators; these implementations
exist so experiments can be produced end to end:

    - LearnerClassifFeatureless: class prior baseline
    - LearnerClassifLogistic: logistic regression
    - LearnerRegrFeatureless: constant baseline (response / se / quantiles)
    - LearnerRegrLinear: ordinary least squares

Usage:
    >>> from expstore.models import create_learner
    >>> learner = create_learner("classif.featureless", predict_type="prob")
"""

from typing import Any, Callable, Dict
import logging

from expstore.models.base import (
    Learner,
    LearnerState,
    LogEntry,
    MarshaledModel,
    marshal_model,
    unmarshal_model,
)
from expstore.models.classif import (
    LearnerClassif,
    LearnerClassifFeatureless,
    LearnerClassifLogistic,
)
from expstore.models.regr import (
    LearnerRegr,
    LearnerRegrFeatureless,
    LearnerRegrLinear,
)

logger = logging.getLogger(__name__)


LEARNERS: Dict[str, Callable[..., Learner]] = {
    "classif.featureless": LearnerClassifFeatureless,
    "classif.log_reg": LearnerClassifLogistic,
    "regr.featureless": LearnerRegrFeatureless,
    "regr.lm": LearnerRegrLinear,
}


def create_learner(key: str, **kwargs: Any) -> Learner:
    """
    Factory function to create a learner by key.

    Args:
        key: One of LEARNERS.
        **kwargs: Passed to the learner constructor.

    Returns:
        Untrained Learner instance

    Raises:
        ValueError: If key is unknown
    """
    if key not in LEARNERS:
        raise ValueError(f"Unknown learner '{key}'. Available: {sorted(LEARNERS)}")
    learner = LEARNERS[key](**kwargs)
    logger.debug(f"Created learner {key}")
    return learner


__all__ = [
    "Learner",
    "LearnerState",
    "LogEntry",
    "MarshaledModel",
    "marshal_model",
    "unmarshal_model",
    "LearnerClassif",
    "LearnerClassifFeatureless",
    "LearnerClassifLogistic",
    "LearnerRegr",
    "LearnerRegrFeatureless",
    "LearnerRegrLinear",
    "LEARNERS",
    "create_learner",
]
