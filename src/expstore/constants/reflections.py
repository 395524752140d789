"""
Reflections: fixed vocabularies shared by every module.

These mirror the contract between tasks, learners, predictions and measures.
Anything that validates a predict set, a task type or a log kind checks
against the tuples defined here.
"""

from typing import Dict, Tuple


# =============================================================================
# Task types
# =============================================================================

TASK_CLASSIF = "classif"
TASK_REGR = "regr"

TASK_TYPES: Tuple[str, ...] = (TASK_CLASSIF, TASK_REGR)
"""Supported task types."""


# =============================================================================
# Predict sets
# =============================================================================

PREDICT_SET_TRAIN = "train"
PREDICT_SET_TEST = "test"
PREDICT_SET_INTERNAL_VALID = "internal_valid"

PREDICT_SETS: Tuple[str, ...] = (
    PREDICT_SET_TRAIN,
    PREDICT_SET_TEST,
    PREDICT_SET_INTERNAL_VALID,
)
"""Predict sets in canonical order. Column order of score tables follows this."""


# =============================================================================
# Predict types per task type
# =============================================================================

PREDICT_TYPES: Dict[str, Tuple[str, ...]] = {
    TASK_CLASSIF: ("response", "prob"),
    TASK_REGR: ("response", "se", "quantiles"),
}


# =============================================================================
# Learner log
# =============================================================================

LOG_WARNING = "warning"
LOG_ERROR = "error"
LOG_OUTPUT = "output"

LOG_KINDS: Tuple[str, ...] = (LOG_WARNING, LOG_ERROR)
"""Condition kinds that can be queried from a result."""


# =============================================================================
# Score table layout
# =============================================================================

IDENTITY_COLUMNS: Tuple[str, ...] = (
    "uhash",
    "task",
    "task_id",
    "learner",
    "learner_id",
    "resampling",
    "resampling_id",
    "iteration",
)
"""Leading columns of a score table, in order."""

CONDITION_COLUMNS: Tuple[str, ...] = ("warnings", "errors")


def prediction_column(predict_set: str) -> str:
    """Name of the score-table column holding predictions of `predict_set`."""
    return f"prediction_{predict_set}"
