"""
Constants module for expstore.

Provides the fixed vocabularies (task types, predict sets, log kinds) that
tasks, learners, predictions, measures and results agree on.
"""

from expstore.constants.reflections import (
    TASK_CLASSIF,
    TASK_REGR,
    TASK_TYPES,
    PREDICT_SET_TRAIN,
    PREDICT_SET_TEST,
    PREDICT_SET_INTERNAL_VALID,
    PREDICT_SETS,
    PREDICT_TYPES,
    LOG_WARNING,
    LOG_ERROR,
    LOG_OUTPUT,
    LOG_KINDS,
    IDENTITY_COLUMNS,
    CONDITION_COLUMNS,
    prediction_column,
)

__all__ = [
    # Task types
    "TASK_CLASSIF",
    "TASK_REGR",
    "TASK_TYPES",
    # Predict sets
    "PREDICT_SET_TRAIN",
    "PREDICT_SET_TEST",
    "PREDICT_SET_INTERNAL_VALID",
    "PREDICT_SETS",
    "PREDICT_TYPES",
    # Logs
    "LOG_WARNING",
    "LOG_ERROR",
    "LOG_OUTPUT",
    "LOG_KINDS",
    # Score table layout
    "IDENTITY_COLUMNS",
    "CONDITION_COLUMNS",
    "prediction_column",
]
