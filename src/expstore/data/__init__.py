"""
Data module: the collaborators a result store refers to.

- Task: DataFrame backend + target/feature roles + content hash
- Resampling: instantiated train/test splits
- Prediction: per predict set outputs of a trained learner
"""

from expstore.data.task import Task, TaskClassif, TaskRegr
from expstore.data.resampling import (
    Resampling,
    ResamplingCV,
    ResamplingHoldout,
    ResamplingCustom,
    create_resampling,
)
from expstore.data.prediction import (
    Prediction,
    PredictionClassif,
    PredictionRegr,
    combine_predictions,
    subset_predict_sets,
)

__all__ = [
    # Tasks
    "Task",
    "TaskClassif",
    "TaskRegr",
    # Resamplings
    "Resampling",
    "ResamplingCV",
    "ResamplingHoldout",
    "ResamplingCustom",
    "create_resampling",
    # Predictions
    "Prediction",
    "PredictionClassif",
    "PredictionRegr",
    "combine_predictions",
    "subset_predict_sets",
]
