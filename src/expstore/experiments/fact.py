"""
Fact rows: the atomic unit of the result store.

One fact row per (experiment hash, iteration). A row references the task,
the trained learner of that iteration, the instantiated resampling, the
predictions per predict set and an optional extra payload.

Rows belonging to the same experiment reference the same task and
resampling objects; the store enforces this on insertion.
"""

from dataclasses import dataclass, field
import hashlib
from typing import Any, Dict, Optional

from expstore.data.prediction import Prediction
from expstore.data.resampling import Resampling
from expstore.data.task import Task
from expstore.models.base import Learner


@dataclass(frozen=True)
class ExperimentKey:
    """Identity hashes of the three objects defining an experiment."""

    task_hash: str
    learner_hash: str
    resampling_hash: str

    @classmethod
    def of(cls, task: Task, learner: Learner, resampling: Resampling) -> "ExperimentKey":
        return cls(task.hash, learner.hash, resampling.hash)


def experiment_hash(task: Task, learner: Learner, resampling: Resampling) -> str:
    """
    Experiment identifier (uhash).

    Stable across processes: built from the task content hash, the learner
    prototype hash (trained state excluded) and the instantiated resampling
    hash.
    """
    key = ExperimentKey.of(task, learner, resampling)
    raw = f"{key.task_hash}|{key.learner_hash}|{key.resampling_hash}"
    return hashlib.md5(raw.encode()).hexdigest()[:16]


@dataclass
class FactRow:
    """
    One iteration of one experiment.

    Attributes:
        uhash: Experiment identifier.
        iteration: 1-based resampling iteration.
        task: Task the learner was trained on.
        learner: Learner trained in this iteration (state holds model and log).
        resampling: Instantiated resampling.
        predictions: Prediction per predict set ('train', 'test', 'internal_valid').
        data_extra: Arbitrary payload recorded alongside the iteration.
    """

    uhash: str
    iteration: int
    task: Task
    learner: Learner
    resampling: Resampling
    predictions: Dict[str, Prediction] = field(default_factory=dict)
    data_extra: Optional[Any] = None

    @property
    def key(self) -> ExperimentKey:
        return ExperimentKey.of(self.task, self.learner, self.resampling)
