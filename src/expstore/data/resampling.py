"""
Resampling strategies: how a task's rows are split into train/test sets.

A resampling is a prototype until `instantiate(task)` fixes the splits.
Only instantiated resamplings take part in experiments; their hash covers
the concrete splits, so two CVs with different fold assignments are two
different experiments.

Iterations are 1-based everywhere.
"""

from abc import ABC, abstractmethod
import hashlib
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from sklearn.model_selection import KFold, train_test_split

from expstore.data.task import Task
from expstore.errors import ValidationError

logger = logging.getLogger(__name__)


class Resampling(ABC):
    """
    Abstract base class for resampling strategies.

    Subclasses implement `_instantiate(task)` returning the train and test
    row-id sets.
    """

    def __init__(self, id: str, param_values: Optional[Dict[str, Any]] = None):
        self.id = id
        self.param_values: Dict[str, Any] = dict(param_values or {})
        self.instance: Optional[Dict[str, List[np.ndarray]]] = None
        self.task_hash: Optional[str] = None
        self.task_nrow: Optional[int] = None

    def __repr__(self) -> str:
        state = f"{self.iters} iterations" if self.is_instantiated else "not instantiated"
        return f"<{type(self).__name__}:{self.id}> ({state})"

    @abstractmethod
    def _instantiate(self, task: Task) -> Dict[str, List[np.ndarray]]:
        pass

    def instantiate(self, task: Task) -> "Resampling":
        """Fix train/test splits for `task`. Returns self."""
        instance = self._instantiate(task)
        self._set_instance(task, instance["train"], instance["test"])
        return self

    def _set_instance(self, task: Task, train_sets, test_sets) -> None:
        self.instance = {
            "train": [np.asarray(s) for s in train_sets],
            "test": [np.asarray(s) for s in test_sets],
        }
        self.task_hash = task.hash
        self.task_nrow = task.nrow
        logger.debug(f"Instantiated {self.id} on task {task.id}: {self.iters} iterations")

    @property
    def is_instantiated(self) -> bool:
        return self.instance is not None

    @property
    def iters(self) -> Optional[int]:
        """Number of iterations, or None if not instantiated."""
        if self.instance is None:
            return None
        return len(self.instance["train"])

    def _check_iteration(self, i: int) -> None:
        if self.instance is None:
            raise ValidationError(f"Resampling '{self.id}' has not been instantiated")
        if not 1 <= i <= self.iters:
            raise ValidationError(f"iteration must be in [1, {self.iters}], got {i}")

    def train_set(self, i: int) -> np.ndarray:
        """Row ids of the training set of iteration `i` (1-based)."""
        self._check_iteration(i)
        return self.instance["train"][i - 1]

    def test_set(self, i: int) -> np.ndarray:
        """Row ids of the test set of iteration `i` (1-based)."""
        self._check_iteration(i)
        return self.instance["test"][i - 1]

    @property
    def hash(self) -> str:
        """Hash over class, id, parameters and (if instantiated) the splits."""
        h = hashlib.md5()
        h.update(type(self).__name__.encode())
        h.update(self.id.encode())
        h.update(json.dumps(self.param_values, sort_keys=True, default=str).encode())
        if self.instance is not None:
            h.update(str(self.task_hash).encode())
            for kind in ("train", "test"):
                for s in self.instance[kind]:
                    h.update(kind.encode())
                    h.update(np.asarray(s).astype(str).tobytes())
        return h.hexdigest()[:16]


class ResamplingCV(Resampling):
    """
    K-fold cross-validation (sklearn KFold).

    Args:
        folds: Number of folds (>= 2).
        shuffle: Shuffle rows before splitting.
        seed: Seed for the shuffle.
    """

    def __init__(self, folds: int = 3, shuffle: bool = True, seed: Optional[int] = None):
        if folds < 2:
            raise ValidationError(f"folds must be >= 2, got {folds}")
        super().__init__("cv", {"folds": folds, "shuffle": shuffle, "seed": seed})

    def _instantiate(self, task: Task) -> Dict[str, List[np.ndarray]]:
        folds = self.param_values["folds"]
        if task.nrow < folds:
            raise ValidationError(f"Cannot split {task.nrow} rows into {folds} folds")
        kfold = KFold(
            n_splits=folds,
            shuffle=self.param_values["shuffle"],
            random_state=self.param_values["seed"] if self.param_values["shuffle"] else None,
        )
        row_ids = task.row_ids
        train, test = [], []
        for train_idx, test_idx in kfold.split(row_ids):
            train.append(row_ids[train_idx])
            test.append(row_ids[test_idx])
        return {"train": train, "test": test}


class ResamplingHoldout(Resampling):
    """
    Single train/test split.

    Args:
        ratio: Fraction of rows used for training.
        seed: Seed for the split.
    """

    def __init__(self, ratio: float = 2 / 3, seed: Optional[int] = None):
        if not 0 < ratio < 1:
            raise ValidationError(f"ratio must be in (0, 1), got {ratio}")
        super().__init__("holdout", {"ratio": ratio, "seed": seed})

    def _instantiate(self, task: Task) -> Dict[str, List[np.ndarray]]:
        train, test = train_test_split(
            task.row_ids,
            train_size=self.param_values["ratio"],
            random_state=self.param_values["seed"],
        )
        return {"train": [np.sort(train)], "test": [np.sort(test)]}


class ResamplingCustom(Resampling):
    """
    User-supplied splits.

    Example:
        >>> r = ResamplingCustom().instantiate(task, train_sets=[[1, 2]], test_sets=[[3]])
    """

    def __init__(self):
        super().__init__("custom")

    def _instantiate(self, task: Task) -> Dict[str, List[np.ndarray]]:
        raise ValidationError("ResamplingCustom needs explicit train_sets/test_sets")

    def instantiate(
        self,
        task: Task,
        train_sets: Optional[Sequence[Sequence[Any]]] = None,
        test_sets: Optional[Sequence[Sequence[Any]]] = None,
    ) -> "ResamplingCustom":
        if train_sets is None or test_sets is None:
            return super().instantiate(task)
        if len(train_sets) != len(test_sets):
            raise ValidationError(
                f"train_sets and test_sets must have the same length, "
                f"got {len(train_sets)} and {len(test_sets)}"
            )
        known = set(task.row_ids.tolist())
        for kind, sets in (("train", train_sets), ("test", test_sets)):
            for s in sets:
                unknown = set(np.asarray(s).tolist()) - known
                if unknown:
                    raise ValidationError(
                        f"{kind} set contains row ids not in task '{task.id}': {sorted(unknown)[:5]}"
                    )
        self._set_instance(task, train_sets, test_sets)
        return self


RESAMPLINGS = {
    "cv": ResamplingCV,
    "holdout": ResamplingHoldout,
    "custom": ResamplingCustom,
}


def create_resampling(key: str, **kwargs) -> Resampling:
    """Create a resampling by key ('cv', 'holdout', 'custom')."""
    if key not in RESAMPLINGS:
        raise ValueError(f"Unknown resampling '{key}'. Available: {sorted(RESAMPLINGS)}")
    return RESAMPLINGS[key](**kwargs)
