"""
Tasks: a data backend plus the roles of its columns.

A task wraps a pandas DataFrame (the backend). The DataFrame index holds the
row ids, one column is the target, every other column is a feature.

The task hash identifies the task by content and is part of every experiment
hash. It is computed once and cached, so it stays valid after the backend
has been discarded to reclaim memory.

Usage:
    >>> task = TaskClassif("penguins", df, target="species")
    >>> task.class_names
    ['Adelie', 'Chinstrap', 'Gentoo']
    >>> task.data(rows=[1, 2, 3], cols=["bill_length"])
"""

import copy
import hashlib
import logging
from typing import Any, List, Optional, Sequence

import numpy as np
import pandas as pd

from expstore.constants import TASK_CLASSIF, TASK_REGR
from expstore.errors import CapabilityError, ValidationError

logger = logging.getLogger(__name__)


class Task:
    """
    Base task over a DataFrame backend.

    Args:
        id: Task identifier (used in score tables as `task_id`).
        backend: DataFrame with unique index values as row ids.
        target: Name of the target column.
        features: Feature columns. Default: every column except the target.
    """

    task_type: str = ""

    def __init__(
        self,
        id: str,
        backend: pd.DataFrame,
        target: str,
        features: Optional[Sequence[str]] = None,
    ):
        if not isinstance(backend, pd.DataFrame):
            raise ValidationError(f"backend must be a pandas DataFrame, got {type(backend).__name__}")
        if target not in backend.columns:
            raise ValidationError(f"target column '{target}' not found in backend")
        if not backend.index.is_unique:
            raise ValidationError("backend index must be unique (it holds the row ids)")

        if features is None:
            features = [c for c in backend.columns if c != target]
        features = list(features)
        missing = [c for c in features if c not in backend.columns]
        if missing:
            raise ValidationError(f"feature columns not found in backend: {missing}")
        if target in features:
            raise ValidationError(f"column '{target}' cannot be both target and feature")
        if len(set(features)) != len(features):
            raise ValidationError("feature columns must be unique")

        self.id = id
        self.backend: Optional[pd.DataFrame] = backend
        self.target = target
        self.feature_names: List[str] = features
        self._row_ids = np.asarray(backend.index)
        self._hash: Optional[str] = None

    def __repr__(self) -> str:
        return f"<{type(self).__name__}:{self.id}> ({self.nrow} x {len(self.feature_names)})"

    def __deepcopy__(self, memo):
        # The backend is read-only for the store, so clones share it.
        cls = type(self)
        clone = cls.__new__(cls)
        memo[id(self)] = clone
        for key, value in self.__dict__.items():
            if key == "backend":
                setattr(clone, key, value)
            else:
                setattr(clone, key, copy.deepcopy(value, memo))
        return clone

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------

    @property
    def hash(self) -> str:
        """Content hash of the task (cached, survives backend discard)."""
        if self._hash is None:
            self._hash = self._compute_hash()
        return self._hash

    def _compute_hash(self) -> str:
        if self.backend is None:
            raise CapabilityError(f"Task '{self.id}' has no backend to hash")
        cols = [self.target] + self.feature_names
        content = pd.util.hash_pandas_object(self.backend[cols], index=True).to_numpy()
        h = hashlib.md5()
        h.update(f"{type(self).__name__}|{self.id}|{self.target}|{','.join(self.feature_names)}".encode())
        h.update(content.tobytes())
        return h.hexdigest()[:16]

    # -------------------------------------------------------------------------
    # Data access
    # -------------------------------------------------------------------------

    @property
    def row_ids(self) -> np.ndarray:
        return self._row_ids

    @property
    def nrow(self) -> int:
        return len(self._row_ids)

    @property
    def has_backend(self) -> bool:
        return self.backend is not None

    def _require_backend(self) -> pd.DataFrame:
        if self.backend is None:
            raise CapabilityError(
                f"Task '{self.id}' has no data backend (it was discarded)"
            )
        return self.backend

    def data(
        self,
        rows: Optional[Sequence[Any]] = None,
        cols: Optional[Sequence[str]] = None,
    ) -> pd.DataFrame:
        """
        Return a copy of the requested rows and columns.

        Args:
            rows: Row ids. Default: all rows.
            cols: Column names. Default: target + features.
        """
        backend = self._require_backend()
        if cols is None:
            cols = [self.target] + self.feature_names
        frame = backend if rows is None else backend.loc[list(rows)]
        return frame.loc[:, list(cols)].copy()

    def features(self, rows: Optional[Sequence[Any]] = None) -> pd.DataFrame:
        return self.data(rows, self.feature_names)

    def truth(self, rows: Optional[Sequence[Any]] = None) -> np.ndarray:
        return self.data(rows, [self.target])[self.target].to_numpy()

    def discard_backend(self) -> None:
        """Drop the backend in place. The hash is materialized first."""
        _ = self.hash
        self.backend = None


class TaskClassif(Task):
    """
    Classification task.

    Args:
        positive: Positive class for binary tasks. Default: first class.
    """

    task_type = TASK_CLASSIF

    def __init__(
        self,
        id: str,
        backend: pd.DataFrame,
        target: str,
        features: Optional[Sequence[str]] = None,
        positive: Optional[Any] = None,
    ):
        super().__init__(id, backend, target, features)
        self.class_names: List[Any] = sorted(pd.unique(backend[target]).tolist(), key=str)
        if len(self.class_names) < 2:
            raise ValidationError(
                f"Classification task needs at least 2 classes, got {self.class_names}"
            )
        if positive is not None:
            if len(self.class_names) != 2:
                raise ValidationError("positive class can only be set for binary tasks")
            if positive not in self.class_names:
                raise ValidationError(f"positive class {positive!r} not in {self.class_names}")
            negative = [c for c in self.class_names if c != positive][0]
            self.class_names = [positive, negative]
        self.positive = self.class_names[0] if len(self.class_names) == 2 else None

    @property
    def properties(self) -> List[str]:
        return ["twoclass"] if len(self.class_names) == 2 else ["multiclass"]


class TaskRegr(Task):
    """Regression task (numeric target)."""

    task_type = TASK_REGR

    def __init__(
        self,
        id: str,
        backend: pd.DataFrame,
        target: str,
        features: Optional[Sequence[str]] = None,
    ):
        super().__init__(id, backend, target, features)
        if not pd.api.types.is_numeric_dtype(backend[target]):
            raise ValidationError(f"Regression target '{target}' must be numeric")
