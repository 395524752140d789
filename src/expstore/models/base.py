"""
Learner interface.

A learner has two parts:
- the prototype: id, hyperparameters, predict type, predict sets. This is
  what the learner hash covers and what identifies it inside an experiment.
- the state: the trained model plus the log of conditions raised while
  training/predicting. Every fact row holds its own trained learner.

Marshaling turns the trained model into a transportable byte payload (via
torch serialization) and back, for models holding resources that must not be
copied by value across process or storage boundaries.

All learners must implement:
- _train(task, row_ids): fit and return the model object
- _predict(task, row_ids, predict_set): return a Prediction
"""

from abc import ABC, abstractmethod
import copy
import dataclasses
from dataclasses import dataclass, field
import hashlib
import io
import json
import logging
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import torch

from expstore.constants import (
    LOG_ERROR,
    LOG_KINDS,
    LOG_OUTPUT,
    LOG_WARNING,
    PREDICT_SET_TEST,
    PREDICT_SETS,
    PREDICT_TYPES,
)
from expstore.data.prediction import Prediction
from expstore.data.task import Task
from expstore.errors import CapabilityError, TypeMismatchError, ValidationError

logger = logging.getLogger(__name__)


# =============================================================================
# Learner state
# =============================================================================


@dataclass(frozen=True)
class LogEntry:
    """One condition recorded while training or predicting."""

    stage: str
    """'train' or 'predict'."""

    kind: str
    """'warning', 'error' or 'output'."""

    msg: str


@dataclass
class MarshaledModel:
    """Serialized form of a trained model."""

    payload: bytes
    model_class: str


@dataclass
class LearnerState:
    """
    Trained state of a learner.

    Maintenance operations replace the whole state object rather than
    editing its fields, so a state object seen by one fact row is never
    changed behind its back.
    """

    model: Any = None
    log: Tuple[LogEntry, ...] = field(default_factory=tuple)
    train_time: float = 0.0
    predict_time: float = 0.0
    task_hash: Optional[str] = None
    feature_names: Tuple[str, ...] = field(default_factory=tuple)
    train_rows: int = 0

    @property
    def marshaled(self) -> bool:
        return isinstance(self.model, MarshaledModel)

    def messages(self, kind: str) -> List[str]:
        return [entry.msg for entry in self.log if entry.kind == kind]


def marshal_model(model: Any) -> MarshaledModel:
    """Serialize a model to bytes."""
    buffer = io.BytesIO()
    torch.save(model, buffer)
    return MarshaledModel(payload=buffer.getvalue(), model_class=type(model).__name__)


def unmarshal_model(marshaled: MarshaledModel) -> Any:
    """Restore a model serialized with `marshal_model`."""
    buffer = io.BytesIO(marshaled.payload)
    return torch.load(buffer, weights_only=False)


# =============================================================================
# Base Learner
# =============================================================================


class Learner(ABC):
    """
    Abstract base class for learners.

    Args:
        id: Learner identifier (used in score tables as `learner_id`).
        predict_types: Predict types this learner can produce.
        param_values: Hyperparameters.
        predict_type: Active predict type.
        predict_sets: Predict sets produced during resampling.
        properties: Capability tags (e.g. 'importance').
    """

    task_type: str = ""

    def __init__(
        self,
        id: str,
        predict_types: Sequence[str] = ("response",),
        param_values: Optional[Dict[str, Any]] = None,
        predict_type: str = "response",
        predict_sets: Sequence[str] = (PREDICT_SET_TEST,),
        properties: Sequence[str] = (),
    ):
        self.id = id
        self.predict_types = list(predict_types)
        self.param_values: Dict[str, Any] = dict(param_values or {})
        self.properties = list(properties)
        self.state: Optional[LearnerState] = None
        self._predict_type = "response"
        self.predict_type = predict_type
        self._predict_sets: List[str] = []
        self.predict_sets = predict_sets

    def __repr__(self) -> str:
        trained = "trained" if self.is_trained else "untrained"
        return f"<{type(self).__name__}:{self.id}> ({trained})"

    # -------------------------------------------------------------------------
    # Prototype fields
    # -------------------------------------------------------------------------

    @property
    def predict_type(self) -> str:
        return self._predict_type

    @predict_type.setter
    def predict_type(self, value: str) -> None:
        allowed = PREDICT_TYPES.get(self.task_type, ())
        if value not in self.predict_types or (allowed and value not in allowed):
            raise CapabilityError(
                f"Learner '{self.id}' does not support predict_type '{value}' "
                f"(supported: {self.predict_types})"
            )
        self._predict_type = value

    @property
    def predict_sets(self) -> List[str]:
        return list(self._predict_sets)

    @predict_sets.setter
    def predict_sets(self, value: Sequence[str]) -> None:
        value = list(value)
        bad = [s for s in value if s not in PREDICT_SETS]
        if not value or bad:
            raise ValidationError(f"predict_sets must be a non-empty subset of {list(PREDICT_SETS)}")
        if len(set(value)) != len(value):
            raise ValidationError("predict_sets must not contain duplicates")
        self._predict_sets = value

    @property
    def hash(self) -> str:
        """Hash of the prototype. Trained state is not part of it."""
        h = hashlib.md5()
        h.update(type(self).__name__.encode())
        h.update(self.id.encode())
        h.update(self.predict_type.encode())
        h.update(json.dumps(self.param_values, sort_keys=True, default=str).encode())
        h.update(",".join(self.predict_sets).encode())
        h.update(json.dumps(self._hash_extra(), sort_keys=True, default=str).encode())
        return h.hexdigest()[:16]

    def _hash_extra(self) -> Dict[str, Any]:
        """Extra prototype fields covered by the hash (override in subclasses)."""
        return {}

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def model(self) -> Any:
        return None if self.state is None else self.state.model

    @property
    def is_trained(self) -> bool:
        return self.model is not None

    @property
    def marshaled(self) -> bool:
        return self.state is not None and self.state.marshaled

    @property
    def log(self) -> Tuple[LogEntry, ...]:
        return () if self.state is None else self.state.log

    @property
    def warnings(self) -> List[str]:
        return [] if self.state is None else self.state.messages(LOG_WARNING)

    @property
    def errors(self) -> List[str]:
        return [] if self.state is None else self.state.messages(LOG_ERROR)

    def messages(self, kind: str) -> List[str]:
        if kind not in LOG_KINDS + (LOG_OUTPUT,):
            raise ValidationError(f"kind must be one of {list(LOG_KINDS)}, got '{kind}'")
        return [] if self.state is None else self.state.messages(kind)

    def reset(self) -> "Learner":
        """Drop the trained state."""
        self.state = None
        return self

    def clone(self, deep: bool = True) -> "Learner":
        return copy.deepcopy(self) if deep else copy.copy(self)

    def prototype(self) -> "Learner":
        """Untrained copy carrying only the prototype fields."""
        proto = copy.copy(self)
        proto.state = None
        proto.param_values = copy.deepcopy(self.param_values)
        proto._predict_sets = list(self._predict_sets)
        return proto

    def append_log(self, stage: str, kind: str, msg: str) -> None:
        """Record a condition. Replaces the state object."""
        state = self.state if self.state is not None else LearnerState()
        self.state = dataclasses.replace(state, log=state.log + (LogEntry(stage, kind, msg),))

    # -------------------------------------------------------------------------
    # Train / predict
    # -------------------------------------------------------------------------

    def _check_task(self, task: Task) -> None:
        if task.task_type != self.task_type:
            raise TypeMismatchError(
                f"Learner '{self.id}' is for '{self.task_type}' tasks, "
                f"task '{task.id}' is '{task.task_type}'"
            )

    def train(self, task: Task, row_ids: Optional[Sequence[Any]] = None) -> "Learner":
        """Train on `row_ids` (default: all rows). Sets a fresh state."""
        self._check_task(task)
        rows = task.row_ids if row_ids is None else np.asarray(row_ids)
        log = self.state.log if self.state is not None else ()
        start = time.perf_counter()
        model = self._train(task, rows)
        elapsed = time.perf_counter() - start
        self.state = LearnerState(
            model=model,
            log=log,
            train_time=elapsed,
            task_hash=task.hash,
            feature_names=tuple(task.feature_names),
            train_rows=len(rows),
        )
        logger.debug(f"Trained {self.id} on {len(rows)} rows of {task.id} in {elapsed:.3f}s")
        return self

    def predict(
        self,
        task: Task,
        row_ids: Optional[Sequence[Any]] = None,
        predict_set: str = PREDICT_SET_TEST,
    ) -> Prediction:
        """Predict `row_ids` (default: all rows) of `task`."""
        self._check_task(task)
        if self.state is None or self.state.model is None:
            raise CapabilityError(f"Learner '{self.id}' has no trained model")
        if self.state.marshaled:
            raise CapabilityError(f"Learner '{self.id}' is marshaled; call unmarshal() first")
        rows = task.row_ids if row_ids is None else np.asarray(row_ids)
        start = time.perf_counter()
        prediction = self._predict(task, rows, predict_set)
        elapsed = time.perf_counter() - start
        self.state = dataclasses.replace(self.state, predict_time=self.state.predict_time + elapsed)
        return prediction

    @abstractmethod
    def _train(self, task: Task, row_ids: np.ndarray) -> Any:
        pass

    @abstractmethod
    def _predict(self, task: Task, row_ids: np.ndarray, predict_set: str) -> Prediction:
        pass

    # -------------------------------------------------------------------------
    # Marshaling
    # -------------------------------------------------------------------------

    def marshal(self) -> "Learner":
        """Serialize the trained model in place. No-op if untrained or already marshaled."""
        if self.state is None or self.state.model is None or self.state.marshaled:
            return self
        self.state = dataclasses.replace(self.state, model=marshal_model(self.state.model))
        return self

    def unmarshal(self) -> "Learner":
        """Restore a marshaled model in place. No-op if not marshaled."""
        if self.state is None or not self.state.marshaled:
            return self
        self.state = dataclasses.replace(self.state, model=unmarshal_model(self.state.model))
        return self

    def discard_model(self) -> "Learner":
        """Drop the model but keep log and timings."""
        if self.state is not None and self.state.model is not None:
            self.state = dataclasses.replace(self.state, model=None)
        return self
