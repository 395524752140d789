"""
Result store: normalized, deduplicated storage of fact rows.

Layout:
    _facts       uhash -> {iteration -> FactRow}   (rows + index in one)
    _keys        uhash -> ExperimentKey
    _tasks       task hash -> Task                  (one object per identity)
    _resamplings resampling hash -> Resampling
    _prototypes  learner hash -> untrained Learner

A store is shared by reference between result views. Every mutating method
states whether it works in place or on a clone:

    insert, filter_by_iteration      in place (callers clone first)
    discard, marshal, unmarshal,
    set_threshold                    in place, visible to every view
    combine, clone                   return a new store

The store is not safe for concurrent writers; executors insert serially.
"""

import copy
import dataclasses
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd

from expstore.config import TiesMethod
from expstore.constants import LOG_KINDS, TASK_CLASSIF
from expstore.data.prediction import Prediction, combine_predictions
from expstore.data.resampling import Resampling
from expstore.data.task import Task
from expstore.errors import (
    CapabilityError,
    DuplicateExperimentError,
    TypeMismatchError,
    ValidationError,
)
from expstore.experiments.fact import ExperimentKey, FactRow
from expstore.models.base import Learner

logger = logging.getLogger(__name__)


class ResultStore:
    """
    Backing data for one or more experiments.

    Args:
        rows: Optional fact rows to insert.

    Example:
        >>> store = ResultStore(rows)
        >>> store.uhashes()
        ['3f2a...']
        >>> len(store)
        10
    """

    def __init__(self, rows: Optional[Iterable[FactRow]] = None):
        self._facts: Dict[str, Dict[int, FactRow]] = {}
        self._keys: Dict[str, ExperimentKey] = {}
        self._tasks: Dict[str, Task] = {}
        self._resamplings: Dict[str, Resampling] = {}
        self._prototypes: Dict[str, Learner] = {}
        if rows is not None:
            self.insert(rows)

    def __len__(self) -> int:
        return sum(len(its) for its in self._facts.values())

    def __repr__(self) -> str:
        return f"<ResultStore> ({len(self._facts)} experiments, {len(self)} rows)"

    # =========================================================================
    # Insertion
    # =========================================================================

    def insert(self, rows: Iterable[FactRow]) -> "ResultStore":
        """
        Append copies of fact rows (in place).

        All rows are validated before any is stored. Inserting a row object
        that is already stored is a no-op. The caller's rows are never
        modified: the store keeps a shallow copy of each row, bound to the
        store's canonical task and resampling and holding its own learner
        and predictions mapping. A task seen for the first time is interned
        as a copy, so discarding its backend here does not reach other
        stores.

        Raises:
            ValidationError: Iteration not a positive integer or out of range
            TypeMismatchError: Task type differs from the stored experiments
            DuplicateExperimentError: uhash bound to a different identity, or
                (uhash, iteration) already taken by another row
        """
        rows = list(rows)
        fresh = self._validate_rows(rows)

        for row, key, iteration in fresh:
            if key.task_hash not in self._tasks:
                self._tasks[key.task_hash] = copy.copy(row.task)
            resampling = self._resamplings.setdefault(key.resampling_hash, row.resampling)
            if key.learner_hash not in self._prototypes:
                self._prototypes[key.learner_hash] = row.learner.prototype()
            stored = dataclasses.replace(
                row,
                iteration=iteration,
                task=self._tasks[key.task_hash],
                resampling=resampling,
                learner=copy.copy(row.learner),
                predictions=dict(row.predictions),
            )
            self._keys.setdefault(row.uhash, key)
            self._facts.setdefault(row.uhash, {})[iteration] = stored

        if fresh:
            logger.debug(f"Inserted {len(fresh)} rows, store now has {len(self)} rows")
        return self

    def _validate_rows(self, rows: List[FactRow]) -> List[tuple]:
        task_type = self.task_type
        batch_keys: Dict[str, ExperimentKey] = {}
        seen: Dict[tuple, FactRow] = {}
        fresh = []

        for row in rows:
            if not isinstance(row, FactRow):
                raise ValidationError(f"Expected FactRow, got {type(row).__name__}")
            it = row.iteration
            if isinstance(it, bool) or not isinstance(it, (int, np.integer)) or it < 1:
                raise ValidationError(f"iteration must be a positive integer, got {it!r}")
            iters = row.resampling.iters
            if iters is not None and it > iters:
                raise ValidationError(
                    f"iteration {it} exceeds the {iters} iterations of resampling '{row.resampling.id}'"
                )

            if task_type is None:
                task_type = row.task.task_type
            elif row.task.task_type != task_type:
                raise TypeMismatchError(
                    f"Cannot store '{row.task.task_type}' results together with '{task_type}' results"
                )

            key = row.key
            known = self._keys.get(row.uhash, batch_keys.get(row.uhash))
            if known is not None and known != key:
                raise DuplicateExperimentError(
                    f"Experiment '{row.uhash}' is already bound to a different "
                    f"task/learner/resampling identity"
                )
            batch_keys[row.uhash] = key

            slot = (row.uhash, int(it))
            existing = self._facts.get(row.uhash, {}).get(int(it), seen.get(slot))
            if existing is row:
                continue
            if existing is not None:
                raise DuplicateExperimentError(
                    f"Iteration {it} of experiment '{row.uhash}' is already stored"
                )
            seen[slot] = row
            fresh.append((row, key, int(it)))

        return fresh

    # =========================================================================
    # Reads
    # =========================================================================

    @property
    def task_type(self) -> Optional[str]:
        """Task type of the stored experiments, None if empty."""
        for key in self._keys.values():
            return self._tasks[key.task_hash].task_type
        return None

    def uhashes(self, view: Optional[str] = None) -> List[str]:
        """Experiment hashes in insertion order (restricted to `view`)."""
        if view is None:
            return list(self._facts)
        return [view] if view in self._facts else []

    def rows(self, view: Optional[str] = None) -> List[FactRow]:
        """Fact rows ordered by experiment, then iteration."""
        return self.filter_by_experiment(self.uhashes(view))

    def filter_by_experiment(self, uhashes: Sequence[str]) -> List[FactRow]:
        """Rows whose uhash is in `uhashes` (pure read, index lookup)."""
        out = []
        for uhash in uhashes:
            its = self._facts.get(uhash, {})
            out.extend(its[i] for i in sorted(its))
        return out

    def iterations(self, view: Optional[str] = None) -> int:
        """Number of stored rows (iterations) visible through `view`."""
        return len(self.rows(view))

    def key(self, uhash: str) -> Optional[ExperimentKey]:
        return self._keys.get(uhash)

    def task(self, uhash: str) -> Optional[Task]:
        key = self._keys.get(uhash)
        return None if key is None else self._tasks[key.task_hash]

    def learner(self, uhash: str) -> Optional[Learner]:
        """Untrained learner prototype of the experiment."""
        key = self._keys.get(uhash)
        return None if key is None else self._prototypes[key.learner_hash]

    def resampling(self, uhash: str) -> Optional[Resampling]:
        key = self._keys.get(uhash)
        return None if key is None else self._resamplings[key.resampling_hash]

    def tasks(self, view: Optional[str] = None) -> List[Task]:
        return _unique([self.task(u) for u in self.uhashes(view)])

    def resamplings(self, view: Optional[str] = None) -> List[Resampling]:
        return _unique([self.resampling(u) for u in self.uhashes(view)])

    def learners(self, view: Optional[str] = None, states: bool = True) -> List[Learner]:
        """Trained learners ordered by iteration, or the prototypes if `states` is False."""
        if states:
            return [row.learner for row in self.rows(view)]
        return _unique([self.learner(u) for u in self.uhashes(view)])

    def data_extra(self, view: Optional[str] = None) -> List[Any]:
        return [row.data_extra for row in self.rows(view)]

    def predictions(
        self,
        view: Optional[str] = None,
        predict_sets: Sequence[str] = ("test",),
    ) -> List[Optional[Prediction]]:
        """One prediction per row; several predict sets are merged per row."""
        return [
            combine_predictions([row.predictions.get(s) for s in predict_sets])
            for row in self.rows(view)
        ]

    def prediction(
        self,
        view: Optional[str] = None,
        predict_sets: Sequence[str] = ("test",),
    ) -> Optional[Prediction]:
        """
        Pool predictions across rows.

        Each predict set is pooled over the iterations first; the per-set
        results are then merged into one object. None if nothing is stored.
        """
        rows = self.rows(view)
        per_set = [
            combine_predictions([row.predictions.get(s) for row in rows])
            for s in predict_sets
        ]
        return combine_predictions(per_set)

    def logs(self, view: Optional[str] = None, kind: str = "warning") -> pd.DataFrame:
        """Condition messages of `kind`, one row per message, in recording order."""
        if kind not in LOG_KINDS:
            raise ValidationError(f"kind must be one of {list(LOG_KINDS)}, got '{kind}'")
        records = [
            {"uhash": row.uhash, "iteration": row.iteration, "msg": msg}
            for row in self.rows(view)
            for msg in row.learner.messages(kind)
        ]
        return pd.DataFrame(records, columns=["uhash", "iteration", "msg"]).astype(
            {"iteration": "int64"}
        )

    def as_frame(
        self,
        view: Optional[str] = None,
        predict_sets: Sequence[str] = ("test",),
    ) -> pd.DataFrame:
        """Tabular view of the rows: task, learner, resampling, iteration, prediction."""
        rows = self.rows(view)
        frame = pd.DataFrame({
            "uhash": [r.uhash for r in rows],
            "task": object_column([r.task for r in rows]),
            "learner": object_column([r.learner for r in rows]),
            "resampling": object_column([r.resampling for r in rows]),
            "iteration": pd.Series([r.iteration for r in rows], dtype="int64"),
            "prediction": object_column(self.predictions(view, predict_sets)),
        })
        if any(r.data_extra is not None for r in rows):
            frame["data_extra"] = object_column([r.data_extra for r in rows])
        return frame

    # =========================================================================
    # Filtering and combination
    # =========================================================================

    def filter_by_iteration(self, uhash: str, iterations: Iterable[int]) -> "ResultStore":
        """
        Discard rows of `uhash` whose iteration is not in `iterations` (in place).

        Callers that must preserve the current contents clone first.
        """
        keep = {int(i) for i in iterations}
        its = self._facts.get(uhash)
        if its is None:
            return self
        self._facts[uhash] = {i: row for i, row in its.items() if i in keep}
        if not self._facts[uhash]:
            del self._facts[uhash]
            del self._keys[uhash]
            self._collect_garbage()
        logger.debug(f"Filtered {uhash} to iterations {sorted(keep)}")
        return self

    def clone(self, deep: bool = True, uhashes: Optional[Sequence[str]] = None) -> "ResultStore":
        """
        Copy the store.

        Args:
            deep: Copy fact rows, learners and predictions so that mutating
                the clone never reaches this store. Task backends stay shared
                (they are never modified in place). With deep=False only the
                index structures are new.
            uhashes: Restrict the clone to these experiments.
        """
        selected = list(self._facts) if uhashes is None else [u for u in uhashes if u in self._facts]
        new = ResultStore()
        memo: Dict[int, Any] = {}
        dup = (lambda obj: copy.deepcopy(obj, memo)) if deep else (lambda obj: obj)

        for uhash in selected:
            key = self._keys[uhash]
            new._keys[uhash] = key
            new._tasks.setdefault(key.task_hash, dup(self._tasks[key.task_hash]))
            new._resamplings.setdefault(key.resampling_hash, dup(self._resamplings[key.resampling_hash]))
            new._prototypes.setdefault(key.learner_hash, dup(self._prototypes[key.learner_hash]))
            new._facts[uhash] = {i: dup(row) for i, row in self._facts[uhash].items()}
        return new

    def combine(self, others: Sequence["ResultStore"]) -> "ResultStore":
        """
        Union of this store and `others` in a new store.

        Rows are deduplicated on (uhash, iteration); the first occurrence
        wins. The same uhash with disjoint iterations in different sources
        becomes one experiment holding all of them. Sources are cloned deeply,
        so the result shares no mutable state with them.

        Raises:
            TypeMismatchError: Sources hold different task types
            DuplicateExperimentError: One uhash bound to different identities
        """
        stores = [self] + list(others)

        task_types = {s.task_type for s in stores if s.task_type is not None}
        if len(task_types) > 1:
            raise TypeMismatchError(f"Cannot combine results of different task types: {sorted(task_types)}")
        keys: Dict[str, ExperimentKey] = {}
        for s in stores:
            for uhash, key in s._keys.items():
                if keys.setdefault(uhash, key) != key:
                    raise DuplicateExperimentError(
                        f"Experiment '{uhash}' is bound to different identities in the combined results"
                    )

        combined = ResultStore()
        for s in stores:
            clone = s.clone(deep=True)
            rows = [
                row for row in clone.rows()
                if row.iteration not in combined._facts.get(row.uhash, {})
            ]
            combined.insert(rows)

        logger.info(
            f"Combined {len(stores)} stores into {len(combined._facts)} experiments "
            f"({len(combined)} rows)"
        )
        return combined

    def _collect_garbage(self) -> None:
        used = list(self._keys.values())
        for arena, attr in (
            (self._tasks, "task_hash"),
            (self._resamplings, "resampling_hash"),
            (self._prototypes, "learner_hash"),
        ):
            live = {getattr(k, attr) for k in used}
            for h in [h for h in arena if h not in live]:
                del arena[h]

    # =========================================================================
    # Model maintenance (in place, visible to every view of this store)
    # =========================================================================

    def discard(self, view: Optional[str] = None, backends: bool = False, models: bool = False) -> "ResultStore":
        """Drop task backends and/or trained models of every row in `view`."""
        rows = self.rows(view)
        if backends:
            for task in _unique([row.task for row in rows]):
                task.discard_backend()
        if models:
            for row in rows:
                row.learner.discard_model()
        logger.debug(f"Discarded backends={backends} models={models} for {len(rows)} rows")
        return self

    def marshal(self, view: Optional[str] = None) -> "ResultStore":
        for row in self.rows(view):
            row.learner.marshal()
        return self

    def unmarshal(self, view: Optional[str] = None) -> "ResultStore":
        for row in self.rows(view):
            row.learner.unmarshal()
        return self

    def set_threshold(
        self,
        view: Optional[str],
        threshold: Union[float, Mapping[Any, float]],
        ties_method: Union[TiesMethod, str] = TiesMethod.FIRST,
        rng: Optional[np.random.Generator] = None,
    ) -> "ResultStore":
        """
        Recompute classification responses from stored probabilities.

        Every prediction is checked before any is replaced; each row then
        gets a new predictions mapping.

        Raises:
            TypeMismatchError: Experiments are not classification
            CapabilityError: A stored prediction has no probabilities
            ValidationError: Threshold is malformed
        """
        rows = self.rows(view)
        if rows and self.task_type != TASK_CLASSIF:
            raise TypeMismatchError(
                f"Can only change the threshold for classification problems, "
                f"but task type is '{self.task_type}'"
            )
        ties_method = TiesMethod(ties_method)
        for row in rows:
            for pred in row.predictions.values():
                if pred.prob is None:
                    raise CapabilityError(
                        f"Iteration {row.iteration} of '{row.uhash}' has no probabilities; "
                        f"train the learner with predict_type 'prob'"
                    )
                pred._threshold_weights(threshold)

        for row in rows:
            row.predictions = {
                name: pred.set_threshold(threshold, ties_method, rng)
                for name, pred in row.predictions.items()
            }
        return self


def object_column(values: List[Any]) -> pd.Series:
    """Object Series holding `values` as single cells (lists stay lists)."""
    array = np.empty(len(values), dtype=object)
    for i, value in enumerate(values):
        array[i] = value
    return pd.Series(array, dtype=object)


def _unique(objects: List[Any]) -> List[Any]:
    """Deduplicate by identity, keeping order."""
    seen = set()
    out = []
    for obj in objects:
        if obj is not None and id(obj) not in seen:
            seen.add(id(obj))
            out.append(obj)
    return out
