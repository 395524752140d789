"""
Result views over a shared ResultStore.

A view is a (store, uhash) pair. ResampleResult selects one experiment,
BenchmarkResult (uhash None) sees every experiment in the store. Views
share their store by reference:

- filter() clones the store first, then narrows the clone (copy-on-write)
- discard(), marshal(), unmarshal() and set_threshold() mutate the shared
  store in place, so every view of it observes the change
- combine_results() / `+` build a new store from the union of the sources

Usage:
    >>> rr = resample(task, learner, resampling)
    >>> rr.score(["classif.ce"])
    >>> rr.aggregate()
    >>> rr2 = rr.clone()
    >>> rr2.filter([1, 2])           # rr is unaffected
    >>> bmr = combine_results(rr, rr_other)
    >>> bmr.aggregate()
"""

from typing import Any, Dict, List, Mapping, Optional, Sequence, Union
import logging

import numpy as np
import pandas as pd

from expstore.config import StoreConfig, TiesMethod
from expstore.constants import LOG_ERROR, LOG_WARNING, TASK_CLASSIF
from expstore.data.prediction import Prediction
from expstore.data.resampling import Resampling
from expstore.data.task import Task
from expstore.errors import TypeMismatchError, ValidationError
from expstore.experiments.scoring import aggregate_table, obs_loss_table, score_table
from expstore.experiments.store import ResultStore
from expstore.measures import Measure, resolve_measures
from expstore.models.base import Learner
from expstore.utils.reproducibility import make_rng

logger = logging.getLogger(__name__)

MeasureSpec = Union[None, str, Measure, Sequence[Union[str, Measure]]]


class ResultView:
    """
    Base class for result views.

    Args:
        store: Backing store, shared by reference.
        view: Experiment hash to restrict to, or None for the whole store.
        config: Defaults for scoring and thresholding.
    """

    def __init__(
        self,
        store: Optional[ResultStore] = None,
        view: Optional[str] = None,
        config: Optional[StoreConfig] = None,
    ):
        self._store = store if store is not None else ResultStore()
        self._view = view
        self.config = config or StoreConfig()

    @property
    def store(self) -> ResultStore:
        return self._store

    @property
    def view(self) -> Optional[str]:
        return self._view

    @property
    def task_type(self) -> Optional[str]:
        return self._store.task_type if self.uhashes else None

    @property
    def uhashes(self) -> List[str]:
        return self._store.uhashes(self._view)

    def _sets(self, predict_sets: Union[None, str, Sequence[str]]) -> List[str]:
        if predict_sets is None:
            return list(self.config.scoring.predict_sets)
        return [predict_sets] if isinstance(predict_sets, str) else list(predict_sets)

    def _single_uhash(self) -> Optional[str]:
        uhashes = self.uhashes
        if len(uhashes) > 1:
            raise AssertionError(
                f"View holds {len(uhashes)} experiments; select one with resample_result()"
            )
        return uhashes[0] if uhashes else None

    @property
    def _multi(self) -> bool:
        return self._view is None

    def __len__(self) -> int:
        return self._store.iterations(self._view)

    # =========================================================================
    # Identity objects
    # =========================================================================

    @property
    def task(self) -> Optional[Task]:
        uhash = self._single_uhash()
        return None if uhash is None else self._store.task(uhash)

    @property
    def learner(self) -> Optional[Learner]:
        """Untrained learner the experiment was run with."""
        uhash = self._single_uhash()
        return None if uhash is None else self._store.learner(uhash)

    @property
    def resampling(self) -> Optional[Resampling]:
        uhash = self._single_uhash()
        return None if uhash is None else self._store.resampling(uhash)

    @property
    def learners(self) -> List[Learner]:
        """Trained learners, one per iteration."""
        return self._store.learners(self._view)

    @property
    def data_extra(self) -> Optional[List[Any]]:
        extra = self._store.data_extra(self._view)
        return extra if any(e is not None for e in extra) else None

    # =========================================================================
    # Predictions
    # =========================================================================

    def prediction(self, predict_sets: Optional[Sequence[str]] = None) -> Optional[Prediction]:
        """All iterations pooled into one prediction; None if nothing is stored."""
        return self._store.prediction(self._view, self._sets(predict_sets))

    def predictions(self, predict_sets: Optional[Sequence[str]] = None) -> List[Optional[Prediction]]:
        """One prediction per iteration."""
        return self._store.predictions(self._view, self._sets(predict_sets))

    # =========================================================================
    # Scoring and aggregation
    # =========================================================================

    def _measures(self, measures: MeasureSpec) -> List[Measure]:
        return resolve_measures(measures, self.task_type, self.config.scoring)

    def score(
        self,
        measures: MeasureSpec = None,
        ids: bool = True,
        conditions: bool = False,
        predictions: bool = True,
    ) -> pd.DataFrame:
        """
        Score every iteration.

        Args:
            measures: Measures or measure keys. None selects the configured
                defaults for the task type.
            ids: Include task/learner/resampling objects and their ids.
            conditions: Include warning and error message lists.
            predictions: Include one prediction column per predict set.

        Returns:
            DataFrame with one row per iteration and one column per measure.
            With the defaults the identity columns are present; the bare
            `iteration`-only table needs `measures=[], ids=False,
            predictions=False`.
        """
        return score_table(
            self._store.rows(self._view),
            self._measures(measures),
            ids=ids,
            conditions=conditions,
            predictions=predictions,
            show_uhash=self._multi,
        )

    def obs_loss(
        self,
        measures: MeasureSpec = None,
        predict_sets: Optional[Sequence[str]] = None,
    ) -> pd.DataFrame:
        """Observation-wise losses, NaN for measures without one."""
        return obs_loss_table(
            self._store.rows(self._view),
            self._measures(measures),
            predict_sets=self._sets(predict_sets),
            show_uhash=self._multi,
        )

    def aggregate(self, measures: MeasureSpec = None) -> Union[pd.Series, pd.DataFrame]:
        """Aggregate over all iterations, one entry per measure."""
        return aggregate_table(self, self._measures(measures))

    # =========================================================================
    # Conditions
    # =========================================================================

    def logs(self, kind: str = LOG_WARNING) -> pd.DataFrame:
        """Messages of `kind` with the iteration they were recorded in."""
        frame = self._store.logs(self._view, kind)
        if not self._multi:
            frame = frame.drop(columns="uhash")
        return frame

    @property
    def warnings(self) -> pd.DataFrame:
        return self.logs(LOG_WARNING)

    @property
    def errors(self) -> pd.DataFrame:
        return self.logs(LOG_ERROR)

    # =========================================================================
    # Maintenance (in place on the shared store)
    # =========================================================================

    def discard(self, backends: bool = False, models: bool = False) -> "ResultView":
        """
        Drop task backends and/or trained models.

        Mutates the shared store: every view of it loses them too. Clone
        first to keep them elsewhere.
        """
        self._store.discard(self._view, backends=backends, models=models)
        return self

    def marshal(self) -> "ResultView":
        """Serialize all trained models in place."""
        self._store.marshal(self._view)
        return self

    def unmarshal(self) -> "ResultView":
        self._store.unmarshal(self._view)
        return self

    def set_threshold(
        self,
        threshold: Union[float, Mapping[Any, float]],
        ties_method: Optional[Union[TiesMethod, str]] = None,
    ) -> "ResultView":
        """
        Recompute responses of stored classification predictions.

        Args:
            threshold: Scalar in [0, 1] for binary tasks, or a mapping
                class -> threshold.
            ties_method: Tie-break rule. Default: config.threshold.ties_method.

        Raises:
            TypeMismatchError: Not a classification result
            ValidationError: Malformed threshold
        """
        if self.task_type is not None and self.task_type != TASK_CLASSIF:
            raise TypeMismatchError(
                f"Can only change the threshold for classification problems, "
                f"but task type is '{self.task_type}'"
            )
        ties_method = TiesMethod(ties_method or self.config.threshold.ties_method)
        rng = make_rng(self.config.threshold.seed) if ties_method == TiesMethod.RANDOM else None
        self._store.set_threshold(self._view, threshold, ties_method=ties_method, rng=rng)
        return self

    # =========================================================================
    # Tabular export
    # =========================================================================

    def as_frame(self, predict_sets: Optional[Sequence[str]] = None) -> pd.DataFrame:
        """One row per iteration with the identity objects and the prediction."""
        frame = self._store.as_frame(self._view, self._sets(predict_sets))
        if not self._multi:
            frame = frame.drop(columns="uhash")
        return frame


class ResampleResult(ResultView):
    """
    Result of resampling one learner on one task.

    Args:
        store: Backing store. May hold other experiments; only `uhash` is seen.
        uhash: Experiment hash. Default: the only experiment in `store`.
        config: Defaults for scoring and thresholding.

    Example:
        >>> rr = resample(task, create_learner("classif.log_reg"), ResamplingCV(folds=3))
        >>> rr.iters
        3
        >>> rr.aggregate("classif.acc")
        classif.acc    0.93
        dtype: float64
    """

    def __init__(
        self,
        store: Optional[ResultStore] = None,
        uhash: Optional[str] = None,
        config: Optional[StoreConfig] = None,
    ):
        store = store if store is not None else ResultStore()
        if uhash is None:
            uhashes = store.uhashes()
            if len(uhashes) > 1:
                raise ValidationError(
                    f"Store holds {len(uhashes)} experiments; pass the uhash to select"
                )
            uhash = uhashes[0] if uhashes else None
        elif uhash not in store.uhashes():
            raise ValidationError(f"Experiment '{uhash}' is not in the store")
        super().__init__(store, uhash, config)

    def __repr__(self) -> str:
        task = self.task
        learner = self.learner
        return (
            f"<ResampleResult> with {self.iters or 0} iterations "
            f"(task: {task.id if task else None}, learner: {learner.id if learner else None})"
        )

    @property
    def uhash(self) -> Optional[str]:
        return self._view

    @property
    def iters(self) -> Optional[int]:
        """Number of stored iterations, None when empty."""
        n = len(self)
        return n if n > 0 else None

    @property
    def _multi(self) -> bool:
        return False

    def filter(self, iters: Sequence[int]) -> "ResampleResult":
        """
        Keep only the given iterations.

        The store is cloned before filtering, so other views sharing the
        old store still see every iteration. The view is rebound to the
        clone.

        Raises:
            ValidationError: Non-integer, duplicated or out-of-range iterations
        """
        iters = list(iters)
        if any(isinstance(i, bool) or not isinstance(i, (int, np.integer)) for i in iters):
            raise ValidationError(f"iters must be integers, got {iters}")
        if len(set(iters)) != len(iters):
            raise ValidationError(f"iters must be unique, got {iters}")
        if self._view is None:
            if iters:
                raise ValidationError("Cannot filter iterations of an empty result")
            return self
        n = self.resampling.iters
        bad = [i for i in iters if i < 1 or i > n]
        if bad:
            raise ValidationError(f"iters must be in [1, {n}], got {bad}")

        store = self._store.clone(deep=True, uhashes=[self._view])
        store.filter_by_iteration(self._view, iters)
        self._store = store
        if self._view not in store.uhashes():
            self._view = None
        logger.debug(f"Filtered to iterations {sorted(iters)}")
        return self

    def clone(self, deep: bool = True) -> "ResampleResult":
        """New result; a deep clone shares no mutable state with this one."""
        store = self._store.clone(deep=deep, uhashes=self.uhashes)
        return ResampleResult(store, self._view, self.config)

    def summary(self) -> Dict[str, Any]:
        """Identity, iterations, condition counts and default aggregate."""
        task = self.task
        learner = self.learner
        resampling = self.resampling
        return {
            "task_id": task.id if task else None,
            "task_type": self.task_type,
            "learner_id": learner.id if learner else None,
            "resampling_id": resampling.id if resampling else None,
            "iters": self.iters,
            "n_warnings": len(self.warnings),
            "n_errors": len(self.errors),
            "aggregate": self.aggregate().to_dict(),
        }

    def __add__(self, other: "ResultView") -> "BenchmarkResult":
        return combine_results(self, other, config=self.config)


class BenchmarkResult(ResultView):
    """
    Results of several experiments in one store.

    Example:
        >>> bmr = benchmark(benchmark_grid([task], learners, [ResamplingCV()]))
        >>> bmr.n_resample_results
        2
        >>> bmr.aggregate()          # one row per experiment
        >>> bmr.resample_result(1)   # ResampleResult sharing the store
    """

    def __init__(self, store: Optional[ResultStore] = None, config: Optional[StoreConfig] = None):
        super().__init__(store, None, config)

    def __repr__(self) -> str:
        return (
            f"<BenchmarkResult> of {self.n_resample_results} experiments "
            f"({len(self)} iterations)"
        )

    @property
    def n_resample_results(self) -> int:
        return len(self.uhashes)

    @property
    def tasks(self) -> List[Task]:
        return self._store.tasks()

    @property
    def resamplings(self) -> List[Resampling]:
        return self._store.resamplings()

    @property
    def learners(self) -> List[Learner]:
        """Untrained learner prototypes, one per distinct learner."""
        return self._store.learners(states=False)

    def resample_result(self, i: Union[int, str]) -> ResampleResult:
        """
        Select one experiment by 1-based position or uhash.

        The returned view shares this store; in-place maintenance on it is
        visible here.
        """
        uhashes = self.uhashes
        if isinstance(i, str):
            uhash = i
        elif isinstance(i, (int, np.integer)) and not isinstance(i, bool) and 1 <= i <= len(uhashes):
            uhash = uhashes[i - 1]
        else:
            raise ValidationError(f"i must be a uhash or in [1, {len(uhashes)}], got {i!r}")
        return ResampleResult(self._store, uhash, self.config)

    @property
    def resample_results(self) -> List[ResampleResult]:
        return [ResampleResult(self._store, u, self.config) for u in self.uhashes]

    def aggregate(self, measures: MeasureSpec = None) -> pd.DataFrame:
        """
        Aggregate every experiment separately.

        Returns:
            DataFrame with one row per experiment: nr, uhash, task_id,
            learner_id, resampling_id, iters and one column per aggregate.
        """
        measures = self._measures(measures)
        records = []
        for nr, rr in enumerate(self.resample_results, start=1):
            record = {
                "nr": nr,
                "uhash": rr.uhash,
                "task_id": rr.task.id,
                "learner_id": rr.learner.id,
                "resampling_id": rr.resampling.id,
                "iters": rr.iters,
            }
            record.update(aggregate_table(rr, measures).to_dict())
            records.append(record)
        columns = ["nr", "uhash", "task_id", "learner_id", "resampling_id", "iters"]
        if not records:
            return pd.DataFrame(columns=columns + [m.id for m in measures])
        return pd.DataFrame(records)

    def filter_experiments(self, uhashes: Sequence[str]) -> "BenchmarkResult":
        """New result holding only `uhashes` (deep copy)."""
        unknown = [u for u in uhashes if u not in self.uhashes]
        if unknown:
            raise ValidationError(f"Unknown experiments: {unknown}")
        return BenchmarkResult(self._store.clone(deep=True, uhashes=uhashes), self.config)

    def clone(self, deep: bool = True) -> "BenchmarkResult":
        return BenchmarkResult(self._store.clone(deep=deep), self.config)

    def combine(self, *others: ResultView) -> "BenchmarkResult":
        return combine_results(self, *others, config=self.config)

    def __add__(self, other: ResultView) -> "BenchmarkResult":
        return self.combine(other)

    def summary(self) -> pd.DataFrame:
        """One row per experiment with iteration and condition counts."""
        records = [
            {
                "uhash": rr.uhash,
                "task_id": rr.task.id,
                "learner_id": rr.learner.id,
                "resampling_id": rr.resampling.id,
                "iters": rr.iters,
                "n_warnings": len(rr.warnings),
                "n_errors": len(rr.errors),
            }
            for rr in self.resample_results
        ]
        return pd.DataFrame(
            records,
            columns=["uhash", "task_id", "learner_id", "resampling_id", "iters", "n_warnings", "n_errors"],
        )


def combine_results(*views: ResultView, config: Optional[StoreConfig] = None) -> BenchmarkResult:
    """
    Union of several results in a new BenchmarkResult.

    Rows are deduplicated on (uhash, iteration), first occurrence wins. The
    sources are copied; they share no mutable state with the result.

    Raises:
        TypeMismatchError: Results of different task types
        DuplicateExperimentError: One uhash bound to different identities
    """
    if not views:
        return BenchmarkResult(config=config)
    stores = [v.store.clone(deep=False, uhashes=v.uhashes) for v in views]
    combined = stores[0].combine(stores[1:])
    return BenchmarkResult(combined, config or views[0].config)

