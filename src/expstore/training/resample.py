"""
Experiment execution: produce fact rows and wrap them in result views.

resample()        one task x one learner x one resampling -> ResampleResult
benchmark()       many such triples                        -> BenchmarkResult
benchmark_grid()  full factorial design of tasks, learners and resamplings

Each iteration trains a fresh clone of the learner on the training set and
predicts every requested predict set. Failures of a single iteration are
recorded in that learner's log when `encapsulate` is set; the row is stored
either way.
"""

import copy
import logging
import warnings
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import pandas as pd

from expstore.config import StoreConfig
from expstore.constants import (
    LOG_ERROR,
    LOG_WARNING,
    PREDICT_SET_INTERNAL_VALID,
    PREDICT_SET_TEST,
    PREDICT_SET_TRAIN,
)
from expstore.data.prediction import Prediction
from expstore.data.resampling import Resampling
from expstore.data.task import Task
from expstore.errors import TypeMismatchError, ValidationError
from expstore.experiments.fact import FactRow, experiment_hash
from expstore.experiments.result import BenchmarkResult, ResampleResult
from expstore.experiments.store import ResultStore
from expstore.models.base import Learner
from expstore.utils.reproducibility import SeedManager, iteration_seed

logger = logging.getLogger(__name__)

DataExtraFn = Callable[[Learner, Task, int], Any]


# =============================================================================
# Single iteration
# =============================================================================


@dataclass
class IterationOutcome:
    """What one iteration produced, before it becomes a fact row."""

    iteration: int
    learner: Learner
    predictions: Dict[str, Prediction] = field(default_factory=dict)
    data_extra: Optional[Any] = None


def _call(learner: Learner, stage: str, encapsulate: bool, fn: Callable[[], Any]) -> Any:
    """Run `fn`, recording warnings (and errors when encapsulated) in the learner log."""
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        try:
            result = fn()
        except Exception as e:
            if not encapsulate:
                raise
            learner.append_log(stage, LOG_ERROR, f"{type(e).__name__}: {e}")
            logger.warning(f"{learner.id}: {stage} failed and was recorded: {e}")
            result = None
    for w in caught:
        learner.append_log(stage, LOG_WARNING, str(w.message))
    return result


def run_iteration(
    task: Task,
    learner: Learner,
    resampling: Resampling,
    iteration: int,
    store_models: bool = False,
    encapsulate: bool = True,
    seed: Optional[int] = None,
    data_extra_fn: Optional[DataExtraFn] = None,
) -> IterationOutcome:
    """
    Train and predict one resampling iteration.

    The learner passed in is not modified; a reset clone is trained.
    """
    learner = learner.clone(deep=True).reset()
    train_rows = resampling.train_set(iteration)
    rows_for = {
        PREDICT_SET_TRAIN: train_rows,
        PREDICT_SET_TEST: resampling.test_set(iteration),
    }

    with SeedManager(iteration_seed(seed, iteration)):
        _call(learner, "train", encapsulate, lambda: learner.train(task, train_rows))

        predictions: Dict[str, Prediction] = {}
        if learner.is_trained:
            for predict_set in learner.predict_sets:
                if predict_set == PREDICT_SET_INTERNAL_VALID:
                    continue
                rows = rows_for[predict_set]
                pred = _call(
                    learner, "predict", encapsulate,
                    lambda: learner.predict(task, rows, predict_set=predict_set),
                )
                if pred is not None:
                    predictions[predict_set] = pred

    extra = data_extra_fn(learner, task, iteration) if data_extra_fn is not None else None
    if not store_models:
        learner.discard_model()

    logger.debug(
        f"Iteration {iteration}/{resampling.iters} of {learner.id} on {task.id}: "
        f"{len(learner.errors)} errors, {len(learner.warnings)} warnings"
    )
    return IterationOutcome(iteration, learner, predictions, extra)


# =============================================================================
# Resample
# =============================================================================


def _resample_rows(
    task: Task,
    learner: Learner,
    resampling: Resampling,
    store_models: bool,
    store_backends: bool,
    encapsulate: bool,
    n_jobs: int,
    seed: Optional[int],
    data_extra_fn: Optional[DataExtraFn],
) -> List[FactRow]:
    if task.task_type != learner.task_type:
        raise TypeMismatchError(
            f"Learner '{learner.id}' ({learner.task_type}) cannot be used on "
            f"task '{task.id}' ({task.task_type})"
        )
    resampling = copy.deepcopy(resampling)
    if not resampling.is_instantiated:
        resampling.instantiate(task)
    elif resampling.task_hash != task.hash:
        raise ValidationError(
            f"Resampling '{resampling.id}' was instantiated on a different task than '{task.id}'"
        )

    prototype = learner.prototype()
    uhash = experiment_hash(task, prototype, resampling)
    iterations = list(range(1, resampling.iters + 1))
    logger.info(
        f"Resampling {learner.id} on {task.id} with {resampling.id} "
        f"({resampling.iters} iterations, n_jobs={n_jobs})"
    )

    def _run(i: int) -> IterationOutcome:
        return run_iteration(
            task, prototype, resampling, i,
            store_models=store_models, encapsulate=encapsulate,
            seed=seed, data_extra_fn=data_extra_fn,
        )

    if n_jobs > 1 and len(iterations) > 1:
        if seed is not None:
            logger.warning(
                f"Seeded run with n_jobs={n_jobs}: worker threads share the global "
                f"random generators, so learners drawing from them may not reproduce"
            )
        with ThreadPoolExecutor(max_workers=n_jobs) as pool:
            outcomes = list(pool.map(_run, iterations))
    else:
        outcomes = [_run(i) for i in iterations]

    stored_task = task
    if not store_backends:
        stored_task = copy.deepcopy(task)
        stored_task.discard_backend()

    outcomes.sort(key=lambda o: o.iteration)
    return [
        FactRow(
            uhash=uhash,
            iteration=o.iteration,
            task=stored_task,
            learner=o.learner,
            resampling=resampling,
            predictions=o.predictions,
            data_extra=o.data_extra,
        )
        for o in outcomes
    ]


def resample(
    task: Task,
    learner: Learner,
    resampling: Resampling,
    store_models: Optional[bool] = None,
    store_backends: Optional[bool] = None,
    encapsulate: Optional[bool] = None,
    n_jobs: Optional[int] = None,
    config: Optional[StoreConfig] = None,
    data_extra_fn: Optional[DataExtraFn] = None,
) -> ResampleResult:
    """
    Resample a learner on a task.

    Args:
        task: Task to train and predict on.
        learner: Learner prototype; it is cloned per iteration, never trained.
        resampling: Resampling; instantiated on `task` if it is not yet.
        store_models: Keep trained models. Default: config.execution.
        store_backends: Keep the task's data backend. Default: config.execution.
        encapsulate: Record train/predict errors instead of raising.
            Default: config.execution.
        n_jobs: Worker threads for the iterations. Default: config.execution.
        config: Store configuration (execution and scoring defaults).
        data_extra_fn: Optional f(trained learner, task, iteration) whose
            return value is stored with the iteration.

    Returns:
        ResampleResult over a new store.

    Example:
        >>> rr = resample(task, create_learner("regr.lm"), ResamplingCV(folds=5, seed=1))
        >>> rr.aggregate("regr.rmse")
    """
    config = config or StoreConfig()
    ex = config.execution
    rows = _resample_rows(
        task, learner, resampling,
        store_models=ex.store_models if store_models is None else store_models,
        store_backends=ex.store_backends if store_backends is None else store_backends,
        encapsulate=ex.encapsulate if encapsulate is None else encapsulate,
        n_jobs=ex.n_jobs if n_jobs is None else n_jobs,
        seed=ex.seed,
        data_extra_fn=data_extra_fn,
    )
    result = ResampleResult(ResultStore(rows), config=config)
    logger.info(f"Finished resampling: {result}")
    return result


# =============================================================================
# Benchmark
# =============================================================================


def benchmark_grid(
    tasks: Sequence[Task],
    learners: Sequence[Learner],
    resamplings: Sequence[Resampling],
) -> pd.DataFrame:
    """
    Full factorial design.

    Each resampling is instantiated once per task, so every learner on a
    task sees identical splits.

    Returns:
        DataFrame with columns task, learner, resampling.
    """
    records = []
    for task in tasks:
        instances = []
        for resampling in resamplings:
            if resampling.is_instantiated and resampling.task_hash == task.hash:
                instances.append(resampling)
            else:
                instances.append(copy.deepcopy(resampling).instantiate(task))
        for learner in learners:
            for instance in instances:
                records.append({"task": task, "learner": learner, "resampling": instance})
    return pd.DataFrame(records, columns=["task", "learner", "resampling"])


def benchmark(
    design: Any,
    store_models: Optional[bool] = None,
    store_backends: Optional[bool] = None,
    encapsulate: Optional[bool] = None,
    n_jobs: Optional[int] = None,
    config: Optional[StoreConfig] = None,
) -> BenchmarkResult:
    """
    Run every (task, learner, resampling) triple of `design`.

    Args:
        design: DataFrame from benchmark_grid(), or any sequence of
            (task, learner, resampling) tuples.

    Returns:
        BenchmarkResult with all experiments in one store.
    """
    config = config or StoreConfig()
    ex = config.execution
    if isinstance(design, pd.DataFrame):
        missing = {"task", "learner", "resampling"} - set(design.columns)
        if missing:
            raise ValidationError(f"design is missing columns {sorted(missing)}")
        triples: List[Tuple[Task, Learner, Resampling]] = list(
            zip(design["task"], design["learner"], design["resampling"])
        )
    else:
        triples = [tuple(t) for t in design]

    logger.info(f"Starting benchmark with {len(triples)} experiments")
    store = ResultStore()
    for task, learner, resampling in triples:
        store.insert(_resample_rows(
            task, learner, resampling,
            store_models=ex.store_models if store_models is None else store_models,
            store_backends=ex.store_backends if store_backends is None else store_backends,
            encapsulate=ex.encapsulate if encapsulate is None else encapsulate,
            n_jobs=ex.n_jobs if n_jobs is None else n_jobs,
            seed=ex.seed,
            data_extra_fn=None,
        ))

    result = BenchmarkResult(store, config)
    logger.info(f"Finished benchmark: {result}")
    return result
