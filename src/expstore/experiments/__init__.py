"""
Experiment result storage and views.

- FactRow / ExperimentKey: one iteration of one experiment, and its identity
- ResultStore: normalized, deduplicated backing data
- ResampleResult / BenchmarkResult: views over a shared store
- combine_results: union of several views in a new store

Usage:
    >>> from expstore.experiments import ResampleResult, combine_results
    >>> rr = ResampleResult(store)
    >>> rr.score(["classif.ce"])
    >>> bmr = combine_results(rr1, rr2)
"""

from expstore.experiments.fact import (
    ExperimentKey,
    FactRow,
    experiment_hash,
)

from expstore.experiments.store import ResultStore

from expstore.experiments.scoring import (
    aggregate_table,
    obs_loss_table,
    score_table,
)

from expstore.experiments.result import (
    BenchmarkResult,
    ResampleResult,
    ResultView,
    combine_results,
)

__all__ = [
    # Facts
    "ExperimentKey",
    "FactRow",
    "experiment_hash",
    # Store
    "ResultStore",
    # Scoring
    "score_table",
    "obs_loss_table",
    "aggregate_table",
    # Views
    "ResultView",
    "ResampleResult",
    "BenchmarkResult",
    "combine_results",
]
