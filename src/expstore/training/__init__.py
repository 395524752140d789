"""
Experiment execution.

Provides:
- resample: one learner on one task with one resampling
- benchmark / benchmark_grid: several experiments into one BenchmarkResult
- run_iteration: train and predict a single resampling iteration

Usage:
    >>> from expstore.training import resample, benchmark, benchmark_grid
    >>> rr = resample(task, learner, ResamplingCV(folds=3))
    >>> bmr = benchmark(benchmark_grid([task], [lrn_a, lrn_b], [ResamplingCV()]))
"""

from expstore.training.resample import (
    IterationOutcome,
    benchmark,
    benchmark_grid,
    resample,
    run_iteration,
)

__all__ = [
    "resample",
    "benchmark",
    "benchmark_grid",
    "run_iteration",
    "IterationOutcome",
]
