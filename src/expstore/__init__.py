"""
expstore: storage, scoring and combination of machine learning experiment results.

An experiment is one (task, learner, resampling) triple. Running it yields
one fact row per resampling iteration: the trained learner, its predictions
and its warning/error log. Rows live in a ResultStore; ResampleResult and
BenchmarkResult are views over a shared store.

Sharing rules:
    - filter() clones the store before narrowing it
    - discard(), marshal(), unmarshal(), set_threshold() act in place on
      the shared store and are seen by every view of it
    - combine_results() and `+` build a new store

Quick Start:
    >>> from expstore import TaskClassif, ResamplingCV, create_learner, resample
    >>>
    >>> task = TaskClassif("iris", df, target="species")
    >>> rr = resample(task, create_learner("classif.log_reg"), ResamplingCV(folds=3, seed=1))
    >>> rr.score(["classif.acc"])
    >>> rr.aggregate(["classif.acc", create_measure("classif.acc", average="micro")])
"""

__version__ = "0.1.0"

# Errors
from expstore.errors import (
    ExpStoreError,
    ValidationError,
    TypeMismatchError,
    DuplicateExperimentError,
    CapabilityError,
)

# Configuration
from expstore.config import (
    StoreConfig,
    ScoringConfig,
    ThresholdConfig,
    ExecutionConfig,
    TiesMethod,
    load_config,
    save_config,
)

# Data
from expstore.data import (
    TaskClassif,
    TaskRegr,
    ResamplingCV,
    ResamplingHoldout,
    ResamplingCustom,
    PredictionClassif,
    PredictionRegr,
)

# Models
from expstore.models import create_learner

# Measures
from expstore.measures import (
    Measure,
    MacroAggregation,
    MicroAggregation,
    create_measure,
)

# Results
from expstore.experiments import (
    ResultStore,
    FactRow,
    ResampleResult,
    BenchmarkResult,
    combine_results,
)

# Execution
from expstore.training import resample, benchmark, benchmark_grid

# Utilities
from expstore.utils import set_seed

__all__ = [
    # Version
    "__version__",
    # Errors
    "ExpStoreError",
    "ValidationError",
    "TypeMismatchError",
    "DuplicateExperimentError",
    "CapabilityError",
    # Configuration
    "StoreConfig",
    "ScoringConfig",
    "ThresholdConfig",
    "ExecutionConfig",
    "TiesMethod",
    "load_config",
    "save_config",
    # Data
    "TaskClassif",
    "TaskRegr",
    "ResamplingCV",
    "ResamplingHoldout",
    "ResamplingCustom",
    "PredictionClassif",
    "PredictionRegr",
    # Models
    "create_learner",
    # Measures
    "Measure",
    "MacroAggregation",
    "MicroAggregation",
    "create_measure",
    # Results
    "ResultStore",
    "FactRow",
    "ResampleResult",
    "BenchmarkResult",
    "combine_results",
    # Execution
    "resample",
    "benchmark",
    "benchmark_grid",
    # Utilities
    "set_seed",
]
