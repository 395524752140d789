"""
Configuration schema for expstore.

All configuration is done via type-safe dataclasses that can be serialized
to YAML/JSON, so the settings that shaped a set of results travel with them.

The store itself never resolves defaults from global state. Everything that
used to be a hidden default (which measures to score with, how to break
threshold ties) is an explicit field here and is threaded through the API.

Usage:
    >>> config = StoreConfig.from_yaml("configs/store.yaml")
    >>> config.scoring.default_measures["classif"]  # ['classif.ce']
    >>> config.threshold.ties_method  # TiesMethod.FIRST
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Any
import json
import yaml

from expstore.constants import PREDICT_SETS, TASK_TYPES


# =============================================================================
# Enums for configuration options
# =============================================================================


class TiesMethod(str, Enum):
    """How to pick a class when several classes tie at the decision boundary."""

    FIRST = "first"
    """Pick the tied class that comes first in the task's class order."""

    LAST = "last"
    """Pick the tied class that comes last in the task's class order."""

    RANDOM = "random"
    """Pick uniformly at random among tied classes (seeded via ThresholdConfig.seed)."""


# =============================================================================
# Scoring Configuration
# =============================================================================


def _default_measures() -> Dict[str, List[str]]:
    return {
        "classif": ["classif.ce"],
        "regr": ["regr.mse"],
    }


@dataclass
class ScoringConfig:
    """
    Configuration for scoring and aggregation.

    When `score()` / `aggregate()` are called without measures, the measure
    keys listed here for the experiment's task type are used.
    """

    default_measures: Dict[str, List[str]] = field(default_factory=_default_measures)
    """Measure keys per task type, used when no measures are passed."""

    predict_sets: List[str] = field(default_factory=lambda: ["test"])
    """Predict sets that measures are evaluated on by default."""

    def __post_init__(self) -> None:
        unknown = set(self.default_measures) - set(TASK_TYPES)
        if unknown:
            raise ValueError(
                f"default_measures has unknown task types {sorted(unknown)}, "
                f"expected a subset of {list(TASK_TYPES)}"
            )
        if not self.predict_sets:
            raise ValueError("predict_sets must not be empty")
        bad = [s for s in self.predict_sets if s not in PREDICT_SETS]
        if bad:
            raise ValueError(f"predict_sets must be a subset of {list(PREDICT_SETS)}, got {bad}")


# =============================================================================
# Threshold Configuration
# =============================================================================


@dataclass
class ThresholdConfig:
    """
    Configuration for `set_threshold`.

    The default tie-break is deterministic. Random tie-breaking must be
    requested explicitly, and is reproducible only when `seed` is set.
    """

    ties_method: TiesMethod = TiesMethod.FIRST
    """Tie-break policy for classes tied after rescaling probabilities."""

    seed: Optional[int] = None
    """Seed for the random tie-break generator. None = fresh entropy."""

    def __post_init__(self) -> None:
        self.ties_method = TiesMethod(self.ties_method)
        if self.seed is not None and self.seed < 0:
            raise ValueError(f"seed must be non-negative, got {self.seed}")


# =============================================================================
# Execution Configuration
# =============================================================================


@dataclass
class ExecutionConfig:
    """
    Configuration for `resample()` / `benchmark()`.

    These settings control what is kept in each fact row, not how the
    learner trains.
    """

    store_models: bool = False
    """Keep trained models in the learner states of the fact rows."""

    store_backends: bool = True
    """Keep the data backend of tasks. False drops it after execution."""

    encapsulate: bool = True
    """
    Catch exceptions raised while training/predicting a single iteration
    and record them in the learner log instead of aborting the experiment.
    """

    n_jobs: int = 1
    """Number of worker threads used to compute iterations."""

    seed: Optional[int] = None
    """
    Base seed. Iteration i runs with seed + i when set. Exact reproduction
    of learners that use the global generators needs n_jobs == 1.
    """

    def __post_init__(self) -> None:
        if self.n_jobs < 1:
            raise ValueError(f"n_jobs must be >= 1, got {self.n_jobs}")
        if self.seed is not None and self.seed < 0:
            raise ValueError(f"seed must be non-negative, got {self.seed}")


# =============================================================================
# Store Configuration (Top-Level)
# =============================================================================


@dataclass
class StoreConfig:
    """
    Top-level configuration combining all sub-configs.

    Usage:
        >>> config = StoreConfig.from_yaml("configs/store.yaml")
        >>> rr = resample(task, learner, resampling, config=config)
        >>> rr.aggregate()  # uses config.scoring.default_measures
    """

    name: str = "default"
    """Configuration name for tracking."""

    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    """Scoring and aggregation defaults."""

    threshold: ThresholdConfig = field(default_factory=ThresholdConfig)
    """Threshold adjustment defaults."""

    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    """Execution defaults."""

    log_level: str = "INFO"
    """Logging level: DEBUG, INFO, WARNING, ERROR."""

    def to_dict(self) -> dict:
        """Convert config to dictionary for serialization."""
        def _convert(obj: Any) -> Any:
            if isinstance(obj, Enum):
                return obj.value
            elif hasattr(obj, "__dataclass_fields__"):
                return {k: _convert(v) for k, v in asdict(obj).items()}
            elif isinstance(obj, list):
                return [_convert(item) for item in obj]
            elif isinstance(obj, dict):
                return {k: _convert(v) for k, v in obj.items()}
            else:
                return obj
        return _convert(self)

    def to_yaml(self, path: str) -> None:
        """Save configuration to YAML file."""
        with open(path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)

    def to_json(self, path: str) -> None:
        """Save configuration to JSON file."""
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def from_dict(cls, data: dict) -> "StoreConfig":
        """Create config from dictionary."""
        from dacite import from_dict, Config as DaciteConfig
        return from_dict(
            data_class=cls,
            data=data,
            config=DaciteConfig(cast=[Enum, Path]),
        )

    @classmethod
    def from_yaml(cls, path: str) -> "StoreConfig":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f)
        return cls.from_dict(data or {})

    @classmethod
    def from_json(cls, path: str) -> "StoreConfig":
        """Load configuration from JSON file."""
        with open(path) as f:
            data = json.load(f)
        return cls.from_dict(data)


# =============================================================================
# Convenience Functions
# =============================================================================


def load_config(path: str) -> StoreConfig:
    """
    Load configuration from file (auto-detect format).

    Args:
        path: Path to configuration file (.yaml, .yml, or .json)

    Returns:
        StoreConfig instance

    Raises:
        ValueError: If file format is not supported
    """
    path_lower = str(path).lower()
    if path_lower.endswith((".yaml", ".yml")):
        return StoreConfig.from_yaml(path)
    elif path_lower.endswith(".json"):
        return StoreConfig.from_json(path)
    else:
        raise ValueError(f"Unsupported config format: {path}. Use .yaml, .yml, or .json")


def save_config(config: StoreConfig, path: str) -> None:
    """
    Save configuration to file (auto-detect format).

    Args:
        config: StoreConfig instance
        path: Output path (.yaml, .yml, or .json)

    Raises:
        ValueError: If file format is not supported
    """
    path_lower = str(path).lower()
    if path_lower.endswith((".yaml", ".yml")):
        config.to_yaml(path)
    elif path_lower.endswith(".json"):
        config.to_json(path)
    else:
        raise ValueError(f"Unsupported config format: {path}. Use .yaml, .yml, or .json")
