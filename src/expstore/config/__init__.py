"""
Configuration module for expstore.

Provides type-safe, serializable configuration dataclasses for:
- Scoring defaults (measures per task type, predict sets)
- Threshold adjustment (tie-break policy)
- Experiment execution (what to keep in the store)
"""

from expstore.config.schema import (
    # Configuration classes
    ScoringConfig,
    ThresholdConfig,
    ExecutionConfig,
    StoreConfig,
    # Enums
    TiesMethod,
    # Functions
    load_config,
    save_config,
)

__all__ = [
    # Configuration classes
    "ScoringConfig",
    "ThresholdConfig",
    "ExecutionConfig",
    "StoreConfig",
    # Enums
    "TiesMethod",
    # Functions
    "load_config",
    "save_config",
]
