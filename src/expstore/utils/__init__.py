"""
Utility modules for expstore.

Provides:
- reproducibility: Deterministic seed management for experiment execution
  and random tie-breaking
"""

from expstore.utils.reproducibility import (
    set_seed,
    get_seed_state,
    set_seed_state,
    SeedManager,
    iteration_seed,
    make_rng,
)

__all__ = [
    "set_seed",
    "get_seed_state",
    "set_seed_state",
    "SeedManager",
    "iteration_seed",
    "make_rng",
]
