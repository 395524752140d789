"""
Reproducibility utilities for deterministic experiments.

Ensures that experiments executed with the same seed produce identical
results across:
- Python random module
- NumPy random number generators (global state and Generator instances)
- PyTorch (learners or models that rely on torch)

Usage:
    >>> from expstore.utils import set_seed
    >>> set_seed(42)  # Call before resample()
"""

import random
from dataclasses import dataclass
from typing import Optional, Dict, Any
import logging

import numpy as np
import torch

logger = logging.getLogger(__name__)


# =============================================================================
# Core Seed Management
# =============================================================================


def set_seed(seed: int = 42) -> None:
    """
    Set random seeds for all random number generators.

    Args:
        seed: Random seed (default: 42)

    Example:
        >>> set_seed(42)
        >>> np.random.rand(3)  # Always produces same values
    """
    if not isinstance(seed, (int, np.integer)) or isinstance(seed, bool):
        raise TypeError(f"seed must be an int, got {type(seed)}")
    if seed < 0:
        raise ValueError(f"seed must be non-negative, got {seed}")

    seed = int(seed)
    random.seed(seed)
    np.random.seed(seed % (2 ** 32))
    torch.manual_seed(seed)

    logger.debug(f"Set seed={seed}")


def get_seed_state() -> Dict[str, Any]:
    """
    Get current state of all random number generators.

    Returns:
        Dict with states for: python, numpy, torch
    """
    return {
        'python': random.getstate(),
        'numpy': np.random.get_state(),
        'torch': torch.get_rng_state(),
    }


def set_seed_state(state: Dict[str, Any]) -> None:
    """
    Restore random number generators to a saved state.

    Args:
        state: State dict from get_seed_state()
    """
    random.setstate(state['python'])
    np.random.set_state(state['numpy'])
    torch.set_rng_state(state['torch'])


# =============================================================================
# Seed Manager Context
# =============================================================================


@dataclass
class SeedManager:
    """
    Context manager for reproducible code blocks.

    Args:
        seed: Random seed to use within the context. None leaves the
              generators untouched.
        restore_state: If True, restore original RNG state after exiting.

    Example:
        >>> with SeedManager(42, restore_state=True):
        ...     learner.train(task, rows)
    """

    seed: Optional[int]
    restore_state: bool = False

    def __post_init__(self):
        self._saved_state: Optional[Dict[str, Any]] = None

    def __enter__(self) -> 'SeedManager':
        if self.seed is None:
            return self
        if self.restore_state:
            self._saved_state = get_seed_state()
        set_seed(self.seed)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.restore_state and self._saved_state is not None:
            set_seed_state(self._saved_state)
        return None


# =============================================================================
# Per-iteration seeds
# =============================================================================


def iteration_seed(base_seed: Optional[int], iteration: int) -> Optional[int]:
    """
    Deterministic seed for one resampling iteration.

    Each iteration gets a distinct seed, so a sequential run is reproducible
    and does not depend on the order of iterations. The seed is applied to
    the global random, NumPy and torch generators; worker threads share
    those, so with n_jobs > 1 only learners that do not draw from the
    global generators reproduce exactly.

    Args:
        base_seed: Base seed, or None for no seeding.
        iteration: 1-based iteration number.

    Returns:
        base_seed + iteration, or None when base_seed is None.
    """
    if base_seed is None:
        return None
    return base_seed + iteration


def make_rng(seed: Optional[int] = None) -> np.random.Generator:
    """Create an independent NumPy Generator (used for random tie-breaking)."""
    return np.random.default_rng(seed)
