"""
Exception taxonomy for the experiment result store.

All errors are raised synchronously at the call that detects the violation.
Validation happens before any mutation, so a failed call leaves the store
untouched.

Each class also derives from the closest builtin so callers that only know
about ValueError / TypeError keep working:

- ValidationError: malformed iteration subset, bad threshold, bad column role
- TypeMismatchError: operation needs a different task type
- DuplicateExperimentError: conflicting identity under one experiment hash
- CapabilityError: learner or measure lacks a required capability
"""


class ExpStoreError(Exception):
    """Base class for all expstore errors."""


class ValidationError(ExpStoreError, ValueError):
    """Argument failed validation at the API boundary."""


class TypeMismatchError(ExpStoreError, TypeError):
    """Operation is not defined for the task type of the experiment."""


class DuplicateExperimentError(ExpStoreError, ValueError):
    """Same experiment hash bound to different task/learner/resampling objects."""


class CapabilityError(ExpStoreError, RuntimeError):
    """A learner or measure does not support the requested operation."""


__all__ = [
    "ExpStoreError",
    "ValidationError",
    "TypeMismatchError",
    "DuplicateExperimentError",
    "CapabilityError",
]
