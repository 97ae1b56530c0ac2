"""
Step graph errors.

Structural errors are raised synchronously from ``register_steps`` /
``run`` / ``get_step_state``. ``StepTimeoutError`` is the only step-level
error defined here and is recorded on the step, never raised to the caller.
"""
from __future__ import annotations

from typing import List, Optional


class StepGraphError(Exception):
    """Base class for structural step graph errors."""


class DuplicateStepError(StepGraphError):
    """Two steps share the same name."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Duplicate step name: '{name}'")


class UnknownDependencyError(StepGraphError):
    """A step depends on a name that is not part of the step set."""

    def __init__(self, step: str, dependency: str):
        self.step = step
        self.dependency = dependency
        super().__init__(f"Step '{step}' depends on unknown step '{dependency}'")


class CycleError(StepGraphError):
    """The dependency graph contains a cycle."""

    def __init__(self, cycle: List[str]):
        self.cycle = list(cycle)
        super().__init__(f"Dependency cycle detected: {' -> '.join(self.cycle)}")


class UnknownStepError(StepGraphError):
    """A step name was never registered."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown step: '{name}'")


class NotInitializedError(StepGraphError):
    """``run`` was called before ``register_steps``."""

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or "No steps registered; call register_steps() first")


class RunInProgressError(StepGraphError):
    """The executor is already running; runs on one executor may not overlap."""

    def __init__(self, run_id: Optional[str] = None):
        self.run_id = run_id
        super().__init__(f"A run is already in progress ({run_id})")


class StepTimeoutError(Exception):
    """A step's operation exceeded its timeout."""

    def __init__(self, step: str, timeout: float):
        self.step = step
        self.timeout = timeout
        super().__init__(f"Step '{step}' exceeded timeout of {timeout}s")
