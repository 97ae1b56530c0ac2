"""
Step graph types - steps, states, per-step records and run results.
"""
from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, NamedTuple, Optional, Sequence, Tuple


class StepState(str, Enum):
    """Lifecycle state of a step within one run."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({StepState.COMPLETED, StepState.FAILED, StepState.SKIPPED})


class StepInput(NamedTuple):
    """What a builder hands to a step's operation."""
    request: Any
    context: Any


Operation = Callable[[Any, Any], Any]
Builder = Callable[[Mapping[str, Any], Any], Any]


@dataclass(frozen=True)
class Step:
    """
    A named unit of work.

    ``operation`` is called as ``operation(request, context)`` and may be a
    coroutine function or a plain function. ``build`` receives a read-only
    view of completed outputs plus the run's initial context and returns a
    ``StepInput`` (or any 2-tuple).
    """
    name: str
    operation: Operation
    depends_on: Tuple[str, ...] = ()
    build: Optional[Builder] = None
    request: Any = None
    timeout: Optional[float] = None
    description: str = ""

    def __post_init__(self):
        if not self.name:
            raise ValueError("Step name must be a non-empty string")
        if not callable(self.operation):
            raise TypeError(f"Step '{self.name}' operation is not callable")
        if self.build is not None and not callable(self.build):
            raise TypeError(f"Step '{self.name}' builder is not callable")
        if isinstance(self.depends_on, str):
            object.__setattr__(self, "depends_on", (self.depends_on,))
        else:
            object.__setattr__(self, "depends_on", tuple(self.depends_on))
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError(f"Step '{self.name}' timeout must be positive")

    def make_input(self, outputs: Mapping[str, Any], initial_context: Any) -> StepInput:
        """Compute the request/context pair for this step."""
        if self.build is None:
            return StepInput(self.request, initial_context)
        built = self.build(outputs, initial_context)
        if isinstance(built, StepInput):
            return built
        if isinstance(built, tuple) and len(built) == 2:
            return StepInput(*built)
        raise TypeError(
            f"Builder for step '{self.name}' must return StepInput or a "
            f"(request, context) tuple, got {type(built).__name__}"
        )

    async def invoke(self, step_input: StepInput) -> Any:
        """Call the operation; plain functions run in a worker thread."""
        if inspect.iscoroutinefunction(self.operation):
            return await self.operation(step_input.request, step_input.context)
        result = await asyncio.to_thread(self.operation, step_input.request, step_input.context)
        if inspect.isawaitable(result):
            return await result
        return result


@dataclass
class StepRecord:
    """Outcome of one step within one run."""
    name: str
    state: StepState = StepState.PENDING
    output: Any = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    skipped_because: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    duration_ms: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"name": self.name, "state": self.state.value}
        if self.state == StepState.COMPLETED:
            data["output"] = self.output
        if self.error is not None:
            data["error"] = self.error
            data["error_type"] = self.error_type
        if self.skipped_because is not None:
            data["skipped_because"] = self.skipped_because
        if self.started_at is not None:
            data["started_at"] = self.started_at.isoformat()
        if self.finished_at is not None:
            data["finished_at"] = self.finished_at.isoformat()
        if self.duration_ms is not None:
            data["duration_ms"] = round(self.duration_ms, 3)
        return data


@dataclass
class ExecutionResult:
    """Terminal outcome of one run, keyed by step name."""
    run_id: str
    records: Dict[str, StepRecord] = field(default_factory=dict)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    duration_ms: float = 0.0

    def __getitem__(self, name: str) -> StepRecord:
        return self.records[name]

    def __contains__(self, name: object) -> bool:
        return name in self.records

    def __iter__(self):
        return iter(self.records.values())

    def state_of(self, name: str) -> StepState:
        return self.records[name].state

    @property
    def states(self) -> Dict[str, StepState]:
        return {name: r.state for name, r in self.records.items()}

    @property
    def outputs(self) -> Dict[str, Any]:
        """Outputs of completed steps."""
        return {
            name: r.output for name, r in self.records.items()
            if r.state == StepState.COMPLETED
        }

    def _names_in(self, state: StepState) -> List[str]:
        return [name for name, r in self.records.items() if r.state == state]

    @property
    def completed(self) -> List[str]:
        return self._names_in(StepState.COMPLETED)

    @property
    def failed(self) -> List[str]:
        return self._names_in(StepState.FAILED)

    @property
    def skipped(self) -> List[str]:
        return self._names_in(StepState.SKIPPED)

    @property
    def succeeded(self) -> bool:
        """True when every step completed."""
        return all(r.state == StepState.COMPLETED for r in self.records.values())

    @property
    def status(self) -> str:
        return "success" if self.succeeded else "partial"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_ms": round(self.duration_ms, 3),
            "steps": {name: r.to_dict() for name, r in self.records.items()},
        }


def as_step_list(steps: Sequence[Step]) -> List[Step]:
    """Normalize an iterable of steps, rejecting non-Step entries."""
    result = []
    for step in steps:
        if not isinstance(step, Step):
            raise TypeError(f"Expected Step, got {type(step).__name__}")
        result.append(step)
    return result
