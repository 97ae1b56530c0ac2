"""
ICU Step Graph Executor - run a validated step graph with maximal concurrency.

Steps launch the moment their last dependency completes; a failed step
skips everything downstream of it while unrelated branches keep running.
"""
from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, Iterable, Optional, Set, TYPE_CHECKING

from .errors import NotInitializedError, RunInProgressError, StepTimeoutError, UnknownStepError
from .graph import StepGraph
from .steps import ExecutionResult, Step, StepRecord, StepState
from ..trace.models import generate_run_id

if TYPE_CHECKING:
    from ..trace import TraceService

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class StepGraphExecutor:
    """
    Execute a registered set of steps.

    ``register_steps`` validates and freezes the step set; ``run`` may then
    be awaited any number of times, one run at a time, each producing a
    fresh ``ExecutionResult``.
    """

    def __init__(
        self,
        default_timeout: Optional[float] = None,
        tracer: Optional[TraceService] = None,
    ):
        """
        Args:
            default_timeout: Seconds allowed per step when the step sets none
            tracer: Optional TraceService for step events
        """
        if default_timeout is not None and default_timeout <= 0:
            raise ValueError("default_timeout must be positive")
        self.default_timeout = default_timeout
        self.tracer = tracer
        self._graph: Optional[StepGraph] = None
        self._states: Dict[str, StepState] = {}
        self._active_run: Optional[str] = None

    def set_tracer(self, tracer: Optional[TraceService]) -> None:
        self.tracer = tracer

    def _trace(self, event: str, *args: Any, **kwargs: Any) -> Any:
        """Emit a tracer event; tracing errors never touch step state."""
        if self.tracer is None:
            return None
        try:
            return getattr(self.tracer, event)(*args, **kwargs)
        except Exception as e:
            logger.warning(f"Tracer {event} failed: {type(e).__name__}: {e}")
            return None

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    def register_steps(self, steps: Iterable[Step]) -> StepGraph:
        """
        Validate and store a step set.

        Raises DuplicateStepError, UnknownDependencyError or CycleError; on
        failure the previously registered set (if any) is kept.
        """
        if self._active_run is not None:
            raise RunInProgressError(self._active_run)
        graph = StepGraph(steps)
        self._graph = graph
        self._states = {name: StepState.PENDING for name in graph.steps}
        logger.info(f"Registered {len(graph)} steps: {', '.join(graph.names)}")
        return graph

    @property
    def graph(self) -> StepGraph:
        if self._graph is None:
            raise NotInitializedError()
        return self._graph

    @property
    def is_running(self) -> bool:
        return self._active_run is not None

    def get_step_state(self, name: str) -> StepState:
        """State of ``name`` in the current (or most recent) run."""
        if self._graph is None or name not in self._graph:
            raise UnknownStepError(name)
        return self._states[name]

    # =========================================================================
    # EXECUTION
    # =========================================================================

    async def run(self, initial_context: Any = None) -> ExecutionResult:
        """
        Execute every registered step to a terminal state.

        Step failures are recorded in the result, never raised. Raises
        NotInitializedError before registration and RunInProgressError if a
        run of this executor is already in flight.
        """
        if self._graph is None:
            raise NotInitializedError()
        if self._active_run is not None:
            raise RunInProgressError(self._active_run)

        graph = self._graph
        run_id = (self.tracer.run_id if self.tracer and self.tracer.is_active else None) or generate_run_id()
        self._active_run = run_id

        states = {name: StepState.PENDING for name in graph.steps}
        self._states = states
        records = {name: StepRecord(name=name) for name in graph.steps}
        outputs: Dict[str, Any] = {}
        waiting_on: Dict[str, Set[str]] = {
            name: set(step.depends_on) for name, step in graph.steps.items()
        }
        running: Dict[asyncio.Task, str] = {}

        result = ExecutionResult(run_id=run_id, records=records, started_at=_now())
        start = time.perf_counter()
        logger.info(f"Run {run_id}: starting {len(graph)} steps")

        def launch(name: str) -> None:
            states[name] = StepState.RUNNING
            # snapshot: later completions are not visible to this step
            view = MappingProxyType(dict(outputs))
            task = asyncio.create_task(
                self._execute_step(graph.get(name), records[name], view, initial_context),
                name=f"step:{name}",
            )
            running[task] = name
            logger.debug(f"Run {run_id}: launched '{name}'")

        try:
            for name in graph.roots():
                launch(name)

            while running:
                done, _ = await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    name = running.pop(task)
                    record = task.result()
                    states[name] = record.state

                    if record.state == StepState.COMPLETED:
                        outputs[name] = record.output
                        for child in graph.dependents(name):
                            waiting_on[child].discard(name)
                            if not waiting_on[child] and states[child] == StepState.PENDING:
                                launch(child)
                    else:
                        self._skip_downstream(graph, name, states, records)
        except BaseException:
            for task in running:
                task.cancel()
            if running:
                await asyncio.gather(*running, return_exceptions=True)
            raise
        finally:
            self._active_run = None

        result.finished_at = _now()
        result.duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"Run {run_id}: {len(result.completed)} completed, {len(result.failed)} failed, "
            f"{len(result.skipped)} skipped in {result.duration_ms:.1f}ms"
        )
        return result

    async def _execute_step(
        self,
        step: Step,
        record: StepRecord,
        outputs: MappingProxyType,
        initial_context: Any,
    ) -> StepRecord:
        """Run one step; every exception except cancellation lands on the record."""
        record.state = StepState.RUNNING
        record.started_at = _now()
        start = time.perf_counter()
        span_id = None
        entered = False
        timeout = step.timeout if step.timeout is not None else self.default_timeout

        try:
            step_input = step.make_input(outputs, initial_context)
            span_id = self._trace("step_enter", step.name, step.depends_on, step_input.request)
            entered = True
            if timeout is None:
                output = await step.invoke(step_input)
            else:
                try:
                    output = await asyncio.wait_for(step.invoke(step_input), timeout)
                except asyncio.TimeoutError:
                    raise StepTimeoutError(step.name, timeout) from None
        except asyncio.CancelledError:
            raise
        except Exception as e:
            record.state = StepState.FAILED
            record.error = str(e) or type(e).__name__
            record.error_type = type(e).__name__
            logger.warning(f"Step '{step.name}' failed: {record.error_type}: {record.error}")
        else:
            record.state = StepState.COMPLETED
            record.output = output

        record.finished_at = _now()
        record.duration_ms = (time.perf_counter() - start) * 1000

        if not entered:
            # failed before entering (builder error)
            span_id = self._trace("step_enter", step.name, step.depends_on)
        self._trace(
            "step_exit",
            step.name,
            span_id,
            state=record.state.value,
            output=record.output,
            duration_ms=record.duration_ms,
            error=record.error,
            error_type=record.error_type,
        )
        return record

    def _skip_downstream(
        self,
        graph: StepGraph,
        failed: str,
        states: Dict[str, StepState],
        records: Dict[str, StepRecord],
    ) -> None:
        for name in graph.descendants(failed):
            if states[name] != StepState.PENDING:
                continue
            states[name] = StepState.SKIPPED
            record = records[name]
            record.state = StepState.SKIPPED
            record.skipped_because = failed
            record.error = f"Upstream step '{failed}' did not complete"
            record.error_type = "Skipped"
            logger.warning(f"Skipping '{name}': upstream step '{failed}' did not complete")
            self._trace("step_skipped", name, because=failed)
