"""
ICU Trace Service - emit trace events for pipeline runs.

Steps of one run overlap in time, so every step event carries an explicit
span id rather than relying on a span stack.
"""
from __future__ import annotations

import json
import logging
import os
import time
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from .models import (
    ErrorData,
    EventKind,
    EventName,
    RunEndData,
    RunStartData,
    StepEnterData,
    StepExitData,
    StepSkippedData,
    TraceEvent,
    generate_run_id,
    generate_span_id,
    hash_data,
)
from .writer import TraceWriter

logger = logging.getLogger(__name__)

# Maximum size for trace input data (64KB)
MAX_TRACE_INPUT_SIZE = 64 * 1024

SENSITIVE_KEYS = frozenset([
    "api_key", "apikey", "api-key", "x-api-key",
    "token", "access_token", "refresh_token", "jwt", "jwt_token", "bearer",
    "secret", "client_secret",
    "password", "passwd", "pwd",
    "authorization", "auth",
    "cookie", "session",
    "private_key", "privatekey",
    "credential", "credentials",
])


def sanitize_trace_input(input_data: Any, max_size: int = MAX_TRACE_INPUT_SIZE) -> Any:
    """
    Make run input safe to store in a trace.

    Secret-looking keys are redacted, non-JSON values are stringified and
    oversized payloads are replaced by a truncated preview.
    """

    def _sanitize(value: Any, key: str = "") -> Any:
        if key and key.lower() in SENSITIVE_KEYS:
            return "[REDACTED]"
        if value is None or isinstance(value, (bool, int, float, str)):
            return value
        if isinstance(value, dict):
            return {str(k): _sanitize(v, str(k)) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [_sanitize(item) for item in value]
        return str(value)

    sanitized = _sanitize(input_data)
    serialized = json.dumps(sanitized, default=str)
    if len(serialized) > max_size:
        return {
            "_truncated": True,
            "_original_size": len(serialized),
            "_hash": hash_data(sanitized),
            "_preview": serialized[:1000] + "...",
        }
    return sanitized


class TraceService:
    """
    Trace service for one pipeline run at a time.

    ``start_run`` opens a JSONL file under ``output_dir`` (or at an explicit
    ``trace_path``); step events are dropped while no run is active.
    """

    def __init__(
        self,
        output_dir: str | Path = "traces",
        enabled: bool = True,
        pipeline: str = "icu",
    ):
        self.output_dir = Path(output_dir)
        self.enabled = enabled
        self.default_pipeline = pipeline

        self._run_id: Optional[str] = None
        self._pipeline: Optional[str] = None
        self._writer: Optional[TraceWriter] = None
        self._run_span: Optional[str] = None
        self._run_start_time: Optional[float] = None
        self._trace_path: Optional[Path] = None

    # =========================================================================
    # RUN LIFECYCLE
    # =========================================================================

    def start_run(
        self,
        pipeline: Optional[str] = None,
        graph_path: Optional[str] = None,
        steps: Optional[Iterable[str]] = None,
        input_data: Any = None,
        trace_path: Optional[Path] = None,
    ) -> str:
        """Start a new traced run and return its run id."""
        if self.is_active:
            logger.warning(f"Run {self._run_id} still active; closing it before starting another")
            self.end_run(status="error", error="superseded by a new run")

        self._run_id = generate_run_id()
        self._pipeline = pipeline or self.default_pipeline
        self._run_start_time = time.time()
        self._run_span = generate_span_id()

        if self.enabled:
            if trace_path is not None:
                self._trace_path = Path(trace_path)
            else:
                stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
                self._trace_path = self.output_dir / f"{self._pipeline}_{stamp}_{self._run_id}.jsonl"
            self._writer = TraceWriter(self._trace_path).open()

            self._emit(
                kind=EventKind.LIFECYCLE,
                name=EventName.RUN_START,
                span_id=self._run_span,
                parent_span_id=None,
                data=RunStartData(
                    pipeline=self._pipeline,
                    graph_path=str(graph_path) if graph_path else None,
                    steps=list(steps or []),
                    input=sanitize_trace_input(input_data),
                    input_hash=hash_data(input_data) if input_data is not None else None,
                ),
            )

        logger.info(f"Started trace run {self._run_id} for pipeline '{self._pipeline}'")
        return self._run_id

    def end_run(
        self,
        status: str = "success",
        states: Optional[Dict[str, str]] = None,
        output_data: Any = None,
        error: Optional[str] = None,
    ) -> None:
        """Close the active run."""
        if not self.is_active:
            return

        duration_ms = (time.time() - self._run_start_time) * 1000
        self._emit(
            kind=EventKind.LIFECYCLE,
            name=EventName.RUN_END,
            span_id=self._run_span,
            parent_span_id=None,
            data=RunEndData(
                status=status,
                states=dict(states or {}),
                output_hash=hash_data(output_data) if output_data is not None else None,
                duration_ms=duration_ms,
                error=error,
            ),
        )
        if self._writer is not None:
            self._writer.close()
            self._writer = None

        logger.info(f"Ended trace run {self._run_id} ({status}, {duration_ms:.1f}ms)")
        self._run_id = None
        self._run_span = None
        self._run_start_time = None

    @property
    def run_id(self) -> Optional[str]:
        return self._run_id

    @property
    def is_active(self) -> bool:
        return self._run_id is not None

    @property
    def trace_path(self) -> Optional[Path]:
        return self._trace_path

    # =========================================================================
    # STEP EVENTS
    # =========================================================================

    def step_enter(self, step: str, depends_on: Iterable[str] = (), request: Any = None) -> str:
        """Record a step starting; returns the step's span id."""
        span_id = generate_span_id()
        self._emit(
            kind=EventKind.STEP,
            name=EventName.STEP_ENTER,
            span_id=span_id,
            data=StepEnterData(
                step=step,
                depends_on=list(depends_on),
                request_hash=hash_data(request) if request is not None else None,
            ),
        )
        return span_id

    def step_exit(
        self,
        step: str,
        span_id: Optional[str],
        state: str,
        output: Any = None,
        duration_ms: float = 0.0,
        error: Optional[str] = None,
        error_type: Optional[str] = None,
    ) -> None:
        self._emit(
            kind=EventKind.STEP,
            name=EventName.STEP_EXIT,
            span_id=span_id,
            data=StepExitData(
                step=step,
                state=state,
                output_hash=hash_data(output) if output is not None else None,
                duration_ms=duration_ms,
                error=error,
                error_type=error_type,
            ),
        )

    def step_skipped(self, step: str, because: str) -> None:
        self._emit(
            kind=EventKind.STEP,
            name=EventName.STEP_SKIPPED,
            data=StepSkippedData(step=step, because=because),
        )

    def error(self, error_type: str, message: str, step: Optional[str] = None) -> None:
        self._emit(
            kind=EventKind.SYSTEM,
            name=EventName.ERROR,
            data=ErrorData(error_type=error_type, message=message, step=step),
        )

    # =========================================================================
    # INTERNAL
    # =========================================================================

    def _emit(
        self,
        kind: EventKind,
        name: EventName,
        data: Any,
        span_id: Optional[str] = None,
        parent_span_id: Optional[str] = "",
    ) -> None:
        if not self.enabled or self._writer is None or self._run_id is None:
            return

        event = TraceEvent(
            run_id=self._run_id,
            span_id=span_id or generate_span_id(),
            # "" means "default to the run span"
            parent_span_id=self._run_span if parent_span_id == "" else parent_span_id,
            kind=kind,
            name=name,
            pipeline=self._pipeline or self.default_pipeline,
            data=data,
        )
        self._writer.write(event)


# =============================================================================
# CONTEXT-AWARE SERVICE ACCESS
# =============================================================================

# Context-local tracer (for concurrent run isolation)
_context_tracer: ContextVar[Optional[TraceService]] = ContextVar(
    "icu_trace_service", default=None
)

# Global tracer singleton (fallback when no context set)
_trace_service: Optional[TraceService] = None


def get_trace_service() -> TraceService:
    """
    Get the trace service for the current context.

    A context-local tracer wins; otherwise a global one is built from
    ``ICU_TRACE_ENABLED`` / ``ICU_TRACE_DIR``.
    """
    ctx_tracer = _context_tracer.get()
    if ctx_tracer is not None:
        return ctx_tracer

    global _trace_service
    if _trace_service is None:
        enabled = os.getenv("ICU_TRACE_ENABLED", "true").lower() in ("true", "1", "yes")
        output_dir = os.getenv("ICU_TRACE_DIR", "traces")
        _trace_service = TraceService(output_dir=output_dir, enabled=enabled)
    return _trace_service


def set_context_tracer(tracer: Optional[TraceService]) -> None:
    """Set the trace service for the current async context."""
    _context_tracer.set(tracer)


def configure_trace_service(
    output_dir: str | Path = "traces",
    enabled: bool = True,
    pipeline: str = "icu",
) -> TraceService:
    """Configure and return the global trace service."""
    global _trace_service
    _trace_service = TraceService(output_dir=output_dir, enabled=enabled, pipeline=pipeline)
    return _trace_service


def reset_trace_service() -> None:
    """Reset the trace service singleton (for testing)."""
    global _trace_service
    _trace_service = None
    _context_tracer.set(None)
