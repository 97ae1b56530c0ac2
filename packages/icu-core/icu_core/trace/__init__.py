"""
ICU Trace System

JSONL traces for pipeline runs.

Usage:
    from icu_core.trace import TraceService

    tracer = TraceService(output_dir="traces")
    tracer.start_run(pipeline="blog_api", steps=["plan", "schema"])
    span = tracer.step_enter("plan")
    tracer.step_exit("plan", span, state="completed", duration_ms=12.5)
    tracer.end_run(status="success")
"""
from .models import (
    EventKind,
    EventName,
    RunStartData,
    RunEndData,
    ErrorData,
    StepEnterData,
    StepExitData,
    StepSkippedData,
    TraceEvent,
    TraceRun,
    hash_data,
    generate_run_id,
    generate_span_id,
)
from .writer import TraceWriter, NullTraceWriter
from .service import (
    TraceService,
    sanitize_trace_input,
    get_trace_service,
    set_context_tracer,
    configure_trace_service,
    reset_trace_service,
)
from .runner import run_pipeline

__all__ = [
    "EventKind",
    "EventName",
    "RunStartData",
    "RunEndData",
    "ErrorData",
    "StepEnterData",
    "StepExitData",
    "StepSkippedData",
    "TraceEvent",
    "TraceRun",
    "TraceWriter",
    "NullTraceWriter",
    "TraceService",
    "run_pipeline",
    "hash_data",
    "generate_run_id",
    "generate_span_id",
    "sanitize_trace_input",
    "get_trace_service",
    "set_context_tracer",
    "configure_trace_service",
    "reset_trace_service",
]
