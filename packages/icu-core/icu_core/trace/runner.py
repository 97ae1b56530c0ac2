"""
ICU Trace Runner - execute YAML pipelines with tracing.
"""
from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .service import TraceService, configure_trace_service

logger = logging.getLogger(__name__)


async def run_pipeline(
    graph_path: Path,
    input_context: Any = None,
    capabilities: Optional[Mapping[str, Any]] = None,
    tracer: Optional[TraceService] = None,
    output_path: Optional[Path] = None,
    default_timeout: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Run a pipeline file under a trace.

    Args:
        graph_path: Path to the YAML pipeline definition
        input_context: Initial context handed to every step
        capabilities: Operations available to ``uses:`` entries
        tracer: Optional TraceService (created if not provided)
        output_path: Optional exact path to write the trace file
        default_timeout: Per-step timeout when neither pipeline nor step sets one

    Returns:
        Dict with run_id, status, duration_ms, states, result, error and trace_path
    """
    from ..orchestrator import PipelineExecutor, StepGraphError, read_pipeline_file

    start_time = time.time()
    pipeline_name = graph_path.stem

    if tracer is None:
        output_dir = str(output_path.parent) if output_path else "traces"
        tracer = configure_trace_service(output_dir=output_dir, enabled=True, pipeline=pipeline_name)

    status = "error"
    error_msg = None
    result = None
    step_names = []

    try:
        data = read_pipeline_file(graph_path)
        pipeline_name = data.get("name") or pipeline_name
        step_names = [s.get("name") for s in data.get("steps") or [] if isinstance(s, dict)]
    except (FileNotFoundError, ValueError) as e:
        error_msg = str(e)

    run_id = tracer.start_run(
        pipeline=pipeline_name,
        graph_path=str(graph_path),
        steps=[n for n in step_names if n],
        input_data=input_context,
        trace_path=output_path,
    )

    if error_msg is None:
        try:
            executor = PipelineExecutor(
                capabilities=capabilities,
                tracer=tracer,
                default_timeout=default_timeout,
            )
            result = await executor.run(graph_path, input_context)
            status = result.status
        except FileNotFoundError as e:
            error_msg = f"Pipeline file not found: {e}"
        except StepGraphError as e:
            error_msg = f"Invalid pipeline: {e}"
        except ValueError as e:
            error_msg = f"Configuration error: {e}"

    if error_msg is not None:
        logger.error(f"Pipeline '{pipeline_name}' failed to start: {error_msg}")
        tracer.error(error_type="PipelineError", message=error_msg)

    states = {name: s.value for name, s in result.states.items()} if result else {}
    tracer.end_run(
        status=status,
        states=states,
        output_data=result.outputs if result else None,
        error=error_msg,
    )

    return {
        "run_id": run_id,
        "status": status,
        "duration_ms": (time.time() - start_time) * 1000,
        "states": states,
        "result": result,
        "error": error_msg,
        "trace_path": str(tracer.trace_path) if tracer.trace_path else None,
    }
