"""
ICU Core Library.

Dependency-ordered, concurrent execution of chained remote agent calls:
- Orchestrator: step graphs with cascading skips and per-step timeouts
- Trace system: JSONL run traces
- Services: Schema.ICU agent client, tool-choice routing, configuration
- Pipelines: ProjectManager and common step-chain shapes
"""

__version__ = "0.1.0"

from .orchestrator import (
    ExecutionResult,
    Step,
    StepGraphExecutor,
    StepInput,
    StepState,
)

__all__ = [
    "__version__",
    "StepGraphExecutor",
    "Step",
    "StepInput",
    "StepState",
    "ExecutionResult",
]
