"""
ICU Orchestrator - dependency-ordered concurrent step execution.
"""
from .errors import (
    CycleError,
    DuplicateStepError,
    NotInitializedError,
    RunInProgressError,
    StepGraphError,
    StepTimeoutError,
    UnknownDependencyError,
    UnknownStepError,
)
from .executor import StepGraphExecutor
from .graph import StepGraph
from .loader import load_steps_from_yaml
from .pipeline import PipelineExecutor, read_pipeline_file
from .steps import ExecutionResult, Step, StepInput, StepRecord, StepState

__all__ = [
    "StepGraphExecutor",
    "StepGraph",
    "Step",
    "StepInput",
    "StepRecord",
    "StepState",
    "ExecutionResult",
    "PipelineExecutor",
    "load_steps_from_yaml",
    "read_pipeline_file",
    # Errors
    "StepGraphError",
    "CycleError",
    "DuplicateStepError",
    "UnknownDependencyError",
    "UnknownStepError",
    "NotInitializedError",
    "RunInProgressError",
    "StepTimeoutError",
]
