"""
ICU Pipeline Executor - load YAML pipelines and run them.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, TYPE_CHECKING

import yaml

from .executor import StepGraphExecutor
from .loader import load_steps_from_yaml
from .steps import ExecutionResult, Operation

if TYPE_CHECKING:
    from ..trace import TraceService

logger = logging.getLogger(__name__)


def read_pipeline_file(path: Path) -> Dict[str, Any]:
    """Parse a pipeline YAML file."""
    if not path.exists():
        raise FileNotFoundError(f"Pipeline file not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Pipeline file {path} must contain a mapping, got {type(data).__name__}")
    return data


class PipelineExecutor:
    """
    Execute YAML pipelines.

    Each pipeline file is loaded and registered once; later runs of the same
    file reuse the registered executor.
    """

    def __init__(
        self,
        capabilities: Optional[Mapping[str, Operation]] = None,
        tracer: Optional[TraceService] = None,
        default_timeout: Optional[float] = None,
    ):
        self.capabilities = dict(capabilities or {})
        self.tracer = tracer
        self.default_timeout = default_timeout
        self._cache: Dict[str, StepGraphExecutor] = {}

    def set_tracer(self, tracer: Optional[TraceService]) -> None:
        self.tracer = tracer
        for executor in self._cache.values():
            executor.set_tracer(tracer)

    def load(self, graph_path: Path) -> StepGraphExecutor:
        """Load, validate and register a pipeline file."""
        cache_key = str(graph_path.resolve())
        cached = self._cache.get(cache_key)
        if cached is not None:
            cached.set_tracer(self.tracer)
            return cached

        data = read_pipeline_file(graph_path)
        steps = load_steps_from_yaml(data, capabilities=self.capabilities)
        if not steps:
            raise ValueError(f"Pipeline {graph_path} defines no steps")

        timeout = data.get("default_timeout", self.default_timeout)
        executor = StepGraphExecutor(
            default_timeout=float(timeout) if timeout is not None else None,
            tracer=self.tracer,
        )
        executor.register_steps(steps)
        self._cache[cache_key] = executor
        logger.info(f"Loaded pipeline {graph_path} ({len(steps)} steps)")
        return executor

    async def run(self, graph_path: Path, initial_context: Any = None) -> ExecutionResult:
        executor = self.load(graph_path)
        return await executor.run(initial_context)
