"""
ICU Pipeline Loader - build Step lists from YAML definitions.
"""
from __future__ import annotations

import logging
import os
import sys
from importlib import import_module
from typing import Any, Callable, Dict, List, Mapping, Optional

from .steps import Builder, Operation, Step, StepInput

logger = logging.getLogger(__name__)

_STEP_KEYS = frozenset({
    "name", "uses", "run", "request", "context", "depends_on",
    "build", "timeout", "description",
})


def load_steps_from_yaml(
    yaml_data: Dict[str, Any],
    capabilities: Optional[Mapping[str, Operation]] = None,
) -> List[Step]:
    """
    Build steps from a pipeline definition.

    Expected format:
    ```yaml
    name: blog_api
    steps:
      - name: plan
        uses: project_planner
        request: "Plan a blog API"
        context: {technology: FastAPI}
      - name: schema
        run: my_pkg.ops.make_schema
        depends_on: [plan]
        build: my_pkg.ops.schema_input
        timeout: 30
    ```

    ``uses`` looks the operation up in ``capabilities``; ``run`` imports a
    dotted path. Every reference is resolved here, so a bad one fails before
    registration.
    """
    if not isinstance(yaml_data, dict):
        raise ValueError("Pipeline definition must be a mapping")

    capabilities = capabilities or {}
    steps: List[Step] = []

    for index, step_def in enumerate(yaml_data.get("steps") or []):
        if not isinstance(step_def, dict) or not step_def.get("name"):
            raise ValueError(f"Step #{index + 1} must be a mapping with a 'name'")
        name = str(step_def["name"])

        unknown = set(step_def) - _STEP_KEYS
        if unknown:
            raise ValueError(f"Step '{name}' has unknown keys: {sorted(unknown)}")

        operation = _resolve_operation(name, step_def, capabilities)

        static_context = step_def.get("context")
        if static_context is not None and not isinstance(static_context, dict):
            raise ValueError(f"Step '{name}' context must be a mapping")

        build_path = step_def.get("build")
        if build_path and static_context:
            raise ValueError(f"Step '{name}' sets both 'build' and 'context'; a builder supplies its own context")
        if build_path:
            build = _import_function(build_path)
        elif static_context:
            build = _static_context_builder(step_def.get("request"), static_context)
        else:
            build = None

        depends_on = step_def.get("depends_on") or []
        if isinstance(depends_on, str):
            depends_on = [depends_on]

        timeout = step_def.get("timeout")
        steps.append(Step(
            name=name,
            operation=operation,
            depends_on=tuple(str(d) for d in depends_on),
            build=build,
            request=step_def.get("request"),
            timeout=float(timeout) if timeout is not None else None,
            description=step_def.get("description", ""),
        ))

    logger.debug(f"Loaded {len(steps)} steps from pipeline '{yaml_data.get('name', 'unnamed')}'")
    return steps


def _resolve_operation(
    name: str,
    step_def: Dict[str, Any],
    capabilities: Mapping[str, Operation],
) -> Operation:
    uses = step_def.get("uses")
    run_path = step_def.get("run")
    if uses and run_path:
        raise ValueError(f"Step '{name}' sets both 'uses' and 'run'")
    if uses:
        if uses not in capabilities:
            known = ", ".join(sorted(capabilities)) or "none"
            raise ValueError(f"Step '{name}' uses unknown capability '{uses}' (known: {known})")
        return capabilities[uses]
    if run_path:
        return _import_function(run_path)
    raise ValueError(f"Step '{name}' needs either 'uses' or 'run'")


def _static_context_builder(request: Any, static_context: Dict[str, Any]) -> Builder:
    """Builder that layers a step's static context over the initial context."""

    def build(outputs: Mapping[str, Any], initial_context: Any) -> StepInput:
        merged = dict(initial_context) if isinstance(initial_context, Mapping) else {}
        merged.update(static_context)
        return StepInput(request, merged)

    return build


def _import_function(path: str) -> Callable:
    """Import a function from a dotted path."""
    parts = path.rsplit(".", 1)
    if len(parts) != 2:
        raise ValueError(f"Invalid function path: {path}")

    # pipelines may reference modules relative to the working directory
    cwd = os.getcwd()
    if cwd not in sys.path:
        sys.path.insert(0, cwd)

    module_path, func_name = parts
    try:
        module = import_module(module_path)
        func = getattr(module, func_name)
    except (ImportError, AttributeError) as e:
        raise ValueError(f"Could not import '{path}': {e}")
    if not callable(func):
        raise ValueError(f"'{path}' is not callable")
    return func
