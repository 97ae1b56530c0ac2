"""
Common step-chain shapes: sequential chains, parallel fan-outs and
iterative refinement loops.
"""
from __future__ import annotations

from dataclasses import replace
from typing import Any, List, Mapping, Optional, Sequence

from ..orchestrator.steps import Step, StepInput
from ..services.icu_client import SchemaICU

DEFAULT_REFINEMENT_FOCUS = ["performance", "readability", "best-practices"]


def sequential_steps(steps: Sequence[Step]) -> List[Step]:
    """Chain ``steps`` so each depends on the one before it (plus its own deps)."""
    chained: List[Step] = []
    previous: Optional[str] = None
    for step in steps:
        deps = tuple(step.depends_on)
        if previous and previous not in deps:
            deps = deps + (previous,)
        chained.append(replace(step, depends_on=deps))
        previous = step.name
    return chained


def parallel_steps(steps: Sequence[Step], after: Optional[str] = None) -> List[Step]:
    """Make ``steps`` independent of each other, optionally all after ``after``."""
    deps = (after,) if after else ()
    return [replace(step, depends_on=deps) for step in steps]


def extract_code(output: Any) -> Optional[str]:
    """Pull code out of a generator or improver payload."""
    if not isinstance(output, Mapping):
        return None
    return output.get("improvedCode") or output.get("code")


def refinement_steps(
    client: SchemaICU,
    query: str,
    iterations: int = 3,
    focus_areas: Optional[Sequence[str]] = None,
    language: str = "javascript",
    timeout: Optional[float] = None,
) -> List[Step]:
    """
    Generate code once, then improve it ``iterations`` times.

    Produces ``generate`` followed by ``improve_1`` .. ``improve_n``; each
    improvement works on the code produced by the step before it.
    """
    if iterations < 0:
        raise ValueError("iterations must be >= 0")

    focus = list(focus_areas or [])
    improvement_query = (
        f"Optimize the code focusing on: {', '.join(focus)}"
        if focus else
        "Further optimize for performance, readability, and best practices"
    )

    def build_generate(outputs: Mapping[str, Any], initial_context: Any) -> StepInput:
        return StepInput(query, {"language": language})

    steps = [Step(
        name="generate",
        operation=client.capability("code_generator"),
        build=build_generate,
        request=query,
        timeout=timeout,
        description="Initial code generation",
    )]

    previous = "generate"
    for i in range(1, iterations + 1):
        steps.append(Step(
            name=f"improve_{i}",
            operation=client.capability("code_improver"),
            depends_on=(previous,),
            build=_improve_builder(previous, improvement_query, language, focus or DEFAULT_REFINEMENT_FOCUS),
            request=improvement_query,
            timeout=timeout,
            description=f"Refinement iteration {i}",
        ))
        previous = f"improve_{i}"
    return steps


def _improve_builder(source: str, improvement_query: str, language: str, focus: List[str]):
    def build(outputs: Mapping[str, Any], initial_context: Any) -> StepInput:
        code = extract_code(outputs[source])
        if not code:
            raise ValueError(f"Step '{source}' produced no code to improve")
        return StepInput(improvement_query, {
            "code": code,
            "language": language,
            "focusAreas": list(focus),
        })

    return build
