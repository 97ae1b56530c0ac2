"""
Example step operations and builders for ICU pipelines.

Offline stand-ins for remote agents, used by the example pipelines and tests.
"""
import asyncio
from typing import Any, Dict, Mapping

from ..orchestrator.steps import StepInput


def echo(request: Any, context: Any) -> Dict[str, Any]:
    """Echo the request back."""
    return {"echoed": request}


async def outline(request: Any, context: Any) -> Dict[str, Any]:
    """Split a project description into named sections."""
    await asyncio.sleep(0)
    topic = str(request or (context or {}).get("topic", "project"))
    return {"topic": topic, "sections": ["models", "routes", "tests"]}


def draft_section(request: Any, context: Any) -> Dict[str, Any]:
    """Draft one section of the outline."""
    return {"section": request, "text": f"# {request} for {context['topic']}"}


def assemble(request: Any, context: Any) -> Dict[str, Any]:
    """Join drafted sections in outline order."""
    parts = [context[name]["text"] for name in sorted(context)]
    return {"document": "\n".join(parts), "parts": len(parts)}


def fail(request: Any, context: Any) -> Dict[str, Any]:
    """Always fails; used to demonstrate cascading skips."""
    raise RuntimeError(f"failing on purpose: {request}")


# -- builders --

def section_input(outputs: Mapping[str, Any], initial_context: Any) -> StepInput:
    """First outline section, with the outline topic as context."""
    plan = outputs["outline"]
    return StepInput(plan["sections"][0], {"topic": plan["topic"]})


def tests_input(outputs: Mapping[str, Any], initial_context: Any) -> StepInput:
    plan = outputs["outline"]
    return StepInput(plan["sections"][-1], {"topic": plan["topic"]})


def assemble_input(outputs: Mapping[str, Any], initial_context: Any) -> StepInput:
    return StepInput(None, {k: v for k, v in outputs.items() if k.startswith("draft_")})
