"""
Tool-choice routing.

Asks the ``tool_choice`` agent which capability should handle a task and
turns the answers into concrete steps. Routing always finishes before the
steps are registered, so an executor never dispatches by name at run time.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from ..orchestrator.steps import Operation, Step, StepInput
from .icu_client import AGENTS, AgentCallError, SchemaICU

logger = logging.getLogger(__name__)


class RoutingError(Exception):
    """The router could not resolve a task to a known tool."""


@dataclass
class RouteDecision:
    """Outcome of routing one task."""
    task: str
    tool: str
    operation: Operation
    reasoning: str = ""
    alternatives: List[str] = field(default_factory=list)


def default_tools(client: SchemaICU) -> Dict[str, Tuple[Operation, str]]:
    """Every agent except the router itself, keyed by attribute name."""
    return {
        name: (client.capability(name), description)
        for name, (_, _, description) in AGENTS.items()
        if name != "tool_choice"
    }


class ToolRouter:
    """Route tasks to capabilities via the ``tool_choice`` agent."""

    def __init__(
        self,
        client: SchemaICU,
        tools: Optional[Mapping[str, Tuple[Operation, str]]] = None,
    ):
        self.client = client
        self.tools: Dict[str, Tuple[Operation, str]] = dict(tools or default_tools(client))
        if not self.tools:
            raise ValueError("ToolRouter needs at least one tool")

    def available_tools(self) -> List[Dict[str, str]]:
        return [{"name": name, "description": desc} for name, (_, desc) in self.tools.items()]

    async def route(self, task: str) -> RouteDecision:
        """Pick a tool for ``task``; raises RoutingError on failure."""
        try:
            response = await self.client.tool_choice.recommend(
                task, {"availableTools": self.available_tools()}
            )
        except AgentCallError as e:
            raise RoutingError(f"Routing failed for task '{task[:60]}': {e}") from e

        if not response.success:
            raise RoutingError(f"Routing failed: {response.error or 'no recommendation'}")

        data = response.data if isinstance(response.data, dict) else {}
        chosen = data.get("chosenTool")
        if chosen not in self.tools:
            raise RoutingError(f"Recommended tool '{chosen}' is not available")

        alternatives = []
        for alt in data.get("alternativeTools") or []:
            alternatives.append(alt.get("tool") if isinstance(alt, dict) else str(alt))

        logger.info(f"Routed task '{task[:60]}' to {chosen}")
        return RouteDecision(
            task=task,
            tool=chosen,
            operation=self.tools[chosen][0],
            reasoning=data.get("reasoning", ""),
            alternatives=[a for a in alternatives if a],
        )

    async def plan_steps(
        self,
        tasks: Sequence[str],
        timeout: Optional[float] = None,
    ) -> List[Step]:
        """
        Route every task and chain the results.

        Step ``task_n`` depends on ``task_{n-1}`` and receives all earlier
        outputs as its context, keyed by step name.
        """
        steps: List[Step] = []
        previous: Optional[str] = None
        for index, task in enumerate(tasks, start=1):
            decision = await self.route(task)
            name = f"task_{index}"
            steps.append(Step(
                name=name,
                operation=decision.operation,
                depends_on=(previous,) if previous else (),
                build=_accumulated_context_builder(task),
                request=task,
                timeout=timeout,
                description=f"{decision.tool}: {decision.reasoning}" if decision.reasoning else decision.tool,
            ))
            previous = name
        return steps


def _accumulated_context_builder(task: str) -> Callable[[Mapping[str, Any], Any], StepInput]:
    def build(outputs: Mapping[str, Any], initial_context: Any) -> StepInput:
        context = dict(initial_context) if isinstance(initial_context, Mapping) else {}
        context.update(outputs)
        return StepInput(task, context)

    return build
