"""
Project Manager - convenience wrapper over the agent client for common
development tasks.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from ..services.icu_client import AGENTS, AgentCallError, AgentResponse, SchemaICU

logger = logging.getLogger(__name__)

DEFAULT_FOCUS_AREAS = ["readability", "performance"]


def _unwrap(agent: str, response: AgentResponse) -> Any:
    if not response.success:
        raise AgentCallError(agent, response.error or "agent reported failure", response=response)
    return response.data


class ProjectManager:
    """Plan, generate and improve project artifacts through remote agents."""

    def __init__(self, client: Optional[SchemaICU] = None):
        self.client = client or SchemaICU()

    async def create_project_plan(self, description: str, **options: Any) -> Dict[str, Any]:
        """Project plan with tasks and hour estimates."""
        context = {"technology": "Node.js", "experience": "intermediate"}
        context.update(options)
        logger.info("Creating project plan")
        response = await self.client.project_planner.plan(description, context)
        return _unwrap("project-planner", response)

    async def generate_feature(self, description: str, language: str = "JavaScript") -> Dict[str, Any]:
        logger.info(f"Generating {language} code for: {description[:60]}")
        response = await self.client.code_generator.generate(description, {"language": language})
        return _unwrap("code-generator", response)

    async def get_setup_commands(self, project_type: str, os: str = "windows", shell: str = "bash") -> Dict[str, Any]:
        response = await self.client.terminal_agent.generate(
            f"Setup commands for {project_type} project",
            {"os": os, "shell": shell},
        )
        return _unwrap("terminal-agent", response)

    async def generate_api_schema(self, description: str) -> Dict[str, Any]:
        response = await self.client.schema_generator.generate(description)
        return _unwrap("schema-generator", response)

    async def improve_code(self, code: str, improvements: str = "", language: str = "JavaScript") -> Dict[str, Any]:
        """
        Improve ``code``.

        ``improvements`` is a comma-separated list of focus areas and doubles
        as the query; without it the defaults are readability and performance.
        """
        focus_areas = [s.strip() for s in improvements.split(",") if s.strip()] or list(DEFAULT_FOCUS_AREAS)
        response = await self.client.code_improver.improve(
            improvements or "Improve this code",
            {"code": code, "language": language, "focusAreas": focus_areas},
        )
        return _unwrap("code-improver", response)

    async def get_code_diff(
        self,
        code: str,
        focus_areas: Optional[List[str]] = None,
        language: str = "JavaScript",
    ) -> Dict[str, Any]:
        response = await self.client.diff_improver.improve(
            code,
            {"language": language, "focusAreas": focus_areas or list(DEFAULT_FOCUS_AREAS)},
        )
        return _unwrap("diff-improver", response)

    async def get_github_workflow(self, task: str) -> Dict[str, Any]:
        response = await self.client.github_agent.generate(task)
        return _unwrap("github-agent", response)

    async def ask_question(self, question: str) -> Dict[str, Any]:
        response = await self.client.base.query(question)
        return _unwrap("base", response)

    async def design_component(self, description: str) -> Dict[str, Any]:
        response = await self.client.box_designer.design(description)
        return _unwrap("box-designer", response)

    async def improve_prompt(self, prompt: str) -> Dict[str, Any]:
        response = await self.client.prompt_improver.improve(prompt)
        return _unwrap("prompt-improver", response)

    async def recommend_agent(self, task: str) -> Dict[str, Any]:
        """Ask the router agent which agent fits ``task`` best."""
        available = [
            {"name": name, "description": description}
            for name, (_, _, description) in AGENTS.items()
            if name not in ("tool_choice", "base")
        ]
        response = await self.client.tool_choice.recommend(task, {"availableTools": available})
        return _unwrap("tool-choice", response)
