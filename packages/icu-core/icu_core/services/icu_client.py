"""
Schema.ICU agent client.

Thin async adapter over the remote agent API. Each agent is exposed under
its SDK method name (``generate``, ``improve``, ``plan``...) and as a step
operation via ``invoke(request, context)``. The remote service's output and
response signatures are carried through untouched.

The transport is stdlib ``urllib`` run in a worker thread so concurrent
steps do not block each other.
"""
from __future__ import annotations

import asyncio
import inspect
import json
import logging
import time
import urllib.error
import urllib.request
from dataclasses import asdict, dataclass, replace
from typing import Any, Callable, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, ValidationError

from .config_service import get_client_settings, get_secret

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.schema.icu"

TIERS = ("free", "registered", "professional", "enterprise")

# (url, headers, body, timeout) -> (status_code, response_body)
Transport = Callable[[str, Dict[str, str], bytes, float], Tuple[int, bytes]]


class AgentCallError(Exception):
    """A remote agent call failed or reported ``success: false``."""

    def __init__(
        self,
        agent: str,
        message: str,
        status_code: Optional[int] = None,
        response: Optional["AgentResponse"] = None,
        retry_after: Optional[float] = None,
    ):
        self.agent = agent
        self.status_code = status_code
        self.response = response
        self.retry_after = retry_after
        super().__init__(f"{agent}: {message}")

    @property
    def category(self) -> str:
        """Coarse failure class: validation, auth, rate_limit, server or agent."""
        code = self.status_code
        if code == 400:
            return "validation"
        if code in (401, 403):
            return "auth"
        if code == 429:
            return "rate_limit"
        if code is not None and code >= 500:
            return "server"
        return "agent"

    @property
    def is_retryable(self) -> bool:
        """Rate limits and server errors are transient; everything else is not."""
        return self.category in ("rate_limit", "server")


class AgentResponse(BaseModel):
    """Envelope returned by every agent."""
    success: bool
    data: Any = None
    timestamp: Optional[str] = None
    signature: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    model_config = ConfigDict(extra="allow")

    @property
    def is_signed(self) -> bool:
        return bool(self.signature)


@dataclass
class ClientConfig:
    """Connection settings for the agent API."""
    api_key: Optional[str] = None
    jwt_token: Optional[str] = None
    email: Optional[str] = None
    base_url: str = DEFAULT_BASE_URL
    tier: str = "free"
    timeout: float = 60.0

    def __post_init__(self):
        if self.tier not in TIERS:
            raise ValueError(f"Unknown tier '{self.tier}' (expected one of {', '.join(TIERS)})")
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")

    @classmethod
    def from_settings(cls, config_path: Optional[str] = None) -> "ClientConfig":
        """Build from the ``client`` config section, with environment overrides."""
        settings = get_client_settings(config_path)
        return cls(
            api_key=get_secret("SCHEMA_ICU_API_KEY", settings.get("api_key")),
            jwt_token=get_secret("SCHEMA_ICU_JWT_TOKEN", settings.get("jwt_token")),
            email=get_secret("SCHEMA_ICU_EMAIL", settings.get("email")),
            base_url=get_secret("SCHEMA_ICU_BASE_URL", settings.get("base_url") or DEFAULT_BASE_URL),
            tier=settings.get("tier", "free"),
            timeout=float(settings.get("timeout", 60.0)),
        )


def urllib_transport(url: str, headers: Dict[str, str], body: bytes, timeout: float) -> Tuple[int, bytes]:
    """POST ``body`` to ``url``; HTTP error statuses are returned, not raised."""
    req = urllib.request.Request(url, data=body, headers=headers, method="POST")
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            return resp.status, resp.read()
    except urllib.error.HTTPError as e:
        return e.code, e.read()
    except (urllib.error.URLError, OSError) as exc:
        raise ConnectionError(f"Agent API not reachable at {url} ({exc})") from exc


def _retry_after(body: Dict[str, Any]) -> Optional[float]:
    value = body.get("retryAfter", body.get("retry_after"))
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def is_transient(error: BaseException) -> bool:
    """True for failures worth retrying: unreachable API, 429 or 5xx."""
    if isinstance(error, AgentCallError):
        return error.is_retryable
    return isinstance(error, ConnectionError)


def with_retry(
    operation: Callable[[Any, Any], Any],
    max_retries: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0,
    max_delay: float = 60.0,
) -> Callable[[Any, Any], Any]:
    """
    Wrap a step operation so transient failures are retried.

    ``max_retries`` is the total number of attempts. The wait before attempt
    ``n + 1`` is ``delay * backoff ** (n - 1)``, or the server's retry hint
    when that is longer, capped at ``max_delay``.
    Non-transient errors and the last failure are raised unchanged.
    """
    if max_retries < 1:
        raise ValueError("max_retries must be >= 1")
    if delay < 0:
        raise ValueError("delay must be >= 0")

    async def retrying(request: Any, context: Any = None) -> Any:
        attempt = 1
        while True:
            try:
                if asyncio.iscoroutinefunction(operation):
                    return await operation(request, context)
                result = await asyncio.to_thread(operation, request, context)
                if inspect.isawaitable(result):
                    result = await result
                return result
            except Exception as e:
                if attempt >= max_retries or not is_transient(e):
                    raise
                wait = delay * backoff ** (attempt - 1)
                if isinstance(e, AgentCallError) and e.retry_after:
                    wait = max(wait, e.retry_after)
                wait = min(wait, max_delay)
                logger.warning(f"Attempt {attempt}/{max_retries} failed: {e}; retrying in {wait:.1f}s")
                await asyncio.sleep(wait)
                attempt += 1

    return retrying


# =============================================================================
# AGENTS
# =============================================================================

class Agent:
    """One remote agent endpoint."""

    method_name = "query"

    def __init__(self, client: "SchemaICU", agent_id: str, description: str = ""):
        self._client = client
        self.agent_id = agent_id
        self.description = description

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.agent_id}.{self.method_name}>"

    async def call(self, query: Any, context: Optional[Dict[str, Any]] = None) -> AgentResponse:
        return await self._client.call(self.agent_id, query, context)

    async def invoke(self, request: Any, context: Any = None) -> Any:
        """Step operation: return the agent's data or raise AgentCallError."""
        response = await self.call(request, context if isinstance(context, dict) else None)
        if not response.success:
            raise AgentCallError(
                self.agent_id,
                response.error or "agent reported failure",
                response=response,
            )
        return response.data


class QueryAgent(Agent):
    method_name = "query"

    async def query(self, query: str) -> AgentResponse:
        return await self.call(query)


class GenerateAgent(Agent):
    method_name = "generate"

    async def generate(self, query: str, context: Optional[Dict[str, Any]] = None) -> AgentResponse:
        return await self.call(query, context)


class ImproveAgent(Agent):
    method_name = "improve"

    async def improve(self, query: str, context: Optional[Dict[str, Any]] = None) -> AgentResponse:
        return await self.call(query, context)


class DesignAgent(Agent):
    method_name = "design"

    async def design(self, query: str) -> AgentResponse:
        return await self.call(query)


class PlanAgent(Agent):
    method_name = "plan"

    async def plan(self, query: str, context: Optional[Dict[str, Any]] = None) -> AgentResponse:
        return await self.call(query, context)


class RecommendAgent(Agent):
    method_name = "recommend"

    async def recommend(self, query: str, context: Dict[str, Any]) -> AgentResponse:
        return await self.call(query, context)


# attribute name -> (endpoint id, agent class, description)
AGENTS: Dict[str, Tuple[str, type, str]] = {
    "base": ("base", QueryAgent, "Answer general questions"),
    "code_generator": ("code-generator", GenerateAgent, "Generate production-ready code"),
    "schema_generator": ("schema-generator", GenerateAgent, "Create JSON schemas"),
    "terminal_agent": ("terminal-agent", GenerateAgent, "Generate shell commands"),
    "code_improver": ("code-improver", ImproveAgent, "Optimize existing code"),
    "diff_improver": ("diff-improver", ImproveAgent, "Code improvements via diffs"),
    "box_designer": ("box-designer", DesignAgent, "Design modular components"),
    "project_planner": ("project-planner", PlanAgent, "Plan projects with estimates"),
    "prompt_improver": ("prompt-improver", ImproveAgent, "Optimize prompts"),
    "tool_choice": ("tool-choice", RecommendAgent, "Recommend the best agent for a task"),
    "github_agent": ("github-agent", GenerateAgent, "Generate GitHub CLI commands"),
}


class SchemaICU:
    """
    Client for the Schema.ICU agent API.

    Usage:
        client = SchemaICU()
        response = await client.code_generator.generate("debounce in JS", {"language": "javascript"})
        if response.success:
            print(response.data["code"])
    """

    base: QueryAgent
    code_generator: GenerateAgent
    schema_generator: GenerateAgent
    terminal_agent: GenerateAgent
    code_improver: ImproveAgent
    diff_improver: ImproveAgent
    box_designer: DesignAgent
    project_planner: PlanAgent
    prompt_improver: ImproveAgent
    tool_choice: RecommendAgent
    github_agent: GenerateAgent

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        transport: Optional[Transport] = None,
    ):
        self._config = config or ClientConfig.from_settings()
        self._transport = transport or urllib_transport
        self._agents: Dict[str, Agent] = {}
        for attr, (agent_id, agent_cls, description) in AGENTS.items():
            agent = agent_cls(self, agent_id, description)
            self._agents[attr] = agent
            setattr(self, attr, agent)

    # =========================================================================
    # CONFIG
    # =========================================================================

    def is_authenticated(self) -> bool:
        return bool(self._config.api_key or self._config.jwt_token)

    def get_config(self) -> Dict[str, Any]:
        """Current configuration with credentials masked."""
        data = asdict(self._config)
        for key in ("api_key", "jwt_token"):
            if data.get(key):
                data[key] = "***"
        return data

    def update_config(self, **changes: Any) -> None:
        unknown = set(changes) - set(asdict(self._config))
        if unknown:
            raise ValueError(f"Unknown config fields: {sorted(unknown)}")
        self._config = replace(self._config, **changes)

    # =========================================================================
    # CAPABILITIES
    # =========================================================================

    def agent(self, name: str) -> Agent:
        try:
            return self._agents[name]
        except KeyError:
            raise KeyError(f"Unknown agent '{name}'") from None

    def capability(self, name: str) -> Callable[[Any, Any], Any]:
        """Step operation for agent ``name``."""
        return self.agent(name).invoke

    def capabilities(self) -> Dict[str, Callable[[Any, Any], Any]]:
        """Registry of every agent's step operation, for pipeline ``uses:`` keys."""
        return {name: agent.invoke for name, agent in self._agents.items()}

    # =========================================================================
    # TRANSPORT
    # =========================================================================

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self._config.api_key:
            headers["x-api-key"] = self._config.api_key
        if self._config.jwt_token:
            headers["Authorization"] = f"Bearer {self._config.jwt_token}"
        return headers

    async def call(self, agent_id: str, query: Any, context: Optional[Dict[str, Any]] = None) -> AgentResponse:
        """POST a query to an agent endpoint and parse the envelope."""
        url = f"{self._config.base_url.rstrip('/')}/api/agents/{agent_id}"
        payload: Dict[str, Any] = {"query": query}
        if context:
            payload["context"] = context
        body = json.dumps(payload, default=str).encode()

        start = time.time()
        status, raw = await asyncio.to_thread(
            self._transport, url, self._headers(), body, self._config.timeout
        )
        latency_ms = (time.time() - start) * 1000
        logger.debug(f"Agent {agent_id} responded {status} in {latency_ms:.0f}ms")

        try:
            parsed = json.loads(raw or b"{}")
        except ValueError:
            raise AgentCallError(agent_id, f"invalid JSON response (HTTP {status})", status_code=status)

        if status >= 400:
            error_body = parsed if isinstance(parsed, dict) else {}
            raise AgentCallError(
                agent_id,
                error_body.get("error") or f"HTTP {status}",
                status_code=status,
                retry_after=_retry_after(error_body),
            )

        try:
            return AgentResponse.model_validate(parsed)
        except ValidationError as e:
            raise AgentCallError(agent_id, f"malformed response: {e}", status_code=status)
