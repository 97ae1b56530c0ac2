"""
Tests for the Schema.ICU client.

Covers:
- Request shape (URL, headers, payload)
- Envelope parsing and AgentCallError on failures
- Agents as step operations inside the executor
- Config from settings and environment
- Error classification and retrying transient failures
"""
import pytest
import yaml

from conftest import FakeTransport, ok
from icu_core.orchestrator import Step, StepGraphExecutor, StepInput, StepState
from icu_core.services.config_service import clear_config_cache
from icu_core.services.icu_client import (
    AGENTS,
    AgentCallError,
    ClientConfig,
    DEFAULT_BASE_URL,
    SchemaICU,
    is_transient,
    with_retry,
)


# ---------------------------------------------------------------------------
# Calls
# ---------------------------------------------------------------------------

class TestAgentCalls:
    @pytest.mark.asyncio
    async def test_generate_posts_query_and_context(self, client, transport):
        transport.replies["code-generator"] = ok({"code": "def f(): pass", "reasoning": "r"})

        response = await client.code_generator.generate("a function", {"language": "python"})

        assert response.success
        assert response.data["code"] == "def f(): pass"
        assert response.is_signed
        call = transport.calls[0]
        assert call["url"] == "https://agents.test/api/agents/code-generator"
        assert call["payload"] == {"query": "a function", "context": {"language": "python"}}
        assert call["headers"]["x-api-key"] == "test-key"
        assert "Authorization" not in call["headers"]

    @pytest.mark.asyncio
    async def test_query_without_context_omits_it(self, client, transport):
        transport.replies["base"] = ok({"code": "42"})
        await client.base.query("meaning of life?")
        assert transport.calls[0]["payload"] == {"query": "meaning of life?"}

    @pytest.mark.asyncio
    async def test_unsuccessful_envelope_is_returned(self, client, transport):
        transport.replies["box-designer"] = {"success": False, "error": "quota exceeded"}
        response = await client.box_designer.design("a cache")
        assert not response.success
        assert response.error == "quota exceeded"

    @pytest.mark.asyncio
    async def test_http_error_raises(self, client, transport):
        transport.replies["project-planner"] = (401, {"success": False, "error": "bad key"})
        with pytest.raises(AgentCallError) as exc:
            await client.project_planner.plan("todo app")
        assert exc.value.status_code == 401
        assert "bad key" in str(exc.value)

    @pytest.mark.asyncio
    async def test_invalid_json_raises(self, client, transport):
        transport.replies["github-agent"] = (200, b"<html>oops</html>")
        with pytest.raises(AgentCallError, match="invalid JSON"):
            await client.github_agent.generate("release workflow")

    @pytest.mark.asyncio
    async def test_malformed_envelope_raises(self, client, transport):
        transport.replies["terminal-agent"] = {"data": "no success flag"}
        with pytest.raises(AgentCallError, match="malformed"):
            await client.terminal_agent.generate("list files")

    @pytest.mark.asyncio
    async def test_jwt_sent_as_bearer(self, transport):
        client = SchemaICU(ClientConfig(jwt_token="jwt-123"), transport=transport)
        transport.replies["prompt-improver"] = ok({"improvedPrompt": "better"})
        await client.prompt_improver.improve("make it better")
        assert transport.calls[0]["headers"]["Authorization"] == "Bearer jwt-123"
        assert transport.calls[0]["url"].startswith(DEFAULT_BASE_URL)


# ---------------------------------------------------------------------------
# Capabilities
# ---------------------------------------------------------------------------

class TestCapabilities:
    def test_every_agent_exposed(self, client):
        caps = client.capabilities()
        assert set(caps) == set(AGENTS)
        for name in AGENTS:
            assert getattr(client, name).agent_id == AGENTS[name][0]

    def test_unknown_agent(self, client):
        with pytest.raises(KeyError):
            client.capability("time_machine")

    @pytest.mark.asyncio
    async def test_invoke_returns_data(self, client, transport):
        transport.replies["schema-generator"] = ok({"schemaAsString": "{}"})
        data = await client.capability("schema_generator")("user schema", {"strict": True})
        assert data == {"schemaAsString": "{}"}

    @pytest.mark.asyncio
    async def test_invoke_raises_on_unsuccessful(self, client, transport):
        transport.replies["code-improver"] = {"success": False, "error": "too long"}
        with pytest.raises(AgentCallError, match="too long"):
            await client.capability("code_improver")("improve", {"code": "x"})

    @pytest.mark.asyncio
    async def test_agents_as_steps(self, client, transport):
        transport.replies["project-planner"] = ok({"projectName": "Todo", "tasks": [{"taskName": "api"}]})
        transport.replies["code-generator"] = lambda payload: ok({"code": f"# {payload['query']}"})
        transport.replies["github-agent"] = {"success": False, "error": "rate limited"}

        def build_code(outputs, ctx):
            task = outputs["plan"]["tasks"][0]["taskName"]
            return StepInput(f"implement {task}", {"language": "python"})

        executor = StepGraphExecutor()
        executor.register_steps([
            Step(name="plan", operation=client.capability("project_planner"), request="todo app"),
            Step(name="code", operation=client.capability("code_generator"), depends_on=["plan"], build=build_code),
            Step(name="ci", operation=client.capability("github_agent"), depends_on=["plan"], request="ci"),
        ])
        result = await executor.run()

        assert result.outputs["code"] == {"code": "# implement api"}
        assert result.state_of("ci") == StepState.FAILED
        assert result["ci"].error_type == "AgentCallError"


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

class TestClientConfig:
    def test_is_authenticated(self, transport):
        assert not SchemaICU(ClientConfig(), transport=transport).is_authenticated()
        assert SchemaICU(ClientConfig(api_key="k"), transport=transport).is_authenticated()

    def test_get_config_masks_credentials(self, client):
        config = client.get_config()
        assert config["api_key"] == "***"
        assert config["base_url"] == "https://agents.test"

    def test_update_config(self, client):
        client.update_config(tier="professional", timeout=5)
        assert client.get_config()["tier"] == "professional"
        with pytest.raises(ValueError):
            client.update_config(region="eu")
        with pytest.raises(ValueError):
            client.update_config(tier="platinum")

    def test_from_settings_with_env_override(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({
            "client": {"base_url": "https://from-file.test", "tier": "registered", "timeout": 10},
        }))
        monkeypatch.setenv("SCHEMA_ICU_API_KEY", "env-key")
        clear_config_cache()

        config = ClientConfig.from_settings(str(path))

        assert config.api_key == "env-key"
        assert config.base_url == "https://from-file.test"
        assert config.tier == "registered"
        assert config.timeout == 10.0

    def test_defaults_without_config(self):
        config = ClientConfig.from_settings()
        assert config.base_url == DEFAULT_BASE_URL
        assert config.api_key is None

    def test_default_client_uses_settings(self):
        client = SchemaICU(transport=FakeTransport())
        assert not client.is_authenticated()


# ---------------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------------

def replies_in_order(*replies):
    """Transport reply that walks through ``replies``; exceptions are raised."""
    pending = list(replies)

    def reply(payload):
        item = pending.pop(0) if len(pending) > 1 else pending[0]
        if isinstance(item, Exception):
            raise item
        return item

    return reply


class TestErrorClassification:
    @pytest.mark.parametrize("status,category,retryable", [
        (400, "validation", False),
        (401, "auth", False),
        (403, "auth", False),
        (429, "rate_limit", True),
        (500, "server", True),
        (503, "server", True),
        (None, "agent", False),
    ])
    def test_categories(self, status, category, retryable):
        error = AgentCallError("code-generator", "x", status_code=status)
        assert error.category == category
        assert error.is_retryable is retryable
        assert is_transient(error) is retryable

    def test_network_errors_are_transient(self):
        assert is_transient(ConnectionError("refused"))
        assert not is_transient(ValueError("bad input"))

    @pytest.mark.asyncio
    async def test_retry_hint_parsed_from_body(self, client, transport):
        transport.replies["base"] = (429, {"success": False, "error": "slow down", "retryAfter": 30})
        with pytest.raises(AgentCallError) as exc:
            await client.base.query("hi")
        assert exc.value.category == "rate_limit"
        assert exc.value.retry_after == 30.0


class TestWithRetry:
    @pytest.mark.asyncio
    async def test_rate_limit_then_success(self, client, transport):
        transport.replies["code-generator"] = replies_in_order(
            (429, {"success": False, "error": "slow down"}),
            ok({"code": "def f(): pass"}),
        )
        operation = with_retry(client.capability("code_generator"), max_retries=3, delay=0)

        data = await operation("a function", {"language": "python"})

        assert data == {"code": "def f(): pass"}
        assert transport.agents_called() == ["code-generator", "code-generator"]

    @pytest.mark.asyncio
    async def test_network_error_then_success(self, client, transport):
        transport.replies["base"] = replies_in_order(ConnectionError("refused"), ok({"code": "42"}))
        data = await with_retry(client.capability("base"), delay=0)("question", None)
        assert data == {"code": "42"}
        assert len(transport.calls) == 2

    @pytest.mark.asyncio
    async def test_client_errors_are_not_retried(self, client, transport):
        transport.replies["schema-generator"] = (400, {"success": False, "error": "bad query"})
        with pytest.raises(AgentCallError, match="bad query"):
            await with_retry(client.capability("schema_generator"), delay=0)("x", None)
        assert len(transport.calls) == 1

    @pytest.mark.asyncio
    async def test_unsuccessful_envelope_is_not_retried(self, client, transport):
        transport.replies["code-improver"] = {"success": False, "error": "cannot improve"}
        with pytest.raises(AgentCallError):
            await with_retry(client.capability("code_improver"), delay=0)("x", {"code": "y"})
        assert len(transport.calls) == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, client, transport):
        transport.replies["github-agent"] = (503, {"success": False, "error": "down"})
        with pytest.raises(AgentCallError) as exc:
            await with_retry(client.capability("github_agent"), max_retries=3, delay=0)("ci", None)
        assert exc.value.status_code == 503
        assert len(transport.calls) == 3

    @pytest.mark.asyncio
    async def test_server_retry_hint_is_capped(self, client, transport):
        transport.replies["base"] = replies_in_order(
            (429, {"success": False, "error": "slow down", "retryAfter": 3600}),
            ok({"code": "42"}),
        )
        operation = with_retry(client.capability("base"), delay=0, max_delay=0)
        assert await operation("q", None) == {"code": "42"}

    @pytest.mark.asyncio
    async def test_sync_operation(self):
        attempts = []

        def flaky(request, context):
            attempts.append(request)
            if len(attempts) < 2:
                raise ConnectionError("reset")
            return request.upper()

        assert await with_retry(flaky, delay=0)("hi", None) == "HI"
        assert attempts == ["hi", "hi"]

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            with_retry(lambda r, c: r, max_retries=0)
        with pytest.raises(ValueError):
            with_retry(lambda r, c: r, delay=-1)

    @pytest.mark.asyncio
    async def test_retrying_operation_as_step(self, client, transport):
        transport.replies["project-planner"] = replies_in_order(
            (502, {"success": False, "error": "bad gateway"}),
            ok({"projectName": "Todo"}),
        )
        executor = StepGraphExecutor()
        executor.register_steps([
            Step(
                name="plan",
                operation=with_retry(client.capability("project_planner"), delay=0),
                request="todo app",
            ),
        ])
        result = await executor.run()

        assert result.state_of("plan") == StepState.COMPLETED
        assert result.outputs["plan"] == {"projectName": "Todo"}
