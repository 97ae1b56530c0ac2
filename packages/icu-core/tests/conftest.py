"""Shared fixtures: an in-memory agent transport and isolated config/tracing."""
import json
from typing import Any, Callable, Dict, List, Tuple, Union

import pytest

from icu_core.services.config_service import clear_config_cache
from icu_core.services.icu_client import ClientConfig, SchemaICU
from icu_core.trace import reset_trace_service

Reply = Union[Dict[str, Any], Tuple[int, Any], Callable[[Dict[str, Any]], Any]]


class FakeTransport:
    """
    Stand-in for the HTTP transport.

    ``replies`` maps an agent id (last URL segment) to an envelope dict, a
    ``(status, body)`` tuple, or a callable taking the request payload.
    """

    def __init__(self, replies: Dict[str, Reply] = None):
        self.replies: Dict[str, Reply] = dict(replies or {})
        self.calls: List[Dict[str, Any]] = []

    def __call__(self, url: str, headers: Dict[str, str], body: bytes, timeout: float):
        agent_id = url.rsplit("/", 1)[-1]
        payload = json.loads(body)
        self.calls.append({"agent": agent_id, "url": url, "headers": headers, "payload": payload})

        reply = self.replies.get(agent_id)
        if reply is None:
            return 404, json.dumps({"success": False, "error": f"no agent {agent_id}"}).encode()
        if callable(reply):
            reply = reply(payload)
        status = 200
        if isinstance(reply, tuple):
            status, reply = reply
        raw = reply if isinstance(reply, bytes) else json.dumps(reply).encode()
        return status, raw

    def agents_called(self) -> List[str]:
        return [c["agent"] for c in self.calls]


def ok(data: Any) -> Dict[str, Any]:
    """Successful envelope with a fake signature."""
    return {
        "success": True,
        "data": data,
        "timestamp": "2026-01-01T00:00:00Z",
        "signature": {"hash": "h", "signature": "s", "publicKey": "pk", "signedAt": "t"},
    }


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def client(transport):
    config = ClientConfig(api_key="test-key", base_url="https://agents.test")
    return SchemaICU(config=config, transport=transport)


@pytest.fixture(autouse=True)
def _isolate(monkeypatch, tmp_path):
    for var in ("SCHEMA_ICU_API_KEY", "SCHEMA_ICU_JWT_TOKEN", "SCHEMA_ICU_EMAIL", "SCHEMA_ICU_BASE_URL"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("ICU_CONFIG_PATH", str(tmp_path / "no-config.yaml"))
    clear_config_cache()
    reset_trace_service()
    yield
    clear_config_cache()
    reset_trace_service()
