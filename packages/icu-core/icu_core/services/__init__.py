"""
ICU Services - configuration, the remote agent client and tool routing.
"""
from .config_service import (
    clear_config_cache,
    get_client_settings,
    get_executor_settings,
    get_secret,
    get_trace_settings,
    load_config,
)
from .icu_client import (
    AGENTS,
    Agent,
    AgentCallError,
    AgentResponse,
    ClientConfig,
    SchemaICU,
    is_transient,
    urllib_transport,
    with_retry,
)
from .routing import RouteDecision, RoutingError, ToolRouter

__all__ = [
    "load_config",
    "clear_config_cache",
    "get_executor_settings",
    "get_client_settings",
    "get_trace_settings",
    "get_secret",
    "AGENTS",
    "Agent",
    "AgentCallError",
    "AgentResponse",
    "ClientConfig",
    "SchemaICU",
    "urllib_transport",
    "with_retry",
    "is_transient",
    "ToolRouter",
    "RouteDecision",
    "RoutingError",
]
