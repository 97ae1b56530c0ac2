"""Shared configuration service for the executor, client and tracing."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict

import yaml

_CONFIG_CACHE: Dict[str, Dict[str, Any]] = {}


def _default_config_path() -> Path:
    """Resolve the default config path (supports ICU_CONFIG_PATH override)."""
    env_path = os.getenv("ICU_CONFIG_PATH")
    if env_path:
        return Path(env_path).expanduser()
    return Path.cwd() / "config" / "config.yaml"


def clear_config_cache() -> None:
    """Clear cached config (primarily for tests)."""
    _CONFIG_CACHE.clear()


def load_config(path: str | Path | None = None) -> Dict[str, Any]:
    """
    Load YAML configuration with caching.

    A missing default config file yields an empty config; an explicit path
    that does not exist raises FileNotFoundError.
    """
    resolved = Path(path).expanduser() if path else _default_config_path()
    key = str(resolved.resolve())
    if key not in _CONFIG_CACHE:
        if not resolved.exists():
            if path:
                raise FileNotFoundError(f"Config file not found: {resolved}")
            return {}
        with open(resolved, "r", encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML in config file {resolved}: {e}") from e
        if not isinstance(data, dict):
            raise ValueError(f"Config file {resolved} must contain a mapping")
        _CONFIG_CACHE[key] = data
    return _CONFIG_CACHE[key]


def _get_section(section_path: str, path: str | Path | None = None) -> Dict[str, Any]:
    """
    Return nested configuration section by dotted path (e.g. ``client``).
    """
    section: Any = load_config(path)
    for key in section_path.split("."):
        if not isinstance(section, dict):
            return {}
        section = section.get(key)
        if section is None:
            return {}
    return section if isinstance(section, dict) else {}


def get_executor_settings(path: str | Path | None = None) -> Dict[str, Any]:
    """Executor settings (``default_timeout``)."""
    return _get_section("executor", path)


def get_client_settings(path: str | Path | None = None) -> Dict[str, Any]:
    """Remote agent client settings (``base_url``, ``tier``, ``timeout``)."""
    return _get_section("client", path)


def get_trace_settings(path: str | Path | None = None) -> Dict[str, Any]:
    """Trace settings (``enabled``, ``output_dir``)."""
    return _get_section("trace", path)


def get_secret(name: str, default: str | None = None) -> str | None:
    """Fetch a secret from the process environment."""
    return os.getenv(name, default)
