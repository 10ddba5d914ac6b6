"""Run settings: built-in defaults overlaid with a YAML file (config/settings.yaml by default)."""

import copy
import logging
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

_DEFAULTS: dict[str, Any] = {
    "llm": {
        "base_url": "https://openrouter.ai/api/v1",
        "api_key_secret": "OPENROUTER_API_KEY",
        "timeout": 120.0,
        # Fallback when neither the task nor the run names a model
        "default_model": "liquid/lfm-2.5-1.2b-thinking:free",
        # Some models lack reliable tool calling; tasks that use tools always get this one
        "tool_model": "openai/gpt-4o-mini",
        "extra_body": {"transforms": ["middle-out"]},
    },
    "retry": {
        "max_retries": 8,
        "base_delay": 0.5,
        "jitter": True,
        "stream_defect_retries": 2,
    },
    "agent": {
        "max_iterations": 10,
        "max_depth": 3,
        "repeat_content_limit": 2,
        "repeat_tool_call_limit": 2,
        "expose_invoke_task": True,
    },
    "mcp": {
        "connect_timeout": 30.0,
        "call_timeout": 60.0,
    },
    "run": {
        "fail_fast": True,
    },
    "logging": {
        "file": "logs/tony.log",
        "level": "INFO",
        "log_to_console": False,
        "max_bytes": 10485760,  # 10 MB
        "backup_count": 3,
    },
}

DEFAULT_SETTINGS_PATH = Path("config") / "settings.yaml"

# Loaded settings per resolved file path
_cache: dict[Path, dict[str, Any]] = {}


def _overlay(target: dict[str, Any], source: dict[str, Any]) -> dict[str, Any]:
    """Recursively copy source into target; nested dicts merge, null values keep the default."""
    for key, value in source.items():
        if value is None:
            continue
        current = target.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            _overlay(current, value)
        else:
            target[key] = value
    return target


def get_default_settings() -> dict[str, Any]:
    """Fresh, mutable copy of the built-in defaults."""
    return copy.deepcopy(_DEFAULTS)


def get_setting(settings: dict[str, Any], path: str, default: Any = None) -> Any:
    """Nested lookup by dot path, e.g. get_setting(s, "retry.max_retries", 8)."""
    node: Any = settings
    for key in path.split("."):
        if not isinstance(node, dict) or key not in node:
            return default
        node = node[key]
    return node


def reload_settings() -> None:
    """Forget every loaded settings file."""
    _cache.clear()


def _read_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (yaml.YAMLError, OSError) as e:
        logger.warning("Ignoring unreadable settings file %s: %s", path, e)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring settings file %s: top level is not a mapping", path)
        return {}
    return data


def load_settings(path: Path | None = None) -> dict[str, Any]:
    """Defaults merged with the YAML file at path (relative to cwd when omitted). Cached per path."""
    resolved = (path or Path.cwd() / DEFAULT_SETTINGS_PATH).resolve()
    cached = _cache.get(resolved)
    if cached is None:
        cached = _overlay(get_default_settings(), _read_yaml(resolved))
        _cache[resolved] = cached
    return cached
