"""Configuration file loading and caching.

Handles:
- YAML file parsing
- Environment variable overrides
- Conversion from dict to typed Config dataclass
- Caching of the global (non-project) config
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from devagent.config.merge import merge_configs
from devagent.config.paths import get_config_paths
from devagent.config.schema import (
    DEFAULT_LIST_FILES_CAP,
    DEFAULT_MAX_CONSECUTIVE_MISTAKES,
    DEFAULT_MAX_TOKENS,
    DEFAULT_MODEL,
    Config,
    LLMConfig,
    LoggingConfig,
    StorageConfig,
    ToolsConfig,
)

# Module logger (may not be configured yet at import time)
_log = logging.getLogger("devagent.config")

_cached_config: Config | None = None

_KNOWN_SECTIONS = {"llm", "storage", "tools", "logging"}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file, returning an empty dict if missing or invalid."""
    if not path.exists():
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except yaml.YAMLError as e:
        _log.warning("Invalid YAML in %s: %s", path, e)
        return {}
    except PermissionError:
        _log.debug("Permission denied reading %s", path)
        return {}
    except OSError as e:
        _log.warning("Error reading %s: %s", path, e)
        return {}


def env_overrides() -> dict[str, Any]:
    """Build a config dict from environment variables (highest priority)."""
    overrides: dict[str, Any] = {}

    log_path = os.environ.get("DEVAGENT_LOG")
    if log_path:
        overrides.setdefault("logging", {})["file"] = log_path

    storage_root = os.environ.get("DEVAGENT_STORAGE")
    if storage_root:
        overrides.setdefault("storage", {})["root"] = storage_root

    model = os.environ.get("DEVAGENT_MODEL")
    if model:
        overrides.setdefault("llm", {})["model"] = model

    return overrides


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name)
    return value if isinstance(value, dict) else {}


def dict_to_config(data: dict[str, Any]) -> Config:
    """Convert a merged dict to the typed Config dataclass."""
    llm_data = _section(data, "llm")
    llm = LLMConfig(
        model=llm_data.get("model") or DEFAULT_MODEL,
        api_base=llm_data.get("api_base"),
        max_tokens=int(llm_data.get("max_tokens") or DEFAULT_MAX_TOKENS),
    )

    storage_data = _section(data, "storage")
    storage = StorageConfig(root=storage_data.get("root"))

    tools_data = _section(data, "tools")
    tools = ToolsConfig(
        allow_read_only=bool(tools_data.get("allow_read_only", False)),
        list_files_cap=int(tools_data.get("list_files_cap") or DEFAULT_LIST_FILES_CAP),
        max_consecutive_mistakes=int(
            tools_data.get("max_consecutive_mistakes", DEFAULT_MAX_CONSECUTIVE_MISTAKES)
        ),
    )

    log_data = _section(data, "logging")
    verbose = log_data.get("verbose")
    logging_config = LoggingConfig(
        level=log_data.get("level"),
        verbose=int(verbose) if verbose is not None else None,
        file=log_data.get("file"),
    )

    extra = {k: v for k, v in data.items() if k not in _KNOWN_SECTIONS}

    return Config(
        llm=llm,
        storage=storage,
        tools=tools,
        logging=logging_config,
        extra=extra,
    )


def load_config(cwd: str | None = None, reload: bool = False) -> Config:
    """Load and merge config from all sources.

    Priority order (highest to lowest):
    1. Environment variables
    2. Project config (<cwd>/.devagent/config.yaml)
    3. User config
    4. System config

    Args:
        cwd: Workspace directory for project-level config.
        reload: Force reload even if cached.
    """
    global _cached_config

    if _cached_config is not None and not reload and cwd is None:
        return _cached_config

    layers: list[dict[str, Any]] = []
    for path in get_config_paths(cwd):
        layer = load_yaml_file(path)
        if layer:
            _log.debug("Loaded config from %s", path)
            layers.append(layer)

    layers.append(env_overrides())

    config = dict_to_config(merge_configs(*layers))

    # Only the global config is cached; project configs depend on cwd
    if cwd is None:
        _cached_config = config

    return config


def get_config() -> Config:
    """Get the cached global config, loading it on first use."""
    if _cached_config is None:
        return load_config()
    return _cached_config


def reset_config() -> None:
    """Drop the cached config (used by tests)."""
    global _cached_config
    _cached_config = None
