"""Configuration management for devagent.

Hierarchical YAML configuration with:
- System-level config (/etc/devagent/ or %PROGRAMDATA%)
- User-level config (~/.config/devagent/, ~/.devagent/ or %APPDATA%)
- Project-level config (<cwd>/.devagent/)
- Environment variable overrides (highest priority)

Example usage:
    from devagent.config import load_config

    config = load_config(cwd="/path/to/project")
    print(config.llm.model)
    print(config.tools.allow_read_only)
"""

from devagent.config.loader import get_config, load_config, reset_config
from devagent.config.paths import (
    get_config_paths,
    get_default_storage_root,
    get_project_config_path,
    get_system_config_path,
    get_user_config_path,
)
from devagent.config.schema import (
    Config,
    LLMConfig,
    LoggingConfig,
    StorageConfig,
    ToolsConfig,
)

__all__ = [
    "Config",
    "load_config",
    "get_config",
    "reset_config",
    "LLMConfig",
    "LoggingConfig",
    "StorageConfig",
    "ToolsConfig",
    "get_config_paths",
    "get_default_storage_root",
    "get_system_config_path",
    "get_user_config_path",
    "get_project_config_path",
]
