"""Configuration schema dataclasses for devagent.

All fields are optional so partial configs from several levels can be merged.

Example config.yaml:
    llm:
      model: claude-3-5-sonnet-20241022
      max_tokens: 8192
    storage:
      root: ~/.local/share/devagent
    tools:
      allow_read_only: true
      max_consecutive_mistakes: 3
    logging:
      level: debug
      file: ~/devagent.log
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

DEFAULT_MODEL = "claude-3-5-sonnet-20241022"
DEFAULT_MAX_TOKENS = 8192
DEFAULT_LIST_FILES_CAP = 200
DEFAULT_MAX_CONSECUTIVE_MISTAKES = 3


@dataclass
class LLMConfig:
    """Model access configuration."""

    model: str = DEFAULT_MODEL  # litellm model identifier
    api_base: str | None = None  # Custom endpoint
    max_tokens: int = DEFAULT_MAX_TOKENS


@dataclass
class StorageConfig:
    """Where task conversation logs are persisted.

    Each task gets ``<root>/tasks/<task_id>/``.
    """

    root: str | None = None  # Default: user data dir (see paths.get_default_storage_root)


@dataclass
class ToolsConfig:
    """Tool gating and escalation policy."""

    allow_read_only: bool = False  # Skip approval for read_file / list_files
    list_files_cap: int = DEFAULT_LIST_FILES_CAP
    max_consecutive_mistakes: int = DEFAULT_MAX_CONSECUTIVE_MISTAKES


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str | None = None  # DEBUG, INFO, WARNING, ERROR
    verbose: int | None = None  # 0-4, overrides level
    file: str | None = None  # Log file path


@dataclass
class Config:
    """Root configuration object."""

    llm: LLMConfig = field(default_factory=LLMConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Unknown top-level sections are kept for extensions
    extra: dict[str, Any] = field(default_factory=dict)
