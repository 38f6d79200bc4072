"""System prompt and tool definitions sent with every model request.

Prompt texts are loaded from markdown files in this package.
"""

from __future__ import annotations

from importlib.resources import files
from typing import Any

_PROMPTS_PKG = files("devagent.prompts")


def load_prompt(name: str) -> str:
    """Load a prompt by name (without .md extension)."""
    return _PROMPTS_PKG.joinpath(f"{name}.md").read_text(encoding="utf-8")


def list_prompts() -> list[str]:
    """List available prompt names."""
    return [f.name[:-3] for f in _PROMPTS_PKG.iterdir() if f.name.endswith(".md")]


ATTEMPT_COMPLETION = "attempt_completion"

SYSTEM_PROMPT_TEMPLATE = load_prompt("system")
NO_TOOLS_USED = load_prompt("no_tools_used").strip()

MISTAKE_GUIDANCE = (
    "You seem to be having trouble proceeding. The user has provided the following "
    "feedback to help guide you:\n<feedback>\n{feedback}\n</feedback>"
)


def system_prompt(cwd: str) -> str:
    return SYSTEM_PROMPT_TEMPLATE.format(cwd=cwd)


def _function(name: str, description: str, properties: dict[str, Any], required: list[str]) -> dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": {
                "type": "object",
                "properties": properties,
                "required": required,
            },
        },
    }


TOOL_DEFINITIONS: list[dict[str, Any]] = [
    _function(
        "write_to_file",
        "Write content to a file at the specified path. The file is created if it does "
        "not exist and overwritten if it does. Missing directories are created.",
        {
            "path": {"type": "string", "description": "Path relative to the working directory."},
            "content": {"type": "string", "description": "Complete new content of the file."},
        },
        ["path", "content"],
    ),
    _function(
        "read_file",
        "Read the contents of a file at the specified path.",
        {"path": {"type": "string", "description": "Path relative to the working directory."}},
        ["path"],
    ),
    _function(
        "list_files",
        "List files and directories within the specified directory.",
        {
            "path": {"type": "string", "description": "Directory relative to the working directory."},
            "recursive": {
                "type": "string",
                "enum": ["true", "false"],
                "description": "Whether to list files recursively.",
            },
        },
        ["path"],
    ),
    _function(
        ATTEMPT_COMPLETION,
        "Present the result of the task to the user once it is complete.",
        {"result": {"type": "string", "description": "Final description of the result."}},
        ["result"],
    ),
]
