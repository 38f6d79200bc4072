"""Text of the tool results handed back to the model."""

from __future__ import annotations

import json
import traceback
from dataclasses import dataclass
from typing import Any

from devagent.messages import ToolResponse


@dataclass(slots=True)
class ToolOutcome:
    """What a tool invocation produced.

    Attributes:
        response: Content of the tool-result block.
        rejected: The operator denied the operation.
        is_error: The invocation failed; the result is flagged as an error.
    """

    response: ToolResponse
    rejected: bool = False
    is_error: bool = False


def tool_error(error: str | None) -> str:
    return f"The tool execution failed with the following error:\n<error>\n{error}\n</error>"


def tool_denied() -> str:
    return "The user denied this operation."


def tool_denied_feedback(feedback: str | None) -> str:
    return (
        "The user denied this operation and provided the following feedback:\n"
        f"<feedback>\n{feedback}\n</feedback>"
    )


def missing_param_error(param: str) -> str:
    return tool_error(
        f"Missing value for required parameter '{param}'. Please retry with complete response."
    )


def serialize_error(error: BaseException) -> dict[str, Any]:
    """JSON-safe description of an exception."""
    payload: dict[str, Any] = {
        "name": type(error).__name__,
        "message": str(error),
    }
    errno = getattr(error, "errno", None)
    if errno is not None:
        payload["errno"] = errno
    filename = getattr(error, "filename", None)
    if filename is not None:
        payload["path"] = str(filename)
    payload["stack"] = "".join(traceback.format_exception(type(error), error, error.__traceback__))
    return payload


def error_payload(prefix: str, error: BaseException) -> str:
    return f"{prefix}: {json.dumps(serialize_error(error))}"
