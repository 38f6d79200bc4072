"""Message types for the two conversation logs.

The API log (``ApiMessage``) is what the model sees. The UI log
(``UIMessage``) is the operator-facing event stream of asks and says.
Both are pydantic models so the whole log can be written and read back as
one JSON document.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class LogModel(BaseModel):
    """Base model for persisted log entries."""

    model_config = ConfigDict(populate_by_name=True)


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


# -----------------------------------------------------------------------------
# API log
# -----------------------------------------------------------------------------


class Role(str, Enum):
    """Role of an API message."""

    USER = "user"
    ASSISTANT = "assistant"


class TextBlock(LogModel):
    type: Literal["text"] = "text"
    text: str


class ImageSource(LogModel):
    type: Literal["base64"] = "base64"
    media_type: str
    data: str


class ImageBlock(LogModel):
    type: Literal["image"] = "image"
    source: ImageSource


class ToolUseBlock(LogModel):
    """A side-effect request issued by the model."""

    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResultBlock(LogModel):
    """The outcome paired with a ToolUseBlock of the previous assistant turn."""

    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: str | list[TextBlock | ImageBlock] | None = None
    is_error: bool | None = None


ContentBlock = Annotated[
    Union[TextBlock, ImageBlock, ToolUseBlock, ToolResultBlock],
    Field(discriminator="type"),
]

# What a tool hands back to the model: plain text, or text plus images.
ToolResponse = Union[str, list[Union[TextBlock, ImageBlock]]]


class ApiMessage(LogModel):
    """One turn in the model-facing log."""

    role: Role
    content: str | list[ContentBlock]

    def blocks(self) -> list[Any]:
        """Content as a block list; a bare string becomes one text block."""
        if isinstance(self.content, str):
            return [TextBlock(text=self.content)]
        return list(self.content)

    def tool_uses(self) -> list[ToolUseBlock]:
        return [b for b in self.blocks() if isinstance(b, ToolUseBlock)]

    def tool_results(self) -> list[ToolResultBlock]:
        return [b for b in self.blocks() if isinstance(b, ToolResultBlock)]


# -----------------------------------------------------------------------------
# UI log
# -----------------------------------------------------------------------------


class AskKind(str, Enum):
    """Suspension points that wait for the operator."""

    TOOL = "tool"
    COMPLETION_RESULT = "completion_result"
    RESUME_TASK = "resume_task"
    RESUME_COMPLETED_TASK = "resume_completed_task"
    API_REQ_FAILED = "api_req_failed"
    MISTAKE_LIMIT_REACHED = "mistake_limit_reached"


RESUME_ASKS = frozenset({AskKind.RESUME_TASK, AskKind.RESUME_COMPLETED_TASK})


class SayKind(str, Enum):
    """Informational notices; never wait for the operator."""

    TEXT = "text"
    ERROR = "error"
    API_REQ_STARTED = "api_req_started"
    API_REQ_FINISHED = "api_req_finished"
    API_REQ_RETRIED = "api_req_retried"
    USER_FEEDBACK = "user_feedback"
    USER_FEEDBACK_DIFF = "user_feedback_diff"
    TOOL = "tool"
    COMPLETION_RESULT = "completion_result"


class AskMessage(LogModel):
    type: Literal["ask"] = "ask"
    ts: int = Field(default_factory=now_ms)
    ask: AskKind
    text: str | None = None
    images: list[str] | None = None


class SayMessage(LogModel):
    type: Literal["say"] = "say"
    ts: int = Field(default_factory=now_ms)
    say: SayKind
    text: str | None = None
    images: list[str] | None = None


UIMessage = Annotated[Union[AskMessage, SayMessage], Field(discriminator="type")]


def is_resume_marker(message: AskMessage | SayMessage) -> bool:
    return isinstance(message, AskMessage) and message.ask in RESUME_ASKS


def is_say(message: AskMessage | SayMessage, kind: SayKind) -> bool:
    return isinstance(message, SayMessage) and message.say == kind


# -----------------------------------------------------------------------------
# Approval protocol
# -----------------------------------------------------------------------------


class AskResponse(str, Enum):
    """Operator reply to an ask."""

    YES = "yesButtonTapped"
    NO = "noButtonTapped"
    MESSAGE = "messageResponse"


class AskReply(LogModel):
    """Resolution of one pending ask."""

    response: AskResponse
    text: str | None = None
    images: list[str] | None = None

    @property
    def approved(self) -> bool:
        return self.response == AskResponse.YES


class ToolDisplay(LogModel):
    """Operator-facing description of a tool invocation (sent as ask/say text)."""

    tool: Literal[
        "editedExistingFile",
        "newFileCreated",
        "readFile",
        "listFilesTopLevel",
        "listFilesRecursive",
    ]
    path: str
    diff: str | None = None
    content: str | None = None

    def to_json(self) -> str:
        return self.model_dump_json(exclude_none=True)


class HistoryItem(LogModel):
    """Reference to a persisted task, used to resume it."""

    id: str
    ts: int = Field(default_factory=now_ms)
    task: str = ""


API_LOG_ADAPTER: TypeAdapter[list[ApiMessage]] = TypeAdapter(list[ApiMessage])
UI_LOG_ADAPTER: TypeAdapter[list[UIMessage]] = TypeAdapter(list[UIMessage])
