"""Model client protocol and the assistant turn it produces."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from devagent.messages import ApiMessage, ContentBlock, Role, ToolUseBlock


@dataclass(slots=True)
class AssistantTurn:
    """One model response.

    Attributes:
        content: Text and tool-use blocks in the order the model emitted them.
        usage: Token accounting as reported by the provider.
        finish_reason: Provider stop reason, if any.
    """

    content: list[ContentBlock]
    usage: dict[str, int] = field(default_factory=dict)
    finish_reason: str | None = None

    def tool_uses(self) -> list[ToolUseBlock]:
        return [block for block in self.content if isinstance(block, ToolUseBlock)]

    def to_message(self) -> ApiMessage:
        return ApiMessage(role=Role.ASSISTANT, content=list(self.content))


@runtime_checkable
class ModelClient(Protocol):
    """Produces the next assistant turn for a conversation."""

    @property
    def model(self) -> str:
        """The model identifier being used."""
        ...

    async def create_turn(
        self,
        system: str,
        messages: Sequence[ApiMessage],
        tools: Sequence[dict[str, Any]],
    ) -> AssistantTurn:
        """Send the conversation and return the model's reply.

        Args:
            system: System prompt.
            messages: The API log, oldest first.
            tools: Tool definitions in function-calling schema.
        """
        ...
