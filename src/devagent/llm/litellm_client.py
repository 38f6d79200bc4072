"""LiteLLM-backed ModelClient.

The API log is stored in content-block form (text, image, tool_use,
tool_result). litellm speaks the chat-completions dialect, so each request
converts the log on the way out and the reply on the way back:

- assistant ``tool_use`` blocks become ``tool_calls``
- user ``tool_result`` blocks become ``role="tool"`` messages
- image blocks become ``image_url`` parts carrying a data URL
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

import litellm

from devagent.errors import ModelError
from devagent.llm.provider import AssistantTurn
from devagent.logging import get_logger
from devagent.messages import (
    ApiMessage,
    ContentBlock,
    ImageBlock,
    Role,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
)

log = get_logger("llm")


def _image_part(block: ImageBlock) -> dict[str, Any]:
    url = f"data:{block.source.media_type};base64,{block.source.data}"
    return {"type": "image_url", "image_url": {"url": url}}


def _tool_result_text(block: ToolResultBlock) -> tuple[str, list[ImageBlock]]:
    if block.content is None:
        return "", []
    if isinstance(block.content, str):
        return block.content, []
    texts = [part.text for part in block.content if isinstance(part, TextBlock)]
    images = [part for part in block.content if isinstance(part, ImageBlock)]
    return "\n\n".join(texts), images


def to_chat_messages(system: str, messages: Sequence[ApiMessage]) -> list[dict[str, Any]]:
    """Convert the API log to chat-completions messages."""
    chat: list[dict[str, Any]] = [{"role": "system", "content": system}]

    for message in messages:
        blocks = message.blocks()

        if message.role == Role.ASSISTANT:
            text = "\n\n".join(b.text for b in blocks if isinstance(b, TextBlock))
            entry: dict[str, Any] = {"role": "assistant", "content": text or None}
            tool_calls = [
                {
                    "id": b.id,
                    "type": "function",
                    "function": {"name": b.name, "arguments": json.dumps(b.input)},
                }
                for b in blocks
                if isinstance(b, ToolUseBlock)
            ]
            if tool_calls:
                entry["tool_calls"] = tool_calls
            chat.append(entry)
            continue

        # Tool messages must directly follow the assistant turn that issued the calls
        parts: list[dict[str, Any]] = []
        for block in blocks:
            if isinstance(block, ToolResultBlock):
                text, images = _tool_result_text(block)
                chat.append({"role": "tool", "tool_call_id": block.tool_use_id, "content": text})
                parts.extend(_image_part(image) for image in images)
            elif isinstance(block, TextBlock):
                parts.append({"type": "text", "text": block.text})
            elif isinstance(block, ImageBlock):
                parts.append(_image_part(block))
        if parts:
            chat.append({"role": "user", "content": parts})

    return chat


def from_chat_response(response: Any) -> AssistantTurn:
    """Convert a chat-completions response to an AssistantTurn."""
    choice = response.choices[0]
    message = choice.message
    content: list[ContentBlock] = []

    if message.content:
        content.append(TextBlock(text=message.content))

    for call in getattr(message, "tool_calls", None) or []:
        try:
            arguments = json.loads(call.function.arguments or "{}")
        except json.JSONDecodeError:
            log.warning("Tool call %s has malformed arguments", call.id)
            arguments = {}
        if not isinstance(arguments, dict):
            arguments = {}
        content.append(ToolUseBlock(id=call.id, name=call.function.name, input=arguments))

    usage: dict[str, int] = {}
    if getattr(response, "usage", None):
        usage = {
            "prompt_tokens": response.usage.prompt_tokens,
            "completion_tokens": response.usage.completion_tokens,
            "total_tokens": response.usage.total_tokens,
        }

    return AssistantTurn(content=content, usage=usage, finish_reason=choice.finish_reason)


class LiteLLMClient:
    """ModelClient using litellm for multi-provider support.

    Usage:
        client = LiteLLMClient("claude-3-5-sonnet-20241022")
        client = LiteLLMClient("gpt-4o")
        client = LiteLLMClient("ollama/llama3", api_base="http://localhost:11434")
    """

    def __init__(
        self,
        model: str,
        *,
        api_key: str | None = None,
        api_base: str | None = None,
        max_tokens: int = 8192,
        **kwargs: Any,
    ) -> None:
        self._model = model
        self._api_key = api_key
        self._api_base = api_base
        self._max_tokens = max_tokens
        self._kwargs = kwargs

    @property
    def model(self) -> str:
        return self._model

    def _build_kwargs(
        self,
        system: str,
        messages: Sequence[ApiMessage],
        tools: Sequence[dict[str, Any]],
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": to_chat_messages(system, messages),
            "max_tokens": self._max_tokens,
            **self._kwargs,
        }
        if tools:
            kwargs["tools"] = list(tools)
        if self._api_key:
            kwargs["api_key"] = self._api_key
        if self._api_base:
            kwargs["api_base"] = self._api_base
        return kwargs

    async def create_turn(
        self,
        system: str,
        messages: Sequence[ApiMessage],
        tools: Sequence[dict[str, Any]],
    ) -> AssistantTurn:
        try:
            response = await litellm.acompletion(**self._build_kwargs(system, messages, tools))
        except Exception as e:
            raise ModelError(f"{self._model} request failed: {e}") from e
        return from_chat_response(response)


def create_client(model: str, **kwargs: Any) -> LiteLLMClient:
    """Create a client from config-style arguments."""
    return LiteLLMClient(model, **kwargs)
