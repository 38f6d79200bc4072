"""Shared helpers for driving sessions and gateways in tests."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import Any

from devagent.gateway import ToolGateway
from devagent.llm import AssistantTurn
from devagent.messages import (
    ApiMessage,
    AskKind,
    AskResponse,
    ContentBlock,
    TextBlock,
    ToolUseBlock,
)


async def wait_for_ask(gateway: ToolGateway, timeout: float = 2.0) -> AskKind:
    """Yield to the event loop until ``gateway`` has an outstanding ask."""

    async def _poll() -> AskKind:
        while gateway.pending_kind is None:
            await asyncio.sleep(0)
        return gateway.pending_kind

    return await asyncio.wait_for(_poll(), timeout)


async def answer(
    gateway: ToolGateway,
    response: AskResponse = AskResponse.YES,
    text: str | None = None,
    images: list[str] | None = None,
) -> AskKind:
    """Wait for the next ask, answer it and return its kind."""
    kind = await wait_for_ask(gateway)
    gateway.respond(response, text, images)
    return kind


def tool_turn(*calls: tuple[str, str, dict[str, Any]], text: str | None = None) -> AssistantTurn:
    """An assistant turn issuing ``(id, name, input)`` tool calls."""
    content: list[ContentBlock] = []
    if text:
        content.append(TextBlock(text=text))
    content.extend(ToolUseBlock(id=id_, name=name, input=input_) for id_, name, input_ in calls)
    return AssistantTurn(content=content, usage={"prompt_tokens": 10, "completion_tokens": 5})


def text_turn(text: str) -> AssistantTurn:
    return AssistantTurn(content=[TextBlock(text=text)])


class ScriptedModel:
    """ModelClient returning prepared turns in order.

    Entries that are exceptions are raised instead of returned. Every call
    records a copy of the messages it was given.
    """

    def __init__(self, turns: Sequence[AssistantTurn | Exception]) -> None:
        self._turns = list(turns)
        self.calls: list[list[ApiMessage]] = []
        self.tools: list[Sequence[dict[str, Any]]] = []

    @property
    def model(self) -> str:
        return "scripted"

    async def create_turn(
        self,
        system: str,
        messages: Sequence[ApiMessage],
        tools: Sequence[dict[str, Any]],
    ) -> AssistantTurn:
        self.calls.append(list(messages))
        self.tools.append(tools)
        if not self._turns:
            raise AssertionError("ScriptedModel ran out of turns")
        turn = self._turns.pop(0)
        if isinstance(turn, Exception):
            raise turn
        return turn
