"""ToolGateway: the ask/say protocol between a task and its operator.

``ask`` records a question in the UI log and suspends the calling task
until the presentation layer calls ``respond``. ``say`` records a notice and
returns immediately. Only one ask can be outstanding at a time, which is
what keeps a task's logs free of interleaved writes while it waits.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import TYPE_CHECKING

from devagent.errors import TaskAborted
from devagent.logging import get_logger
from devagent.messages import (
    AskKind,
    AskMessage,
    AskReply,
    AskResponse,
    SayKind,
    SayMessage,
    UIMessage,
)

if TYPE_CHECKING:
    from devagent.storage import ConversationStore

log = get_logger("gateway")

# Called after every UI log mutation with the entry that was appended
UpdateListener = Callable[[UIMessage], None]


class ToolGateway:
    """Approval channel for one task.

    Attributes:
        consecutive_mistake_count: Tool calls in a row that were missing a
            required argument. Reset by any well-formed call. Acting on it
            is left to the caller.
    """

    def __init__(
        self,
        task_id: str,
        ui_messages: ConversationStore[UIMessage],
        *,
        is_aborted: Callable[[], bool] = lambda: False,
        listener: UpdateListener | None = None,
    ) -> None:
        self._task_id = task_id
        self._ui_messages = ui_messages
        self._is_aborted = is_aborted
        self._listener = listener
        self._pending: asyncio.Future[AskReply] | None = None
        self._pending_kind: AskKind | None = None
        self.consecutive_mistake_count = 0

    @property
    def pending(self) -> bool:
        """True while an ask is waiting for its reply."""
        return self._pending is not None and not self._pending.done()

    @property
    def pending_kind(self) -> AskKind | None:
        return self._pending_kind if self.pending else None

    def set_listener(self, listener: UpdateListener | None) -> None:
        self._listener = listener

    # -------------------------------------------------------------------------
    # Mistake tracking
    # -------------------------------------------------------------------------

    def record_mistake(self) -> int:
        self.consecutive_mistake_count += 1
        log.debug(
            "Task %s consecutive mistakes: %d", self._task_id, self.consecutive_mistake_count
        )
        return self.consecutive_mistake_count

    def reset_mistakes(self) -> None:
        self.consecutive_mistake_count = 0

    # -------------------------------------------------------------------------
    # Protocol
    # -------------------------------------------------------------------------

    async def ask(self, kind: AskKind, text: str | None = None) -> AskReply:
        """Ask the operator and wait for the reply.

        Raises:
            TaskAborted: If the task was aborted before the ask was issued.
            RuntimeError: If another ask is still outstanding.
        """
        if self._is_aborted():
            raise TaskAborted(self._task_id)
        if self.pending:
            raise RuntimeError(
                f"Task {self._task_id} already awaiting a reply to {self._pending_kind}"
            )

        loop = asyncio.get_running_loop()
        self._pending = loop.create_future()
        self._pending_kind = kind
        self._record(AskMessage(ask=kind, text=text))

        try:
            reply = await self._pending
        finally:
            self._pending = None
            self._pending_kind = None

        log.debug("Task %s ask %s answered with %s", self._task_id, kind.value, reply.response.value)
        return reply

    async def say(
        self,
        kind: SayKind,
        text: str | None = None,
        images: list[str] | None = None,
    ) -> None:
        """Record a notice for the operator; never suspends."""
        self._record(SayMessage(say=kind, text=text, images=images or None))

    def respond(
        self,
        response: AskResponse,
        text: str | None = None,
        images: list[str] | None = None,
    ) -> None:
        """Deliver the operator's reply to the outstanding ask.

        Raises:
            RuntimeError: If no ask is waiting.
        """
        if not self.pending:
            raise RuntimeError(f"Task {self._task_id} has no pending ask")
        assert self._pending is not None
        self._pending.set_result(AskReply(response=response, text=text, images=images))

    def _record(self, message: UIMessage) -> None:
        self._ui_messages.append(message)
        if self._listener is None:
            return
        try:
            self._listener(message)
        except Exception:
            log.exception("UI listener failed for task %s", self._task_id)
