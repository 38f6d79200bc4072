"""Repair of persisted conversation state before a task is resumed.

A task can be killed between any two writes, so the saved logs may end in
the middle of a model request or with tool calls that never got a result.
The functions here are pure: they take the persisted logs and return
corrected copies plus the content of the next user turn, without touching
storage or the operator.

Order of operations on resume:

1. ``drop_dangling_request_marker`` - forget an ``api_req_started`` that
   never finished.
2. ``strip_resume_markers`` - drop resume prompts left by earlier resumes.
3. ``resume_ask_kind`` - decide which resume prompt to show.
4. ``reconcile_api_history`` - make every tool use answerable.
5. ``resumption_notice`` - tell the model how long ago it was interrupted.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from devagent.errors import ResumptionError
from devagent.messages import (
    ApiMessage,
    AskKind,
    AskMessage,
    ContentBlock,
    Role,
    SayKind,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    UIMessage,
    is_resume_marker,
    is_say,
)
from devagent.tools.images import format_images_into_blocks

INTERRUPTED_TOOL_RESULT = "Task was interrupted before this tool call could be completed."

RESUMPTION_TEMPLATE = (
    "Task resumption: This autonomous coding task was interrupted {ago}. "
    "It may or may not be complete, so please reassess the task context. "
    "Be aware that the project state may have changed since then. "
    "The current working directory is now '{cwd}'. "
    "If the task has not been completed, retry the last step before interruption "
    "and proceed with completing the task."
)

FEEDBACK_TEMPLATE = (
    "\n\nNew instructions for task continuation:\n<user_message>\n{feedback}\n</user_message>"
)


@dataclass(slots=True)
class ReconciledUI:
    """Corrected UI log and the resume prompt to show for it."""

    messages: list[UIMessage]
    ask_kind: AskKind
    last_message: UIMessage | None


@dataclass(slots=True)
class ReconciledConversation:
    """Corrected API log and the content of the next user turn."""

    history: list[ApiMessage]
    user_content: list[ContentBlock] = field(default_factory=list)


# -----------------------------------------------------------------------------
# UI log
# -----------------------------------------------------------------------------


def _last_index(messages: Sequence[UIMessage], kind: SayKind) -> int:
    for index in range(len(messages) - 1, -1, -1):
        if is_say(messages[index], kind):
            return index
    return -1


def drop_dangling_request_marker(messages: Sequence[UIMessage]) -> list[UIMessage]:
    """Remove an ``api_req_started`` whose request never finished.

    Left in place, the operator would see a request spinner forever.
    """
    result = list(messages)
    started = _last_index(result, SayKind.API_REQ_STARTED)
    finished = _last_index(result, SayKind.API_REQ_FINISHED)
    if started != -1 and started > finished:
        del result[started]
    return result


def strip_resume_markers(messages: Sequence[UIMessage]) -> list[UIMessage]:
    """Remove resume asks trailing the last substantive event."""
    end = len(messages)
    while end > 0 and is_resume_marker(messages[end - 1]):
        end -= 1
    if end == 0:
        # Nothing but resume markers; keep the log as it was
        return list(messages)
    return list(messages[:end])


def last_substantive_message(messages: Sequence[UIMessage]) -> UIMessage | None:
    """The most recent event that is not a resume prompt."""
    for message in reversed(messages):
        if not is_resume_marker(message):
            return message
    return None


def resume_ask_kind(messages: Sequence[UIMessage]) -> AskKind:
    last = last_substantive_message(messages)
    if isinstance(last, AskMessage) and last.ask == AskKind.COMPLETION_RESULT:
        return AskKind.RESUME_COMPLETED_TASK
    return AskKind.RESUME_TASK


def reconcile_ui(messages: Sequence[UIMessage]) -> ReconciledUI:
    """Run the UI-side steps in order."""
    corrected = strip_resume_markers(drop_dangling_request_marker(messages))
    return ReconciledUI(
        messages=corrected,
        ask_kind=resume_ask_kind(corrected),
        last_message=last_substantive_message(corrected),
    )


# -----------------------------------------------------------------------------
# API log
# -----------------------------------------------------------------------------


def interrupted_results(tool_uses: Sequence[ToolUseBlock]) -> list[ToolResultBlock]:
    return [
        ToolResultBlock(tool_use_id=tool_use.id, content=INTERRUPTED_TOOL_RESULT)
        for tool_use in tool_uses
    ]


def reconcile_api_history(history: Sequence[ApiMessage]) -> ReconciledConversation:
    """Make the API log resumable.

    Every tool use of the final assistant turn gets a result, synthesized
    when the task died before producing one. If the log ends with a user
    turn, that turn is removed and its content carried into the new turn
    so it is not sent twice.

    Raises:
        ResumptionError: If the log is empty or ends with an unknown role.
    """
    if not history:
        raise ResumptionError("Unexpected: No existing API conversation history")

    last = history[-1]

    if last.role == Role.ASSISTANT:
        tool_uses = last.tool_uses()
        return ReconciledConversation(
            history=list(history),
            user_content=list(interrupted_results(tool_uses)),
        )

    if last.role == Role.USER:
        existing: list[ContentBlock] = last.blocks()
        previous = history[-2] if len(history) >= 2 else None
        missing: list[ToolResultBlock] = []
        if previous is not None and previous.role == Role.ASSISTANT:
            answered = {result.tool_use_id for result in last.tool_results()}
            missing = interrupted_results(
                [tool_use for tool_use in previous.tool_uses() if tool_use.id not in answered]
            )
        return ReconciledConversation(
            history=list(history[:-1]),
            user_content=[*existing, *missing],
        )

    raise ResumptionError(
        f"Unexpected: Last message is not a user or assistant message (role={last.role!r})"
    )


# -----------------------------------------------------------------------------
# Resumption notice
# -----------------------------------------------------------------------------


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}{'s' if count > 1 else ''} ago"


def format_elapsed(now_ms: int, then_ms: int) -> str:
    """Coarse "time since" phrase, largest non-zero unit first."""
    minutes = max(now_ms - then_ms, 0) // 60_000
    hours = minutes // 60
    days = hours // 24

    if days > 0:
        return _plural(days, "day")
    if hours > 0:
        return _plural(hours, "hour")
    if minutes > 0:
        return _plural(minutes, "minute")
    return "just now"


def resumption_notice(ago: str, cwd: str, feedback: str | None = None) -> str:
    text = RESUMPTION_TEMPLATE.format(ago=ago, cwd=cwd)
    if feedback:
        text += FEEDBACK_TEMPLATE.format(feedback=feedback)
    return text


def reconcile(
    history: Sequence[ApiMessage],
    last_ui_message: UIMessage | None,
    *,
    now_ms: int,
    cwd: str,
    feedback_text: str | None = None,
    feedback_images: Sequence[str] | None = None,
) -> ReconciledConversation:
    """Build the corrected API log and the full content of the resumed turn.

    Args:
        history: Persisted API log.
        last_ui_message: Last substantive UI event, dates the interruption.
        now_ms: Current time in epoch milliseconds.
        cwd: Workspace root shown to the model (posix form).
        feedback_text: Free-form reply to the resume prompt, if any.
        feedback_images: Images attached to that reply.
    """
    conversation = reconcile_api_history(history)
    conversation.user_content = resumption_content(
        conversation.user_content,
        last_ui_message,
        now_ms=now_ms,
        cwd=cwd,
        feedback_text=feedback_text,
        feedback_images=feedback_images,
    )
    return conversation


def resumption_content(
    carried: Sequence[ContentBlock],
    last_ui_message: UIMessage | None,
    *,
    now_ms: int,
    cwd: str,
    feedback_text: str | None = None,
    feedback_images: Sequence[str] | None = None,
) -> list[ContentBlock]:
    """Append the resumption notice and feedback images to ``carried``."""
    then_ms = last_ui_message.ts if last_ui_message is not None else now_ms
    notice = resumption_notice(format_elapsed(now_ms, then_ms), cwd, feedback_text)

    content: list[ContentBlock] = [*carried, TextBlock(text=notice)]
    if feedback_images:
        content.extend(format_images_into_blocks(feedback_images))
    return content


__all__ = [
    "INTERRUPTED_TOOL_RESULT",
    "ReconciledConversation",
    "ReconciledUI",
    "drop_dangling_request_marker",
    "format_elapsed",
    "interrupted_results",
    "last_substantive_message",
    "reconcile",
    "reconcile_api_history",
    "reconcile_ui",
    "resume_ask_kind",
    "resumption_content",
    "resumption_notice",
    "strip_resume_markers",
]
