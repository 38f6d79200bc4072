"""TaskSession: one autonomous coding task, from first prompt to completion.

A session is created either for a new task (``task``/``images``) or from a
history item of a task that was interrupted earlier. ``run`` starts or
resumes it and drives the interaction loop:

    user content -> model request -> assistant turn -> tool calls -> results
    -> next user content -> ...

until the model's completion is accepted, the operator aborts, or a model
failure is not retried. Every step is written through to the task's two
logs so a later process can resume the task where this one stopped.

Example:
    session = TaskSession(client, cwd="/work/project", task="Add a README")
    task = asyncio.create_task(session.run())
    ...
    session.respond(AskResponse.YES)
"""

from __future__ import annotations

import json
from collections.abc import Callable
from enum import Enum
from pathlib import Path
from typing import Any

from devagent.config import Config, get_default_storage_root, load_config
from devagent.errors import ResumptionError, SessionConfigurationError, TaskAborted
from devagent.gateway import ToolGateway, UpdateListener
from devagent.llm import AssistantTurn, ModelClient, create_client
from devagent.logging import get_logger
from devagent.messages import (
    ApiMessage,
    AskKind,
    AskResponse,
    ContentBlock,
    HistoryItem,
    Role,
    SayKind,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    now_ms,
)
from devagent.prompts import (
    ATTEMPT_COMPLETION,
    MISTAKE_GUIDANCE,
    NO_TOOLS_USED,
    TOOL_DEFINITIONS,
    system_prompt,
)
from devagent.reconcile import reconcile_api_history, reconcile_ui, resumption_content
from devagent.storage import TaskStorage
from devagent.tools import (
    DiagnosticsProvider,
    DirectoryLister,
    DocumentEditor,
    FileEditTool,
    TextExtractor,
    ToolOutcome,
    WorkspacePaths,
)
from devagent.tools.images import format_images_into_blocks, format_response_with_images
from devagent.tools.responses import missing_param_error, tool_error

log = get_logger("session")

MISTAKE_LIMIT_MESSAGE = (
    "This may indicate a failure in the model's thought process or inability to use a "
    "tool properly, which can be mitigated with some user guidance "
    '(e.g. "Try breaking down the task into smaller steps").'
)

COMPLETION_FEEDBACK = (
    "The user has provided feedback on the results. Consider their input to continue "
    "the task, and then attempt completion again.\n<feedback>\n{feedback}\n</feedback>"
)


class SessionState(Enum):
    STARTING = "starting"
    RESUMING = "resuming"
    RUNNING = "running"
    AWAITING_APPROVAL = "awaiting_approval"
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"


TERMINAL_STATES = frozenset({SessionState.COMPLETED, SessionState.ABORTED, SessionState.FAILED})


def _str_param(params: dict[str, Any], name: str) -> str | None:
    value = params.get(name)
    if value is None or isinstance(value, str):
        return value
    return json.dumps(value)


class TaskSession:
    """Lifecycle of one task and its interaction loop.

    Exactly one of ``task``/``images`` (new task) or ``history_item``
    (resumed task) must be given.

    Args:
        model: Client producing assistant turns. Built from ``config.llm``
            when omitted.
        cwd: Workspace root. ``None`` falls back to ``~/Desktop``.
        task: Task description for a new task.
        images: Data URLs attached to the task description.
        history_item: Persisted task to resume.
        config: Settings; loaded for ``cwd`` when omitted.
        storage_root: Overrides ``config.storage.root``.
        listener: Called with every UI log entry as it is recorded.
        editor, diagnostics, lister, extractor: File tool collaborators;
            headless defaults are used when omitted.
        clock: Epoch-milliseconds source, used for task ids and the
            resumption notice.

    Raises:
        SessionConfigurationError: On an invalid initializer combination.
    """

    def __init__(
        self,
        model: ModelClient | None = None,
        *,
        cwd: str | Path | None = None,
        task: str | None = None,
        images: list[str] | None = None,
        history_item: HistoryItem | None = None,
        config: Config | None = None,
        storage_root: str | Path | None = None,
        listener: UpdateListener | None = None,
        editor: DocumentEditor | None = None,
        diagnostics: DiagnosticsProvider | None = None,
        lister: DirectoryLister | None = None,
        extractor: TextExtractor | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        has_task = task is not None or bool(images)
        if history_item is not None and has_task:
            raise SessionConfigurationError("Provide either task/images or history_item, not both")
        if history_item is None and not has_task:
            raise SessionConfigurationError("Either task/images or history_item must be provided")

        if config is None:
            config = load_config(cwd=str(cwd) if cwd is not None else None)
        self._config = config
        self._clock = clock

        self._task = task
        self._images = images
        self._history_item = history_item
        self.task_id = history_item.id if history_item is not None else str(clock())

        root = storage_root or config.storage.root or get_default_storage_root()
        self.storage = TaskStorage(Path(root), self.task_id)

        self._model = model or create_client(
            config.llm.model,
            api_base=config.llm.api_base,
            max_tokens=config.llm.max_tokens,
        )

        self._aborted = False
        self._state = SessionState.RESUMING if history_item is not None else SessionState.STARTING

        self.workspace = WorkspacePaths.from_cwd(cwd)
        self.gateway = ToolGateway(
            self.task_id,
            self.storage.ui_messages,
            is_aborted=lambda: self._aborted,
            listener=listener,
        )
        self.files = FileEditTool(
            self.gateway,
            self.workspace,
            editor=editor,
            diagnostics=diagnostics,
            lister=lister,
            extractor=extractor,
            allow_read_only=config.tools.allow_read_only,
            list_cap=config.tools.list_files_cap,
        )

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        if self.gateway.pending and self._state not in TERMINAL_STATES:
            return SessionState.AWAITING_APPROVAL
        return self._state

    @property
    def is_aborted(self) -> bool:
        return self._aborted

    @property
    def history_item(self) -> HistoryItem:
        if self._history_item is not None:
            return self._history_item
        return HistoryItem(id=self.task_id, ts=int(self.task_id), task=self._task or "")

    def respond(
        self,
        response: AskResponse,
        text: str | None = None,
        images: list[str] | None = None,
    ) -> None:
        """Answer the outstanding ask. See ``ToolGateway.respond``."""
        self.gateway.respond(response, text, images)

    def abort(self) -> None:
        """Stop the task at its next check point.

        An ask already waiting for the operator stays pending; the loop
        stops as soon as it is answered.
        """
        if not self._aborted:
            log.info("Aborting task %s", self.task_id)
        self._aborted = True

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def run(self) -> SessionState:
        """Start or resume the task and return the state it ended in."""
        if self._history_item is not None:
            await self.resume()
        else:
            await self.start(self._task, self._images)
        return self._state

    async def start(self, task: str | None, images: list[str] | None = None) -> None:
        self._state = SessionState.STARTING
        log.info("Starting task %s", self.task_id)

        self.storage.clear()
        await self.gateway.say(SayKind.TEXT, task, images)

        content: list[ContentBlock] = [
            TextBlock(text=f"<task>\n{task or ''}\n</task>"),
            *format_images_into_blocks(images),
        ]
        await self._run_loop(content)

    async def resume(self) -> None:
        """Reconcile the persisted logs and continue the task.

        Raises:
            ResumptionError: If the API log cannot be made resumable.
        """
        self._state = SessionState.RESUMING
        log.info("Resuming task %s", self.task_id)

        reconciled_ui = reconcile_ui(self.storage.ui_messages.load())
        history = self.storage.api_history.load()
        try:
            conversation = reconcile_api_history(history)
        except ResumptionError:
            self._state = SessionState.FAILED
            log.error("Task %s cannot be resumed", self.task_id)
            raise

        self.storage.ui_messages.overwrite(reconciled_ui.messages)

        try:
            reply = await self.gateway.ask(reconciled_ui.ask_kind)
        except TaskAborted:
            self._state = SessionState.ABORTED
            return

        feedback_text: str | None = None
        feedback_images: list[str] | None = None
        if reply.response == AskResponse.MESSAGE:
            await self.gateway.say(SayKind.USER_FEEDBACK, reply.text, reply.images)
            feedback_text = reply.text
            feedback_images = reply.images

        content = resumption_content(
            conversation.user_content,
            reconciled_ui.last_message,
            now_ms=self._clock(),
            cwd=self.workspace.root_posix,
            feedback_text=feedback_text,
            feedback_images=feedback_images,
        )
        self.storage.api_history.overwrite(conversation.history)
        await self._run_loop(content)

    # -------------------------------------------------------------------------
    # Interaction loop
    # -------------------------------------------------------------------------

    async def _run_loop(self, user_content: list[ContentBlock]) -> None:
        self._state = SessionState.RUNNING
        content = user_content
        try:
            while True:
                if self._aborted:
                    self._state = SessionState.ABORTED
                    break

                content = [*content, *await self._check_mistake_limit()]
                turn = await self._request(content)
                if turn is None:
                    self._state = SessionState.FAILED
                    break
                self.storage.api_history.append(turn.to_message())

                for block in turn.content:
                    if isinstance(block, TextBlock) and block.text:
                        await self.gateway.say(SayKind.TEXT, block.text)

                tool_uses = turn.tool_uses()
                if not tool_uses:
                    self.gateway.record_mistake()
                    content = [TextBlock(text=NO_TOOLS_USED)]
                    continue

                results: list[ContentBlock] = []
                completed = False
                for tool_use in tool_uses:
                    if self._aborted:
                        break
                    result, completed = await self._execute_tool(tool_use)
                    results.append(result)
                    if completed:
                        break

                if completed:
                    self._state = SessionState.COMPLETED
                    break
                if self._aborted:
                    # Results of tools that ran are kept; resume answers the rest
                    if results:
                        self.storage.api_history.append(ApiMessage(role=Role.USER, content=results))
                    self._state = SessionState.ABORTED
                    break
                content = results
        except TaskAborted:
            self._state = SessionState.ABORTED
        except Exception:
            self._state = SessionState.FAILED
            log.exception("Task %s failed", self.task_id)
            raise

        log.info("Task %s ended: %s", self.task_id, self._state.value)

    async def _request(self, content: list[ContentBlock]) -> AssistantTurn | None:
        """Send the next user turn; None if the model failed and no retry was wanted."""
        self.storage.api_history.append(ApiMessage(role=Role.USER, content=content))
        system = system_prompt(self.workspace.root_posix)

        while True:
            if self._aborted:
                raise TaskAborted(self.task_id)

            history = self.storage.api_history.entries
            await self.gateway.say(
                SayKind.API_REQ_STARTED,
                json.dumps({"model": self._model.model, "messages": len(history)}),
            )
            try:
                turn = await self._model.create_turn(system, history, TOOL_DEFINITIONS)
            except Exception as e:
                log.error("Model request for task %s failed: %s", self.task_id, e)
                await self.gateway.say(SayKind.ERROR, f"API request failed:\n{e}")
                reply = await self.gateway.ask(AskKind.API_REQ_FAILED, str(e))
                if not reply.approved:
                    return None
                await self.gateway.say(SayKind.API_REQ_RETRIED)
                continue

            await self.gateway.say(SayKind.API_REQ_FINISHED, json.dumps(turn.usage))
            return turn

    async def _check_mistake_limit(self) -> list[ContentBlock]:
        """Ask the operator for guidance once the model keeps misusing tools."""
        limit = self._config.tools.max_consecutive_mistakes
        if limit <= 0 or self.gateway.consecutive_mistake_count < limit:
            return []

        log.warning(
            "Task %s reached %d consecutive mistakes",
            self.task_id,
            self.gateway.consecutive_mistake_count,
        )
        reply = await self.gateway.ask(AskKind.MISTAKE_LIMIT_REACHED, MISTAKE_LIMIT_MESSAGE)
        self.gateway.reset_mistakes()

        if reply.response != AskResponse.MESSAGE:
            return []
        await self.gateway.say(SayKind.USER_FEEDBACK, reply.text, reply.images)
        return [
            TextBlock(text=MISTAKE_GUIDANCE.format(feedback=reply.text)),
            *format_images_into_blocks(reply.images),
        ]

    # -------------------------------------------------------------------------
    # Tools
    # -------------------------------------------------------------------------

    async def _execute_tool(self, tool_use: ToolUseBlock) -> tuple[ToolResultBlock, bool]:
        """Run one tool call. The flag is True when the task was completed."""
        params = tool_use.input
        log.debug("Task %s tool call %s", self.task_id, tool_use.name)

        match tool_use.name:
            case "write_to_file":
                outcome = await self.files.write(
                    _str_param(params, "path"), _str_param(params, "content")
                )
            case "read_file":
                outcome = await self.files.read(_str_param(params, "path"))
            case "list_files":
                outcome = await self.files.list(_str_param(params, "path"), params.get("recursive"))
            case "attempt_completion":
                return await self._attempt_completion(tool_use)
            case _:
                await self.gateway.say(SayKind.ERROR, f"Unknown tool '{tool_use.name}'")
                outcome = ToolOutcome(tool_error(f"Unknown tool '{tool_use.name}'"), is_error=True)

        return _result_block(tool_use, outcome), False

    async def _attempt_completion(self, tool_use: ToolUseBlock) -> tuple[ToolResultBlock, bool]:
        result = _str_param(tool_use.input, "result")
        if result is None:
            self.gateway.record_mistake()
            await self.gateway.say(
                SayKind.ERROR,
                f"The assistant tried to use {ATTEMPT_COMPLETION} without value for required "
                "parameter 'result'. Retrying...",
            )
            outcome = ToolOutcome(missing_param_error("result"), is_error=True)
            return _result_block(tool_use, outcome), False
        self.gateway.reset_mistakes()

        await self.gateway.say(SayKind.COMPLETION_RESULT, result)
        reply = await self.gateway.ask(AskKind.COMPLETION_RESULT)
        if reply.approved:
            return ToolResultBlock(tool_use_id=tool_use.id, content=""), True

        await self.gateway.say(SayKind.USER_FEEDBACK, reply.text, reply.images)
        response = format_response_with_images(
            COMPLETION_FEEDBACK.format(feedback=reply.text or ""), reply.images
        )
        return _result_block(tool_use, ToolOutcome(response)), False


def _result_block(tool_use: ToolUseBlock, outcome: ToolOutcome) -> ToolResultBlock:
    return ToolResultBlock(
        tool_use_id=tool_use.id,
        content=outcome.response,
        is_error=True if outcome.is_error else None,
    )
