"""Tests for the task session lifecycle and interaction loop."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from devagent.config import Config, ToolsConfig
from devagent.errors import ResumptionError, SessionConfigurationError
from devagent.messages import (
    ApiMessage,
    AskKind,
    AskMessage,
    AskResponse,
    HistoryItem,
    Role,
    SayKind,
    SayMessage,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    UIMessage,
    is_resume_marker,
)
from devagent.prompts import NO_TOOLS_USED
from devagent.reconcile import INTERRUPTED_TOOL_RESULT
from devagent.session import SessionState, TaskSession
from devagent.storage import TaskStorage
from tests.utils import ScriptedModel, answer, text_turn, tool_turn, wait_for_ask

START_MS = 1_700_000_000_000
MINUTE = 60_000


def _completion(call_id: str = "done", result: str = "Finished.") -> tuple[str, str, dict]:
    return (call_id, "attempt_completion", {"result": result})


def _session(
    model: ScriptedModel,
    workspace: Path,
    storage_root: Path,
    config: Config | None = None,
    now: int = START_MS,
    **kwargs,
) -> TaskSession:
    return TaskSession(
        model,
        cwd=workspace,
        config=config or Config(),
        storage_root=storage_root,
        clock=lambda: now,
        **kwargs,
    )


def _says(messages: list[UIMessage], kind: SayKind) -> list[SayMessage]:
    return [m for m in messages if isinstance(m, SayMessage) and m.say == kind]


def _last_user_blocks(model: ScriptedModel, call: int) -> list:
    message = model.calls[call][-1]
    assert message.role == Role.USER
    return message.blocks()


class TestConstruction:
    """Test initializer validation."""

    def test_neither_task_nor_history(self, workspace: Path, storage_root: Path) -> None:
        with pytest.raises(SessionConfigurationError):
            _session(ScriptedModel([]), workspace, storage_root)

    def test_both_task_and_history(self, workspace: Path, storage_root: Path) -> None:
        with pytest.raises(SessionConfigurationError):
            _session(
                ScriptedModel([]),
                workspace,
                storage_root,
                task="x",
                history_item=HistoryItem(id="1"),
            )

    def test_configuration_error_is_value_error(self, workspace: Path, storage_root: Path) -> None:
        with pytest.raises(ValueError):
            _session(ScriptedModel([]), workspace, storage_root)

    def test_images_alone_are_a_task(self, workspace: Path, storage_root: Path) -> None:
        session = _session(
            ScriptedModel([]), workspace, storage_root, images=["data:image/png;base64,AA=="]
        )
        assert session.state == SessionState.STARTING

    def test_new_task_id_from_clock(self, workspace: Path, storage_root: Path) -> None:
        session = _session(ScriptedModel([]), workspace, storage_root, task="x")
        assert session.task_id == str(START_MS)
        assert session.history_item == HistoryItem(id=str(START_MS), ts=START_MS, task="x")
        assert session.storage.task_dir == storage_root / "tasks" / str(START_MS)

    def test_resumed_task_keeps_id(self, workspace: Path, storage_root: Path) -> None:
        item = HistoryItem(id="abc", ts=1, task="old")
        session = _session(ScriptedModel([]), workspace, storage_root, history_item=item)
        assert session.task_id == "abc"
        assert session.state == SessionState.RESUMING
        assert session.history_item is item

    def test_config_drives_tool_settings(self, workspace: Path, storage_root: Path) -> None:
        config = Config(tools=ToolsConfig(allow_read_only=True, list_files_cap=7))
        session = _session(ScriptedModel([]), workspace, storage_root, config=config, task="x")
        assert session.files.allow_read_only
        assert session.files.list_cap == 7


class TestStart:
    """Test a new task from first prompt to completion."""

    @pytest.mark.asyncio
    async def test_write_then_complete(self, workspace: Path, storage_root: Path) -> None:
        model = ScriptedModel(
            [
                tool_turn(
                    ("w1", "write_to_file", {"path": "README.md", "content": "# Project\n"}),
                    text="Creating the README.",
                ),
                tool_turn(_completion(result="Added a README.")),
            ]
        )
        session = _session(model, workspace, storage_root, task="add a README")
        runner = asyncio.create_task(session.run())

        assert await wait_for_ask(session.gateway) == AskKind.TOOL
        assert session.state == SessionState.AWAITING_APPROVAL
        session.respond(AskResponse.YES)
        assert await answer(session.gateway) == AskKind.COMPLETION_RESULT
        assert await runner == SessionState.COMPLETED

        assert (workspace / "README.md").read_text() == "# Project\n"

        # The task text is announced once, before any model request
        ui = session.storage.ui_messages.load()
        assert isinstance(ui[0], SayMessage) and ui[0].say == SayKind.TEXT
        assert ui[0].text == "add a README"
        assert ui[1].say == SayKind.API_REQ_STARTED
        assert len(_says(ui[:2], SayKind.TEXT)) == 1

        first_request = model.calls[0]
        assert len(first_request) == 1
        assert first_request[0].content == [TextBlock(text="<task>\nadd a README\n</task>")]

        # Tool result for w1 is sent with the next request
        (result,) = _last_user_blocks(model, 1)
        assert isinstance(result, ToolResultBlock)
        assert result.tool_use_id == "w1"
        assert result.content == "The content was successfully saved to README.md."

        history = session.storage.api_history.load()
        assert [m.role for m in history] == [Role.USER, Role.ASSISTANT, Role.USER, Role.ASSISTANT]
        assert _says(ui, SayKind.COMPLETION_RESULT)[0].text == "Added a README."
        finished = _says(ui, SayKind.API_REQ_FINISHED)
        assert json.loads(finished[0].text) == {"prompt_tokens": 10, "completion_tokens": 5}
        assert _says(ui, SayKind.TEXT)[1].text == "Creating the README."

    @pytest.mark.asyncio
    async def test_start_clears_previous_logs(self, workspace: Path, storage_root: Path) -> None:
        storage = TaskStorage(storage_root, str(START_MS))
        storage.ui_messages.overwrite([SayMessage(ts=1, say=SayKind.TEXT, text="stale")])

        model = ScriptedModel([tool_turn(_completion())])
        session = _session(model, workspace, storage_root, task="fresh")
        runner = asyncio.create_task(session.run())
        await answer(session.gateway)
        await runner

        texts = [m.text for m in session.storage.ui_messages.load()]
        assert "stale" not in texts

    @pytest.mark.asyncio
    async def test_task_images_sent_to_model(self, workspace: Path, storage_root: Path) -> None:
        model = ScriptedModel([tool_turn(_completion())])
        image = "data:image/png;base64,iVBORw0KGgo="
        session = _session(model, workspace, storage_root, task="like this", images=[image])
        runner = asyncio.create_task(session.run())
        await answer(session.gateway)
        await runner

        blocks = model.calls[0][0].blocks()
        assert blocks[1].type == "image"
        assert blocks[1].source.media_type == "image/png"
        assert session.storage.ui_messages.entries[0].images == [image]

    @pytest.mark.asyncio
    async def test_listener_receives_events(self, workspace: Path, storage_root: Path) -> None:
        seen: list[UIMessage] = []
        model = ScriptedModel([tool_turn(_completion())])
        session = _session(model, workspace, storage_root, task="x", listener=seen.append)
        runner = asyncio.create_task(session.run())
        await answer(session.gateway)
        await runner

        assert seen == session.storage.ui_messages.entries


class TestToolDispatch:
    """Test routing of tool calls and feedback to the model."""

    @pytest.mark.asyncio
    async def test_results_in_call_order(self, workspace: Path, storage_root: Path) -> None:
        (workspace / "a.txt").write_text("alpha")
        model = ScriptedModel(
            [
                tool_turn(
                    ("r1", "read_file", {"path": "a.txt"}),
                    ("l1", "list_files", {"path": ".", "recursive": "false"}),
                ),
                tool_turn(_completion()),
            ]
        )
        config = Config(tools=ToolsConfig(allow_read_only=True))
        session = _session(model, workspace, storage_root, config=config, task="look")
        runner = asyncio.create_task(session.run())
        await answer(session.gateway)
        await runner

        read, listing = _last_user_blocks(model, 1)
        assert (read.tool_use_id, read.content) == ("r1", "alpha")
        assert (listing.tool_use_id, listing.content) == ("l1", "a.txt")

    @pytest.mark.asyncio
    async def test_unknown_tool(self, workspace: Path, storage_root: Path) -> None:
        model = ScriptedModel([tool_turn(("x1", "run_shell", {"cmd": "ls"})), tool_turn(_completion())])
        session = _session(model, workspace, storage_root, task="x")
        runner = asyncio.create_task(session.run())
        await answer(session.gateway)
        await runner

        (result,) = _last_user_blocks(model, 1)
        assert result.is_error is True
        assert "Unknown tool 'run_shell'" in result.content

    @pytest.mark.asyncio
    async def test_missing_parameter_is_error_result(self, workspace: Path, storage_root: Path) -> None:
        model = ScriptedModel([tool_turn(("w1", "write_to_file", {"path": "a.txt"})), tool_turn(_completion())])
        session = _session(model, workspace, storage_root, task="x")
        runner = asyncio.create_task(session.run())
        await answer(session.gateway)
        await runner

        (result,) = _last_user_blocks(model, 1)
        assert result.is_error is True
        assert "Missing value for required parameter 'content'" in result.content

    @pytest.mark.asyncio
    async def test_denied_write_reported(self, workspace: Path, storage_root: Path) -> None:
        model = ScriptedModel(
            [
                tool_turn(("w1", "write_to_file", {"path": "new/a.txt", "content": "x"})),
                tool_turn(_completion()),
            ]
        )
        session = _session(model, workspace, storage_root, task="x")
        runner = asyncio.create_task(session.run())
        await answer(session.gateway, AskResponse.NO)
        await answer(session.gateway)
        await runner

        (result,) = _last_user_blocks(model, 1)
        assert result.content == "The user denied this operation."
        assert not (workspace / "new").exists()

    @pytest.mark.asyncio
    async def test_completion_feedback_continues(self, workspace: Path, storage_root: Path) -> None:
        model = ScriptedModel([tool_turn(_completion("c1")), tool_turn(_completion("c2"))])
        session = _session(model, workspace, storage_root, task="x")
        runner = asyncio.create_task(session.run())

        assert await answer(session.gateway, AskResponse.MESSAGE, "also add a license") == (
            AskKind.COMPLETION_RESULT
        )
        assert await answer(session.gateway) == AskKind.COMPLETION_RESULT
        assert await runner == SessionState.COMPLETED

        (result,) = _last_user_blocks(model, 1)
        assert result.tool_use_id == "c1"
        assert "<feedback>\nalso add a license\n</feedback>" in result.content
        feedback = _says(session.storage.ui_messages.entries, SayKind.USER_FEEDBACK)
        assert [m.text for m in feedback] == ["also add a license"]


class TestMistakes:
    """Test the no-tool reminder and mistake escalation."""

    @pytest.mark.asyncio
    async def test_no_tool_use_gets_reminder(self, workspace: Path, storage_root: Path) -> None:
        model = ScriptedModel([text_turn("I think I'm done."), tool_turn(_completion())])
        session = _session(model, workspace, storage_root, task="x")
        runner = asyncio.create_task(session.run())
        await answer(session.gateway)
        await runner

        assert _last_user_blocks(model, 1) == [TextBlock(text=NO_TOOLS_USED)]
        assert session.gateway.consecutive_mistake_count == 0

    @pytest.mark.asyncio
    async def test_limit_asks_for_guidance(self, workspace: Path, storage_root: Path) -> None:
        config = Config(tools=ToolsConfig(max_consecutive_mistakes=2))
        model = ScriptedModel([text_turn("hmm"), text_turn("hmm"), tool_turn(_completion())])
        session = _session(model, workspace, storage_root, config=config, task="x")
        runner = asyncio.create_task(session.run())

        assert await wait_for_ask(session.gateway) == AskKind.MISTAKE_LIMIT_REACHED
        assert len(model.calls) == 2
        session.respond(AskResponse.MESSAGE, "call attempt_completion")
        assert await answer(session.gateway) == AskKind.COMPLETION_RESULT
        assert await runner == SessionState.COMPLETED

        reminder, guidance = _last_user_blocks(model, 2)
        assert reminder == TextBlock(text=NO_TOOLS_USED)
        assert "<feedback>\ncall attempt_completion\n</feedback>" in guidance.text

    @pytest.mark.asyncio
    async def test_zero_limit_never_escalates(self, workspace: Path, storage_root: Path) -> None:
        config = Config(tools=ToolsConfig(max_consecutive_mistakes=0))
        model = ScriptedModel([text_turn("a"), text_turn("b"), text_turn("c"), tool_turn(_completion())])
        session = _session(model, workspace, storage_root, config=config, task="x")
        runner = asyncio.create_task(session.run())
        assert await answer(session.gateway) == AskKind.COMPLETION_RESULT
        await runner


class TestModelFailure:
    """Test api_req_failed handling."""

    @pytest.mark.asyncio
    async def test_retry_resends_same_request(self, workspace: Path, storage_root: Path) -> None:
        model = ScriptedModel([RuntimeError("rate limited"), tool_turn(_completion())])
        session = _session(model, workspace, storage_root, task="x")
        runner = asyncio.create_task(session.run())

        assert await answer(session.gateway) == AskKind.API_REQ_FAILED
        assert await answer(session.gateway) == AskKind.COMPLETION_RESULT
        assert await runner == SessionState.COMPLETED

        assert model.calls[0] == model.calls[1]
        ui = session.storage.ui_messages.entries
        assert len(_says(ui, SayKind.API_REQ_RETRIED)) == 1
        assert "rate limited" in _says(ui, SayKind.ERROR)[0].text

    @pytest.mark.asyncio
    async def test_declined_retry_fails(self, workspace: Path, storage_root: Path) -> None:
        model = ScriptedModel([RuntimeError("down")])
        session = _session(model, workspace, storage_root, task="x")
        runner = asyncio.create_task(session.run())

        await answer(session.gateway, AskResponse.NO)
        assert await runner == SessionState.FAILED
        # The unanswered user turn stays in the log for a later resume
        assert session.storage.api_history.load()[-1].role == Role.USER


class TestAbort:
    """Test cooperative abort."""

    @pytest.mark.asyncio
    async def test_abort_before_run(self, workspace: Path, storage_root: Path) -> None:
        model = ScriptedModel([])
        session = _session(model, workspace, storage_root, task="x")
        session.abort()
        assert await session.run() == SessionState.ABORTED
        assert model.calls == []

    @pytest.mark.asyncio
    async def test_abort_during_approval(self, workspace: Path, storage_root: Path) -> None:
        model = ScriptedModel(
            [
                tool_turn(
                    ("w1", "write_to_file", {"path": "a.txt", "content": "x"}),
                    ("w2", "write_to_file", {"path": "b.txt", "content": "y"}),
                )
            ]
        )
        session = _session(model, workspace, storage_root, task="x")
        runner = asyncio.create_task(session.run())

        await wait_for_ask(session.gateway)
        session.abort()
        # The pending ask is not cancelled
        assert session.state == SessionState.AWAITING_APPROVAL
        session.respond(AskResponse.YES)

        assert await runner == SessionState.ABORTED
        assert session.is_aborted
        assert (workspace / "a.txt").exists()
        assert not (workspace / "b.txt").exists()
        history = session.storage.api_history.load()
        assert history[-2].role == Role.ASSISTANT
        assert history[-1].role == Role.USER
        (result,) = history[-1].tool_results()
        assert result.tool_use_id == "w1"
        assert result.content == "The content was successfully saved to a.txt."

    @pytest.mark.asyncio
    async def test_resume_after_abort_keeps_finished_results(
        self, workspace: Path, storage_root: Path
    ) -> None:
        model = ScriptedModel(
            [
                tool_turn(
                    ("w1", "write_to_file", {"path": "a.txt", "content": "x"}),
                    ("w2", "write_to_file", {"path": "b.txt", "content": "y"}),
                )
            ]
        )
        first = _session(model, workspace, storage_root, task="x")
        runner = asyncio.create_task(first.run())
        await wait_for_ask(first.gateway)
        first.abort()
        first.respond(AskResponse.YES)
        assert await runner == SessionState.ABORTED

        resumed_model = ScriptedModel([tool_turn(_completion())])
        resumed = _session(
            resumed_model,
            workspace,
            storage_root,
            now=START_MS + 5 * MINUTE,
            history_item=HistoryItem(id=first.task_id),
        )
        runner = asyncio.create_task(resumed.run())
        assert await answer(resumed.gateway) == AskKind.RESUME_TASK
        assert await answer(resumed.gateway) == AskKind.COMPLETION_RESULT
        assert await runner == SessionState.COMPLETED

        resumed_turn = resumed_model.calls[0][-1]
        results = {r.tool_use_id: r.content for r in resumed_turn.tool_results()}
        assert results["w1"] == "The content was successfully saved to a.txt."
        assert results["w2"] == INTERRUPTED_TOOL_RESULT


class TestResume:
    """Test resuming an interrupted task."""

    @pytest.fixture
    def interrupted(self, storage_root: Path) -> HistoryItem:
        """A task that died while a write was waiting for approval."""
        storage = TaskStorage(storage_root, "42")
        storage.api_history.overwrite(
            [
                ApiMessage(role=Role.USER, content=[TextBlock(text="<task>\nT\n</task>")]),
                ApiMessage(
                    role=Role.ASSISTANT,
                    content=[ToolUseBlock(id="w1", name="write_to_file", input={"path": "a"})],
                ),
            ]
        )
        storage.ui_messages.overwrite(
            [
                SayMessage(ts=START_MS, say=SayKind.TEXT, text="T"),
                SayMessage(ts=START_MS + 1, say=SayKind.API_REQ_STARTED),
                SayMessage(ts=START_MS + 2, say=SayKind.API_REQ_FINISHED),
                AskMessage(ts=START_MS + 3, ask=AskKind.TOOL, text="{}"),
                AskMessage(ts=START_MS + 4, ask=AskKind.RESUME_TASK),
            ]
        )
        return HistoryItem(id="42", ts=START_MS, task="T")

    @pytest.mark.asyncio
    async def test_resume_synthesizes_missing_result(
        self, workspace: Path, storage_root: Path, interrupted: HistoryItem
    ) -> None:
        model = ScriptedModel([tool_turn(_completion())])
        session = _session(
            model,
            workspace,
            storage_root,
            history_item=interrupted,
            now=START_MS + 3 + 5 * MINUTE,
        )
        runner = asyncio.create_task(session.run())

        assert await wait_for_ask(session.gateway) == AskKind.RESUME_TASK
        assert session.state == SessionState.AWAITING_APPROVAL
        session.respond(AskResponse.MESSAGE, "keep going")
        await answer(session.gateway)
        assert await runner == SessionState.COMPLETED

        request = model.calls[0]
        assert [m.role for m in request] == [Role.USER, Role.ASSISTANT, Role.USER]
        result, notice = request[-1].blocks()
        assert result == ToolResultBlock(tool_use_id="w1", content=INTERRUPTED_TOOL_RESULT)
        assert "interrupted 5 minutes ago" in notice.text
        assert workspace.as_posix() in notice.text
        assert "<user_message>\nkeep going\n</user_message>" in notice.text

        ui = session.storage.ui_messages.load()
        markers = [m for m in ui if is_resume_marker(m)]
        assert len(markers) == 1
        assert _says(ui, SayKind.USER_FEEDBACK)[0].text == "keep going"

    @pytest.mark.asyncio
    async def test_resume_completed_task(self, workspace: Path, storage_root: Path) -> None:
        storage = TaskStorage(storage_root, "7")
        storage.api_history.overwrite(
            [
                ApiMessage(role=Role.USER, content=[TextBlock(text="<task>\nT\n</task>")]),
                ApiMessage(
                    role=Role.ASSISTANT,
                    content=[ToolUseBlock(id="c1", name="attempt_completion", input={"result": "ok"})],
                ),
            ]
        )
        storage.ui_messages.overwrite([AskMessage(ts=START_MS, ask=AskKind.COMPLETION_RESULT)])

        model = ScriptedModel([tool_turn(_completion())])
        session = _session(model, workspace, storage_root, history_item=HistoryItem(id="7"))
        runner = asyncio.create_task(session.run())

        assert await answer(session.gateway) == AskKind.RESUME_COMPLETED_TASK
        await answer(session.gateway)
        assert await runner == SessionState.COMPLETED

    @pytest.mark.asyncio
    async def test_resume_after_failed_request(self, workspace: Path, storage_root: Path) -> None:
        storage = TaskStorage(storage_root, "9")
        storage.api_history.overwrite(
            [ApiMessage(role=Role.USER, content=[TextBlock(text="<task>\nT\n</task>")])]
        )
        storage.ui_messages.overwrite(
            [
                SayMessage(ts=START_MS, say=SayKind.TEXT, text="T"),
                SayMessage(ts=START_MS + 1, say=SayKind.API_REQ_STARTED),
            ]
        )

        model = ScriptedModel([tool_turn(_completion())])
        session = _session(model, workspace, storage_root, history_item=HistoryItem(id="9"))
        runner = asyncio.create_task(session.run())
        await answer(session.gateway)
        await answer(session.gateway)
        await runner

        # The original task content is sent once, followed by the notice
        (request,) = model.calls[0:1]
        assert len(request) == 1
        task, notice = request[0].blocks()
        assert task == TextBlock(text="<task>\nT\n</task>")
        assert notice.text.startswith("Task resumption:")

        # The dangling request marker was dropped before the resume prompt
        ui = session.storage.ui_messages.load()
        assert ui[1] == AskMessage(ts=ui[1].ts, ask=AskKind.RESUME_TASK)

    @pytest.mark.asyncio
    async def test_empty_history_raises(self, workspace: Path, storage_root: Path) -> None:
        model = ScriptedModel([])
        session = _session(model, workspace, storage_root, history_item=HistoryItem(id="none"))

        with pytest.raises(ResumptionError):
            await session.run()
        assert session.state == SessionState.FAILED
        assert session.storage.ui_messages.entries == []

    @pytest.mark.asyncio
    async def test_abort_before_resume_prompt(
        self, workspace: Path, storage_root: Path, interrupted: HistoryItem
    ) -> None:
        model = ScriptedModel([])
        session = _session(model, workspace, storage_root, history_item=interrupted)
        session.abort()

        assert await session.run() == SessionState.ABORTED
        assert model.calls == []
