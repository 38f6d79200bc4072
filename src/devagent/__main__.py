"""Console entry point for running a task.

Usage:
    python -m devagent "Add a README describing the project"
    python -m devagent --resume 1700000000000

Every ask is shown on stdout and answered on stdin: ``y`` approves, ``n``
rejects, anything else is sent back as free-form feedback.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING

from devagent.logging import get_logger, setup_logging, verbosity_for_flags
from devagent.messages import AskMessage, AskReply, AskResponse, HistoryItem, SayKind, UIMessage

if TYPE_CHECKING:
    from devagent.config import Config

log = get_logger()

_QUIET_SAYS = {SayKind.API_REQ_STARTED, SayKind.API_REQ_FINISHED}


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="devagent",
        description="Run an autonomous coding task with approval of every file operation",
    )
    parser.add_argument("task", nargs="?", help="Task description for a new task")
    parser.add_argument("--resume", metavar="TASK_ID", help="Resume a persisted task")
    parser.add_argument(
        "--cwd",
        type=Path,
        default=Path.cwd(),
        help="Workspace root (default: current directory)",
    )
    parser.add_argument("--model", help="litellm model identifier")
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=None,
        help="Increase log verbosity (can be repeated)",
    )
    return parser


def parse_reply(line: str) -> AskReply:
    text = line.strip()
    if text.lower() in ("y", "yes"):
        return AskReply(response=AskResponse.YES)
    if text.lower() in ("n", "no"):
        return AskReply(response=AskResponse.NO)
    return AskReply(response=AskResponse.MESSAGE, text=text)


def _print_event(message: UIMessage) -> None:
    if isinstance(message, AskMessage):
        print(f"\n[{message.ask.value}] {message.text or ''}".rstrip(), flush=True)
    elif message.say not in _QUIET_SAYS:
        print(f"[{message.say.value}] {message.text or ''}".rstrip(), flush=True)


def apply_overrides(config: Config, args: argparse.Namespace) -> Config:
    """Apply command-line flags on top of the loaded configuration."""
    if args.model:
        config.llm.model = args.model
    if args.verbose is not None:
        config.logging.verbose = verbosity_for_flags(args.verbose)
    return config


async def _operate(args: argparse.Namespace) -> int:
    from devagent.config import load_config
    from devagent.session import SessionState, TaskSession

    config = apply_overrides(load_config(cwd=str(args.cwd)), args)
    setup_logging(config.logging)

    asks: asyncio.Queue[AskMessage] = asyncio.Queue()

    def listener(message: UIMessage) -> None:
        _print_event(message)
        if isinstance(message, AskMessage):
            asks.put_nowait(message)

    session = TaskSession(
        cwd=args.cwd,
        task=args.task,
        history_item=HistoryItem(id=args.resume) if args.resume else None,
        config=config,
        listener=listener,
    )
    log.info("Task %s in %s (model=%s)", session.task_id, args.cwd, config.llm.model)

    runner = asyncio.create_task(session.run())
    while not runner.done():
        next_ask = asyncio.create_task(asks.get())
        await asyncio.wait({runner, next_ask}, return_when=asyncio.FIRST_COMPLETED)
        if not next_ask.done():
            next_ask.cancel()
            break
        try:
            line = await asyncio.to_thread(input, "> ")
        except EOFError:
            session.abort()
            line = "n"
        reply = parse_reply(line)
        session.respond(reply.response, reply.text)

    state = await runner
    print(f"\nTask {session.task_id} {state.value}", flush=True)
    return 0 if state == SessionState.COMPLETED else 1


def main(argv: Sequence[str] | None = None) -> int:
    """Run one task from the console."""
    parser = create_parser()
    args = parser.parse_args(argv)
    if bool(args.task) == bool(args.resume):
        parser.error("give either a task description or --resume TASK_ID")

    try:
        return asyncio.run(_operate(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
