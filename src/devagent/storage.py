"""Task conversation persistence.

Each task owns one directory holding its two logs:

    <storage_root>/tasks/<task_id>/api_conversation_history.json
    <storage_root>/tasks/<task_id>/claude_messages.json

Every mutation rewrites the whole file: the log is serialized to a temporary
sibling and renamed over the previous version, so an interrupted write leaves
the last good file in place. Write failures are logged and otherwise ignored;
the in-memory log stays authoritative for the rest of the process.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Generic, TypeVar

from pydantic import TypeAdapter, ValidationError

from devagent.logging import get_logger
from devagent.messages import API_LOG_ADAPTER, UI_LOG_ADAPTER, ApiMessage, UIMessage

log = get_logger("storage")

API_HISTORY_FILENAME = "api_conversation_history.json"
UI_MESSAGES_FILENAME = "claude_messages.json"

T = TypeVar("T")


def get_task_dir(storage_root: str | Path, task_id: str) -> Path:
    """Directory holding one task's logs."""
    return Path(storage_root) / "tasks" / task_id


class ConversationStore(Generic[T]):
    """An append-only log mirrored to a single JSON file."""

    def __init__(self, path: Path, adapter: TypeAdapter[list[T]]) -> None:
        self._path = path
        self._adapter = adapter
        self._entries: list[T] = []

    @property
    def path(self) -> Path:
        return self._path

    @property
    def entries(self) -> list[T]:
        """Snapshot of the in-memory log."""
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def load(self) -> list[T]:
        """Read the persisted log.

        Returns:
            The stored entries, or an empty list if nothing was persisted yet.
        """
        if not self._path.exists():
            return []

        try:
            data = self._path.read_bytes()
            return self._adapter.validate_json(data)
        except (OSError, ValidationError) as e:
            log.warning("Failed to load %s: %s", self._path, e)
            return []

    def append(self, entry: T) -> None:
        self._entries.append(entry)
        self._flush()

    def overwrite(self, entries: list[T]) -> None:
        self._entries = list(entries)
        self._flush()

    def _flush(self) -> None:
        temp_path = self._path.with_name(self._path.name + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            payload = self._adapter.dump_json(self._entries, exclude_none=True)
            temp_path.write_bytes(payload)
            os.replace(temp_path, self._path)
            log.debug("Saved %d entries to %s", len(self._entries), self._path)
        except Exception as e:
            log.error("Failed to save %s: %s", self._path, e)
            try:
                temp_path.unlink(missing_ok=True)
            except OSError:
                pass


@dataclass
class TaskStorage:
    """The pair of logs persisted for one task."""

    storage_root: Path
    task_id: str
    api_history: ConversationStore[ApiMessage] = field(init=False)
    ui_messages: ConversationStore[UIMessage] = field(init=False)

    def __post_init__(self) -> None:
        self.storage_root = Path(self.storage_root)
        task_dir = self.task_dir
        self.api_history = ConversationStore(task_dir / API_HISTORY_FILENAME, API_LOG_ADAPTER)
        self.ui_messages = ConversationStore(task_dir / UI_MESSAGES_FILENAME, UI_LOG_ADAPTER)

    @property
    def task_dir(self) -> Path:
        return get_task_dir(self.storage_root, self.task_id)

    def clear(self) -> None:
        """Reset both logs to empty and persist that."""
        self.ui_messages.overwrite([])
        self.api_history.overwrite([])
