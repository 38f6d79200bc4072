"""Exception hierarchy for devagent.

Tool failures and user denials never surface as exceptions; they are turned
into tool-result blocks for the model. Only the structural failures below
leave a session.
"""

from __future__ import annotations


class DevAgentError(Exception):
    """Base class for all devagent errors."""


class SessionConfigurationError(DevAgentError, ValueError):
    """A TaskSession was constructed with an invalid initializer combination."""


class ResumptionError(DevAgentError):
    """Persisted conversation state cannot be reconciled for resumption."""


class TaskAborted(DevAgentError):
    """Raised at a suspension point after the session was aborted."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task {task_id} was aborted")
        self.task_id = task_id


class ModelError(DevAgentError):
    """The model call failed and the user chose not to retry."""
