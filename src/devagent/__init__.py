"""devagent: a resumable autonomous coding agent with operator-approved file edits."""

__version__ = "0.1.0"

# Public API
from devagent.config import Config, get_config, load_config
from devagent.errors import (
    DevAgentError,
    ModelError,
    ResumptionError,
    SessionConfigurationError,
    TaskAborted,
)
from devagent.gateway import ToolGateway
from devagent.llm import AssistantTurn, LiteLLMClient, ModelClient, create_client
from devagent.messages import (
    ApiMessage,
    AskKind,
    AskMessage,
    AskReply,
    AskResponse,
    HistoryItem,
    Role,
    SayKind,
    SayMessage,
    UIMessage,
)
from devagent.session import SessionState, TaskSession
from devagent.storage import ConversationStore, TaskStorage

__all__ = [
    # Main entry points
    "TaskSession",
    "SessionState",
    "ToolGateway",
    # Messages
    "ApiMessage",
    "AskKind",
    "AskMessage",
    "AskReply",
    "AskResponse",
    "HistoryItem",
    "Role",
    "SayKind",
    "SayMessage",
    "UIMessage",
    # Storage
    "ConversationStore",
    "TaskStorage",
    # Model
    "AssistantTurn",
    "LiteLLMClient",
    "ModelClient",
    "create_client",
    # Config
    "Config",
    "get_config",
    "load_config",
    # Errors
    "DevAgentError",
    "ModelError",
    "ResumptionError",
    "SessionConfigurationError",
    "TaskAborted",
]
