"""Model access: the ModelClient protocol and its litellm implementation."""

from devagent.llm.litellm_client import LiteLLMClient, create_client
from devagent.llm.provider import AssistantTurn, ModelClient

__all__ = [
    "AssistantTurn",
    "LiteLLMClient",
    "ModelClient",
    "create_client",
]
