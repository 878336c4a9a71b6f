"""Model provider implementations."""

from .base_provider import BaseModelProvider, ChatDelta, ToolCallRequest
from .ollama_provider import OllamaProvider

__all__ = [
    "BaseModelProvider",
    "ChatDelta",
    "OllamaProvider",
    "ToolCallRequest",
]
