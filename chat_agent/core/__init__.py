"""Core components of the tool-calling chat agent."""

from .cancellation import AbortController, AbortError, CancellationToken
from .chat_history import ChatHistory, ChatMessage
from .conductor import Conductor
from .input_handler import InterruptibleInput
from .tool_registry import ToolRegistry

__all__ = [
    "AbortController",
    "AbortError",
    "CancellationToken",
    "ChatHistory",
    "ChatMessage",
    "Conductor",
    "InterruptibleInput",
    "ToolRegistry",
]
