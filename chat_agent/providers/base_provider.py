"""Base model provider interface.

A provider wraps the model-serving backend. The conductor only needs three
things from it: a tool-capability check, a streaming chat call that accepts
messages plus tool definitions, and a plain streaming chat for models without
tool support.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, List

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class ToolCallRequest(BaseModel):
    """A tool call requested by the model inside a streamed delta."""

    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)

    def to_message_format(self) -> Dict[str, Any]:
        return {"function": {"name": self.name, "arguments": self.arguments}}


class ChatDelta(BaseModel):
    """One incremental piece of a streamed model response."""

    content: str = ""
    tool_calls: List[ToolCallRequest] = Field(default_factory=list)


class BaseModelProvider(ABC):
    """Abstract interface for a model-serving backend."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name for logging."""
        pass

    @abstractmethod
    async def supports_tools(self, model: str) -> bool:
        """Return True when the model supports tool calling."""
        pass

    @abstractmethod
    def chat_stream(
        self,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
        model: str,
    ) -> AsyncIterator[ChatDelta]:
        """Stream a chat completion that may request tool calls."""
        pass

    @abstractmethod
    def simple_chat(
        self,
        system_prompt: str,
        memories: str,
        messages: List[Dict[str, Any]],
    ) -> AsyncIterator[str]:
        """Stream a plain answer without tools."""
        pass

    async def list_models(self) -> List[str]:
        """List model names available on the backend."""
        return []

    async def close(self):
        """Release backend resources."""
        pass

    def __str__(self) -> str:
        return f"{self.__class__.__name__}({self.name})"
