"""Ollama provider implementation."""

import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from ollama import AsyncClient

from chat_agent.providers.base_provider import (
    BaseModelProvider,
    ChatDelta,
    ToolCallRequest,
)

logger = logging.getLogger(__name__)

DEFAULT_TEMPERATURE = 1.0
DEFAULT_TOP_K = 64
DEFAULT_TOP_P = 0.95

TOOL_CAPABILITIES = ("tools", "function_calling")


class OllamaProvider(BaseModelProvider):
    """Provider for a local Ollama server."""

    def __init__(
        self,
        host: str = "http://localhost:11434",
        chat_model: str = "llama3.1:8b",
        chat_context_length: int = 8192,
        tools_model: Optional[str] = None,
        tools_context_length: Optional[int] = None,
        client: Optional[Any] = None,
    ):
        self.host = host
        self.chat_model = chat_model
        self.chat_context_length = chat_context_length
        self.tools_model = tools_model or chat_model
        self.tools_context_length = tools_context_length or chat_context_length
        self._owns_client = client is None
        self.client = client or AsyncClient(host=host)
        logger.debug(f"Created Ollama client for {host}")

    @property
    def name(self) -> str:
        return "ollama"

    def _context_length(self, model: str) -> int:
        if model == self.tools_model:
            return self.tools_context_length
        return self.chat_context_length

    async def supports_tools(self, model: str) -> bool:
        """Check the model's advertised capabilities.

        Errors propagate; the caller decides how to treat a failed check.
        """
        info = await self.client.show(model)
        capabilities = getattr(info, "capabilities", None) or []
        supported = any(cap in capabilities for cap in TOOL_CAPABILITIES)
        logger.debug(f"Model {model} capabilities: {list(capabilities)}")
        return supported

    async def chat_stream(
        self,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
        model: str,
    ) -> AsyncIterator[ChatDelta]:
        logger.debug(
            f"Ollama chat request: {len(messages)} messages, tools={len(tools)}"
        )
        stream = await self.client.chat(
            model=model,
            messages=messages,
            tools=tools or None,
            stream=True,
            keep_alive=-1,
            options={"num_ctx": self._context_length(model)},
        )
        try:
            async for part in stream:
                yield self._to_delta(part)
        finally:
            await _close_stream(stream)

    async def simple_chat(
        self,
        system_prompt: str,
        memories: str,
        messages: List[Dict[str, Any]],
    ) -> AsyncIterator[str]:
        request_messages: List[Dict[str, Any]] = [
            {"role": "system", "content": system_prompt}
        ]
        if memories:
            request_messages.append(
                {"role": "tool", "content": f"User Memories: {memories}"}
            )
        request_messages.extend(messages)

        stream = await self.client.chat(
            model=self.chat_model,
            messages=request_messages,
            stream=True,
            keep_alive=-1,
            options={
                "temperature": DEFAULT_TEMPERATURE,
                "top_k": DEFAULT_TOP_K,
                "top_p": DEFAULT_TOP_P,
                "num_ctx": self.chat_context_length,
            },
        )
        try:
            async for part in stream:
                content = part.message.content if part.message else None
                if content:
                    yield content
        finally:
            await _close_stream(stream)

    async def list_models(self) -> List[str]:
        response = await self.client.list()
        return [model.model for model in response.models if model.model]

    async def close(self):
        """Close the HTTP connection pool of a client this provider created."""
        if not self._owns_client:
            return
        # ollama.AsyncClient keeps its httpx.AsyncClient in _client
        http_client = getattr(self.client, "_client", None)
        if http_client is not None:
            await http_client.aclose()
            logger.debug(f"Closed Ollama client for {self.host}")

    @staticmethod
    def _to_delta(part: Any) -> ChatDelta:
        message = getattr(part, "message", None)
        if message is None:
            return ChatDelta()

        tool_calls = []
        for call in getattr(message, "tool_calls", None) or []:
            function = call.function
            arguments = function.arguments
            if not isinstance(arguments, dict):
                arguments = dict(arguments or {})
            tool_calls.append(ToolCallRequest(name=function.name, arguments=arguments))

        return ChatDelta(content=message.content or "", tool_calls=tool_calls)


async def _close_stream(stream: Any):
    aclose = getattr(stream, "aclose", None)
    if aclose is not None:
        await aclose()
