"""Tests for OllamaProvider with a mocked ollama AsyncClient."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from chat_agent.providers.base_provider import ChatDelta, ToolCallRequest
from chat_agent.providers.ollama_provider import OllamaProvider


def part(content="", tool_calls=None):
    return SimpleNamespace(
        message=SimpleNamespace(content=content, tool_calls=tool_calls)
    )


def tool_call(name, arguments):
    return SimpleNamespace(function=SimpleNamespace(name=name, arguments=arguments))


def streamed(*parts):
    async def _stream():
        for item in parts:
            yield item

    return _stream()


@pytest.mark.unit
class TestOllamaProvider:
    """Test request shaping and response conversion."""

    @pytest.fixture
    def client(self):
        client = MagicMock()
        client.show = AsyncMock()
        client.chat = AsyncMock()
        client.list = AsyncMock()
        return client

    @pytest.fixture
    def provider(self, client):
        return OllamaProvider(
            host="http://ollama:11434",
            chat_model="gemma3:4b",
            chat_context_length=4096,
            tools_model="qwen3:8b",
            tools_context_length=16384,
            client=client,
        )

    def test_default_client_uses_host(self):
        with patch("chat_agent.providers.ollama_provider.AsyncClient") as async_client:
            provider = OllamaProvider(host="http://gpu-box:11434")

        async_client.assert_called_once_with(host="http://gpu-box:11434")
        assert provider.client is async_client.return_value
        assert provider.tools_model == provider.chat_model
        assert provider.tools_context_length == provider.chat_context_length

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "capabilities,expected",
        [
            (["completion", "tools"], True),
            (["completion", "function_calling"], True),
            (["completion", "vision"], False),
            (None, False),
        ],
    )
    async def test_supports_tools(self, provider, client, capabilities, expected):
        client.show.return_value = SimpleNamespace(capabilities=capabilities)

        assert await provider.supports_tools("qwen3:8b") is expected
        client.show.assert_awaited_once_with("qwen3:8b")

    @pytest.mark.asyncio
    async def test_supports_tools_propagates_errors(self, provider, client):
        client.show.side_effect = ConnectionError("refused")

        with pytest.raises(ConnectionError):
            await provider.supports_tools("qwen3:8b")

    @pytest.mark.asyncio
    async def test_chat_stream_converts_parts(self, provider, client):
        client.chat.return_value = streamed(
            part("Let me "),
            part("look.", [tool_call("search", {"q": "x"})]),
            SimpleNamespace(message=None),
        )
        tools = [{"type": "function", "function": {"name": "search"}}]
        messages = [{"role": "user", "content": "Find x"}]

        deltas = [
            delta async for delta in provider.chat_stream(messages, tools, "qwen3:8b")
        ]

        assert deltas == [
            ChatDelta(content="Let me "),
            ChatDelta(
                content="look.",
                tool_calls=[ToolCallRequest(name="search", arguments={"q": "x"})],
            ),
            ChatDelta(),
        ]
        client.chat.assert_awaited_once_with(
            model="qwen3:8b",
            messages=messages,
            tools=tools,
            stream=True,
            keep_alive=-1,
            options={"num_ctx": 16384},
        )

    @pytest.mark.asyncio
    async def test_chat_stream_without_tools(self, provider, client):
        client.chat.return_value = streamed(part("hi"))

        deltas = [delta async for delta in provider.chat_stream([], [], "gemma3:4b")]

        assert deltas == [ChatDelta(content="hi")]
        kwargs = client.chat.call_args.kwargs
        assert kwargs["tools"] is None
        assert kwargs["options"] == {"num_ctx": 4096}

    @pytest.mark.asyncio
    async def test_simple_chat_request(self, provider, client):
        client.chat.return_value = streamed(part("Hello"), part(""), part(" there"))
        history = [{"role": "user", "content": "Hi"}]

        chunks = [
            chunk
            async for chunk in provider.simple_chat("Be nice.", "likes tea", history)
        ]

        assert chunks == ["Hello", " there"]
        kwargs = client.chat.call_args.kwargs
        assert kwargs["model"] == "gemma3:4b"
        assert kwargs["messages"] == [
            {"role": "system", "content": "Be nice."},
            {"role": "tool", "content": "User Memories: likes tea"},
            {"role": "user", "content": "Hi"},
        ]
        assert kwargs["options"] == {
            "temperature": 1.0,
            "top_k": 64,
            "top_p": 0.95,
            "num_ctx": 4096,
        }
        assert kwargs["keep_alive"] == -1

    @pytest.mark.asyncio
    async def test_simple_chat_without_memories(self, provider, client):
        client.chat.return_value = streamed(part("ok"))

        [chunk async for chunk in provider.simple_chat("sys", "", [])]

        messages = client.chat.call_args.kwargs["messages"]
        assert messages == [{"role": "system", "content": "sys"}]

    @pytest.mark.asyncio
    async def test_list_models(self, provider, client):
        client.list.return_value = SimpleNamespace(
            models=[SimpleNamespace(model="gemma3:4b"), SimpleNamespace(model=None)]
        )

        assert await provider.list_models() == ["gemma3:4b"]

    @pytest.mark.asyncio
    async def test_close_releases_own_client(self):
        with patch("chat_agent.providers.ollama_provider.AsyncClient") as async_client:
            async_client.return_value._client.aclose = AsyncMock()
            provider = OllamaProvider(host="http://gpu-box:11434")

        await provider.close()

        async_client.return_value._client.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close_leaves_injected_client_open(self, provider, client):
        client._client.aclose = AsyncMock()

        await provider.close()

        client._client.aclose.assert_not_awaited()
