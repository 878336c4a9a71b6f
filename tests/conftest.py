"""Shared fixtures and fakes for the unit tests."""

import asyncio
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest

from chat_agent.core.cancellation import CancellationToken
from chat_agent.core.chat_history import ChatHistory
from chat_agent.core.request_context import RequestContext
from chat_agent.core.tool_registry import ToolDescriptor, ToolRegistry
from chat_agent.providers.base_provider import BaseModelProvider, ChatDelta
from config import MCPServerConfig


def text_content(text: str) -> SimpleNamespace:
    return SimpleNamespace(type="text", text=text)


def mcp_tool(name: str, description: str = "", schema: Optional[Dict] = None):
    return SimpleNamespace(
        name=name,
        description=description,
        inputSchema=schema or {"type": "object", "properties": {}},
    )


class FakeMCPClient:
    """Stands in for a fastmcp Client connected over stdio."""

    def __init__(
        self,
        tools: Optional[List[Any]] = None,
        results: Optional[Dict[str, Any]] = None,
        fail_connect: bool = False,
        call_error: Optional[Exception] = None,
        delays: Optional[Dict[str, float]] = None,
        block_calls: bool = False,
    ):
        self.tools = tools or []
        self.results = results or {}
        self.fail_connect = fail_connect
        self.call_error = call_error
        self.delays = delays or {}
        self.block_calls = block_calls
        self.calls: List[tuple] = []
        self.entered = False
        self.closed = False
        self.call_cancelled = False

    async def __aenter__(self):
        if self.fail_connect:
            raise ConnectionError("spawn failed")
        self.entered = True
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.closed = True

    async def list_tools(self):
        return self.tools

    async def call_tool_mcp(self, name: str, arguments: Dict[str, Any]):
        self.calls.append((name, arguments))
        if self.call_error is not None:
            raise self.call_error
        if self.block_calls:
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                self.call_cancelled = True
                raise
        if name in self.delays:
            await asyncio.sleep(self.delays[name])
        if name in self.results:
            return self.results[name]
        return SimpleNamespace(content=[text_content(f"{name} ok")], isError=False)


class ScriptedProvider(BaseModelProvider):
    """Model provider that replays scripted deltas, one list per phase.

    When the script runs out, the last phase is repeated.
    """

    def __init__(
        self,
        phases: Optional[List[List[ChatDelta]]] = None,
        supports: Any = True,
        simple_chunks: Optional[List[str]] = None,
        chat_error: Optional[Exception] = None,
    ):
        self.phases = phases or [[ChatDelta(content="ok")]]
        self.supports = supports
        self.simple_chunks = simple_chunks or []
        self.chat_error = chat_error
        self.chat_model = "test-model"
        self.tools_model = "test-model"
        self.calls: List[List[Dict[str, Any]]] = []
        self.tool_lists: List[List[Dict[str, Any]]] = []
        self.simple_calls: List[tuple] = []
        self.supports_checks = 0
        self.streams_closed = 0

    @property
    def name(self) -> str:
        return "scripted"

    async def supports_tools(self, model: str) -> bool:
        self.supports_checks += 1
        if isinstance(self.supports, Exception):
            raise self.supports
        return self.supports

    async def chat_stream(self, messages, tools, model):
        self.calls.append([dict(message) for message in messages])
        self.tool_lists.append(tools)
        if self.chat_error is not None:
            raise self.chat_error
        phase = self.phases[min(len(self.calls), len(self.phases)) - 1]
        try:
            for delta in phase:
                await asyncio.sleep(0)
                yield delta
        finally:
            self.streams_closed += 1

    async def simple_chat(self, system_prompt, memories, messages):
        self.simple_calls.append((system_prompt, memories, [dict(m) for m in messages]))
        for chunk in self.simple_chunks:
            await asyncio.sleep(0)
            yield chunk


@pytest.fixture
def fake_client_class():
    return FakeMCPClient


@pytest.fixture
def scripted_provider_class():
    return ScriptedProvider


@pytest.fixture
def make_tool():
    return mcp_tool


@pytest.fixture
def make_text_content():
    return text_content


@pytest.fixture
def token():
    return CancellationToken()


@pytest.fixture
def history():
    chat_history = ChatHistory()
    chat_history.add_user_message("Hello")
    return chat_history


@pytest.fixture
def request_context(history):
    return RequestContext(question="Hello", chat_history=history)


@pytest.fixture
def search_client():
    return FakeMCPClient(
        tools=[
            mcp_tool(
                "search",
                "Search the web",
                {
                    "type": "object",
                    "required": ["q"],
                    "properties": {"q": {"type": "string", "description": "Query"}},
                },
            )
        ],
        results={
            "search": SimpleNamespace(
                content=[text_content("result for x")], isError=False
            )
        },
    )


@pytest.fixture
def search_registry(search_client):
    registry = ToolRegistry()
    registry.register(
        ToolDescriptor(
            server_id="web",
            name="search",
            description="Search the web",
            input_schema=search_client.tools[0].inputSchema,
        ),
        search_client,
    )
    return registry


@pytest.fixture
def server_config():
    def _make(name: str, command: str = "python", **kwargs) -> MCPServerConfig:
        return MCPServerConfig(name=name, command=command, **kwargs)

    return _make


@pytest.fixture
def collect():
    async def _collect(stream) -> List[str]:
        return [chunk async for chunk in stream]

    return _collect


@pytest.fixture
def sample_env(monkeypatch, tmp_path):
    """Isolate HostConfig from the developer's environment and .env file."""
    monkeypatch.chdir(tmp_path)
    for key in (
        "OLLAMA_URL",
        "CHAT_MODEL",
        "CHAT_MODEL_CONTEXT_LENGTH",
        "TOOLS_MODEL",
        "TOOLS_MODEL_CONTEXT_LENGTH",
        "MAX_PHASES",
        "PARALLEL_TOOL_CALLS",
        "LOG_LEVEL",
        "MEMORIES_FILE",
    ):
        monkeypatch.delenv(key, raising=False)
    servers_file = tmp_path / "config" / "mcp-servers.json"
    monkeypatch.setenv("MCP_SERVERS_FILE", str(servers_file))
    return servers_file
