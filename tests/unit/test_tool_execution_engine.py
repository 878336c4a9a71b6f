"""Tests for the ToolExecutionEngine."""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from chat_agent.core.cancellation import AbortController, AbortError
from chat_agent.core.tool_execution_engine import (
    FAILED_RESULT,
    NO_CONTENT_RESULT,
    ToolExecutionEngine,
    result_text,
)
from chat_agent.core.tool_registry import ToolContent, ToolResult
from chat_agent.providers.base_provider import ToolCallRequest


@pytest.mark.unit
class TestResultText:
    """Test flattening of tool results."""

    def test_text_items_joined(self):
        result = ToolResult(
            content=[ToolContent(text="part one, "), ToolContent(text="part two")]
        )
        assert result_text(result) == "part one, part two"

    def test_empty_success(self):
        assert result_text(ToolResult()) == NO_CONTENT_RESULT

    def test_empty_error(self):
        assert result_text(ToolResult(is_error=True)) == FAILED_RESULT


@pytest.mark.unit
class TestToolExecutionEngine:
    """Test running resolved and unknown tools."""

    @pytest.mark.asyncio
    async def test_run_tool_success(self, search_registry, token):
        engine = ToolExecutionEngine(search_registry, token)
        request = ToolCallRequest(name="search", arguments={"q": "x"})

        execution = await engine.run_tool(request, engine.resolve(request))

        assert not execution.is_error
        assert execution.info.result == "result for x"
        assert execution.info.arguments == '{\n  "q": "x"\n}'
        assert execution.info.duration_ms >= 0
        assert execution.tool_message == "Tool search result: result for x"

    def test_unknown_tool_not_resolved(self, search_registry, token):
        engine = ToolExecutionEngine(search_registry, token)
        request = ToolCallRequest(name="Search")

        assert engine.resolve(request) is None
        execution = engine.not_found(request)

        assert execution.is_error
        assert execution.info.duration_ms == 0
        assert execution.tool_message == (
            "Tool Search error: Error: Tool 'Search' not found"
        )

    @pytest.mark.asyncio
    async def test_unexpected_failure_becomes_error(self, search_registry, token):
        engine = ToolExecutionEngine(search_registry, token)
        tool = search_registry.resolve("search")
        broken = SimpleNamespace(invoke=AsyncMock(side_effect=ValueError("bad")))

        execution = await engine.run_tool(ToolCallRequest(name=tool.name), broken)

        assert execution.is_error
        assert execution.info.result == "Tool execution failed: bad"

    @pytest.mark.asyncio
    async def test_abort_propagates(self, search_registry, search_client, token):
        search_client.block_calls = True
        engine = ToolExecutionEngine(search_registry, token)
        request = ToolCallRequest(name="search", arguments={"q": "x"})
        controller = AbortController()
        asyncio.get_running_loop().call_later(0.01, controller.abort, "stop")

        with pytest.raises(AbortError):
            await engine.run_tool(request, engine.resolve(request), controller)
        assert search_client.call_cancelled
