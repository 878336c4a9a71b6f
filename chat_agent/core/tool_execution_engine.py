"""Tool execution engine for the conductor."""

import logging
import time
from dataclasses import dataclass
from typing import Optional

from chat_agent.core.cancellation import (
    AbortController,
    AbortError,
    CancellationToken,
)
from chat_agent.core.execution_events import (
    ToolCallInfo,
    create_tool_call_error_info,
    create_tool_call_success_info,
    format_arguments,
)
from chat_agent.core.tool_registry import RegisteredTool, ToolResult
from chat_agent.providers.base_provider import ToolCallRequest

logger = logging.getLogger(__name__)

NO_CONTENT_RESULT = "Tool executed successfully (no content returned)"
FAILED_RESULT = "Tool call failed"


def tool_not_found_message(name: str) -> str:
    return f"Error: Tool '{name}' not found"


def result_text(result: ToolResult) -> str:
    """Flatten a tool result into the text shown to the model."""
    text = "".join(item.text for item in result.content)
    if result.is_error:
        return text or FAILED_RESULT
    if not result.content:
        return NO_CONTENT_RESULT
    return text


@dataclass
class ToolExecution:
    """Outcome of one requested tool call, for the UI and for the model."""

    request: ToolCallRequest
    info: ToolCallInfo

    @property
    def is_error(self) -> bool:
        return self.info.is_error

    @property
    def tool_message(self) -> str:
        """Content of the synthetic tool message appended to the conversation."""
        label = "error" if self.info.is_error else "result"
        return f"Tool {self.request.name} {label}: {self.info.result}"


class ToolExecutionEngine:
    """Runs tool calls requested by the model and records their outcomes."""

    def __init__(
        self, tool_registry, cancellation_token: Optional[CancellationToken] = None
    ):
        self.tool_registry = tool_registry
        self.cancellation_token = cancellation_token

    def resolve(self, request: ToolCallRequest) -> Optional[RegisteredTool]:
        return self.tool_registry.resolve(request.name)

    def not_found(self, request: ToolCallRequest) -> ToolExecution:
        logger.warning(f"Model requested unknown tool: {request.name}")
        info = create_tool_call_error_info(
            request.name,
            format_arguments(request.arguments),
            tool_not_found_message(request.name),
            0,
        )
        return ToolExecution(request=request, info=info)

    async def run_tool(
        self,
        request: ToolCallRequest,
        tool: RegisteredTool,
        abort_controller: Optional[AbortController] = None,
    ) -> ToolExecution:
        """Invoke a resolved tool.

        AbortError from the controller propagates; any other failure becomes an
        error outcome.
        """
        arguments = format_arguments(request.arguments)
        started = time.monotonic()

        invocation = tool.invoke(request.arguments, self.cancellation_token)
        try:
            if abort_controller is not None:
                result = await abort_controller.run(invocation)
            else:
                result = await invocation
        except AbortError:
            raise
        except Exception as e:
            duration_ms = int((time.monotonic() - started) * 1000)
            logger.error(f"Tool execution failed for {request.name}: {e}")
            info = create_tool_call_error_info(
                request.name, arguments, f"Tool execution failed: {e}", duration_ms
            )
            return ToolExecution(request=request, info=info)

        duration_ms = int((time.monotonic() - started) * 1000)
        text = result_text(result)
        logger.info(
            f"Tool {request.name} finished in {duration_ms}ms"
            f"{' with error' if result.is_error else ''}"
        )
        info = create_tool_call_success_info(
            request.name, arguments, text, duration_ms, result.is_error
        )
        return ToolExecution(request=request, info=info)
