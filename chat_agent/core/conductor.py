"""Multi-phase tool-calling orchestration loop.

The conductor drives one answer turn. Each phase is a single round-trip to the
model: its streamed text is passed through a ContentSplitter, and any tool
calls it requests are executed against the tool registry. Tool results are
fed back as ``tool`` messages and the next phase starts, until the model stops
asking for tools, the phase limit is hit, or the turn is cancelled.

Everything yielded is a text chunk for the UI. Execution markers in that
stream are never added to the working message list sent back to the model.
"""

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional

from chat_agent.core.cancellation import (
    AbortController,
    AbortError,
    CancellationToken,
)
from chat_agent.core.content_splitter import ContentSplitter
from chat_agent.core.execution_events import (
    ExecutionEvent,
    ToolCallInfo,
    emit_execution_event,
    format_arguments,
    make_tool_id,
    tool_call_position,
    tool_calls_complete,
    tool_calls_update,
)
from chat_agent.core.request_context import RequestContext, trace
from chat_agent.core.tool_execution_engine import (
    ToolExecution,
    ToolExecutionEngine,
    tool_not_found_message,
)
from chat_agent.providers.base_provider import BaseModelProvider, ToolCallRequest

logger = logging.getLogger(__name__)

MAX_PHASES = 50


def phase_limit_note(phases: int) -> str:
    return (
        f"\n\n**Note**: Conversation ended after {phases} phases "
        "to prevent infinite loops."
    )


def conductor_error_message(error: Exception) -> str:
    return f"\nError in conductor mode: {error}"


@dataclass
class PhaseOutcome:
    """What a single phase did, filled in while its chunks are yielded."""

    tool_calls: List[ToolCallRequest] = field(default_factory=list)
    executions: List[ToolExecution] = field(default_factory=list)
    visible_text: str = ""
    cancelled: bool = False


class Conductor:
    """Streams an answer for one turn, calling tools as the model requests them."""

    def __init__(
        self,
        provider: BaseModelProvider,
        tool_registry,
        cancellation_token: Optional[CancellationToken] = None,
        max_phases: int = MAX_PHASES,
        parallel_tool_calls: bool = False,
        chat_model: Optional[str] = None,
        tools_model: Optional[str] = None,
    ):
        self.provider = provider
        self.tool_registry = tool_registry
        self.cancellation_token = cancellation_token or CancellationToken()
        self.max_phases = max_phases
        self.parallel_tool_calls = parallel_tool_calls
        self.chat_model = chat_model or getattr(provider, "chat_model", None)
        self.tools_model = (
            tools_model or getattr(provider, "tools_model", None) or self.chat_model
        )
        self.tool_engine = ToolExecutionEngine(tool_registry, self.cancellation_token)
        self.last_phase_count = 0

    async def create_response(
        self,
        request_context: RequestContext,
        system_prompt: str,
        tool_prompt: str,
        memories: str = "",
    ) -> AsyncIterator[str]:
        """Stream the answer for the current turn as text chunks."""
        token = self.cancellation_token
        self.last_phase_count = 0

        if token.is_cancelled:
            trace(
                request_context,
                "conductor-cancelled-before-start",
                token.cancel_reason,
            )
            return

        try:
            use_tools = await self._should_use_tools(request_context)
            if token.is_cancelled:
                return

            if use_tools:
                chunks = self._phase_loop(request_context, tool_prompt, memories)
            else:
                chunks = self._simple_stream(request_context, system_prompt, memories)

            async with aclosing(chunks) as stream:
                async for chunk in stream:
                    yield chunk

        except AbortError as e:
            trace(request_context, "conductor-aborted", e.reason or "cancelled")
        except Exception as e:
            logger.error(f"Conductor error: {e}", exc_info=True)
            trace(request_context, "conductor-error", str(e))
            yield conductor_error_message(e)

    async def _should_use_tools(self, request_context: RequestContext) -> bool:
        if len(self.tool_registry) == 0:
            trace(request_context, "conductor-tools-available", 0)
            return False

        try:
            supported = await self.provider.supports_tools(self.tools_model)
        except Exception as e:
            logger.warning(f"Could not check tool support for {self.tools_model}: {e}")
            trace(request_context, "model-supports-tools-error", str(e))
            return False

        trace(request_context, "model-supports-tools-result", supported)
        return bool(supported)

    async def _simple_stream(
        self, request_context: RequestContext, system_prompt: str, memories: str
    ) -> AsyncIterator[str]:
        token = self.cancellation_token
        controller = AbortController()
        token.set_abort_controller(controller)
        source = self.provider.simple_chat(
            system_prompt, memories, request_context.chat_history.to_model_messages()
        )
        try:
            async with aclosing(controller.iterate(source)) as chunks:
                async for chunk in chunks:
                    if token.is_cancelled:
                        trace(
                            request_context,
                            "simple-stream-cancelled",
                            token.cancel_reason,
                        )
                        return
                    yield chunk
        finally:
            await _aclose(source)
            token.release_abort_controller(controller)

    def _build_messages(
        self, request_context: RequestContext, tool_prompt: str, memories: str
    ) -> List[Dict[str, Any]]:
        messages: List[Dict[str, Any]] = [{"role": "system", "content": tool_prompt}]
        if memories:
            messages.append({"role": "tool", "content": f"User Memories: {memories}"})
        messages.extend(request_context.chat_history.to_model_messages())
        return messages

    async def _phase_loop(
        self, request_context: RequestContext, tool_prompt: str, memories: str
    ) -> AsyncIterator[str]:
        token = self.cancellation_token
        messages = self._build_messages(request_context, tool_prompt, memories)
        tools = self.tool_registry.tool_definitions()
        phase = 0

        while True:
            if token.is_cancelled:
                trace(request_context, "conductor-cancelled", token.cancel_reason)
                return

            if phase >= self.max_phases:
                logger.info(f"Hit max phase limit ({self.max_phases}), ending turn")
                yield phase_limit_note(phase)
                return

            phase += 1
            self.last_phase_count = phase
            logger.info(f"Conductor phase {phase}/{self.max_phases}")
            trace(request_context, "conductor-phase", phase)

            outcome = PhaseOutcome()
            async with aclosing(self._run_phase(messages, tools, outcome)) as chunks:
                async for chunk in chunks:
                    yield chunk

            if outcome.cancelled:
                return

            messages.append(self._assistant_message(outcome))
            for execution in outcome.executions:
                messages.append({"role": "tool", "content": execution.tool_message})

            if not outcome.tool_calls:
                trace(request_context, "conductor-phases-total", phase)
                return

    @staticmethod
    def _assistant_message(outcome: PhaseOutcome) -> Dict[str, Any]:
        message: Dict[str, Any] = {
            "role": "assistant",
            "content": outcome.visible_text,
        }
        if outcome.tool_calls:
            message["tool_calls"] = [
                request.to_message_format() for request in outcome.tool_calls
            ]
        return message

    async def _run_phase(
        self,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
        outcome: PhaseOutcome,
    ) -> AsyncIterator[str]:
        """Stream one model round-trip, executing tool calls as they arrive."""
        token = self.cancellation_token
        controller = AbortController()
        token.set_abort_controller(controller)
        splitter = ContentSplitter()
        source = self.provider.chat_stream(list(messages), tools, self.tools_model)

        try:
            async with aclosing(controller.iterate(source)) as deltas:
                async for delta in deltas:
                    if token.is_cancelled:
                        outcome.cancelled = True
                        return

                    if delta.content:
                        for piece in splitter.feed(delta.content):
                            yield piece

                    if delta.tool_calls:
                        for piece in splitter.release_pending():
                            yield piece
                        outcome.tool_calls.extend(delta.tool_calls)
                        executing = self._execute_tool_calls(
                            delta.tool_calls, controller, outcome
                        )
                        async with aclosing(executing) as pieces:
                            async for piece in pieces:
                                yield piece

            if token.is_cancelled:
                outcome.cancelled = True
                return

            for piece in splitter.flush():
                yield piece
            outcome.visible_text = splitter.visible_text
        finally:
            await _aclose(source)
            token.release_abort_controller(controller)

    async def _execute_tool_calls(
        self,
        requests: List[ToolCallRequest],
        controller: AbortController,
        outcome: PhaseOutcome,
    ) -> AsyncIterator[str]:
        """Run the tool calls of one delta and yield their markers in order."""
        first = requests[0]
        yield tool_call_position(make_tool_id(first.name, first.arguments))

        if self.parallel_tool_calls and len(requests) > 1:
            pieces = self._execute_parallel(requests, controller)
        else:
            pieces = self._execute_sequential(requests, controller)

        executions: List[ToolExecution] = []
        async with aclosing(pieces) as stream:
            async for piece in stream:
                if isinstance(piece, ToolExecution):
                    executions.append(piece)
                else:
                    yield piece

        outcome.executions.extend(executions)
        yield tool_calls_complete([execution.info for execution in executions])

    async def _execute_sequential(
        self, requests: List[ToolCallRequest], controller: AbortController
    ):
        for request in requests:
            tool = self.tool_engine.resolve(request)
            if tool is None:
                yield tool_not_found_message(request.name)
                yield self.tool_engine.not_found(request)
                continue

            tool_id = make_tool_id(request.name, request.arguments)
            for piece in _start_markers(tool_id, request):
                yield piece
            execution = await self.tool_engine.run_tool(request, tool, controller)
            yield _complete_marker(tool_id, execution)
            yield execution

    async def _execute_parallel(
        self, requests: List[ToolCallRequest], controller: AbortController
    ):
        slots: List[Optional[ToolExecution]] = [None] * len(requests)
        pending = []
        for index, request in enumerate(requests):
            tool = self.tool_engine.resolve(request)
            if tool is None:
                yield tool_not_found_message(request.name)
                slots[index] = self.tool_engine.not_found(request)
                continue

            tool_id = make_tool_id(request.name, request.arguments)
            for piece in _start_markers(tool_id, request):
                yield piece
            pending.append((index, tool_id, request, tool))

        results = await asyncio.gather(
            *(
                self.tool_engine.run_tool(request, tool, controller)
                for _, _, request, tool in pending
            )
        )
        completed = {}
        for (index, tool_id, _, _), execution in zip(pending, results):
            slots[index] = execution
            completed[index] = tool_id

        for index, execution in enumerate(slots):
            if index in completed:
                yield _complete_marker(completed[index], execution)
            yield execution


def _start_markers(tool_id: str, request: ToolCallRequest) -> List[str]:
    arguments = format_arguments(request.arguments)
    executing = ToolCallInfo(
        name=request.name,
        arguments=arguments,
        result="Executing...",
        is_executing=True,
    )
    return [
        tool_calls_update([executing]),
        emit_execution_event(
            ExecutionEvent(
                type="tool_start",
                id=tool_id,
                status="executing",
                name=request.name,
                arguments=arguments,
            )
        ),
    ]


def _complete_marker(tool_id: str, execution: ToolExecution) -> str:
    info = execution.info
    return emit_execution_event(
        ExecutionEvent(
            type="tool_complete",
            id=tool_id,
            status="error" if info.is_error else "complete",
            name=info.name,
            result=info.result,
            duration_ms=info.duration_ms,
            is_error=info.is_error,
        )
    )


async def _aclose(stream: Any):
    aclose = getattr(stream, "aclose", None)
    if aclose is not None:
        await aclose()
