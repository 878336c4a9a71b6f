"""Inline execution-event markers for the output stream.

Execution metadata (tool calls, reasoning segments, timings) travels in the
same text stream as the answer, wrapped in reserved tags so the UI layer can
rebuild one linear timeline. The markers are UI-only: ``strip_markers`` must be
applied to anything that is replayed back into the model's context.

JSON payloads escape ``<`` so a marker body can never contain a closing tag.

The tag names are reserved. Model text that happens to form a well-formed
marker is treated as one: the UI decodes it and ``strip_markers`` removes it
before the answer is stored in the transcript.
"""

import json
import logging
import re
import time
import uuid
from dataclasses import dataclass
from typing import Any, Iterator, List, Literal, Optional, Union

from pydantic import BaseModel

logger = logging.getLogger(__name__)

EXECUTION_EVENT_TAG = "execution_event"
TOOL_CALL_POSITION_TAG = "tool_call_position"
TOOL_CALLS_UPDATE_TAG = "tool_calls_update"
TOOL_CALLS_COMPLETE_TAG = "tool_calls_complete"

EventType = Literal[
    "tool_start", "tool_complete", "thinking_start", "thinking_complete"
]
EventStatus = Literal["executing", "complete", "error"]


class ExecutionEvent(BaseModel):
    """UI-facing description of a tool call or reasoning segment."""

    type: EventType
    id: str
    status: EventStatus = "executing"
    name: Optional[str] = None
    arguments: Optional[str] = None
    result: Optional[str] = None
    duration_ms: Optional[int] = None
    is_error: Optional[bool] = None


class ToolCallInfo(BaseModel):
    """Outcome of one tool invocation."""

    name: str
    arguments: str
    result: str
    is_error: bool = False
    duration_ms: Optional[int] = None
    is_executing: bool = False


@dataclass
class Marker:
    """A decoded marker found in the output stream."""

    kind: str
    payload: Any


def _escape(payload: str) -> str:
    return payload.replace("<", "\\u003c")


def _dump_infos(infos: List[ToolCallInfo]) -> str:
    return _escape(
        json.dumps([info.model_dump(exclude_none=True) for info in infos])
    )


def emit_execution_event(event: ExecutionEvent) -> str:
    """Render an execution event as an inline marker."""
    body = _escape(event.model_dump_json(exclude_none=True))
    return f"<{EXECUTION_EVENT_TAG}>{body}</{EXECUTION_EVENT_TAG}>"


def tool_call_position(tool_id: str) -> str:
    """Marker placed where a batch of tool calls was requested."""
    return f'<{TOOL_CALL_POSITION_TAG} id="{tool_id}">'


def tool_calls_update(infos: List[ToolCallInfo]) -> str:
    return f"<{TOOL_CALLS_UPDATE_TAG}>{_dump_infos(infos)}</{TOOL_CALLS_UPDATE_TAG}>"


def tool_calls_complete(infos: List[ToolCallInfo]) -> str:
    return (
        f"<{TOOL_CALLS_COMPLETE_TAG}>{_dump_infos(infos)}</{TOOL_CALLS_COMPLETE_TAG}>"
    )


def format_arguments(arguments: Any) -> str:
    """Pretty-print tool arguments for display."""
    if isinstance(arguments, str):
        return arguments
    try:
        return json.dumps(arguments, indent=2)
    except (TypeError, ValueError):
        return str(arguments)


def create_tool_call_success_info(
    name: str, arguments: str, result: str, duration_ms: int, is_error: bool
) -> ToolCallInfo:
    return ToolCallInfo(
        name=name,
        arguments=arguments,
        result=result,
        is_error=is_error,
        duration_ms=duration_ms,
    )


def create_tool_call_error_info(
    name: str, arguments: str, error_message: str, duration_ms: int
) -> ToolCallInfo:
    return ToolCallInfo(
        name=name,
        arguments=arguments,
        result=error_message,
        is_error=True,
        duration_ms=duration_ms,
    )


def make_tool_id(name: str, arguments: Any) -> str:
    """Build a display id for a tool call, safe for use in a marker attribute."""
    key = f"{name}-{json.dumps(arguments, sort_keys=True, default=str)}"
    sanitized = re.sub(r"[^a-zA-Z0-9-]", "-", key)
    return f"tool-{sanitized}-{uuid.uuid4().hex[:8]}"


def make_thinking_id() -> str:
    return f"thinking-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


_MARKER_PATTERN = re.compile(
    rf"<{EXECUTION_EVENT_TAG}>(?P<event>.*?)</{EXECUTION_EVENT_TAG}>"
    rf'|<{TOOL_CALL_POSITION_TAG} id="(?P<position>[^"]*)">'
    rf"|<{TOOL_CALLS_UPDATE_TAG}>(?P<update>.*?)</{TOOL_CALLS_UPDATE_TAG}>"
    rf"|<{TOOL_CALLS_COMPLETE_TAG}>(?P<complete>.*?)</{TOOL_CALLS_COMPLETE_TAG}>",
    re.DOTALL,
)


def _decode(match: "re.Match[str]") -> Optional[Marker]:
    try:
        if match.group("event") is not None:
            return Marker(
                EXECUTION_EVENT_TAG,
                ExecutionEvent.model_validate_json(match.group("event")),
            )
        if match.group("position") is not None:
            return Marker(TOOL_CALL_POSITION_TAG, match.group("position"))
        if match.group("update") is not None:
            return Marker(
                TOOL_CALLS_UPDATE_TAG,
                [ToolCallInfo(**item) for item in json.loads(match.group("update"))],
            )
        return Marker(
            TOOL_CALLS_COMPLETE_TAG,
            [ToolCallInfo(**item) for item in json.loads(match.group("complete"))],
        )
    except (TypeError, ValueError) as e:
        logger.warning(f"Dropping malformed marker: {e}")
        return None


def split_markers(text: str) -> Iterator[Union[str, Marker]]:
    """Split stream text into plain text pieces and decoded markers, in order."""
    position = 0
    for match in _MARKER_PATTERN.finditer(text):
        if match.start() > position:
            yield text[position : match.start()]
        marker = _decode(match)
        if marker is not None:
            yield marker
        position = match.end()
    if position < len(text):
        yield text[position:]


def strip_markers(text: str) -> str:
    """Return only the plain answer text of a stream."""
    return _MARKER_PATTERN.sub("", text)


def is_marker(chunk: str) -> bool:
    """True when the chunk consists of exactly one marker."""
    return _MARKER_PATTERN.fullmatch(chunk) is not None
