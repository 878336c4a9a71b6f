"""Separates answer text from reasoning in a streamed model response.

Models that reason emit ``<think>...</think>`` segments inline. The tags can
straddle chunk boundaries, so the splitter keeps a small state machine and a
held-back buffer on the instance. Answer text outside a thinking segment is
passed through unchanged; reasoning is turned into execution events.
"""

import enum
import logging
import time
from typing import Callable, List, Optional

from chat_agent.core.execution_events import (
    ExecutionEvent,
    emit_execution_event,
    make_thinking_id,
)

logger = logging.getLogger(__name__)

THINK_OPEN = "<think>"
THINK_CLOSE = "</think>"


class SplitterState(enum.Enum):
    OUTSIDE = "outside"
    INSIDE_THINKING = "inside_thinking"


def _partial_tag_length(text: str, tag: str) -> int:
    """Length of the longest suffix of text that is a proper prefix of tag."""
    for size in range(min(len(text), len(tag) - 1), 0, -1):
        if text.endswith(tag[:size]):
            return size
    return 0


class ContentSplitter:
    """Stateful splitter for one streamed answer.

    ``feed`` returns the output pieces for a chunk in stream order: plain text
    and execution-event markers. ``flush`` must be called when the stream ends.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self.reset()

    def reset(self):
        """Forget all state; called at the start of each turn."""
        self.state = SplitterState.OUTSIDE
        self._pending = ""
        self._visible_parts: List[str] = []
        self._thinking_parts: List[str] = []
        self._thinking_id: Optional[str] = None
        self._thinking_started: Optional[float] = None
        self.thinking_segments: List[str] = []

    @property
    def visible_text(self) -> str:
        """Plain answer text seen so far."""
        return "".join(self._visible_parts)

    def feed(self, chunk: str) -> List[str]:
        output: List[str] = []
        buffer = self._pending + chunk
        self._pending = ""

        while buffer:
            tag = THINK_OPEN if self.state is SplitterState.OUTSIDE else THINK_CLOSE
            index = buffer.find(tag)
            if index >= 0:
                self._add_text(buffer[:index], output)
                buffer = buffer[index + len(tag) :]
                if self.state is SplitterState.OUTSIDE:
                    self._open_thinking(output)
                else:
                    self._close_thinking(output)
                continue

            held = _partial_tag_length(buffer, tag)
            self._add_text(buffer[: len(buffer) - held], output)
            self._pending = buffer[len(buffer) - held :]
            break

        return output

    def release_pending(self) -> List[str]:
        """Emit answer text held back for a possible tag.

        Called before tool-call markers so the text keeps its place in the
        timeline. Held text inside a thinking segment stays buffered.
        """
        output: List[str] = []
        if self._pending and self.state is SplitterState.OUTSIDE:
            self._add_text(self._pending, output)
            self._pending = ""
        return output

    def flush(self) -> List[str]:
        """Release held-back text and close an unterminated thinking segment."""
        output: List[str] = []
        if self._pending:
            self._add_text(self._pending, output)
            self._pending = ""
        if self.state is SplitterState.INSIDE_THINKING:
            logger.debug("Stream ended inside a thinking segment, closing it")
            self._close_thinking(output)
        return output

    def _add_text(self, text: str, output: List[str]):
        if not text:
            return
        if self.state is SplitterState.OUTSIDE:
            self._visible_parts.append(text)
            output.append(text)
        else:
            self._thinking_parts.append(text)

    def _open_thinking(self, output: List[str]):
        self.state = SplitterState.INSIDE_THINKING
        self._thinking_id = make_thinking_id()
        self._thinking_started = self._clock()
        output.append(
            emit_execution_event(
                ExecutionEvent(
                    type="thinking_start", id=self._thinking_id, status="executing"
                )
            )
        )

    def _close_thinking(self, output: List[str]):
        thinking = "".join(self._thinking_parts)
        duration_ms = int((self._clock() - self._thinking_started) * 1000)
        output.append(
            emit_execution_event(
                ExecutionEvent(
                    type="thinking_complete",
                    id=self._thinking_id,
                    status="complete",
                    result=thinking,
                    duration_ms=duration_ms,
                )
            )
        )
        self.thinking_segments.append(thinking)
        self.state = SplitterState.OUTSIDE
        self._thinking_parts = []
        self._thinking_id = None
        self._thinking_started = None
