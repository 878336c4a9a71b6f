"""Chat session handling and terminal rendering of the answer stream."""

import logging
from contextlib import aclosing
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, List, Optional

from rich.console import Console

from chat_agent.core.chat_history import ChatHistory
from chat_agent.core.conductor import Conductor
from chat_agent.core.execution_events import (
    EXECUTION_EVENT_TAG,
    Marker,
    split_markers,
    strip_markers,
)
from chat_agent.core.request_context import RequestContext, trace
from chat_agent.core.system_prompt_builder import (
    create_chat_prompt,
    create_query_with_tools_prompt,
    format_datetime,
)

logger = logging.getLogger(__name__)

MemoriesProvider = Callable[[str], Awaitable[str]]


def file_memories_provider(path: Path) -> MemoriesProvider:
    """Memories kept in a plain text file, re-read before every question."""

    async def read_memories(question: str) -> str:
        try:
            return path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            logger.debug(f"No memories file at {path}")
        except OSError as e:
            logger.warning(f"Could not read memories file {path}: {e}")
        return ""

    return read_memories


class ChatSession:
    """One conversation with the model, spanning many turns.

    The session owns the transcript and shares the conductor's cancellation
    token with whoever drives it, so a caller can cancel the answer in flight.
    """

    def __init__(
        self,
        conductor: Conductor,
        history: Optional[ChatHistory] = None,
        memories_provider: Optional[MemoriesProvider] = None,
    ):
        self.conductor = conductor
        self.history = history if history is not None else ChatHistory()
        self.memories_provider = memories_provider
        self.last_request: Optional[RequestContext] = None

    @property
    def cancellation_token(self):
        return self.conductor.cancellation_token

    def cancel(self, reason: str = "User cancelled"):
        """Cancel the answer currently being streamed."""
        self.cancellation_token.cancel(reason)

    async def ask(self, question: str) -> AsyncIterator[str]:
        """Stream the answer to a question and record the turn.

        The assistant message stored in the transcript is the plain answer
        text; execution markers are stripped. Nothing is stored for a
        cancelled answer.
        """
        token = self.cancellation_token
        token.reset()

        self.history.add_user_message(question)
        request_context = RequestContext(question=question, chat_history=self.history)
        self.last_request = request_context
        current_datetime = format_datetime(request_context.current_datetime)
        trace(request_context, "question", question)

        memories = ""
        if self.memories_provider is not None:
            memories = await self.memories_provider(question)

        chunks: List[str] = []
        response = self.conductor.create_response(
            request_context,
            create_chat_prompt(current_datetime),
            create_query_with_tools_prompt(current_datetime),
            memories,
        )
        async with aclosing(response) as stream:
            async for chunk in stream:
                chunks.append(chunk)
                yield chunk

        if token.is_cancelled:
            trace(request_context, "turn-cancelled", token.cancel_reason)
            return

        answer = strip_markers("".join(chunks))
        self.history.add_assistant_message(answer)
        trace(request_context, "answer-length", len(answer))

    def clear(self):
        self.history.clear()


class StreamRenderer:
    """Renders the conductor's output stream on a rich console."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def start(self):
        self.console.print(
            "\n[green]🤖 Assistant[/green] [dim](Ctrl+C to cancel)[/dim]"
        )

    def render(self, chunk: str):
        for piece in split_markers(chunk):
            if isinstance(piece, Marker):
                self._render_marker(piece)
            else:
                self.console.print(piece, end="", markup=False, highlight=False)

    def end(self):
        self.console.print()

    def _render_marker(self, marker: Marker):
        if marker.kind != EXECUTION_EVENT_TAG:
            return

        event = marker.payload
        if event.type == "tool_start":
            self.console.print(f"\n[cyan]🔧 Running {event.name}...[/cyan]")
        elif event.type == "tool_complete":
            seconds = (event.duration_ms or 0) / 1000
            if event.is_error:
                self.console.print(
                    f"[red]❌ {event.name} failed after {seconds:.1f}s[/red]"
                )
            else:
                self.console.print(
                    f"[green]✅ {event.name} finished in {seconds:.1f}s[/green]"
                )
        elif event.type == "thinking_start":
            self.console.print("[dim]💭 Thinking...[/dim]")
        elif event.type == "thinking_complete":
            seconds = (event.duration_ms or 0) / 1000
            self.console.print(f"[dim]💭 Thought for {seconds:.1f}s[/dim]")

    def print_cancelled(self):
        self.console.print("\n[red]🛑 Answer cancelled by user[/red]")

    def print_error(self, error: str):
        self.console.print(f"[red]❌ Error: {error}[/red]")

    def print_models(self, models: List[str], active: List[str]):
        if not models:
            self.console.print("[yellow]No models installed[/yellow]")
            return
        for model in models:
            marker = " [green](in use)[/green]" if model in active else ""
            self.console.print(f"• [cyan]{model}[/cyan]{marker}")

    def print_tools(self, tools):
        if not tools:
            self.console.print("[yellow]No tools available[/yellow]")
            return
        for tool in tools:
            description = tool.descriptor.description or ""
            self.console.print(
                f"• [cyan]{tool.name}[/cyan] [dim]({tool.server_id})[/dim]: "
                f"{description}"
            )
