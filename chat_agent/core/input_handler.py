"""
Input handler using prompt_toolkit for interactive terminal input.

This module provides the InterruptibleInput class, which reads user input
from inside a running asyncio event loop, keeps a prompt history, and reports
Ctrl+C / Ctrl+D as an interruption instead of raising.
"""

import logging
from typing import Optional

from prompt_toolkit import PromptSession
from prompt_toolkit.history import History, InMemoryHistory
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.keys import Keys

logger = logging.getLogger(__name__)


class InterruptibleInput:
    """Input handler built on a prompt_toolkit PromptSession.

    Attributes:
        interrupted (bool): Flag indicating if the last read was interrupted
        session: The underlying PromptSession
    """

    def __init__(self, history: Optional[History] = None):
        self.interrupted = False
        self._allow_escape_interrupt = False
        self._bindings = KeyBindings()

        @self._bindings.add(Keys.Escape)
        def handle_escape(event):
            """Interrupt the prompt on ESC when enabled."""
            if self._allow_escape_interrupt:
                self.interrupted = True
                event.app.exit(exception=KeyboardInterrupt)

        self.session = PromptSession(
            history=history or InMemoryHistory(),
            key_bindings=self._bindings,
            multiline=False,
            wrap_lines=True,
        )

    async def get_input(
        self, prompt_text: str, allow_escape_interrupt: bool = False
    ) -> Optional[str]:
        """Read one line of input.

        Args:
            prompt_text: The prompt to display to the user
            allow_escape_interrupt: If True, pressing ESC interrupts the prompt

        Returns:
            The user's input, or None if interrupted or at EOF
        """
        self.interrupted = False
        self._allow_escape_interrupt = allow_escape_interrupt
        try:
            return await self.session.prompt_async(prompt_text)
        except KeyboardInterrupt:
            self.interrupted = True
            return None
        except EOFError:
            # Ctrl+D
            return None
