"""Conversation transcript shared across turns of a chat session.

The history is stored as an ordered list of role/content messages so it can be
replayed to the model as separate message objects.
"""

import logging
from typing import Dict, List, Literal

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

Role = Literal["user", "assistant", "tool", "system"]


class ChatMessage(BaseModel):
    """A single conversation message."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str


class ChatHistory:
    """Manages the user/assistant conversation history."""

    def __init__(self):
        self._messages: List[ChatMessage] = []

    def add_user_message(self, content: str):
        """Add a user message to the chat history."""
        self._messages.append(ChatMessage(role="user", content=content))

    def add_assistant_message(self, content: str):
        """Add an assistant message to the chat history."""
        self._messages.append(ChatMessage(role="assistant", content=content))

    def add_message(self, role: str, content: str):
        """Add a message with an explicit role (validated)."""
        self._messages.append(ChatMessage(role=role, content=content))

    def get_messages(self) -> List[ChatMessage]:
        """Return a copy of the messages; changing it leaves the history intact."""
        return list(self._messages)

    def to_model_messages(self) -> List[Dict[str, str]]:
        """Convert the history to the role/content dicts sent to the model."""
        return [
            {"role": message.role, "content": message.content}
            for message in self._messages
        ]

    def clear(self):
        self._messages = []

    @property
    def length(self) -> int:
        return len(self._messages)

    def is_empty(self) -> bool:
        return len(self._messages) == 0

    def __len__(self) -> int:
        return len(self._messages)

    def __str__(self) -> str:
        return "\n".join(
            f"{message.role.capitalize()}: {message.content}"
            for message in self._messages
        )
