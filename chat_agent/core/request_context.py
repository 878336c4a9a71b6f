"""Per-request context and trace logging."""

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime

from chat_agent.core.chat_history import ChatHistory

logger = logging.getLogger(__name__)


@dataclass
class RequestContext:
    """Everything the conductor needs to know about the request being answered."""

    question: str
    chat_history: ChatHistory
    current_datetime: datetime = field(default_factory=datetime.now)
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    started_at: float = field(default_factory=time.monotonic)

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started_at) * 1000)


def trace(request_context: RequestContext, field_name: str, value) -> None:
    """Log one traced field of a request, stamped with the elapsed time."""
    logger.info(
        f"[{request_context.request_id}] {request_context.elapsed_ms}ms: "
        f"{field_name}: {value}"
    )
