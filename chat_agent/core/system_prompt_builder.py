"""Fixed prompt templates for chat and tool-calling turns."""

import logging
from datetime import datetime
from typing import Optional

logger = logging.getLogger(__name__)

DATETIME_FORMAT = "%B %d, %Y, %I:%M %p %z"


def format_datetime(dt: Optional[datetime] = None) -> str:
    """Format a timestamp the way prompts present the current time.

    Naive datetimes are treated as local time.
    """
    dt = dt or datetime.now()
    if dt.tzinfo is None:
        dt = dt.astimezone()
    return dt.strftime(DATETIME_FORMAT)


def create_chat_prompt(current_datetime: str) -> str:
    """System prompt for a plain chat answer without tools."""
    return f"""You are a helpful AI assistant. Answer the following questions based on the query and memories if applicable. Your responses should be:
1. Clear and concise
2. Accurate and well-reasoned
3. Helpful and practical
4. Professional yet friendly

Current Date & Time: {current_datetime}.

"""


def create_query_with_tools_prompt(current_datetime: str) -> str:
    """System prompt for a turn where the model may call tools."""
    return f"""Your job is to determine the tools to be used to answer the query below. Only use the tools provided to you if you feel they are necessary. You can also use the user's memories to help determine the arguments for the tool calls.
After the tool results come back, answer the user's query using them.
Current Date & Time: {current_datetime}
"""
