"""
History replay - Rebuild a coordinator's in-memory history from stored records
"""

import logging
from typing import List, Optional, Tuple

from ..message import Message, Role
from ..protocols import MessageRecord
from .prompts import CANCELLED_NOTE

logger = logging.getLogger(__name__)

_LABELS = {
    Role.USER.value: "User",
    Role.ASSISTANT.value: "Assistant",
}


def find_last_summary(records: List[MessageRecord]) -> Optional[int]:
    """Index of the most recent summary marker, None when there is none."""
    for i in range(len(records) - 1, -1, -1):
        if records[i].is_summary:
            return i
    return None


def build_history(records: List[MessageRecord]) -> Tuple[List[Message], Optional[str]]:
    """
    Replay stored records as conversation history.

    Only user and assistant text survives replay. Tool traffic stays in
    storage; a "stopped" marker becomes a note telling the model the
    previous answer was cancelled.

    Args:
        records: All records of a conversation in insertion order

    Returns:
        (messages after the last summary, that summary or None)
    """
    summary_index = find_last_summary(records)
    summary = records[summary_index].content if summary_index is not None else None
    start = summary_index + 1 if summary_index is not None else 0

    messages: List[Message] = []
    for record in records[start:]:
        if record.is_stopped_marker:
            messages.append(Message.assistant(CANCELLED_NOTE))
        elif record.role == Role.USER.value and record.content:
            content = record.content
            if record.image_paths:
                content += f"\n[{len(record.image_paths)} attachment(s) were sent with this message]"
            messages.append(Message.user(content))
        elif record.role == Role.ASSISTANT.value and record.content and not record.tool_calls_json:
            messages.append(Message.assistant(record.content))

    logger.debug(
        f"Rebuilt {len(messages)} history messages from {len(records)} records "
        f"(summary: {'yes' if summary else 'no'})"
    )
    return messages, summary


def format_transcript(messages: List[Message]) -> str:
    """Role-labeled plain-text transcript, one message per paragraph."""
    lines = []
    for msg in messages:
        if not msg.content:
            continue
        label = _LABELS.get(msg.role, msg.role.capitalize())
        lines.append(f"{label}: {msg.content}")
    return "\n\n".join(lines)
