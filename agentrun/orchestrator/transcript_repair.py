"""
Transcript Repair - Fix malformed message lists before an LLM call

Trimming and cancellation can leave a transcript that providers reject.
Two repairs run on the outbound copy only:

1. Tool call inputs: tool calls with empty arguments are dropped from
   assistant messages; an assistant message left with nothing is dropped.
2. Tool result pairing: every tool call gets exactly one result right
   after its assistant message. Displaced results are moved, missing
   ones get a synthetic result, duplicates and orphans are dropped.
"""

import logging
from typing import Dict, List, Set, Tuple

from ..message import Message, Role

logger = logging.getLogger(__name__)

SYNTHETIC_TOOL_RESULT = "[synthetic] missing tool result - inserted for transcript repair"


def repair_tool_call_inputs(messages: List[Message]) -> Tuple[List[Message], int, int]:
    """
    Drop tool calls that have no arguments.

    Returns:
        (messages, dropped_tool_calls, dropped_assistant_messages). The
        original list is returned when nothing changed.
    """
    dropped_calls = 0
    dropped_messages = 0
    repaired: List[Message] = []

    for msg in messages:
        if msg.role != Role.ASSISTANT.value or not msg.tool_calls:
            repaired.append(msg)
            continue

        valid = [tc for tc in msg.tool_calls if tc.arguments and tc.arguments.strip()]
        for tc in msg.tool_calls:
            if tc not in valid:
                logger.warning(
                    "transcript_repair: dropped tool_call %s (%s) - missing arguments",
                    tc.id, tc.name,
                )
        dropped_calls += len(msg.tool_calls) - len(valid)

        if valid:
            if len(valid) < len(msg.tool_calls):
                msg = Message.assistant(msg.content, valid)
            repaired.append(msg)
        elif msg.content:
            repaired.append(Message.assistant(msg.content))
        else:
            dropped_messages += 1

    if not dropped_calls and not dropped_messages:
        return messages, 0, 0
    return repaired, dropped_calls, dropped_messages


def repair_tool_use_result_pairing(
    messages: List[Message],
) -> Tuple[List[Message], int, int, int]:
    """
    Pair each tool call with exactly one following result.

    Returns:
        (messages, added_synthetic, dropped_duplicates, dropped_orphans).
        The original list is returned when nothing changed.
    """
    owners: Set[str] = set()
    for msg in messages:
        if msg.role == Role.ASSISTANT.value:
            owners.update(tc.id for tc in msg.tool_calls or [])

    # tool_call_id -> index of its first result
    first_result: Dict[str, int] = {}
    for i, msg in enumerate(messages):
        if msg.role == Role.TOOL.value and msg.tool_call_id:
            first_result.setdefault(msg.tool_call_id, i)

    added = 0
    duplicates = 0
    orphans = 0
    placed: Set[str] = set()
    repaired: List[Message] = []
    changed = False

    for i, msg in enumerate(messages):
        if msg.role == Role.TOOL.value:
            # Results are emitted next to their assistant message below
            if msg.tool_call_id not in owners:
                orphans += 1
                changed = True
                logger.warning(
                    "transcript_repair: dropped orphaned tool result %s at index %d",
                    msg.tool_call_id, i,
                )
            elif first_result.get(msg.tool_call_id) != i:
                duplicates += 1
                changed = True
                logger.warning(
                    "transcript_repair: dropped duplicate tool result %s at index %d",
                    msg.tool_call_id, i,
                )
            continue

        repaired.append(msg)
        if msg.role != Role.ASSISTANT.value or not msg.tool_calls:
            continue

        expected = i + 1
        for tc in msg.tool_calls:
            if tc.id in placed:
                continue
            placed.add(tc.id)
            index = first_result.get(tc.id)
            if index is None:
                repaired.append(Message.tool(tc.id, SYNTHETIC_TOOL_RESULT, name=tc.name))
                added += 1
                changed = True
                logger.warning("transcript_repair: inserted synthetic result for tool_call %s", tc.id)
                continue
            if index != expected:
                changed = True
            repaired.append(messages[index])
            expected += 1

    if not changed:
        return messages, 0, 0, 0
    return repaired, added, duplicates, orphans


def repair_transcript(messages: List[Message]) -> List[Message]:
    """Run both repairs in sequence. Returns the original list when nothing changed."""
    messages, dropped_calls, dropped_messages = repair_tool_call_inputs(messages)
    if dropped_calls or dropped_messages:
        logger.info(
            "transcript_repair: dropped %d tool_calls, %d assistant messages",
            dropped_calls, dropped_messages,
        )

    messages, synthetic, duplicates, orphans = repair_tool_use_result_pairing(messages)
    if synthetic or duplicates or orphans:
        logger.info(
            "transcript_repair: %d synthetic, %d duplicates dropped, %d orphans dropped",
            synthetic, duplicates, orphans,
        )
    return messages
