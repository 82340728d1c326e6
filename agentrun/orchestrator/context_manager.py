"""Context budget arithmetic for the ReAct loop and the coordinator.

Defense 1 -- Tool-result truncation before it is sent to the model.
Defense 2 -- Middle-out trimming of the working history before each call.
Defense 3 -- Aggressive trimming after a context overflow error.

Summarization splits live here too, since they use the same estimates.
"""

import logging
from typing import List, Optional

from ..message import Message, Role
from .react_config import ReactLoopConfig

logger = logging.getLogger(__name__)

TRIM_PLACEHOLDER = "[System: {count} earlier tool interactions were trimmed to fit context window]"


def estimate_tokens(messages: List[Message]) -> int:
    """Estimate token count from messages using ~4 chars per token."""
    return sum(len(msg.content or "") for msg in messages) // 4


class ContextManager:
    """Keeps a message list within the model's context window."""

    def __init__(self, config: ReactLoopConfig) -> None:
        self.config = config

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def estimate_tokens(self, messages: List[Message], last_known: int = 0) -> int:
        """Prefer the provider-reported size of the last call when known."""
        if last_known > 0:
            return last_known
        return estimate_tokens(messages)

    def should_trim(self, messages: List[Message], estimate: int) -> bool:
        threshold = int(self.config.context_window_tokens * self.config.trim_threshold)
        return estimate > threshold and len(messages) > self.config.min_messages_for_trim

    # ------------------------------------------------------------------
    # Defense 1: Tool-result truncation
    # ------------------------------------------------------------------

    def truncate_tool_result(self, result: str) -> str:
        limit = self.config.max_llm_tool_result_chars
        if len(result) <= limit:
            return result
        return (
            result[:limit]
            + f"\n\n[Output truncated: {len(result)} chars total, showing first {limit}]"
        )

    # ------------------------------------------------------------------
    # Defense 2 and 3: History trimming
    # ------------------------------------------------------------------

    def trim_to_fraction(self, messages: List[Message], fraction: float) -> int:
        return self.trim(messages, int(self.config.context_window_tokens * fraction))

    def trim(self, messages: List[Message], target_tokens: int) -> int:
        """Remove middle messages in place until the estimate fits target_tokens.

        The head (system messages and the first user message) and the last
        ``preserve_tail`` messages are kept. Removed messages are replaced by
        a single user placeholder noting how many were dropped.

        Returns:
            Number of messages removed
        """
        if len(messages) <= self.config.min_trimmable_messages:
            return 0

        head_end = self._head_end(messages)
        if head_end is None:
            return 0

        tail_start = max(len(messages) - self.config.preserve_tail, head_end)
        current = estimate_tokens(messages)
        if current <= target_tokens:
            return 0

        # Work in characters so the post-trim estimate is exact
        placeholder_chars = len(TRIM_PLACEHOLDER.format(count=len(messages)))
        needed = sum(len(m.content or "") for m in messages) - target_tokens * 4 + placeholder_chars
        freed = 0
        remove_count = 0
        for msg in messages[head_end:tail_start]:
            if freed >= needed:
                break
            freed += len(msg.content or "")
            remove_count += 1

        if remove_count == 0:
            return 0

        del messages[head_end:head_end + remove_count]
        messages.insert(head_end, Message.user(TRIM_PLACEHOLDER.format(count=remove_count)))
        logger.info(
            f"[Context] Trimmed {remove_count} messages (~{freed // 4} tokens), "
            f"estimate {current} -> {estimate_tokens(messages)}"
        )
        return remove_count

    @staticmethod
    def _head_end(messages: List[Message]) -> Optional[int]:
        """Index just past the first user message, None when there is none."""
        for i, msg in enumerate(messages):
            if msg.role == Role.USER.value:
                return i + 1
        return None

    # ------------------------------------------------------------------
    # Summarization splits
    # ------------------------------------------------------------------

    @staticmethod
    def summary_split_index(
        history: List[Message],
        context_window: int,
        recent_share: float = 0.3,
        min_recent: int = 2,
    ) -> int:
        """Index where the recent suffix kept after summarization starts.

        The suffix fits within ``recent_share`` of the window, measured in
        characters (4 per token), and always holds at least ``min_recent``
        messages.
        """
        budget_chars = int(context_window * recent_share * 4)
        used = 0
        split = len(history)
        for i in range(len(history) - 1, -1, -1):
            size = len(history[i].content or "")
            if used + size > budget_chars:
                break
            used += size
            split = i
        return min(split, max(len(history) - min_recent, 0))
