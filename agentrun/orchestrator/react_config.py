"""ReAct loop configuration and result dataclasses.

Centralizes the tunable parameters of the ReAct loop along with the
structured types describing a finished run.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from ..llm.base import Usage


@dataclass
class ReactLoopConfig:
    """All ReAct loop configuration centralized in one place."""

    # Loop control
    max_iterations: int = 200
    temperature: float = 0.2
    max_tokens: Optional[int] = None
    """Response token cap, provider default when None."""

    # Context management
    context_window_tokens: int = 200_000
    """Context window size in tokens."""
    trim_threshold: float = 0.85
    """Trim history before a call when the estimate exceeds this fraction."""
    min_messages_for_trim: int = 6
    """History must hold more than this many messages to be trimmed."""
    preserve_tail: int = 6
    """Most recent messages never removed by trimming."""
    min_trimmable_messages: int = 8
    """Histories of this size or smaller are never trimmed."""

    # Overflow recovery
    max_overflow_retries: int = 2
    """Retries of one iteration after a context overflow."""
    overflow_trim_target: float = 0.5
    """Trim to this fraction of the window before retrying."""

    # Tool results
    max_llm_tool_result_chars: int = 32_768
    """Tool output cap applied before sending it back to the model."""


@dataclass
class ToolCallRecord:
    """Record of a single tool call made during the loop."""

    name: str
    success: bool
    tool_call_id: str = ""


@dataclass
class ReactLoopResult:
    """Outcome of a ReAct run that produced user-facing text."""

    text: str
    iterations: int = 0
    usage: Optional[Usage] = None
    tool_calls: List[ToolCallRecord] = field(default_factory=list)
    degraded: bool = False
    """True when the text is an apology for a provider failure."""
    exhausted: bool = False
    """True when the iteration cap was reached."""
