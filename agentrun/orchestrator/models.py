"""
Coordinator state and execution context types
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class AgentStatus(str, Enum):
    """Coordinator state machine states"""
    IDLE = "idle"
    THINKING = "thinking"
    COMPLETED = "completed"
    ERROR = "error"

    @classmethod
    def terminal_states(cls) -> frozenset:
        """States in which no execution is in flight."""
        return frozenset({cls.IDLE, cls.COMPLETED, cls.ERROR})


@dataclass(frozen=True)
class AgentState:
    """
    Observable coordinator state.

    ``final_text`` is set for COMPLETED, ``message`` and ``cause`` for ERROR.

    Example:
        state = coordinator.state
        if state.status == AgentStatus.COMPLETED:
            print(state.final_text)
    """
    status: AgentStatus
    final_text: Optional[str] = None
    message: Optional[str] = None
    cause: Optional[BaseException] = None

    @classmethod
    def idle(cls) -> "AgentState":
        return cls(AgentStatus.IDLE)

    @classmethod
    def thinking(cls) -> "AgentState":
        return cls(AgentStatus.THINKING)

    @classmethod
    def completed(cls, final_text: str) -> "AgentState":
        return cls(AgentStatus.COMPLETED, final_text=final_text)

    @classmethod
    def error(cls, message: str, cause: Optional[BaseException] = None) -> "AgentState":
        return cls(AgentStatus.ERROR, message=message, cause=cause)

    @property
    def is_running(self) -> bool:
        return self.status == AgentStatus.THINKING


@dataclass(frozen=True)
class ExecutionContext:
    """
    Why an execution runs: a user turn, or a scheduled job.

    Only affects prompt construction.
    """
    job_id: Optional[str] = None
    trigger_time: Optional[datetime] = None

    @property
    def is_scheduled(self) -> bool:
        return self.job_id is not None

    @classmethod
    def interactive(cls) -> "ExecutionContext":
        return cls()

    @classmethod
    def scheduled(cls, job_id: str, trigger_time: Optional[datetime] = None) -> "ExecutionContext":
        return cls(job_id=job_id, trigger_time=trigger_time or datetime.now())


INTERACTIVE = ExecutionContext.interactive()
