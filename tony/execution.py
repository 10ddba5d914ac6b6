"""Execution context threaded through recursive task invocation, and run outcomes."""

from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Mapping

from tony.instructions import AgentTask, ChatTask
from tony.memory import Memory


class StopReason(StrEnum):
    COMPLETED = "completed"
    NOTHING_TO_DO = "nothing_to_do"
    MAX_ITERATIONS = "max_iterations"
    REPEATED_CONTENT = "repeated_content"
    LOW_VALUE = "low_value"
    REPEATED_TOOL_CALL = "repeated_tool_call"
    TOOL_ERROR = "tool_error"
    NO_TOOLS = "no_tools"


# Outcomes where the task ran to its natural end rather than being stopped by a guard
NATURAL_STOPS = frozenset({StopReason.COMPLETED, StopReason.NOTHING_TO_DO})


@dataclass
class TaskRunResult:
    task_id: str
    stop_reason: StopReason
    memory: Memory
    iterations: int = 0
    model: str | None = None

    @property
    def final_content(self) -> str | None:
        last = self.memory.get_last_entry()
        return last.content if last else None

    @property
    def stopped_defensively(self) -> bool:
        return self.stop_reason not in NATURAL_STOPS


@dataclass(frozen=True)
class TaskExecutionContext:
    """Immutable per call. Nested invocations get a new context via descend()."""

    tasks: Mapping[str, ChatTask | AgentTask]
    default_model: str | None = None
    depth: int = 0
    # Task ids active along this call path, outermost first
    chain: tuple[str, ...] = field(default_factory=tuple)
    run_id: str | None = None

    def descend(self, task_id: str) -> "TaskExecutionContext":
        return replace(self, depth=self.depth + 1, chain=(*self.chain, task_id))
