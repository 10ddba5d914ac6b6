"""Built-in invoke_task tool: run another declared task by id, with depth and cycle protection."""

import logging
from typing import Any, Awaitable, Callable, assert_never

from tony.audit import audit_error, audit_step, audit_warn
from tony.errors import RequestAborted
from tony.execution import StopReason, TaskExecutionContext, TaskRunResult
from tony.instructions import AgentTask, ChatTask, ToolDefinition
from tony.memory import Memory, MemoryConfig
from tony.tools.results import InvokeTaskResult, ToolErrorKind, ToolResult

logger = logging.getLogger(__name__)

INVOKE_TASK_TOOL_NAME = "invoke_task"
MAX_TASK_DEPTH = 3

INVOKE_TASK_TOOL = ToolDefinition(
    name=INVOKE_TASK_TOOL_NAME,
    description=(
        "Run another task from the task list by its id and return the task's final message. "
        "Optionally pass `input` to replace the task's own input (agent tasks) or "
        "description (chat tasks)."
    ),
    parameters={
        "type": "object",
        "properties": {
            "taskId": {"type": "string", "description": "Id of the task to run."},
            "input": {"type": "string", "description": "Optional input override."},
        },
        "required": ["taskId"],
    },
)

RunTask = Callable[
    [ChatTask | AgentTask, TaskExecutionContext, MemoryConfig | None],
    Awaitable[TaskRunResult],
]


def apply_input_override(task: ChatTask | AgentTask, override: str | None) -> ChatTask | AgentTask:
    """Clone the task with the override placed on its seed field."""
    if override is None:
        return task.model_copy(deep=True)
    match task:
        case AgentTask():
            return task.model_copy(update={"input": override}, deep=True)
        case ChatTask():
            return task.model_copy(update={"description": override}, deep=True)
        case _:
            assert_never(task)


class SubTaskInvoker:
    """Bound to one running task: its execution context and its memory (inherited by the sub-task)."""

    def __init__(
        self,
        context: TaskExecutionContext,
        parent_memory: Memory,
        run_task: RunTask,
        max_depth: int = MAX_TASK_DEPTH,
    ) -> None:
        self._context = context
        self._parent_memory = parent_memory
        self._run_task = run_task
        self._max_depth = max_depth

    def _reject(self, message: str) -> ToolResult:
        audit_warn(f"task.invoke.rejected: {message}")
        return ToolResult.error(INVOKE_TASK_TOOL_NAME, message, ToolErrorKind.SUBTASK)

    async def __call__(self, args: dict[str, Any]) -> ToolResult:
        task_id = args.get("taskId", args.get("task_id"))
        if not isinstance(task_id, str) or not task_id:
            return self._reject("invoke_task requires a non-empty string taskId")
        override = args.get("input")
        if override is not None and not isinstance(override, str):
            return self._reject("invoke_task input must be a string")

        ctx = self._context
        if ctx.depth >= self._max_depth:
            return self._reject(f"Max task depth ({self._max_depth}) exceeded when invoking {task_id}")
        if task_id in ctx.chain:
            return self._reject(f"Cycle detected: {' -> '.join((*ctx.chain, task_id))}")
        target = ctx.tasks.get(task_id)
        if target is None:
            return self._reject(f"Task not found: {task_id}")

        sub_task = apply_input_override(target, override)
        child = ctx.descend(task_id)
        audit_step("task.invoke", f"{task_id} depth={child.depth} chain={' -> '.join(child.chain)}")
        try:
            result = await self._run_task(sub_task, child, self._parent_memory.to_config())
        except RequestAborted:
            raise
        except Exception as e:
            logger.exception("invoke_task: sub-task %s failed", task_id)
            audit_error(f"task.invoke.failed: {task_id} -> {e}")
            return ToolResult.error(
                INVOKE_TASK_TOOL_NAME, f"Task {task_id} failed: {e}", ToolErrorKind.SUBTASK
            )
        last_message = result.final_content
        # A blank chat reply leaves the task's own description as the last entry
        if isinstance(sub_task, ChatTask) and result.stop_reason is StopReason.LOW_VALUE:
            last_message = None
        return ToolResult.ok(
            INVOKE_TASK_TOOL_NAME,
            InvokeTaskResult(task_id=task_id, last_message=last_message),
        )
