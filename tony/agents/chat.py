"""Chat path: one request, one response, no tools loop."""

from typing import Any, Callable

from tony.agents.loop import outcome_note
from tony.audit import audit_step
from tony.execution import StopReason, TaskRunResult
from tony.instructions import ChatTask
from tony.memory import Memory


def build_chat_messages(task: ChatTask, memory: Memory) -> list[dict[str, Any]]:
    """Context, the task prompt and outcome note as system messages, then history."""
    messages: list[dict[str, Any]] = [{"role": "system", "content": c} for c in memory.get_context()]
    messages.append({"role": "system", "content": task.prompt})
    if task.outcome:
        messages.append(outcome_note(task.outcome))
    messages.extend({"role": e.role, "content": e.content} for e in memory.get_history())
    return messages


async def run_chat_task(
    task: ChatTask,
    memory: Memory,
    model: str,
    transport: Any,
    on_content: Callable[[str], None] | None = None,
) -> TaskRunResult:
    memory.append_user(task.description)
    completion = await transport.complete(
        {"model": model, "messages": build_chat_messages(task, memory), **task.sampling_params()}
    )
    usage = getattr(completion, "usage", None)
    if usage:
        audit_step("llm.usage", f"{getattr(completion, 'model', None) or model} {usage}")
    choices = getattr(completion, "choices", None) or []
    content = choices[0].message.content if choices else None
    if not content or not content.strip():
        return TaskRunResult(task.id, StopReason.LOW_VALUE, memory, iterations=1, model=model)
    memory.append_assistant(content)
    if on_content is not None:
        on_content(content + "\n")
    return TaskRunResult(task.id, StopReason.COMPLETED, memory, iterations=1, model=model)
