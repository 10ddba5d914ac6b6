"""Agent loop: call the model, execute requested tools, repeat until a stopping condition."""

import logging
from dataclasses import dataclass
from typing import Any, Callable

from tony.audit import audit, audit_step, audit_warn
from tony.execution import StopReason, TaskRunResult
from tony.instructions import AgentTask, ToolDefinition
from tony.memory import Memory
from tony.settings import get_setting
from tony.tools.dispatcher import ToolDispatcher

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AgentLoopConfig:
    max_iterations: int = 10
    repeat_content_limit: int = 2
    repeat_tool_call_limit: int = 2

    @classmethod
    def from_settings(cls, settings: dict[str, Any]) -> "AgentLoopConfig":
        return cls(
            max_iterations=int(get_setting(settings, "agent.max_iterations", 10)),
            repeat_content_limit=int(get_setting(settings, "agent.repeat_content_limit", 2)),
            repeat_tool_call_limit=int(get_setting(settings, "agent.repeat_tool_call_limit", 2)),
        )


def outcome_note(outcome: str) -> dict[str, str]:
    return {"role": "system", "content": f"Desired outcome: {outcome}"}


def _has_text(content: str | None) -> bool:
    return bool(content and content.strip())


class AgentLoop:
    """One agent task run. Assistant text is appended to memory as soon as it is produced,
    so partial progress survives whichever condition ends the loop."""

    def __init__(
        self,
        task: AgentTask,
        memory: Memory,
        model: str,
        transport: Any,
        dispatcher: ToolDispatcher,
        tools: list[ToolDefinition],
        config: AgentLoopConfig | None = None,
        on_content: Callable[[str], None] | None = None,
        seed_over_inherited: bool = False,
    ) -> None:
        self._task = task
        self._memory = memory
        self._model = model
        self._transport = transport
        self._dispatcher = dispatcher
        self._tools = tools
        self._config = config or AgentLoopConfig()
        self._on_content = on_content
        self._seed_over_inherited = seed_over_inherited

    def _build_messages(self) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": c} for c in self._memory.get_context()
        ]
        if self._task.outcome:
            messages.append(outcome_note(self._task.outcome))
        messages.extend({"role": e.role, "content": e.content} for e in self._memory.get_history())
        return messages

    def _finish(self, reason: StopReason, iterations: int) -> TaskRunResult:
        if reason in (StopReason.COMPLETED, StopReason.NOTHING_TO_DO):
            audit(f"agent.stop: {reason} after {iterations} iteration(s)")
        else:
            audit_warn(f"agent.stop: {reason} after {iterations} iteration(s)")
        return TaskRunResult(
            task_id=self._task.id,
            stop_reason=reason,
            memory=self._memory,
            iterations=iterations,
            model=self._model,
        )

    def _seed(self) -> bool:
        """Ensure the history ends with a user turn. False when there is nothing to answer.

        With seed_over_inherited (sub-task runs) the task input is appended even
        when the inherited history already ends with a user turn.
        """
        if self._task.input and (self._seed_over_inherited or not self._memory.ends_with_user_message()):
            self._memory.append_user(self._task.input)
            return True
        return self._memory.ends_with_user_message()

    async def run(self) -> TaskRunResult:
        if not self._seed():
            audit("agent.no_user_message: nothing to do")
            return self._finish(StopReason.NOTHING_TO_DO, 0)

        messages = self._build_messages()
        tool_payload = [t.to_openai() for t in self._tools]
        last_content: str | None = None
        content_repeats = 0
        last_signature: tuple[str, str] | None = None
        signature_repeats = 0

        for iteration in range(1, self._config.max_iterations + 1):
            params: dict[str, Any] = {
                "model": self._model,
                "messages": messages,
                **self._task.sampling_params(),
            }
            if tool_payload:
                params["tools"] = tool_payload
                params["tool_choice"] = "auto"
            audit_step("llm.request", f"iteration={iteration} model={self._model} messages={len(messages)}")
            result = await self._transport.stream(params, on_content=self._on_content)
            if result.usage:
                audit_step("llm.usage", f"{result.model or self._model} {result.usage}")
            message = result.message
            content = message.content
            if _has_text(content) and self._on_content is not None:
                self._on_content("\n")

            messages.append(message.to_openai())
            if _has_text(content):
                self._memory.append_assistant(content)
                if content == last_content:
                    content_repeats += 1
                else:
                    content_repeats = 1
                last_content = content
                if content_repeats >= self._config.repeat_content_limit:
                    return self._finish(StopReason.REPEATED_CONTENT, iteration)
            else:
                last_content = None
                content_repeats = 0

            if not message.tool_calls:
                if not _has_text(content):
                    return self._finish(StopReason.LOW_VALUE, iteration)
                return self._finish(StopReason.COMPLETED, iteration)

            if not self._tools:
                return self._finish(StopReason.NO_TOOLS, iteration)

            for call in message.tool_calls:
                if call.signature == last_signature:
                    signature_repeats += 1
                else:
                    signature_repeats = 1
                last_signature = call.signature
                if signature_repeats >= self._config.repeat_tool_call_limit:
                    return self._finish(StopReason.REPEATED_TOOL_CALL, iteration)

                tool_result = await self._dispatcher.execute(call)
                messages.append(
                    {"role": "tool", "tool_call_id": call.id, "content": tool_result.content}
                )
                if tool_result.is_fatal:
                    audit_warn(f"tool.error: {call.name} -> {tool_result.content}")
                    return self._finish(StopReason.TOOL_ERROR, iteration)

        return self._finish(StopReason.MAX_ITERATIONS, self._config.max_iterations)
