"""TaskRunner: per-task model resolution, chain/depth tracking, chat vs agent dispatch."""

import logging
import uuid
from typing import Mapping, assert_never

from tony.agents.chat import run_chat_task
from tony.agents.loop import AgentLoop, AgentLoopConfig
from tony.audit import audit_context, audit_step
from tony.context import RuntimeContext
from tony.execution import TaskExecutionContext, TaskRunResult
from tony.instructions import AgentTask, ChatTask
from tony.memory import Memory, MemoryConfig, merge_memory_configs
from tony.settings import get_setting
from tony.tools.dispatcher import ToolDispatcher, resolve_tool_set
from tony.tools.invoke_task import MAX_TASK_DEPTH, SubTaskInvoker

logger = logging.getLogger(__name__)

FALLBACK_MODEL = "liquid/lfm-2.5-1.2b-thinking:free"
TOOL_MODEL = "openai/gpt-4o-mini"


def resolve_model(
    task: ChatTask | AgentTask,
    run_default: str | None,
    fallback: str = FALLBACK_MODEL,
    tool_model: str = TOOL_MODEL,
) -> str:
    """Task override, else run default, else fallback; any tool usage forces the tool model."""
    if task.uses_tools:
        return tool_model
    return task.model or run_default or fallback


class TaskRunner:
    """Runs tasks sequentially; nested invoke_task calls re-enter run_task with a descended context."""

    def __init__(
        self,
        runtime: RuntimeContext,
        tasks: Mapping[str, ChatTask | AgentTask],
        default_model: str | None = None,
        run_id: str | None = None,
    ) -> None:
        settings = runtime.settings
        self._runtime = runtime
        self._tasks = tasks
        self._default_model = default_model
        self._run_id = run_id or uuid.uuid4().hex[:12]
        self._fallback_model = get_setting(settings, "llm.default_model", FALLBACK_MODEL)
        self._tool_model = get_setting(settings, "llm.tool_model", TOOL_MODEL)
        self._max_depth = int(get_setting(settings, "agent.max_depth", MAX_TASK_DEPTH))
        self._expose_invoke_task = bool(get_setting(settings, "agent.expose_invoke_task", True))
        self._loop_config = AgentLoopConfig.from_settings(settings)

    @property
    def run_id(self) -> str:
        return self._run_id

    async def run_top_level(self, task: ChatTask | AgentTask) -> TaskRunResult:
        """Fresh context per top-level task; the task's own id seeds the chain."""
        ctx = TaskExecutionContext(
            tasks=self._tasks,
            default_model=self._default_model,
            depth=0,
            chain=(task.id,),
            run_id=self._run_id,
        )
        return await self.run_task(task, ctx)

    async def run_task(
        self,
        task: ChatTask | AgentTask,
        ctx: TaskExecutionContext,
        inherited: MemoryConfig | None = None,
    ) -> TaskRunResult:
        task_run_id = uuid.uuid4().hex[:12]
        with audit_context(run_id=ctx.run_id, task_id=task.id, task_run_id=task_run_id):
            model = resolve_model(task, ctx.default_model, self._fallback_model, self._tool_model)
            audit_step("task.start", f"{task.type} model={model} depth={ctx.depth}")
            match task:
                case ChatTask():
                    memory = Memory(merge_memory_configs(inherited, task.memory))
                    result = await run_chat_task(
                        task, memory, model, self._runtime.transport, self._runtime.on_content
                    )
                case AgentTask():
                    result = await self._run_agent(task, ctx, model, inherited)
                case _:
                    assert_never(task)
            audit_step("task.end", f"{result.stop_reason} iterations={result.iterations}")
            return result

    async def _run_agent(
        self,
        task: AgentTask,
        ctx: TaskExecutionContext,
        model: str,
        inherited: MemoryConfig | None,
    ) -> TaskRunResult:
        runtime = self._runtime
        memory = Memory(merge_memory_configs(inherited, task.memory))
        tools = await resolve_tool_set(task, runtime.mcp, self._expose_invoke_task)
        invoker = SubTaskInvoker(ctx, memory, self.run_task, self._max_depth)
        dispatcher = ToolDispatcher(
            tools=tools,
            mcp_servers=task.mcp_servers,
            mcp=runtime.mcp,
            local_tools=runtime.local_tools,
            invoke_task=invoker,
        )
        loop = AgentLoop(
            task=task,
            memory=memory,
            model=model,
            transport=runtime.transport,
            dispatcher=dispatcher,
            tools=tools,
            config=self._loop_config,
            on_content=runtime.on_content,
            seed_over_inherited=inherited is not None,
        )
        return await loop.run()
