"""Tests for model resolution, TaskRunner recursion and the sequential run driver."""

import json

import pytest

from tony.agents.runner import FALLBACK_MODEL, TOOL_MODEL, TaskRunner, resolve_model
from tony.context import RuntimeContext
from tony.errors import RequestAborted, TaskNotFoundError
from tony.execution import StopReason
from tony.instructions import AgentTask, ChatTask, Instructions, ToolDefinition
from tony.memory import MemoryConfig
from tony.runner import run_tasks, select_tasks

from conftest import FakeMcp, ScriptedTransport, completion, reply


def _invoke(task_id: str, override: str | None = None) -> tuple[str, str]:
    args = {"taskId": task_id}
    if override is not None:
        args["input"] = override
    return ("invoke_task", json.dumps(args))


def _agent(task_id: str, **kwargs) -> AgentTask:
    kwargs.setdefault("memory", MemoryConfig())
    return AgentTask(id=task_id, **kwargs)


def _runtime(settings, transport, mcp=None) -> RuntimeContext:
    return RuntimeContext(settings, secrets_getter=lambda _name: None, transport=transport, mcp=mcp or FakeMcp())


class TestResolveModel:
    """Task override, run default, fallback; tools force the tool model."""

    def test_order(self) -> None:
        assert resolve_model(_agent("a", model="task-m"), "run-m") == "task-m"
        assert resolve_model(_agent("a"), "run-m") == "run-m"
        assert resolve_model(_agent("a"), None) == FALLBACK_MODEL

    def test_tools_force_tool_model(self) -> None:
        with_tool = _agent("a", model="task-m", tool=ToolDefinition(name="fetchFoo"))
        assert resolve_model(with_tool, "run-m") == TOOL_MODEL
        with_mcp = _agent("a", model="task-m", mcp_tools=["fs"])
        assert resolve_model(with_mcp, "run-m", tool_model="custom-tools") == "custom-tools"


class TestTaskRunner:
    """Chat and agent dispatch, nested invocation through invoke_task."""

    @pytest.mark.asyncio
    async def test_chat_task(self, settings) -> None:
        task = ChatTask(id="sum", prompt="You summarize.", description="Summarize this.", outcome="One line.")
        transport = ScriptedTransport(completions=[completion("Short summary.")])
        runner = TaskRunner(_runtime(settings, transport), {"sum": task}, default_model="run-m")
        result = await runner.run_top_level(task)
        assert result.stop_reason is StopReason.COMPLETED
        assert result.final_content == "Short summary."
        request = transport.complete_requests[0]
        assert request["model"] == "run-m"
        assert request["messages"] == [
            {"role": "system", "content": "You summarize."},
            {"role": "system", "content": "Desired outcome: One line."},
            {"role": "user", "content": "Summarize this."},
        ]

    @pytest.mark.asyncio
    async def test_chat_task_blank_reply(self, settings) -> None:
        task = ChatTask(id="sum", prompt="p", description="d")
        transport = ScriptedTransport(completions=[completion("")])
        result = await TaskRunner(_runtime(settings, transport), {"sum": task}).run_top_level(task)
        assert result.stop_reason is StopReason.LOW_VALUE
        assert result.final_content == "d"

    @pytest.mark.asyncio
    async def test_sub_task_inherits_memory_and_returns_last_message(self, settings) -> None:
        parent = _agent("a", input="Plan the trip", memory=MemoryConfig(context=["Parent rules."]))
        child = _agent("b", input="default b input", memory=MemoryConfig(context=["Child rules."]))
        transport = ScriptedTransport(
            [
                reply("Delegating.", _invoke("b", "Book the hotel")),
                reply("Hotel booked."),
                reply("Trip planned."),
            ]
        )
        runner = TaskRunner(_runtime(settings, transport), {"a": parent, "b": child})
        result = await runner.run_top_level(parent)

        assert result.stop_reason is StopReason.COMPLETED
        assert result.final_content == "Trip planned."
        child_messages = transport.stream_requests[1]["messages"]
        assert child_messages == [
            {"role": "system", "content": "Parent rules."},
            {"role": "system", "content": "Child rules."},
            {"role": "user", "content": "Plan the trip"},
            {"role": "assistant", "content": "Delegating."},
            {"role": "user", "content": "Book the hotel"},
        ]
        tool_message = transport.stream_requests[2]["messages"][-1]
        assert json.loads(tool_message["content"]) == {"ok": True, "taskId": "b", "lastMessage": "Hotel booked."}
        assert [e.content for e in result.memory.get_history()] == ["Plan the trip", "Delegating.", "Trip planned."]

    @pytest.mark.asyncio
    async def test_input_override_after_tool_call_only_turn(self, settings) -> None:
        parent = _agent("a", input="parent question")
        child = _agent("b", input="default b input")
        transport = ScriptedTransport(
            [reply(None, _invoke("b", "OVERRIDE")), reply("Override handled."), reply("All done.")]
        )
        runner = TaskRunner(_runtime(settings, transport), {"a": parent, "b": child})
        result = await runner.run_top_level(parent)

        assert result.final_content == "All done."
        assert transport.stream_requests[1]["messages"] == [
            {"role": "user", "content": "parent question"},
            {"role": "user", "content": "OVERRIDE"},
        ]
        tool_message = transport.stream_requests[2]["messages"][-1]
        assert json.loads(tool_message["content"])["lastMessage"] == "Override handled."

    @pytest.mark.asyncio
    async def test_blank_chat_sub_task_reports_no_message(self, settings) -> None:
        parent = _agent("a", input="go")
        summary = ChatTask(id="sum", prompt="p", description="summarize")
        transport = ScriptedTransport(
            [reply(None, _invoke("sum")), reply("No summary available.")],
            completions=[completion("  ")],
        )
        runner = TaskRunner(_runtime(settings, transport), {"a": parent, "sum": summary})
        await runner.run_top_level(parent)
        tool_message = transport.stream_requests[1]["messages"][-1]
        assert json.loads(tool_message["content"]) == {"ok": True, "taskId": "sum", "lastMessage": None}

    @pytest.mark.asyncio
    async def test_self_invocation_rejected(self, settings) -> None:
        task = _agent("a", input="go")
        transport = ScriptedTransport([reply(None, _invoke("a")), reply("Gave up on recursion.")])
        result = await TaskRunner(_runtime(settings, transport), {"a": task}).run_top_level(task)
        assert result.stop_reason is StopReason.COMPLETED
        assert len(transport.stream_requests) == 2
        error = json.loads(transport.stream_requests[1]["messages"][-1]["content"])["error"]
        assert error == "Cycle detected: a -> a"

    @pytest.mark.asyncio
    async def test_depth_limit_along_chain(self, settings) -> None:
        ids = ["a", "b", "c", "d", "e"]
        tasks = {i: _agent(i, input=f"run {i}") for i in ids}
        transport = ScriptedTransport(
            [
                reply(None, _invoke("b")),
                reply(None, _invoke("c")),
                reply(None, _invoke("d")),
                reply(None, _invoke("e")),
                reply("d done"),
                reply("c done"),
                reply("b done"),
                reply("a done"),
            ]
        )
        result = await TaskRunner(_runtime(settings, transport), tasks).run_top_level(tasks["a"])
        assert result.final_content == "a done"
        assert transport.turns == []
        rejected = json.loads(transport.stream_requests[4]["messages"][-1]["content"])
        assert rejected == {"error": "Max task depth (3) exceeded when invoking e"}
        assert json.loads(transport.stream_requests[7]["messages"][-1]["content"])["lastMessage"] == "b done"

    @pytest.mark.asyncio
    async def test_invoke_task_not_exposed_when_disabled(self, settings) -> None:
        settings["agent"]["expose_invoke_task"] = False
        task = _agent("a", input="go")
        transport = ScriptedTransport([reply(None, _invoke("a"))])
        result = await TaskRunner(_runtime(settings, transport), {"a": task}).run_top_level(task)
        assert result.stop_reason is StopReason.NO_TOOLS
        assert "tools" not in transport.stream_requests[0]


class FailingFirstTransport(ScriptedTransport):
    def __init__(self, error: Exception, turns) -> None:
        super().__init__(turns)
        self.error = error
        self.failed = False

    async def stream(self, params, on_content=None):
        if not self.failed:
            self.failed = True
            self.stream_requests.append(params)
            raise self.error
        return await super().stream(params, on_content)


def _instructions() -> Instructions:
    return Instructions(tasks=[_agent("first", input="one"), _agent("second", input="two")])


class TestRunTasks:
    """Sequential execution, failure policy, single teardown."""

    def test_select_tasks(self) -> None:
        instructions = _instructions()
        assert [t.id for t in select_tasks(instructions)] == ["first", "second"]
        assert [t.id for t in select_tasks(instructions, "second")] == ["second"]
        with pytest.raises(TaskNotFoundError, match="Available tasks: first, second"):
            select_tasks(instructions, "third")

    @pytest.mark.asyncio
    async def test_all_tasks_run_in_order(self, settings) -> None:
        mcp = FakeMcp()
        transport = ScriptedTransport([reply("one done"), reply("two done")])
        code = await run_tasks(_instructions(), _runtime(settings, transport, mcp))
        assert code == 0
        assert [r["messages"][-1]["content"] for r in transport.stream_requests] == ["one", "two"]
        assert mcp.shutdown_calls == 1

    @pytest.mark.asyncio
    async def test_fail_fast_stops_run(self, settings) -> None:
        mcp = FakeMcp()
        transport = FailingFirstTransport(RuntimeError("model down"), [reply("two done")])
        code = await run_tasks(_instructions(), _runtime(settings, transport, mcp))
        assert code == 1
        assert len(transport.stream_requests) == 1
        assert mcp.shutdown_calls == 1

    @pytest.mark.asyncio
    async def test_continue_after_failure(self, settings) -> None:
        settings["run"]["fail_fast"] = False
        transport = FailingFirstTransport(RuntimeError("model down"), [reply("two done")])
        code = await run_tasks(_instructions(), _runtime(settings, transport))
        assert code == 1
        assert len(transport.stream_requests) == 2

    @pytest.mark.asyncio
    async def test_abort_exits_130(self, settings) -> None:
        mcp = FakeMcp()
        transport = FailingFirstTransport(RequestAborted("Request aborted: SIGINT"), [reply("two done")])
        code = await run_tasks(_instructions(), _runtime(settings, transport, mcp))
        assert code == 130
        assert len(transport.stream_requests) == 1
        assert mcp.shutdown_calls == 1

    @pytest.mark.asyncio
    async def test_single_task_and_model_override(self, settings) -> None:
        transport = ScriptedTransport([reply("two done")])
        code = await run_tasks(_instructions(), _runtime(settings, transport), task_id="second", model_override="cli-m")
        assert code == 0
        assert transport.stream_requests[0]["model"] == "cli-m"

    @pytest.mark.asyncio
    async def test_unknown_task_still_tears_down(self, settings) -> None:
        mcp = FakeMcp()
        with pytest.raises(TaskNotFoundError):
            await run_tasks(_instructions(), _runtime(settings, ScriptedTransport(), mcp), task_id="nope")
        assert mcp.shutdown_calls == 1
