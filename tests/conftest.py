"""Shared fakes: chunk builders, scripted model transport, in-memory tool provider."""

import copy
from types import SimpleNamespace
from typing import Any

import pytest

from tony.llm.messages import AssistantMessage, ToolCall
from tony.llm.stream import StreamResult
from tony.settings import get_default_settings


def chunk(
    content: str | None = None,
    tool_calls: list[dict[str, Any]] | None = None,
    model: str | None = None,
    usage: dict[str, Any] | None = None,
) -> dict[str, Any]:
    delta: dict[str, Any] = {}
    if content is not None:
        delta["content"] = content
    if tool_calls is not None:
        delta["tool_calls"] = tool_calls
    out: dict[str, Any] = {"choices": [{"delta": delta}]}
    if model is not None:
        out["model"] = model
    if usage is not None:
        out["usage"] = usage
    return out


class FakeStream:
    """Async iterable over chunks; optionally raises `error` after `fail_after` chunks."""

    def __init__(self, chunks: list[Any], error: Exception | None = None, fail_after: int = 0) -> None:
        self._chunks = chunks
        self._error = error
        self._fail_after = fail_after

    async def __aiter__(self):
        for i, c in enumerate(self._chunks):
            if self._error is not None and i == self._fail_after:
                raise self._error
            yield c
        if self._error is not None and self._fail_after >= len(self._chunks):
            raise self._error


def reply(content: str | None = None, *calls: tuple[str, str]) -> StreamResult:
    """One scripted model turn: optional text plus (name, arguments) tool calls."""
    tool_calls = [ToolCall(id=f"call_{i}", name=name, arguments=args) for i, (name, args) in enumerate(calls)]
    message = AssistantMessage(content=content, tool_calls=tool_calls)
    return StreamResult(message=message, empty=content is None and not tool_calls)


def completion(content: str | None) -> SimpleNamespace:
    return SimpleNamespace(
        model="fake-model",
        usage=None,
        choices=[SimpleNamespace(message=SimpleNamespace(role="assistant", content=content))],
    )


class ScriptedTransport:
    """Returns scripted turns in order and records a deep copy of every request."""

    def __init__(self, turns: list[StreamResult] | None = None, completions: list[Any] | None = None) -> None:
        self.turns = list(turns or [])
        self.completions = list(completions or [])
        self.stream_requests: list[dict[str, Any]] = []
        self.complete_requests: list[dict[str, Any]] = []

    async def stream(self, params: dict[str, Any], on_content: Any = None) -> StreamResult:
        self.stream_requests.append(copy.deepcopy(params))
        if not self.turns:
            raise AssertionError("unexpected model call")
        result = self.turns.pop(0)
        if on_content is not None and result.message.content:
            on_content(result.message.content)
        return result

    async def complete(self, params: dict[str, Any]) -> Any:
        self.complete_requests.append(copy.deepcopy(params))
        if not self.completions:
            raise AssertionError("unexpected completion call")
        return self.completions.pop(0)


class FakeMcp:
    """In-memory stand-in for McpClientCache."""

    def __init__(
        self,
        tools: dict[str, list[dict[str, Any]]] | None = None,
        results: dict[str, Any] | None = None,
    ) -> None:
        self.tools = tools or {}
        self.results = results or {}
        self.calls: list[tuple[str, str, dict[str, Any]]] = []
        self.listed: list[str] = []
        self.shutdown_calls = 0

    async def list_tools(self, server: Any) -> list[dict[str, Any]]:
        self.listed.append(server.name)
        return [
            {"name": t["name"], "description": t.get("description", ""), "parameters": t.get("parameters", {})}
            for t in self.tools.get(server.name, [])
        ]

    async def call_tool(self, server: Any, name: str, args: dict[str, Any]) -> Any:
        self.calls.append((server.name, name, args))
        return self.results.get(name, {"content": [{"type": "text", "text": "ok"}]})

    async def shutdown(self) -> None:
        self.shutdown_calls += 1


@pytest.fixture
def settings() -> dict[str, Any]:
    return get_default_settings()
