"""Reconstruct one assistant message from streamed chat completion chunks.

Chunks may be openai `ChatCompletionChunk` objects or plain dicts of the same
shape:

    {model?, usage?, choices: [{delta: {content?, tool_calls?: [
        {index, id?, type?, function?: {name?, arguments?}}]}}]}

Tool call deltas are folded by `index`, not by arrival order; argument
fragments for one index are concatenated in arrival order.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable

from tony.llm.messages import AssistantMessage, ToolCall

logger = logging.getLogger(__name__)


def _get(obj: Any, key: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def _usage_to_dict(usage: Any) -> dict[str, Any]:
    if isinstance(usage, dict):
        return dict(usage)
    if hasattr(usage, "model_dump"):
        return usage.model_dump(exclude_none=True)
    return dict(vars(usage))


@dataclass
class StreamResult:
    message: AssistantMessage
    usage: dict[str, Any] | None = None
    model: str | None = None
    empty: bool = False


class StreamAccumulator:
    """Folds chunks into accumulator state; `finish()` yields the turn's message."""

    def __init__(self, on_content: Callable[[str], None] | None = None) -> None:
        self._on_content = on_content
        self._content_parts: list[str] = []
        self._slots: dict[int, dict[str, Any]] = {}
        self._model: str | None = None
        self._usage: dict[str, Any] | None = None
        self._chunks = 0

    def feed(self, chunk: Any) -> None:
        self._chunks += 1
        model = _get(chunk, "model")
        if model and self._model is None:
            self._model = model
        usage = _get(chunk, "usage")
        if usage:
            self._usage = _usage_to_dict(usage)
        for choice in _get(chunk, "choices") or []:
            delta = _get(choice, "delta")
            if delta is None:
                continue
            content = _get(delta, "content")
            if content:
                self._content_parts.append(content)
                if self._on_content is not None:
                    self._on_content(content)
            for tc_delta in _get(delta, "tool_calls") or []:
                self._fold_tool_call(tc_delta)

    def _fold_tool_call(self, tc_delta: Any) -> None:
        index = _get(tc_delta, "index")
        if index is None:
            index = 0
        slot = self._slots.get(index)
        if slot is None:
            slot = {"type": "function", "function": {}}
            self._slots[index] = slot
        tc_id = _get(tc_delta, "id")
        if tc_id:
            slot["id"] = tc_id
        tc_type = _get(tc_delta, "type")
        if tc_type:
            slot["type"] = tc_type
        fn = _get(tc_delta, "function")
        if fn is None:
            return
        name = _get(fn, "name")
        if name:
            slot["function"]["name"] = name
        arguments = _get(fn, "arguments")
        if arguments:
            slot["function"]["arguments"] = slot["function"].get("arguments", "") + arguments

    def finish(self) -> StreamResult:
        content = "".join(self._content_parts) if self._content_parts else None
        tool_calls = [
            ToolCall(
                id=slot.get("id") or f"call_{index}",
                name=slot["function"].get("name", ""),
                arguments=slot["function"].get("arguments", ""),
                type=slot.get("type", "function"),
            )
            for index, slot in sorted(self._slots.items())
        ]
        empty = content is None and not tool_calls
        if empty:
            logger.warning("stream: empty response after %d chunk(s), model=%s", self._chunks, self._model)
        return StreamResult(
            message=AssistantMessage(content=content, tool_calls=tool_calls),
            usage=self._usage,
            model=self._model,
            empty=empty,
        )
