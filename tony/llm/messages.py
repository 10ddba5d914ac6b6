"""Assistant message and tool call as reconstructed from one model turn."""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: str  # raw JSON text, parsed per tool by the dispatcher
    type: str = "function"

    @property
    def signature(self) -> tuple[str, str]:
        """Identity used by the repeated-tool-call guard."""
        return (self.name, self.arguments)

    def to_openai(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass
class AssistantMessage:
    """content is None when the model emitted no text at all (e.g. only tool calls)."""

    content: str | None
    tool_calls: list[ToolCall] = field(default_factory=list)
    role: str = "assistant"

    def to_openai(self) -> dict[str, Any]:
        msg: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            msg["tool_calls"] = [tc.to_openai() for tc in self.tool_calls]
        return msg
