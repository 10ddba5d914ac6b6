"""Tool results: the JSON text fed back to the model plus an internal error tag."""

import json
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ToolErrorKind(StrEnum):
    INVALID_ARGUMENTS = "invalid_arguments"
    UNKNOWN_TOOL = "unknown_tool"
    EXECUTION = "execution"
    # invoke_task rejections and nested-run failures
    SUBTASK = "subtask"


# --- Wire models (serialized as the tool message content) ---


class ToolErrorPayload(BaseModel):
    error: str


class InvokeTaskResult(BaseModel):
    """Successful invoke_task result: {ok, taskId, lastMessage}."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    ok: bool = True
    task_id: str
    last_message: str | None = Field(default=None)


# --- Internal tagged result ---


@dataclass(frozen=True)
class ToolResult:
    tool_name: str
    content: str
    error_kind: ToolErrorKind | None = None

    @property
    def is_error(self) -> bool:
        return self.error_kind is not None

    @property
    def is_fatal(self) -> bool:
        """Execution failure of a non-sub-task tool ends the agent loop."""
        return self.error_kind is ToolErrorKind.EXECUTION

    @classmethod
    def ok(cls, tool_name: str, payload: Any) -> "ToolResult":
        if isinstance(payload, BaseModel):
            content = payload.model_dump_json(by_alias=True)
        elif isinstance(payload, str):
            content = payload
        else:
            content = json.dumps(payload, ensure_ascii=False, default=str)
        return cls(tool_name=tool_name, content=content)

    @classmethod
    def error(cls, tool_name: str, message: str, kind: ToolErrorKind) -> "ToolResult":
        return cls(
            tool_name=tool_name,
            content=ToolErrorPayload(error=message).model_dump_json(),
            error_kind=kind,
        )


def payload_error(payload: Any) -> str | None:
    """Error message carried by a provider payload ({"error": ...} or MCP isError), else None."""
    if not isinstance(payload, dict):
        return None
    if payload.get("error"):
        return str(payload["error"])
    if payload.get("isError"):
        texts = [
            item.get("text", "")
            for item in payload.get("content") or []
            if isinstance(item, dict) and item.get("type") == "text"
        ]
        return "; ".join(t for t in texts if t) or "tool reported an error"
    return None
