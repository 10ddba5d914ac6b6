"""Task declarations: chat and agent tasks, tool definitions, remote tool provider configs."""

import json
from pathlib import Path
from typing import Annotated, Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from tony.errors import InstructionsError
from tony.memory import MemoryConfig


class _Declared(BaseModel):
    """Task file fields are camelCase on disk, snake_case in code."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class ToolDefinition(_Declared):
    name: str = Field(min_length=1)
    description: str = ""
    parameters: dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})
    # Name of the remote tool provider that serves this tool; None for local tools
    mcp_server: str | None = None

    def to_openai(self) -> dict[str, Any]:
        """Chat completions `tools[]` entry."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class McpServerConfig(_Declared):
    """Remote tool provider. Exactly one of url/command selects the transport."""

    name: str = Field(min_length=1)
    url: str | None = None
    command: str | None = None
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _one_transport(self) -> "McpServerConfig":
        if bool(self.url) == bool(self.command):
            raise ValueError(f"MCP server {self.name!r} needs exactly one of url or command")
        return self


class _TaskBase(_Declared):
    id: str = Field(min_length=1)
    model: str | None = None
    temperature: float | None = None
    top_p: float | None = None
    max_tokens: int | None = None
    seed: int | None = None
    outcome: str | None = None
    mcp_servers: list[McpServerConfig] = Field(default_factory=list)
    # Allow-list: "server" exposes every tool of that provider, "server.tool" a single one
    mcp_tools: list[str] = Field(default_factory=list)
    tool: ToolDefinition | None = None

    @property
    def uses_tools(self) -> bool:
        return self.tool is not None or bool(self.mcp_tools)

    def sampling_params(self) -> dict[str, Any]:
        params = {
            "temperature": self.temperature,
            "top_p": self.top_p,
            "max_tokens": self.max_tokens,
            "seed": self.seed,
        }
        return {k: v for k, v in params.items() if v is not None}


class ChatTask(_TaskBase):
    """One-shot: system prompt plus user description, single model call."""

    type: Literal["chat"] = "chat"
    prompt: str
    description: str
    memory: MemoryConfig | None = None


class AgentTask(_TaskBase):
    """Iterative: model calls and tool executions until a stopping condition."""

    type: Literal["agent"] = "agent"
    memory: MemoryConfig
    input: str | None = None


Task = Annotated[ChatTask | AgentTask, Field(discriminator="type")]


class Instructions(_Declared):
    default_model: str | None = None
    tasks: list[Task] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_ids(self) -> "Instructions":
        seen: set[str] = set()
        for task in self.tasks:
            if task.id in seen:
                raise ValueError(f"duplicate task id {task.id!r}")
            seen.add(task.id)
        return self

    def tasks_by_id(self) -> dict[str, ChatTask | AgentTask]:
        return {t.id: t for t in self.tasks}


def parse_instructions(raw: str, source: str = "<string>") -> Instructions:
    """Parse JSON (or YAML, for .yaml/.yml sources) into validated Instructions."""
    try:
        if source.endswith((".yaml", ".yml")):
            data = yaml.safe_load(raw)
        else:
            data = json.loads(raw)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise InstructionsError(f"Failed to parse {source}: {e}") from e
    if not isinstance(data, dict):
        raise InstructionsError(f"Invalid instructions format in {source}")
    try:
        return Instructions.model_validate(data)
    except ValidationError as e:
        raise InstructionsError(f"Invalid instructions in {source}: {e}") from e


def load_instructions(path: Path) -> Instructions:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise InstructionsError(f"Cannot read {path}: {e}") from e
    return parse_instructions(raw, str(path))
