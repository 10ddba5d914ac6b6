"""Tool-set resolution for an agent task and dispatch of model-requested tool calls."""

import json
import logging
from typing import Any, Awaitable, Callable

from tony.audit import audit, audit_step, audit_warn
from tony.errors import RequestAborted
from tony.instructions import AgentTask, ChatTask, McpServerConfig, ToolDefinition
from tony.llm.messages import ToolCall
from tony.tools.invoke_task import INVOKE_TASK_TOOL, INVOKE_TASK_TOOL_NAME
from tony.tools.local import LocalToolRegistry
from tony.tools.mcp import McpClientCache
from tony.tools.results import ToolErrorKind, ToolResult, payload_error

logger = logging.getLogger(__name__)

InvokeTaskHandler = Callable[[dict[str, Any]], Awaitable[ToolResult]]


def _find_server(servers: list[McpServerConfig], name: str) -> McpServerConfig | None:
    return next((s for s in servers if s.name == name), None)


async def resolve_tool_set(
    task: ChatTask | AgentTask,
    mcp: McpClientCache,
    expose_invoke_task: bool = True,
) -> list[ToolDefinition]:
    """Explicit tool, then allow-listed provider tools, then invoke_task. First name wins.

    Allow-list entries are "server" (every tool) or "server.tool" (one tool).
    An entry naming an unconfigured server is skipped with a warning; provider
    connection or listing failures propagate and fail the task.
    """
    tools: list[ToolDefinition] = []
    names: set[str] = set()

    def add(tool: ToolDefinition) -> None:
        if tool.name in names:
            return
        names.add(tool.name)
        tools.append(tool)

    if task.tool is not None:
        add(task.tool)

    listed: dict[str, list[dict[str, Any]]] = {}
    for entry in task.mcp_tools:
        server_name, _, tool_name = entry.partition(".")
        server = _find_server(task.mcp_servers, server_name)
        if server is None:
            audit_warn(f"tool.mcp.unconfigured: {server_name} (task {task.id})")
            continue
        if server_name not in listed:
            listed[server_name] = await mcp.list_tools(server)
        for info in listed[server_name]:
            if tool_name and info["name"] != tool_name:
                continue
            add(
                ToolDefinition(
                    name=info["name"],
                    description=info["description"],
                    parameters=info["parameters"],
                    mcp_server=server_name,
                )
            )

    if expose_invoke_task and INVOKE_TASK_TOOL_NAME not in names:
        add(INVOKE_TASK_TOOL)
    audit(f"tool.set: {task.id} -> {[t.name for t in tools]}")
    return tools


class ToolDispatcher:
    """Executes one ToolCall against the task's resolved tool set. Never raises for tool-level
    problems: bad arguments, unknown names and provider failures come back as error results."""

    def __init__(
        self,
        tools: list[ToolDefinition],
        mcp_servers: list[McpServerConfig],
        mcp: McpClientCache,
        local_tools: LocalToolRegistry,
        invoke_task: InvokeTaskHandler | None = None,
    ) -> None:
        self._tools = {t.name: t for t in tools}
        self._mcp_servers = mcp_servers
        self._mcp = mcp
        self._local_tools = local_tools
        self._invoke_task = invoke_task

    async def execute(self, call: ToolCall) -> ToolResult:
        name = call.name
        audit_step("tool.call", name)
        audit(f"tool.args.raw: {name} -> {call.arguments}")

        raw = call.arguments if call.arguments.strip() else "{}"
        try:
            args = json.loads(raw)
        except json.JSONDecodeError as e:
            return ToolResult.error(
                name, f"Invalid JSON arguments for tool {name}: {e}", ToolErrorKind.INVALID_ARGUMENTS
            )
        if not isinstance(args, dict):
            return ToolResult.error(
                name, f"Arguments for tool {name} must be a JSON object", ToolErrorKind.INVALID_ARGUMENTS
            )

        tool = self._tools.get(name)
        if tool is None:
            audit_warn(f"tool.unknown: {name}")
            return ToolResult.error(name, f"Unknown tool name: {name}", ToolErrorKind.UNKNOWN_TOOL)

        if tool is INVOKE_TASK_TOOL and self._invoke_task is not None:
            return await self._invoke_task(args)
        if tool.mcp_server:
            audit_step("tool.dispatch.mcp", f"{tool.mcp_server}.{name}")
            return await self._call_mcp(tool, args)
        return await self._call_local(tool, args)

    async def _call_mcp(self, tool: ToolDefinition, args: dict[str, Any]) -> ToolResult:
        server = _find_server(self._mcp_servers, tool.mcp_server or "")
        if server is None:
            return ToolResult.error(
                tool.name, f"MCP server {tool.mcp_server} not configured", ToolErrorKind.EXECUTION
            )
        payload = await self._mcp.call_tool(server, tool.name, args)
        error = payload_error(payload)
        if error is not None:
            audit_warn(f"tool.failed: {tool.name} -> {error}")
            return ToolResult(
                tool_name=tool.name,
                content=json.dumps(payload, ensure_ascii=False, default=str),
                error_kind=ToolErrorKind.EXECUTION,
            )
        return ToolResult.ok(tool.name, payload)

    async def _call_local(self, tool: ToolDefinition, args: dict[str, Any]) -> ToolResult:
        try:
            payload = await self._local_tools.call(tool.name, args)
        except RequestAborted:
            raise
        except Exception as e:
            logger.exception("local tool %s failed", tool.name)
            return ToolResult.error(tool.name, f"Tool {tool.name} failed: {e}", ToolErrorKind.EXECUTION)
        error = payload_error(payload)
        if error is not None:
            return ToolResult(
                tool_name=tool.name,
                content=json.dumps(payload, ensure_ascii=False, default=str),
                error_kind=ToolErrorKind.EXECUTION,
            )
        audit(f"tool.response: {tool.name}")
        return ToolResult.ok(tool.name, payload)
