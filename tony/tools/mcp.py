"""Remote tool provider (MCP) sessions, cached by provider name for the whole run."""

import asyncio
import json
import os
from typing import Any

from agents.mcp import MCPServerStdio

from tony.audit import audit, audit_error, audit_step, audit_warn
from tony.errors import McpError, McpTimeoutError, McpUnsupportedTransportError, RequestAborted
from tony.instructions import McpServerConfig
from tony.llm.cancellation import CancellationSignal

MCP_CONNECT_TIMEOUT = 30.0
MCP_TOOL_CALL_TIMEOUT = 60.0


async def _with_timeout(awaitable: Any, seconds: float, operation: str) -> Any:
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError as e:
        raise McpTimeoutError(f"{operation} timed out after {seconds:g}s") from e


def _merged_env(server: McpServerConfig) -> dict[str, str]:
    """Process environment overlaid with the provider's own env."""
    env = {k: v for k, v in os.environ.items() if isinstance(v, str)}
    env.update(server.env)
    return env


def _build_server(server: McpServerConfig, call_timeout: float) -> MCPServerStdio:
    if server.url:
        raise McpUnsupportedTransportError(
            f"MCP server {server.name} uses url transport, not implemented yet"
        )
    if not server.command:
        raise McpError(f"MCP server {server.name} missing command")
    params: dict[str, Any] = {
        "command": server.command,
        "args": list(server.args),
        "env": _merged_env(server),
    }
    return MCPServerStdio(
        name=server.name,
        params=params,
        client_session_timeout_seconds=call_timeout,
    )


def _serialize_result(result: Any) -> Any:
    """CallToolResult -> JSON-compatible structure."""
    if hasattr(result, "model_dump"):
        return result.model_dump(mode="json", exclude_none=True)
    return result


class McpClientCache:
    """Check cache, else connect and insert. Single writer: tasks run sequentially."""

    def __init__(
        self,
        connect_timeout: float = MCP_CONNECT_TIMEOUT,
        call_timeout: float = MCP_TOOL_CALL_TIMEOUT,
        cancellation: CancellationSignal | None = None,
    ) -> None:
        self._connect_timeout = connect_timeout
        self._call_timeout = call_timeout
        self._servers: dict[str, Any] = {}
        self._cancellation = cancellation
        self._closed = False

    async def _bounded(self, awaitable: Any, seconds: float, operation: str) -> Any:
        bounded = _with_timeout(awaitable, seconds, operation)
        if self._cancellation is None:
            return await bounded
        return await self._cancellation.guard(bounded)

    def _new_server(self, server: McpServerConfig) -> Any:
        return _build_server(server, self._call_timeout)

    async def get_session(self, server: McpServerConfig) -> Any:
        if self._closed:
            raise McpError("MCP client cache already shut down")
        cached = self._servers.get(server.name)
        if cached is not None:
            return cached
        audit_step("mcp.connect", server.name)
        session = self._new_server(server)
        await self._bounded(session.connect(), self._connect_timeout, f"MCP connection to {server.name}")
        self._servers[server.name] = session
        audit(f"mcp.connected: {server.name}")
        return session

    async def list_tools(self, server: McpServerConfig) -> list[dict[str, Any]]:
        """[{name, description, parameters}] for every tool the provider exposes. Raises on failure."""
        audit_step("mcp.listTools", server.name)
        session = await self.get_session(server)
        tools = await self._bounded(
            session.list_tools(), self._call_timeout, f"MCP listTools for {server.name}"
        )
        audit(f"mcp.tools.count: {server.name} -> {len(tools)}")
        return [
            {
                "name": tool.name,
                "description": getattr(tool, "description", None) or "",
                "parameters": getattr(tool, "inputSchema", None) or {"type": "object", "properties": {}},
            }
            for tool in tools
        ]

    async def call_tool(self, server: McpServerConfig, name: str, args: dict[str, Any]) -> Any:
        """Provider result, or {"error": ...} when the call fails or times out."""
        audit_step("mcp.call", f"{server.name}.{name}")
        audit(f"mcp.args: {server.name}.{name} -> {json.dumps(args, ensure_ascii=False, default=str)}")
        try:
            session = await self.get_session(server)
            result = await self._bounded(
                session.call_tool(name, args),
                self._call_timeout,
                f"MCP tool call {server.name}.{name}",
            )
        except RequestAborted:
            raise
        except Exception as e:
            audit_error(f"mcp.call.failed: {server.name}.{name} -> {e}")
            return {"error": f"MCP tool call failed: {e}"}
        payload = _serialize_result(result)
        audit(f"mcp.result: {server.name}.{name} -> {json.dumps(payload, ensure_ascii=False, default=str)}")
        return payload

    async def shutdown(self) -> None:
        """Close every cached session once. Individual close failures are logged, not raised."""
        if self._closed:
            return
        self._closed = True
        for name, session in list(self._servers.items()):
            try:
                audit_step("mcp.disconnect", name)
                await session.cleanup()
            except Exception as e:
                audit_warn(f"mcp.disconnect.failed: {name} -> {e}")
        self._servers.clear()
        audit("mcp.shutdown.complete")
