"""
Tool invoker for an MCP "streamable HTTP" service.

Keeps one JSON-RPC session per invoker.  If the service forgets the session (HTTP 404, e.g. after
a restart) the session is re-initialised and the call retried once.
"""

import itertools
import json
import logging
from typing import (
    Any,
    Dict,
    List,
)

import httpx

from maestro.agent.tool_executor import ToolExecutionError
from maestro.core.schema import Tool

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
CLIENT_INFO = {"name": "maestro", "version": "0.1.0"}


class McpSessionExpired(ToolExecutionError):
    """The service no longer knows our session id."""


def _parse_body(response: httpx.Response) -> Any:
    """Decode a JSON or SSE response; for SSE the last ``data:`` line carries the result."""
    content_type = response.headers.get("content-type", "")
    if "text/event-stream" in content_type:
        lines = [
            line[len("data:") :].strip()
            for line in response.text.splitlines()
            if line.startswith("data:")
        ]
        lines = [line for line in lines if line]
        return json.loads(lines[-1]) if lines else None
    return response.json()


class McpToolInvoker:
    """:class:`~maestro.agent.tool_executor.ToolInvoker` talking JSON-RPC to an MCP endpoint."""

    def __init__(
        self,
        url: str,
        api_key: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
    ) -> None:
        self.url = url
        self.api_key = api_key
        self.session_id: str | None = None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._ids = itertools.count(1)

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json, text/event-stream",
            "Authorization": f"Bearer {self.api_key}",
        }
        if self.session_id:
            headers["Mcp-Session-Id"] = self.session_id
        return headers

    async def _post(self, method: str, params: Dict[str, Any]) -> httpx.Response:
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            return await self._client.post(self.url, json=body, headers=self._headers())
        except httpx.HTTPError as exc:
            raise ToolExecutionError(f"MCP request '{method}' failed: {exc}") from exc

    async def initialize(self) -> None:
        """Open a new MCP session and remember its id."""
        self.session_id = None
        response = await self._post(
            "initialize",
            {"protocolVersion": PROTOCOL_VERSION, "capabilities": {}, "clientInfo": CLIENT_INFO},
        )
        if response.status_code != 200:
            raise ToolExecutionError(f"MCP init failed ({response.status_code}): {response.text}")
        session_id = response.headers.get("mcp-session-id")
        if not session_id:
            raise ToolExecutionError("MCP server did not return a Mcp-Session-Id header")
        self.session_id = session_id
        logger.info("MCP session initialised: %s", session_id)

    async def _rpc(self, method: str, params: Dict[str, Any]) -> Any:
        if self.session_id is None:
            await self.initialize()
        response = await self._post(method, params)
        if response.status_code == 404:
            raise McpSessionExpired("MCP session expired")
        if response.status_code >= 400:
            raise ToolExecutionError(f"MCP error {response.status_code}: {response.text}")

        data = _parse_body(response)
        if isinstance(data, dict):
            error = data.get("error")
            if error:
                message = error.get("message", error) if isinstance(error, dict) else error
                raise ToolExecutionError(str(message))
            if "result" in data:
                return data["result"]
        return data

    async def _rpc_with_retry(self, method: str, params: Dict[str, Any]) -> Any:
        try:
            return await self._rpc(method, params)
        except McpSessionExpired:
            logger.warning("MCP session expired, re-initialising and retrying '%s'", method)
            await self.initialize()
            return await self._rpc(method, params)

    async def call_tool(self, name: str, args: Dict[str, Any]) -> Any:
        """Call a tool by its (namespaced) name."""
        logger.debug("MCP tools/call '%s' args=%s", name, args)
        return await self._rpc_with_retry("tools/call", {"name": name, "arguments": args})

    async def list_tools(self) -> List[Tool]:
        result = await self._rpc_with_retry("tools/list", {})
        raw_tools = result.get("tools", []) if isinstance(result, dict) else []
        return [
            Tool(
                name=tool["name"],
                description=tool.get("description", ""),
                input_schema=tool.get("inputSchema") or {"type": "object", "properties": {}},
            )
            for tool in raw_tools
        ]
