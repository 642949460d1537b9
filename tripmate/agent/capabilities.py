"""
Capability registry: local tools, stdio MCP servers, and remote HTTP tool servers.

Stdio MCP servers (amap, variflight, train) are started through
langchain-mcp-adapters' MultiServerMCPClient from the settings built by
config.build_mcp_servers().

An HTTP tool server exposes:
    GET  {url}/tools          -> [{"name", "description", "parameters"?, "display_name"?}, ...]
    POST {url}/tools/{name}   body {"arguments": {...}} -> {"output": str} or {"error": str}

Every server's tools are registered as "<server>_<tool>". A server that cannot
be loaded is logged and skipped; its tools are simply unavailable.
"""

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any

import httpx
from langchain_mcp_adapters.client import MultiServerMCPClient

from tripmate.agent.tools import Tool, build_local_tools, get_tool_display_name
from tripmate.core.config import (
    MCP_LOAD_TIMEOUT,
    TOOL_SERVERS,
    TOOLS_HTTP_TIMEOUT,
    build_mcp_servers,
    parse_tool_servers,
)

logger = logging.getLogger(__name__)

_EMPTY_SCHEMA: dict[str, Any] = {"type": "object", "properties": {}}


class ToolServerError(Exception):
    """Raised when a remote tool invocation fails or returns an error."""


def _json_schema(args_schema: Any) -> dict[str, Any]:
    if isinstance(args_schema, dict):
        return args_schema or dict(_EMPTY_SCHEMA)
    if hasattr(args_schema, "model_json_schema"):
        return args_schema.model_json_schema()
    return dict(_EMPTY_SCHEMA)


def _output_text(result: Any) -> str:
    """Flatten MCP tool content (a string or a list of content blocks) into text."""
    if isinstance(result, str):
        return result
    if isinstance(result, list):
        parts = []
        for block in result:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and "text" in block:
                parts.append(str(block["text"]))
            else:
                parts.append(json.dumps(block, ensure_ascii=False, default=str))
        return "\n".join(parts)
    return json.dumps(result, ensure_ascii=False, default=str)


class CapabilityRegistry:
    def __init__(
        self,
        servers: dict[str, str] | None = None,
        http: httpx.AsyncClient | None = None,
        mcp_servers: dict[str, dict] | None = None,
        mcp_client_factory: Callable[[dict[str, dict]], Any] = MultiServerMCPClient,
    ) -> None:
        self.servers = servers if servers is not None else parse_tool_servers(TOOL_SERVERS)
        self.mcp_servers = mcp_servers if mcp_servers is not None else build_mcp_servers()
        self._mcp_client_factory = mcp_client_factory
        self._mcp_client: Any = None
        self._http = http
        self._owns_http = http is None
        self._tools: dict[str, Tool] = {}
        self._failed_servers: list[str] = []
        self._initialized = False
        self._lock = asyncio.Lock()

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=TOOLS_HTTP_TIMEOUT)
        return self._http

    @property
    def failed_servers(self) -> list[str]:
        return list(self._failed_servers)

    async def ensure_initialized(self) -> None:
        """Load local tools, every stdio MCP server and every HTTP server's manifest once."""
        if self._initialized:
            return
        async with self._lock:
            if self._initialized:
                return
            for tool in build_local_tools(self.http):
                self._tools[tool.name] = tool
            if self.mcp_servers:
                self._mcp_client = self._mcp_client_factory(self.mcp_servers)
            for server in self.mcp_servers:
                try:
                    loaded = await asyncio.wait_for(self._load_mcp_server(server), MCP_LOAD_TIMEOUT)
                except Exception as e:
                    logger.warning("[capabilities:ensure_initialized] MCP server %s unavailable: %s", server, e)
                    self._failed_servers.append(server)
                    continue
                self._register(server, loaded)
            for server, url in self.servers.items():
                try:
                    loaded = await self._load_server(server, url)
                except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
                    logger.warning("[capabilities:ensure_initialized] tool server %s (%s) unavailable: %s",
                                   server, url, e)
                    self._failed_servers.append(server)
                    continue
                self._register(server, loaded)
            self._initialized = True
            logger.info("[capabilities:ensure_initialized] OUT tools=%d failed_servers=%s",
                        len(self._tools), self._failed_servers)

    def _register(self, server: str, loaded: list[Tool]) -> None:
        for tool in loaded:
            self._tools[tool.name] = tool
        logger.info("[capabilities:ensure_initialized] server=%s tools=%s", server, [t.name for t in loaded])

    async def _load_mcp_server(self, server: str) -> list[Tool]:
        remote_tools = await self._mcp_client.get_tools(server_name=server)
        tools = []
        for remote in remote_tools:
            full_name = f"{server}_{remote.name}"
            tools.append(
                Tool(
                    name=full_name,
                    description=remote.description or remote.name,
                    parameters=_json_schema(getattr(remote, "args_schema", None)),
                    handler=self._mcp_handler(remote),
                    display_name=get_tool_display_name(full_name),
                )
            )
        return tools

    @staticmethod
    def _mcp_handler(remote: Any):
        async def _invoke(arguments: dict[str, Any]) -> str:
            return _output_text(await remote.ainvoke(arguments))

        return _invoke

    async def _load_server(self, server: str, url: str) -> list[Tool]:
        response = await self.http.get(f"{url}/tools")
        response.raise_for_status()
        manifest = response.json()
        if isinstance(manifest, dict):
            manifest = manifest.get("tools", [])
        tools = []
        for entry in manifest:
            remote_name = entry["name"]
            full_name = f"{server}_{remote_name}"
            tools.append(
                Tool(
                    name=full_name,
                    description=entry.get("description") or remote_name,
                    parameters=entry.get("parameters") or dict(_EMPTY_SCHEMA),
                    handler=self._remote_handler(url, remote_name),
                    display_name=entry.get("display_name") or get_tool_display_name(full_name),
                )
            )
        return tools

    def _remote_handler(self, url: str, remote_name: str):
        async def _invoke(arguments: dict[str, Any]) -> str:
            response = await self.http.post(f"{url}/tools/{remote_name}", json={"arguments": arguments})
            if response.status_code != 200:
                raise ToolServerError(f"{remote_name} returned {response.status_code}: {response.text[:200]}")
            data = response.json()
            if data.get("error"):
                raise ToolServerError(str(data["error"]))
            output = data.get("output", "")
            return output if isinstance(output, str) else str(output)

        return _invoke

    def list_tools(self) -> list[Tool]:
        return list(self._tools.values())

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    async def shutdown(self) -> None:
        if self._http is not None and self._owns_http:
            await self._http.aclose()
        self._http = None
        self._mcp_client = None
        self._tools.clear()
        self._failed_servers.clear()
        self._initialized = False
