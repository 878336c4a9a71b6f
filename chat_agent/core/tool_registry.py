"""Connections to external MCP tool servers and the merged tool cache."""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from fastmcp.client import Client, StdioTransport
from pydantic import BaseModel, Field

from chat_agent.core.cancellation import CancellationToken

logger = logging.getLogger(__name__)

NO_SERVERS_CONNECTED = "Failed to connect to any MCP server"


class ToolContent(BaseModel):
    """One content item returned by a tool call."""

    type: str = "text"
    text: str = ""


class ToolResult(BaseModel):
    """Normalized result of a tool call."""

    content: List[ToolContent] = Field(default_factory=list)
    is_error: bool = False

    @classmethod
    def error(cls, message: str) -> "ToolResult":
        return cls(content=[ToolContent(type="text", text=message)], is_error=True)

    @property
    def text(self) -> str:
        return "\n".join(item.text for item in self.content if item.text)


@dataclass(frozen=True)
class ToolDescriptor:
    """Tool as advertised by a server during discovery."""

    server_id: str
    name: str
    description: str = ""
    input_schema: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ServerConnectionError:
    server_name: str
    server_command: str
    message: str


@dataclass
class ConnectionReport:
    """Outcome of connecting to the configured servers."""

    success: bool
    errors: List[ServerConnectionError] = field(default_factory=list)
    error_message: Optional[str] = None


def _normalize_parameters(schema: Dict[str, Any]) -> Dict[str, Any]:
    """Convert an MCP input schema to the function parameters the model expects."""
    schema = schema or {}
    required = schema.get("required")
    properties = {}
    for key, prop in (schema.get("properties") or {}).items():
        prop = prop if isinstance(prop, dict) else {}
        converted = {
            "type": prop.get("type") or "string",
            "description": prop.get("description") or "",
        }
        if prop.get("enum"):
            converted["enum"] = prop["enum"]
        properties[key] = converted

    return {
        "type": "object",
        "required": required if isinstance(required, list) else [],
        "properties": properties,
    }


def _content_to_text(item: Any) -> ToolContent:
    item_type = getattr(item, "type", "text") or "text"
    text = getattr(item, "text", None)
    if text is None:
        if hasattr(item, "model_dump"):
            text = json.dumps(item.model_dump(mode="json", exclude_none=True))
        else:
            text = str(item)
    return ToolContent(type=item_type, text=text)


# mcp 1.x exposes camelCase fields, mcp 2.x snake_case
def _result_is_error(result: Any) -> bool:
    is_error = getattr(result, "is_error", None)
    if is_error is None:
        is_error = getattr(result, "isError", False)
    return bool(is_error)


def _tool_input_schema(tool: Any) -> Dict[str, Any]:
    schema = getattr(tool, "input_schema", None)
    if schema is None:
        schema = getattr(tool, "inputSchema", None)
    return dict(schema or {})


class RegisteredTool:
    """Cache entry binding a discovered tool to the client that serves it."""

    type = "external"

    def __init__(self, descriptor: ToolDescriptor, client: Any):
        self.descriptor = descriptor
        self.client = client

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def server_id(self) -> str:
        return self.descriptor.server_id

    async def invoke(
        self,
        arguments: Optional[Dict[str, Any]],
        cancellation_token: Optional[CancellationToken] = None,
    ) -> ToolResult:
        """Call the tool on its server.

        Tool-side failures are returned as error results instead of raised.
        """
        if cancellation_token is not None and cancellation_token.is_cancelled:
            logger.info(f"Tool call {self.name} cancelled before dispatch")
            return ToolResult.error(f"Operation cancelled: {self.name}")

        try:
            logger.info(f"Executing MCP tool: {self.name} on {self.server_id}")
            result = await self.client.call_tool_mcp(self.name, arguments or {})
        except Exception as e:
            logger.error(f"Error calling tool {self.name}: {e}")
            return ToolResult.error(f"Error calling tool {self.name}: {e}")

        content = [_content_to_text(item) for item in (result.content or [])]
        return ToolResult(content=content, is_error=_result_is_error(result))

    def to_model_definition(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.descriptor.name,
                "description": self.descriptor.description or "",
                "parameters": _normalize_parameters(self.descriptor.input_schema),
            },
        }

    def __repr__(self) -> str:
        return f"RegisteredTool({self.server_id}:{self.name})"


def _server_command(server) -> List[str]:
    command = [server.command]
    if server.script_path:
        command.append(server.script_path)
    return command + list(server.args)


def default_client_factory(server) -> Client:
    """Create a FastMCP stdio client for a server configuration."""
    env = dict(os.environ)
    env.update(server.env)
    command = _server_command(server)
    transport = StdioTransport(command=command[0], args=command[1:], env=env)
    return Client(transport)


class ToolRegistry:
    """Owns the MCP client connections and the flat cache of callable tools.

    Connection and discovery happen once at startup; afterwards the registry
    is read-mostly and ``invoke`` on its tools may run from several turns.
    """

    def __init__(self, client_factory: Optional[Callable[[Any], Any]] = None):
        self._client_factory = client_factory or default_client_factory
        self._clients: Dict[str, Any] = {}
        self._tools: Dict[str, RegisteredTool] = {}
        self.last_connection_errors: List[ServerConnectionError] = []

    async def connect(self, servers) -> ConnectionReport:
        """Connect to every server; a failing server does not stop the others."""
        errors: List[ServerConnectionError] = []
        connected = 0

        for server in servers:
            try:
                logger.info(f"Starting MCP server: {server.name}")
                client = self._client_factory(server)
                await client.__aenter__()
                self._clients[server.name] = client
                connected += 1
                logger.info(f"Successfully connected to MCP server: {server.name}")
            except Exception as e:
                logger.error(f"Failed to start MCP server {server.name}: {e}")
                errors.append(
                    ServerConnectionError(
                        server_name=server.name,
                        server_command=" ".join(_server_command(server)),
                        message=str(e),
                    )
                )

        self.last_connection_errors = errors
        success = connected > 0
        return ConnectionReport(
            success=success,
            errors=errors,
            error_message=NO_SERVERS_CONNECTED if not success and errors else None,
        )

    async def discover_tools(self) -> List[RegisteredTool]:
        """List tools on every live connection and merge them into the cache.

        When two servers export the same tool name the last one registered
        wins.
        """
        for server_name, client in self._clients.items():
            try:
                listed = await client.list_tools()
            except Exception as e:
                logger.error(f"Failed to list tools for {server_name}: {e}")
                continue

            for tool in listed:
                descriptor = ToolDescriptor(
                    server_id=server_name,
                    name=tool.name,
                    description=tool.description or "",
                    input_schema=_tool_input_schema(tool),
                )
                self.register(descriptor, client)

        return self.tools

    def register(self, descriptor: ToolDescriptor, client: Any) -> RegisteredTool:
        """Add a tool to the cache, replacing any tool with the same name."""
        existing = self._tools.get(descriptor.name)
        if existing is not None and existing.server_id != descriptor.server_id:
            logger.warning(
                f"Tool {descriptor.name} from {descriptor.server_id} replaces the "
                f"one from {existing.server_id}"
            )
        tool = RegisteredTool(descriptor, client)
        self._tools[descriptor.name] = tool
        logger.info(f"Registered tool: {descriptor.server_id}:{descriptor.name}")
        return tool

    def resolve(self, name: str) -> Optional[RegisteredTool]:
        """Exact, case-sensitive lookup."""
        return self._tools.get(name)

    @property
    def tools(self) -> List[RegisteredTool]:
        return list(self._tools.values())

    @property
    def server_names(self) -> List[str]:
        return list(self._clients.keys())

    def tool_definitions(self) -> List[Dict[str, Any]]:
        return [tool.to_model_definition() for tool in self._tools.values()]

    async def shutdown(self):
        """Close every client session."""
        logger.info("Shutting down MCP connections...")
        for server_name, client in self._clients.items():
            try:
                await client.__aexit__(None, None, None)
                logger.info(f"Closed client session for {server_name}")
            except Exception as e:
                logger.error(f"Error closing client session for {server_name}: {e}")
        self._clients = {}
        self._tools = {}

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools
