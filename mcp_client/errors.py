"""
Error taxonomy for the MCP client.

Every failure the client raises derives from MCPClientError, so callers
that only want "did the tool server layer fail?" can catch one type.

    MCPClientError
    ├── ConfigError          bad or unreadable server configuration
    ├── SpawnError           subprocess failed to start
    ├── HandshakeError       initialize / tools/list failed or was malformed
    ├── ProtocolError        one unparseable line (logged, never fatal)
    ├── RequestTimeoutError  no response within the deadline
    ├── RoutingError         unknown server / malformed qualified name
    ├── RemoteToolError      server answered with a JSON-RPC error
    ├── DisconnectedError    connection lost while a request was pending
    └── ToolInputError       arguments failed local schema validation
"""

from __future__ import annotations

from typing import Any


class MCPClientError(Exception):
    """Base class for all MCP client failures."""


class ConfigError(MCPClientError):
    """Server configuration could not be loaded or validated."""


class SpawnError(MCPClientError):
    """The tool server subprocess could not be started."""

    def __init__(self, server: str, message: str):
        self.server = server
        super().__init__(f"Failed to spawn {server}: {message}")


class HandshakeError(MCPClientError):
    """The initialize handshake or tool discovery failed."""

    def __init__(self, server: str, message: str):
        self.server = server
        super().__init__(f"Handshake with {server} failed: {message}")


class ProtocolError(MCPClientError):
    """A single line from the server could not be decoded."""

    def __init__(self, message: str, line: str = ""):
        self.line = line
        super().__init__(message)


class RequestTimeoutError(MCPClientError, TimeoutError):
    """A request received no response before its deadline."""

    def __init__(self, server: str, method: str, request_id: int, timeout: float):
        self.server = server
        self.method = method
        self.request_id = request_id
        self.timeout = timeout
        super().__init__(
            f"Request {request_id} ({method}) to {server} timed out after {timeout:g}s"
        )


class RoutingError(MCPClientError):
    """A qualified tool name could not be routed to a connected server.

    ``reason`` is one of ``malformed_name``, ``unknown_server`` or
    ``not_connected``.
    """

    MALFORMED_NAME = "malformed_name"
    UNKNOWN_SERVER = "unknown_server"
    NOT_CONNECTED = "not_connected"

    def __init__(self, reason: str, message: str):
        self.reason = reason
        super().__init__(message)


class RemoteToolError(MCPClientError):
    """The server returned a JSON-RPC error object."""

    def __init__(self, server: str, code: int, message: str, data: Any = None):
        self.server = server
        self.code = code
        self.remote_message = message
        self.data = data
        super().__init__(f"{server} returned error {code}: {message}")


class DisconnectedError(MCPClientError):
    """The connection went away while a request was outstanding."""

    def __init__(self, server: str, message: str = "server disconnected"):
        self.server = server
        super().__init__(f"{server}: {message}")


class ToolInputError(MCPClientError, ValueError):
    """Tool arguments did not match the tool's declared input schema."""

    def __init__(self, tool: str, message: str):
        self.tool = tool
        super().__init__(f"Invalid arguments for {tool}: {message}")
