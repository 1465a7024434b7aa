"""
MCP Client — stdio-based tool servers for a LangChain agent.

Architecture:
    ┌──────────────┐     stdio      ┌──────────────┐
    │ Agent Runtime │ ──────────── │  Tool Server  │
    │ (LangChain)  │  JSON-RPC    │  (subprocess) │
    └──────────────┘     pipes     └──────────────┘

Each tool server is a standalone process that communicates via
stdin/stdout using line-delimited JSON-RPC 2.0 messages (the MCP protocol).

StdioTransport moves framed lines. ProcessConnection runs the handshake
and correlates requests with responses. ServerRegistry connects many
servers at once and routes ``server_tool`` names. ToolAdapter wraps each
discovered tool as a validated LangChain-compatible tool.
"""

__version__ = "0.2.0"

from mcp_client.config import ClientSettings, ServerDescriptor, load_server_config
from mcp_client.connection import ConnectionEvent, ConnectionState, ProcessConnection, ToolDescriptor
from mcp_client.errors import (
    ConfigError,
    DisconnectedError,
    HandshakeError,
    MCPClientError,
    ProtocolError,
    RemoteToolError,
    RequestTimeoutError,
    RoutingError,
    SpawnError,
    ToolInputError,
)
from mcp_client.registry import QualifiedTool, ServerRegistry, ServerStatus
from mcp_client.bridge import ToolAdapter, mcp_to_langchain_tool, register_mcp_tools

__all__ = [
    "__version__",
    "ClientSettings",
    "ServerDescriptor",
    "load_server_config",
    "ConnectionEvent",
    "ConnectionState",
    "ProcessConnection",
    "ToolDescriptor",
    "ServerRegistry",
    "ServerStatus",
    "QualifiedTool",
    "ToolAdapter",
    "mcp_to_langchain_tool",
    "register_mcp_tools",
    "MCPClientError",
    "ConfigError",
    "SpawnError",
    "HandshakeError",
    "ProtocolError",
    "RequestTimeoutError",
    "RoutingError",
    "RemoteToolError",
    "DisconnectedError",
    "ToolInputError",
]
