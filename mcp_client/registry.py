"""
Server Registry — launches, tracks and routes to MCP tool servers.

The registry owns every ProcessConnection and presents their tools as one
namespaced catalog. A tool ``add`` on server ``math`` is exposed as
``math_add``.

Usage:
    registry = ServerRegistry(settings)

    # Connect everything in the config (best effort, concurrent)
    summary = await registry.initialize_all(load_server_config("config/mcp.json"))

    # Call a tool by qualified name
    result = await registry.call_tool("math_add", {"a": 1, "b": 2})

    # LangChain-ready adapters for the agent
    tools = [a.as_langchain_tool() for a in registry.get_tool_adapters()]

    # Stop everything
    await registry.disconnect_all()
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from mcp_client.bridge import ToolAdapter
from mcp_client.config import ClientSettings, ServerDescriptor
from mcp_client.connection import (
    ConnectionEvent,
    ConnectionState,
    ProcessConnection,
    ToolDescriptor,
)
from mcp_client.errors import HandshakeError, MCPClientError, RoutingError

logger = logging.getLogger(__name__)

SEPARATOR = "_"

ConnectionFactory = Callable[[ServerDescriptor, ClientSettings, asyncio.Queue], ProcessConnection]


@dataclass(frozen=True)
class QualifiedTool:
    """A discovered tool plus the server that owns it."""
    server_name: str
    tool: ToolDescriptor

    @property
    def name(self) -> str:
        return f"{self.server_name}{SEPARATOR}{self.tool.name}"

    @property
    def local_name(self) -> str:
        return self.tool.name

    @property
    def description(self) -> str:
        return self.tool.description

    @property
    def input_schema(self) -> dict[str, Any]:
        return self.tool.input_schema


@dataclass(frozen=True)
class ServerStatus:
    name: str
    enabled: bool
    state: ConnectionState
    connected: bool
    tool_count: int
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "enabled": self.enabled,
            "state": self.state.value,
            "connected": self.connected,
            "toolCount": self.tool_count,
            "error": self.error,
        }


@dataclass
class InitializationSummary:
    attempted: int = 0
    connected: int = 0
    failed: dict[str, str] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)


def _default_factory(descriptor: ServerDescriptor, settings: ClientSettings,
                     events: asyncio.Queue) -> ProcessConnection:
    return ProcessConnection(descriptor, settings, events=events)


class ServerRegistry:
    """
    Manages the lifecycle of MCP tool server connections.

    Responsibilities:
    - Connect configured servers concurrently, tolerating individual failures
    - Aggregate and namespace their tool catalogs
    - Route tool calls to the correct server
    - Report per-server status and handle reconnects / shutdown

    The connection map is only mutated by initialize_all, reconnect_server
    and disconnect_all.
    """

    def __init__(
        self,
        settings: ClientSettings | None = None,
        descriptors: Iterable[ServerDescriptor] | None = None,
        connection_factory: ConnectionFactory | None = None,
    ):
        self.settings = settings or ClientSettings()
        self._connection_factory = connection_factory or _default_factory
        self._descriptors: dict[str, ServerDescriptor] = {}
        self._connections: dict[str, ProcessConnection] = {}
        self._errors: dict[str, str] = {}
        self._events: asyncio.Queue[ConnectionEvent] = asyncio.Queue()
        self._watcher: asyncio.Task | None = None
        self._adapters: list[ToolAdapter] | None = None
        self._warned_duplicates: set[str] = set()
        if descriptors is not None:
            self._set_descriptors(descriptors)

    def _set_descriptors(self, descriptors: Iterable[ServerDescriptor]) -> None:
        self._descriptors = {}
        for descriptor in descriptors:
            if descriptor.name in self._descriptors:
                logger.warning(f"Duplicate server name '{descriptor.name}', keeping the first")
                continue
            self._descriptors[descriptor.name] = descriptor

    @property
    def descriptors(self) -> list[ServerDescriptor]:
        return list(self._descriptors.values())

    # ── Connecting ───────────────────────────────────────

    async def initialize_all(
        self, descriptors: Iterable[ServerDescriptor] | None = None
    ) -> InitializationSummary:
        """
        Connect every enabled server concurrently.

        One server failing to spawn or handshake never prevents the others
        from connecting; the result is a partial catalog.

        Returns:
            Counts of attempted vs connected servers and per-server failures.
        """
        if descriptors is not None:
            self._set_descriptors(descriptors)
        self._ensure_watcher()

        summary = InitializationSummary()
        enabled = []
        for descriptor in self._descriptors.values():
            if descriptor.enabled:
                enabled.append(descriptor)
            else:
                summary.skipped.append(descriptor.name)

        if not enabled:
            logger.info("No MCP servers enabled")
            return summary

        semaphore = asyncio.Semaphore(max(1, self.settings.max_concurrent_connects))

        async def attempt(descriptor: ServerDescriptor) -> None:
            async with semaphore:
                await self._connect_one(descriptor)

        results = await asyncio.gather(
            *(attempt(d) for d in enabled), return_exceptions=True
        )

        summary.attempted = len(enabled)
        for descriptor, result in zip(enabled, results):
            if isinstance(result, BaseException):
                summary.failed[descriptor.name] = str(result)
                logger.error(f"Failed to connect to MCP server {descriptor.name}: {result}")
            else:
                summary.connected += 1

        logger.info(
            f"MCP initialization complete: {summary.connected}/{summary.attempted} servers connected"
        )
        return summary

    async def _connect_one(self, descriptor: ServerDescriptor) -> ProcessConnection:
        existing = self._connections.pop(descriptor.name, None)
        if existing is not None:
            await existing.disconnect()

        connection = self._connection_factory(descriptor, self.settings, self._events)
        self._connections[descriptor.name] = connection
        self._invalidate()

        try:
            await asyncio.wait_for(connection.connect(), timeout=self.settings.connect_timeout)
        except asyncio.TimeoutError as e:
            error = HandshakeError(
                descriptor.name, f"no handshake within {self.settings.connect_timeout:g}s"
            )
            self._errors[descriptor.name] = str(error)
            raise error from e
        except MCPClientError as e:
            self._errors[descriptor.name] = str(e)
            raise

        self._errors.pop(descriptor.name, None)
        self._invalidate()
        return connection

    async def reconnect_server(self, name: str) -> ProcessConnection:
        """Drop any existing connection for ``name`` and connect afresh."""
        descriptor = self._descriptors.get(name)
        if descriptor is None:
            raise RoutingError(RoutingError.UNKNOWN_SERVER, f"Server configuration not found: {name}")

        self._ensure_watcher()
        existing = self._connections.pop(name, None)
        if existing is not None:
            await existing.disconnect()
            self._invalidate()

        connection = await self._connect_one(descriptor)
        logger.info(f"Reconnected to MCP server: {name}")
        return connection

    async def disconnect_all(self) -> None:
        """Disconnect every server; individual failures are logged, not raised."""
        connections = list(self._connections.items())
        results = await asyncio.gather(
            *(connection.disconnect() for _, connection in connections),
            return_exceptions=True,
        )
        for (name, _), result in zip(connections, results):
            if isinstance(result, BaseException):
                logger.error(f"Error disconnecting MCP server {name}: {result}")

        self._connections.clear()
        self._invalidate()
        self._process_pending_events()
        await self._stop_watcher()
        if connections:
            logger.info("Disconnected from all MCP servers")

    # ── Catalog ──────────────────────────────────────────

    def get_all_tools(self) -> list[QualifiedTool]:
        """Namespaced tools from every connected server. First name registered wins."""
        catalog: list[QualifiedTool] = []
        seen: set[str] = set()
        for server_name, connection in list(self._connections.items()):
            if not connection.is_connected:
                continue
            for tool in connection.tools:
                qualified = QualifiedTool(server_name, tool)
                if qualified.name in seen:
                    if qualified.name not in self._warned_duplicates:
                        self._warned_duplicates.add(qualified.name)
                        logger.warning(
                            f"Duplicate tool name {qualified.name} from {server_name}, keeping the first"
                        )
                    continue
                seen.add(qualified.name)
                catalog.append(qualified)
        return catalog

    def get_tool_adapters(self) -> list[ToolAdapter]:
        if self._adapters is None:
            self._adapters = [ToolAdapter(tool, self) for tool in self.get_all_tools()]
        return list(self._adapters)

    async def refresh(self) -> list[ToolAdapter]:
        """Re-list tools on every connected server and rebuild the adapters."""
        self._invalidate()
        for name, connection in list(self._connections.items()):
            if not connection.is_connected:
                continue
            try:
                await connection.list_tools()
            except MCPClientError as e:
                logger.warning(f"Failed to refresh tools from {name}: {e}")
        adapters = self.get_tool_adapters()
        logger.info(f"Refreshed MCP tools: {len(adapters)} available")
        return adapters

    def _invalidate(self) -> None:
        self._adapters = None
        self._warned_duplicates.clear()

    # ── Routing ──────────────────────────────────────────

    def split_name(self, qualified_name: str) -> tuple[str, str]:
        """
        Split ``server_tool`` into (server, tool).

        Configured server names that themselves contain the separator are
        matched first (longest wins); otherwise the first separator splits.
        call_tool() only falls back to this for names not in the catalog.
        """
        known = set(self._descriptors) | set(self._connections)
        for server_name in sorted(known, key=len, reverse=True):
            prefix = server_name + SEPARATOR
            if SEPARATOR in server_name and qualified_name.startswith(prefix) \
                    and len(qualified_name) > len(prefix):
                return server_name, qualified_name[len(prefix):]

        server_name, sep, local_name = qualified_name.partition(SEPARATOR)
        if not sep or not server_name or not local_name:
            raise RoutingError(
                RoutingError.MALFORMED_NAME,
                f"Invalid MCP tool name format: {qualified_name}. Expected: serverName_toolName",
            )
        return server_name, local_name

    async def call_tool(self, qualified_name: str, arguments: dict[str, Any] | None = None,
                        timeout: float | None = None) -> Any:
        """
        Route a call to the owning server.

        Raises:
            RoutingError: malformed name, unknown server, or server not connected.
            RemoteToolError, RequestTimeoutError, DisconnectedError: from the call.
        """
        # Names in the catalog go to the server that listed them, even when
        # a longer server prefix would split the name differently.
        owner = next((t for t in self.get_all_tools() if t.name == qualified_name), None)
        if owner is not None:
            server_name, local_name = owner.server_name, owner.local_name
        else:
            server_name, local_name = self.split_name(qualified_name)

        connection = self._connections.get(server_name)
        if connection is None:
            if server_name in self._descriptors:
                raise RoutingError(
                    RoutingError.NOT_CONNECTED, f"MCP server not connected: {server_name}"
                )
            raise RoutingError(RoutingError.UNKNOWN_SERVER, f"MCP server not found: {server_name}")

        if not connection.is_connected:
            raise RoutingError(RoutingError.NOT_CONNECTED, f"MCP server not connected: {server_name}")

        return await connection.call_tool(local_name, arguments or {}, timeout=timeout)

    # ── Status ───────────────────────────────────────────

    def get_connection(self, name: str) -> ProcessConnection | None:
        return self._connections.get(name)

    def get_connected_servers(self) -> list[str]:
        return [name for name, c in self._connections.items() if c.is_connected]

    def get_status(self) -> list[ServerStatus]:
        """One entry per configured server, connected or not."""
        statuses = []
        for name, descriptor in self._descriptors.items():
            connection = self._connections.get(name)
            if connection is None:
                state = ConnectionState.DISCONNECTED
                error = self._errors.get(name)
            else:
                state = connection.state
                error = self._errors.get(name) or connection.last_error
            connected = state is ConnectionState.CONNECTED
            statuses.append(ServerStatus(
                name=name,
                enabled=descriptor.enabled,
                state=state,
                connected=connected,
                tool_count=len(connection.tools) if connected and connection else 0,
                error=None if connected else error,
            ))
        return statuses

    # ── Lifecycle events ─────────────────────────────────

    def _ensure_watcher(self) -> None:
        if self._watcher is None or self._watcher.done():
            self._watcher = asyncio.create_task(self._watch_events(), name="mcp-registry-events")

    async def _stop_watcher(self) -> None:
        watcher, self._watcher = self._watcher, None
        if watcher is not None and not watcher.done():
            watcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await watcher

    async def _watch_events(self) -> None:
        while True:
            event = await self._events.get()
            self._handle_event(event)

    def _process_pending_events(self) -> None:
        while not self._events.empty():
            self._handle_event(self._events.get_nowait())

    def _handle_event(self, event: ConnectionEvent) -> None:
        if event.current is ConnectionState.CONNECTED:
            logger.info(f"MCP server {event.server} connected")
            self._invalidate()
        elif event.previous is ConnectionState.CONNECTED:
            logger.info(f"MCP server {event.server} {event.current.value}: {event.reason}")
            self._invalidate()
        elif event.current is ConnectionState.FAILED:
            logger.error(f"MCP server {event.server} failed: {event.reason}")

    async def __aenter__(self) -> "ServerRegistry":
        self._ensure_watcher()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.disconnect_all()
