"""
ProcessConnection — one tool server subprocess, end to end.

Usage:
    connection = ProcessConnection(descriptor, settings)
    await connection.connect()          # spawn + initialize + tools/list
    result = await connection.call_tool("add", {"a": 1, "b": 2})
    await connection.disconnect()

Requests are correlated strictly by id. Each request has its own deadline;
responses may arrive in any order. On teardown (requested or not) every
outstanding request is rejected with DisconnectedError before the state
flips to DISCONNECTED.
"""

from __future__ import annotations

import asyncio
import enum
import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from mcp_client.config import ClientSettings, ServerDescriptor
from mcp_client.errors import (
    DisconnectedError,
    HandshakeError,
    MCPClientError,
    ProtocolError,
    RemoteToolError,
    RequestTimeoutError,
    SpawnError,
)
from mcp_client.protocol import (
    METHOD_NOT_FOUND,
    JsonRpcError,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    decode_line,
    encode_message,
)
from mcp_client.transport import StdioTransport, Transport

logger = logging.getLogger(__name__)


class ConnectionState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


@dataclass(frozen=True)
class ConnectionEvent:
    """A state transition, pushed onto the owner's event queue."""
    server: str
    previous: ConnectionState
    current: ConnectionState
    reason: str = ""


@dataclass(frozen=True)
class ToolDescriptor:
    """A tool as advertised by its server (server-local name)."""
    name: str
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})

    @classmethod
    def from_obj(cls, obj: Any) -> "ToolDescriptor":
        if not isinstance(obj, dict) or not isinstance(obj.get("name"), str) or not obj["name"]:
            raise ValueError(f"tool entry without a name: {obj!r}")
        # Older servers advertise "parameters" instead of "inputSchema"
        schema = obj.get("inputSchema") or obj.get("parameters")
        if not isinstance(schema, dict):
            schema = {"type": "object", "properties": {}}
        return cls(
            name=obj["name"],
            description=str(obj.get("description") or ""),
            input_schema=schema,
        )


@dataclass
class PendingRequest:
    id: int
    method: str
    future: asyncio.Future
    created_at: float
    timeout_handle: asyncio.TimerHandle | None = None


class ProcessConnection:
    """Owns one tool server subprocess and its request table."""

    def __init__(
        self,
        descriptor: ServerDescriptor,
        settings: ClientSettings | None = None,
        events: asyncio.Queue | None = None,
        transport: Transport | None = None,
    ):
        """
        Args:
            descriptor: How to launch the server.
            settings: Timeouts and handshake identity. Defaults apply if omitted.
            events: Queue receiving a ConnectionEvent on every state change.
            transport: Override the transport (tests use an in-memory one).
        """
        self.descriptor = descriptor
        self.settings = settings or ClientSettings()
        self._events = events
        self._transport_override = transport
        self._transport: Transport | None = None

        self._state = ConnectionState.DISCONNECTED
        self._ids = itertools.count(1)
        self._pending: dict[int, PendingRequest] = {}
        self._tools: list[ToolDescriptor] = []
        self._background: set[asyncio.Task] = set()

        self.server_info: dict[str, Any] = {}
        self.server_capabilities: dict[str, Any] = {}
        self.last_error: str | None = None

    # ── State ────────────────────────────────────────────

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def tools(self) -> list[ToolDescriptor]:
        return list(self._tools)

    def _set_state(self, state: ConnectionState, reason: str = "") -> None:
        previous = self._state
        if previous is state:
            return
        self._state = state
        logger.debug(f"{self.name}: {previous.value} -> {state.value} {reason}".rstrip())
        if self._events is not None:
            self._events.put_nowait(ConnectionEvent(self.name, previous, state, reason))

    # ── Lifecycle ────────────────────────────────────────

    async def connect(self) -> None:
        """
        Spawn the server, run the initialize handshake, and discover tools.

        Raises:
            SpawnError: the subprocess could not be started.
            HandshakeError: initialize or tools/list failed or was malformed.
        """
        if self._state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            raise MCPClientError(f"Server {self.name} is already running")

        logger.info(f"Connecting to server {self.name}: {' '.join(self.descriptor.command_line)}")
        self.last_error = None
        self._set_state(ConnectionState.CONNECTING)

        transport = self._transport_override or StdioTransport(
            self.descriptor, shutdown_grace=self.settings.shutdown_grace
        )
        self._transport = transport
        try:
            await transport.start(self._on_line, self._on_exit)
        except SpawnError as e:
            self._transport = None
            self.last_error = str(e)
            self._set_state(ConnectionState.FAILED, str(e))
            raise

        try:
            await self._initialize()
            await self._load_tools()
        except HandshakeError as e:
            await self._teardown(ConnectionState.FAILED, str(e))
            raise
        except MCPClientError as e:
            error = HandshakeError(self.name, str(e))
            await self._teardown(ConnectionState.FAILED, str(error))
            raise error from e
        except asyncio.CancelledError:
            await self._teardown(ConnectionState.FAILED, "connect cancelled")
            raise

        self._set_state(ConnectionState.CONNECTED)
        logger.info(f"Connected to {self.name}: tools={[t.name for t in self._tools]}")

    async def disconnect(self) -> None:
        """Stop the server. Safe to call repeatedly."""
        if self._transport is None and not self._pending:
            if self._state is not ConnectionState.FAILED:
                self._set_state(ConnectionState.DISCONNECTED, "disconnect requested")
            return
        await self._teardown(ConnectionState.DISCONNECTED, "disconnect requested")
        logger.info(f"Disconnected from {self.name}")

    async def _teardown(self, final_state: ConnectionState, reason: str) -> None:
        transport, self._transport = self._transport, None
        self._drain(DisconnectedError(self.name, reason))
        self._tools = []
        if transport is not None:
            try:
                await transport.stop()
            except Exception as e:
                logger.error(f"Error stopping transport for {self.name}: {e}")
        if final_state is ConnectionState.FAILED:
            self.last_error = reason
        self._set_state(final_state, reason)

    def _drain(self, error: MCPClientError) -> None:
        pending, self._pending = self._pending, {}
        if pending:
            logger.warning(f"{self.name}: rejecting {len(pending)} pending request(s): {error}")
        for request in pending.values():
            if request.timeout_handle is not None:
                request.timeout_handle.cancel()
            if not request.future.done():
                request.future.set_exception(error)

    def _on_exit(self, returncode: int | None) -> None:
        """Transport callback: the subprocess went away on its own."""
        reason = f"process exited with code {returncode}"
        transport, self._transport = self._transport, None
        self._drain(DisconnectedError(self.name, reason))
        self._tools = []
        self.last_error = reason
        self._set_state(ConnectionState.DISCONNECTED, reason)
        if transport is not None:
            self._spawn_background(transport.stop())

    def _spawn_background(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ── Handshake ────────────────────────────────────────

    async def _initialize(self) -> None:
        result = await self.request("initialize", {
            "protocolVersion": self.settings.protocol_version,
            "capabilities": {"tools": {}},
            "clientInfo": {
                "name": self.settings.client_name,
                "version": self.settings.client_version,
            },
        })
        if not isinstance(result, dict):
            raise HandshakeError(self.name, f"malformed initialize result: {result!r}")

        self.server_info = result.get("serverInfo") or {}
        self.server_capabilities = result.get("capabilities") or {}
        server_version = result.get("protocolVersion")
        if server_version and server_version != self.settings.protocol_version:
            logger.info(
                f"{self.name} negotiated protocol {server_version} "
                f"(requested {self.settings.protocol_version})"
            )

        await self.notify(self.settings.initialized_method, {})

    async def _load_tools(self) -> None:
        result = await self.request("tools/list", {})
        self._tools = self._parse_tools(result)

    def _parse_tools(self, result: Any) -> list[ToolDescriptor]:
        if isinstance(result, dict):
            entries = result.get("tools")
        else:
            entries = result
        if not isinstance(entries, list):
            raise HandshakeError(self.name, f"malformed tools/list result: {result!r}")
        try:
            return [ToolDescriptor.from_obj(entry) for entry in entries]
        except ValueError as e:
            raise HandshakeError(self.name, str(e)) from e

    async def list_tools(self) -> list[ToolDescriptor]:
        """Re-discover tools on a live connection."""
        if not self.is_connected:
            raise DisconnectedError(self.name, "not connected")
        result = await self.request("tools/list", {})
        self._tools = self._parse_tools(result)
        return self.tools

    # ── Requests ─────────────────────────────────────────

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None,
                        timeout: float | None = None) -> Any:
        """
        Invoke a tool on this server.

        Returns:
            The raw ``result`` member of the response.

        Raises:
            RemoteToolError: the server answered with an error.
            RequestTimeoutError: no answer before the deadline.
            DisconnectedError: the connection is down or went down.
        """
        if not self.is_connected:
            raise DisconnectedError(self.name, "not connected")
        return await self.request(
            "tools/call", {"name": name, "arguments": arguments or {}}, timeout=timeout
        )

    async def request(self, method: str, params: dict[str, Any] | None = None,
                      timeout: float | None = None) -> Any:
        """
        Send one request and wait for its matching response.

        The deadline starts once the line is written, so waiting behind
        other writers does not count against it.
        """
        transport = self._transport
        if transport is None:
            raise DisconnectedError(self.name, "not connected")

        timeout = timeout if timeout is not None else self.settings.request_timeout
        request_id = next(self._ids)
        loop = asyncio.get_running_loop()
        pending = PendingRequest(
            id=request_id,
            method=method,
            future=loop.create_future(),
            created_at=time.monotonic(),
        )
        self._pending[request_id] = pending

        message = JsonRpcRequest(method=method, params=params or {}, id=request_id)
        logger.debug(f"{self.name} <- {method} id={request_id}")
        try:
            await transport.send(encode_message(message))
            if not pending.future.done():
                pending.created_at = time.monotonic()
                pending.timeout_handle = loop.call_later(timeout, self._expire, request_id, timeout)
            response: JsonRpcResponse = await pending.future
        finally:
            self._forget(request_id)
            if pending.timeout_handle is not None:
                pending.timeout_handle.cancel()

        if response.error is not None:
            raise RemoteToolError(
                self.name, response.error.code, response.error.message, response.error.data
            )
        return response.result

    async def notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        """Send a notification. No response is expected."""
        transport = self._transport
        if transport is None:
            raise DisconnectedError(self.name, "not connected")
        await transport.send(encode_message(JsonRpcNotification(method=method, params=params or {})))

    def _forget(self, request_id: int) -> None:
        pending = self._pending.pop(request_id, None)
        if pending is not None and pending.timeout_handle is not None:
            pending.timeout_handle.cancel()

    def _expire(self, request_id: int, timeout: float) -> None:
        pending = self._pending.pop(request_id, None)
        if pending is None or pending.future.done():
            return
        logger.warning(f"{self.name}: request {request_id} ({pending.method}) timed out after {timeout:g}s")
        pending.future.set_exception(
            RequestTimeoutError(self.name, pending.method, request_id, timeout)
        )

    # ── Inbound ──────────────────────────────────────────

    def _on_line(self, line: bytes) -> None:
        try:
            message = decode_line(line)
        except ProtocolError as e:
            logger.warning(f"{self.name}: dropping unparseable line ({e}): {e.line[:200]}")
            return

        if isinstance(message, JsonRpcResponse):
            self._handle_response(message)
        elif isinstance(message, JsonRpcRequest):
            self._spawn_background(self._answer_server_request(message))
        else:
            logger.debug(f"{self.name} -> notification {message.method}")

    def _handle_response(self, response: JsonRpcResponse) -> None:
        pending = self._pending.pop(response.id, None) if isinstance(response.id, int) else None
        if pending is None:
            logger.warning(f"{self.name}: discarding response with unmatched id {response.id!r}")
            return
        if pending.timeout_handle is not None:
            pending.timeout_handle.cancel()
        elapsed = time.monotonic() - pending.created_at
        logger.debug(f"{self.name} -> {pending.method} id={pending.id} ({elapsed:.3f}s)")
        if not pending.future.done():
            pending.future.set_result(response)

    async def _answer_server_request(self, request: JsonRpcRequest) -> None:
        if request.method == "ping":
            response = JsonRpcResponse(id=request.id, result={})
        else:
            response = JsonRpcResponse(
                id=request.id,
                error=JsonRpcError(METHOD_NOT_FOUND, f"Method not supported by client: {request.method}"),
            )
        transport = self._transport
        if transport is None:
            return
        try:
            await transport.send(encode_message(response))
        except DisconnectedError as e:
            logger.debug(f"{self.name}: could not answer {request.method}: {e}")

    def __repr__(self) -> str:
        return f"ProcessConnection({self.name!r}, state={self._state.value}, pending={len(self._pending)})"
