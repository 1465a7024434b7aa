"""Pytest configuration and shared fixtures for mcp-client tests.

Unit tests talk to an in-memory FakeTransport that answers the handshake
by itself; integration tests spawn tests/fixtures/stub_server.py as a
real subprocess.
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Callable, Optional

import pytest

from mcp_client.config import ClientSettings, ServerDescriptor
from mcp_client.connection import ProcessConnection
from mcp_client.errors import DisconnectedError
from mcp_client.transport import Transport

STUB_SERVER = Path(__file__).parent / "fixtures" / "stub_server.py"

DEFAULT_TOOLS = [
    {
        "name": "add",
        "description": "Add two numbers",
        "inputSchema": {
            "type": "object",
            "properties": {
                "a": {"type": "number", "description": "First operand"},
                "b": {"type": "number", "description": "Second operand"},
            },
            "required": ["a", "b"],
        },
    },
]

Responder = Callable[[dict], Optional[dict]]


class FakeTransport(Transport):
    """In-memory transport standing in for a tool server subprocess.

    Every line the connection sends is decoded and recorded in ``sent``.
    ``responder`` may return a response dict which is delivered on the
    next loop iteration; returning None leaves the request unanswered.
    ``write_delay`` makes every send take that long, like a contended pipe.
    """

    def __init__(self, tools: list[dict] | None = None, responder: Responder | None = None):
        self.tools = DEFAULT_TOOLS if tools is None else tools
        self.responder = responder
        self.sent: list[dict] = []
        self.started = False
        self.stopped = 0
        self.write_delay = 0.0
        self._on_line = None
        self._on_exit = None

    async def start(self, on_line, on_exit) -> None:
        self._on_line = on_line
        self._on_exit = on_exit
        self.started = True

    async def send(self, data: bytes) -> None:
        if not self.started:
            raise DisconnectedError("fake", "transport not running")
        if self.write_delay:
            await asyncio.sleep(self.write_delay)
        assert data.endswith(b"\n") and data.count(b"\n") == 1
        message = json.loads(data)
        self.sent.append(message)
        response = self._respond(message)
        if response is not None:
            asyncio.get_running_loop().call_soon(self.deliver, response)

    async def stop(self) -> None:
        self.started = False
        self.stopped += 1

    def is_alive(self) -> bool:
        return self.started

    def _respond(self, message: dict) -> Optional[dict]:
        method = message.get("method")
        if "id" not in message or method is None:
            return None
        if method == "initialize":
            return {"jsonrpc": "2.0", "id": message["id"], "result": {
                "protocolVersion": "2024-11-05",
                "capabilities": {"tools": {}},
                "serverInfo": {"name": "fake", "version": "1.0"},
            }}
        if method == "tools/list":
            return {"jsonrpc": "2.0", "id": message["id"], "result": {"tools": self.tools}}
        if self.responder is not None:
            return self.responder(message)
        return None

    def deliver(self, message: Any) -> None:
        """Push one inbound line (dict, str or bytes) to the connection."""
        if isinstance(message, dict):
            line = json.dumps(message).encode()
        elif isinstance(message, str):
            line = message.encode()
        else:
            line = message
        self._on_line(line)

    def exit(self, returncode: int = 1) -> None:
        """Simulate the subprocess dying."""
        self.started = False
        self._on_exit(returncode)

    def requests(self, method: str) -> list[dict]:
        return [m for m in self.sent if m.get("method") == method and "id" in m]


def add_responder(message: dict) -> Optional[dict]:
    """Answers tools/call for ``add`` in MCP content form."""
    params = message["params"]
    if params["name"] == "add":
        args = params["arguments"]
        return {"jsonrpc": "2.0", "id": message["id"], "result": {
            "content": [{"type": "text", "text": str(args["a"] + args["b"])}],
        }}
    return {"jsonrpc": "2.0", "id": message["id"],
            "error": {"code": -32602, "message": f"Unknown tool: {params['name']}"}}


@pytest.fixture
def settings():
    """Client settings with short timeouts for tests."""
    return ClientSettings(request_timeout=2.0, connect_timeout=5.0, shutdown_grace=1.0)


@pytest.fixture
def descriptor():
    return ServerDescriptor(name="math", command="fake-math-server")


@pytest.fixture
def fake_transport():
    return FakeTransport(responder=add_responder)


@pytest.fixture
def transport_factory():
    """FakeTransport constructor, ``add`` responder wired in by default."""

    def _make(tools: list[dict] | None = None, responder: Responder | None = add_responder) -> FakeTransport:
        return FakeTransport(tools=tools, responder=responder)

    return _make


@pytest.fixture
def make_connection(settings):
    """Build a ProcessConnection over a given FakeTransport."""

    def _make(transport: FakeTransport, name: str = "math", events=None, **overrides) -> ProcessConnection:
        conn_settings = settings.model_copy(update=overrides) if overrides else settings
        return ProcessConnection(
            ServerDescriptor(name=name, command=f"fake-{name}"),
            conn_settings,
            events=events,
            transport=transport,
        )

    return _make


@pytest.fixture
def stub_descriptor():
    """Descriptor factory for the stub stdio server."""

    def _make(name: str = "math", *flags: str, enabled: bool = True) -> ServerDescriptor:
        return ServerDescriptor(
            name=name,
            command=sys.executable,
            args=[str(STUB_SERVER), *flags],
            enabled=enabled,
        )

    return _make
