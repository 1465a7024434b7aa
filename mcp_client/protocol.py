"""
JSON-RPC 2.0 message types and line framing.

One message per line, newline terminated. Encoding produces compact JSON
with no embedded newlines; decoding turns one line into a request,
notification or response, raising ProtocolError for anything else.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Union

from mcp_client.errors import ProtocolError

JSONRPC_VERSION = "2.0"

# Standard JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


@dataclass
class JsonRpcRequest:
    """JSON-RPC 2.0 request."""
    method: str
    params: dict[str, Any]
    id: int | str

    def to_dict(self) -> dict[str, Any]:
        return {
            "jsonrpc": JSONRPC_VERSION,
            "id": self.id,
            "method": self.method,
            "params": self.params,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))


@dataclass
class JsonRpcNotification:
    """JSON-RPC 2.0 notification (no id, no response expected)."""
    method: str
    params: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "jsonrpc": JSONRPC_VERSION,
            "method": self.method,
            "params": self.params,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))


@dataclass
class JsonRpcError:
    """The ``error`` member of a failed response."""
    code: int
    message: str
    data: Any = None

    @classmethod
    def from_obj(cls, obj: Any) -> "JsonRpcError":
        if not isinstance(obj, dict):
            return cls(code=INTERNAL_ERROR, message=str(obj))
        code = obj.get("code", INTERNAL_ERROR)
        if not isinstance(code, int):
            code = INTERNAL_ERROR
        return cls(code=code, message=str(obj.get("message", "")), data=obj.get("data"))

    def to_dict(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error


@dataclass
class JsonRpcResponse:
    """JSON-RPC 2.0 response."""
    id: int | str | None
    result: Any = None
    error: JsonRpcError | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_dict(self) -> dict[str, Any]:
        message: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": self.id}
        if self.error is not None:
            message["error"] = self.error.to_dict()
        else:
            message["result"] = self.result
        return message

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))


Message = Union[JsonRpcRequest, JsonRpcNotification, JsonRpcResponse]


def encode_message(message: Message) -> bytes:
    """Frame a message as one newline-terminated UTF-8 line."""
    return (message.to_json() + "\n").encode("utf-8")


def decode_line(line: str | bytes) -> Message:
    """
    Decode one line into a message.

    Raises:
        ProtocolError: the line is not JSON, not an object, or matches
            none of the request / notification / response shapes.
    """
    if isinstance(line, bytes):
        try:
            line = line.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError(f"Invalid UTF-8: {e}", repr(line)) from e

    text = line.strip()
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Invalid JSON: {e}", text) from e

    if not isinstance(parsed, dict):
        raise ProtocolError("Message is not a JSON object", text)

    method = parsed.get("method")
    has_id = "id" in parsed and parsed["id"] is not None

    if isinstance(method, str):
        params = parsed.get("params")
        if params is None:
            params = {}
        if has_id:
            return JsonRpcRequest(method=method, params=params, id=parsed["id"])
        return JsonRpcNotification(method=method, params=params)

    if "result" in parsed or "error" in parsed:
        error = parsed.get("error")
        return JsonRpcResponse(
            id=parsed.get("id"),
            result=parsed.get("result"),
            error=JsonRpcError.from_obj(error) if error is not None else None,
        )

    raise ProtocolError("Message is neither a request, notification nor response", text)


class LineBuffer:
    """
    Accumulates raw bytes and yields complete lines.

    A trailing partial line stays buffered until its newline arrives.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()

    def feed(self, chunk: bytes) -> list[bytes]:
        self._buffer.extend(chunk)
        lines = []
        while True:
            idx = self._buffer.find(b"\n")
            if idx < 0:
                break
            line = bytes(self._buffer[:idx])
            del self._buffer[: idx + 1]
            if line.strip():
                lines.append(line)
        return lines

    @property
    def pending(self) -> bytes:
        return bytes(self._buffer)
