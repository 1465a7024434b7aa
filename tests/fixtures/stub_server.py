"""
Stub MCP tool server used by the integration tests.

Reads JSON-RPC requests from stdin, one per line, and answers on stdout.
tools/call requests run on worker threads so slow calls do not block fast
ones and responses can come back out of order.

Flags:
    --bad-handshake   answer initialize with a JSON-RPC error
    --bad-tools       answer tools/list with a malformed result
    --garbage         write a non-JSON line before every response
    --exit-at-start   exit before reading anything
    --tools NAMES     comma-separated subset of tools to advertise

Tools:
    add(a, b)          -> {"content": [{"type": "text", "text": "<a+b>"}]}
    echo(message)      -> {"text": message}
    slow(seconds, tag) -> sleeps, then {"text": tag}
    fail()             -> JSON-RPC error -32000
    never()            -> no response at all
    crash()            -> the process exits with code 3
"""

import argparse
import json
import os
import sys
import threading
import time

TOOLS = {
    "add": {
        "description": "Add two numbers",
        "inputSchema": {
            "type": "object",
            "properties": {"a": {"type": "number"}, "b": {"type": "number"}},
            "required": ["a", "b"],
        },
    },
    "echo": {
        "description": "Echo a message back",
        "inputSchema": {
            "type": "object",
            "properties": {"message": {"type": "string"}},
            "required": ["message"],
        },
    },
    "slow": {
        "description": "Reply after a delay",
        "inputSchema": {
            "type": "object",
            "properties": {"seconds": {"type": "number"}, "tag": {"type": "string"}},
            "required": ["seconds"],
        },
    },
    "fail": {"description": "Always errors", "inputSchema": {"type": "object", "properties": {}}},
    "never": {"description": "Never answers", "inputSchema": {"type": "object", "properties": {}}},
    "crash": {"description": "Kills the server", "inputSchema": {"type": "object", "properties": {}}},
}


class StubServer:
    def __init__(self, options):
        self.options = options
        self._write_lock = threading.Lock()
        names = options.tools.split(",") if options.tools else list(TOOLS)
        self.tools = [{"name": n, **TOOLS[n]} for n in names]

    def run(self):
        if self.options.exit_at_start:
            sys.exit(1)

        print("stub server starting", file=sys.stderr, flush=True)
        for line in sys.stdin:
            line = line.strip()
            if not line:
                continue
            message = json.loads(line)
            if "id" not in message:
                continue  # notification
            self._dispatch(message)

    def _dispatch(self, message):
        request_id = message["id"]
        method = message.get("method")
        params = message.get("params") or {}

        if method == "initialize":
            if self.options.bad_handshake:
                self._write({"jsonrpc": "2.0", "id": request_id,
                             "error": {"code": -32603, "message": "unsupported client"}})
            else:
                self._write({"jsonrpc": "2.0", "id": request_id, "result": {
                    "protocolVersion": params.get("protocolVersion"),
                    "capabilities": {"tools": {}},
                    "serverInfo": {"name": "stub", "version": "0.0.1"},
                }})
        elif method == "tools/list":
            result = "not a tool list" if self.options.bad_tools else {"tools": self.tools}
            self._write({"jsonrpc": "2.0", "id": request_id, "result": result})
        elif method == "tools/call":
            threading.Thread(target=self._call, args=(request_id, params), daemon=True).start()
        else:
            self._write({"jsonrpc": "2.0", "id": request_id,
                         "error": {"code": -32601, "message": f"Unknown method: {method}"}})

    def _call(self, request_id, params):
        name = params.get("name")
        args = params.get("arguments") or {}

        if name == "add":
            result = {"content": [{"type": "text", "text": str(args["a"] + args["b"])}]}
        elif name == "echo":
            result = {"text": args["message"]}
        elif name == "slow":
            time.sleep(float(args["seconds"]))
            result = {"text": args.get("tag", "done")}
        elif name == "fail":
            self._write({"jsonrpc": "2.0", "id": request_id,
                         "error": {"code": -32000, "message": "tool exploded", "data": {"tool": name}}})
            return
        elif name == "never":
            return
        elif name == "crash":
            sys.stdout.flush()
            os._exit(3)
        else:
            self._write({"jsonrpc": "2.0", "id": request_id,
                         "error": {"code": -32602, "message": f"Unknown tool: {name}"}})
            return

        self._write({"jsonrpc": "2.0", "id": request_id, "result": result})

    def _write(self, message):
        with self._write_lock:
            if self.options.garbage:
                sys.stdout.write("this is not json\n")
            sys.stdout.write(json.dumps(message) + "\n")
            sys.stdout.flush()


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--bad-handshake", action="store_true")
    parser.add_argument("--bad-tools", action="store_true")
    parser.add_argument("--garbage", action="store_true")
    parser.add_argument("--exit-at-start", action="store_true")
    parser.add_argument("--tools", default="")
    StubServer(parser.parse_args()).run()


if __name__ == "__main__":
    main()
