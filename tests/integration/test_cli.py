"""Integration tests for the mcp-client command line."""

import json
import sys
from pathlib import Path

from mcp_client.cli import main

STUB_SERVER = Path(__file__).parent.parent / "fixtures" / "stub_server.py"
STUB_ARGS = ["--tools", "add,echo"]


def write_config(tmp_path, stub_path):
    path = tmp_path / "mcp.json"
    path.write_text(json.dumps({"servers": [
        {"name": "math", "command": sys.executable, "args": [str(stub_path), *STUB_ARGS]},
        {"name": "off", "command": "never-run", "enabled": False},
    ]}))
    return path


def test_list(tmp_path, capsys):
    config = write_config(tmp_path, STUB_SERVER)

    assert main(["--config", str(config), "--list"]) == 0

    out = capsys.readouterr().out
    assert "Connected 1/1 servers" in out
    assert "off" in out and "disabled" in out
    assert "math_add" in out and "math_echo" in out


def test_call(tmp_path, capsys):
    config = write_config(tmp_path, STUB_SERVER)

    code = main(["--config", str(config), "--call", "math_echo", "--args", '{"message": "hello"}'])

    assert code == 0
    assert "hello" in capsys.readouterr().out


def test_bad_arguments_and_missing_config(tmp_path, capsys):
    config = write_config(tmp_path, STUB_SERVER)

    assert main(["--config", str(config), "--call", "math_add", "--args", '{"a": 1}']) == 2
    assert main(["--config", str(tmp_path / "missing.json")]) == 2
    assert main(["--config", str(config), "--args", "{oops"]) == 2
