"""Unit tests for configuration loading."""

import json

import pytest
from pydantic import ValidationError

from mcp_client.config import ClientSettings, ServerDescriptor, load_server_config
from mcp_client.errors import ConfigError


def write_config(tmp_path, data):
    path = tmp_path / "mcp.json"
    path.write_text(json.dumps(data))
    return path


def test_load_servers_list(tmp_path):
    path = write_config(tmp_path, {"servers": [
        {"name": "math", "command": "python", "args": ["-m", "math_server"]},
        {"name": "web", "command": "node", "enabled": False, "env": {"DEBUG": "1"}},
    ]})

    descriptors = load_server_config(path)

    assert [d.name for d in descriptors] == ["math", "web"]
    assert descriptors[0].command_line == ["python", "-m", "math_server"]
    assert descriptors[1].enabled is False
    assert descriptors[1].env == {"DEBUG": "1"}


def test_load_nested_mcp_section(tmp_path):
    path = write_config(tmp_path, {"mcp": {"servers": [{"name": "a", "command": "a-server"}]}})

    assert [d.name for d in load_server_config(path)] == ["a"]


def test_load_mcp_servers_mapping(tmp_path):
    path = write_config(tmp_path, {"mcpServers": {
        "fs": {"command": "npx", "args": ["-y", "server-fs"], "cwd": "/tmp"},
    }})

    (descriptor,) = load_server_config(path)

    assert descriptor.name == "fs"
    assert descriptor.cwd == "/tmp"


def test_duplicate_names_rejected(tmp_path):
    path = write_config(tmp_path, {"servers": [
        {"name": "a", "command": "x"},
        {"name": "a", "command": "y"},
    ]})

    with pytest.raises(ConfigError, match="Duplicate"):
        load_server_config(path)


def test_invalid_entry_rejected(tmp_path):
    path = write_config(tmp_path, {"servers": [{"name": "a"}]})

    with pytest.raises(ConfigError):
        load_server_config(path)


def test_missing_and_malformed_files(tmp_path):
    with pytest.raises(ConfigError):
        load_server_config(tmp_path / "nope.json")

    bad = tmp_path / "bad.json"
    bad.write_text("{not json")
    with pytest.raises(ConfigError):
        load_server_config(bad)


def test_descriptor_is_immutable():
    descriptor = ServerDescriptor(name="a", command="x")

    with pytest.raises(ValidationError):
        descriptor.command = "y"


def test_blank_name_rejected():
    with pytest.raises(ValidationError):
        ServerDescriptor(name="  ", command="x")


def test_settings_env_override(monkeypatch):
    """Test that MCP_CLIENT_ environment variables override defaults."""
    monkeypatch.setenv("MCP_CLIENT_REQUEST_TIMEOUT", "7.5")
    monkeypatch.setenv("MCP_CLIENT_CLIENT_NAME", "agent")

    settings = ClientSettings()

    assert settings.request_timeout == 7.5
    assert settings.client_name == "agent"
    assert settings.protocol_version == "2024-11-05"
