"""Configuration for the MCP client using pydantic and pydantic-settings."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from mcp_client import __version__
from mcp_client.errors import ConfigError

logger = logging.getLogger(__name__)


class ServerDescriptor(BaseModel):
    """How to launch one tool server. Immutable once loaded."""

    model_config = ConfigDict(frozen=True)

    name: str
    command: str
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)
    cwd: str | None = None
    enabled: bool = True
    description: str = ""

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("server name must not be empty")
        return value

    @property
    def command_line(self) -> list[str]:
        return [self.command, *self.args]


class ClientSettings(BaseSettings):
    """Runtime settings for the client.

    All settings can be overridden via environment variables with the
    MCP_CLIENT_ prefix, e.g. MCP_CLIENT_REQUEST_TIMEOUT=10.
    """

    config_path: str = "config/mcp.json"

    # Timeouts (seconds)
    request_timeout: float = 30.0
    connect_timeout: float = 60.0
    shutdown_grace: float = 5.0

    max_concurrent_connects: int = 8

    # Handshake
    protocol_version: str = "2024-11-05"
    client_name: str = "mcp-client"
    client_version: str = __version__
    initialized_method: str = "initialized"

    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_prefix="MCP_CLIENT_")


def _extract_servers(raw: Any) -> list[dict[str, Any]]:
    """Pull the server list out of the supported config file shapes."""
    if not isinstance(raw, dict):
        raise ConfigError("Config root must be a JSON object")

    if "mcp" in raw and isinstance(raw["mcp"], dict):
        raw = raw["mcp"]

    if "servers" in raw:
        servers = raw["servers"]
        if not isinstance(servers, list):
            raise ConfigError("'servers' must be a list")
        return servers

    if "mcpServers" in raw:
        mapping = raw["mcpServers"]
        if not isinstance(mapping, dict):
            raise ConfigError("'mcpServers' must be an object")
        servers = []
        for name, entry in mapping.items():
            if not isinstance(entry, dict):
                raise ConfigError(f"Server entry '{name}' must be an object")
            servers.append({"name": name, **entry})
        return servers

    return []


def parse_server_config(raw: Any) -> list[ServerDescriptor]:
    """Validate already-decoded config data into descriptors."""
    descriptors = []
    seen: set[str] = set()
    for entry in _extract_servers(raw):
        try:
            descriptor = ServerDescriptor.model_validate(entry)
        except ValidationError as e:
            raise ConfigError(f"Invalid server entry {entry!r}: {e}") from e
        if descriptor.name in seen:
            raise ConfigError(f"Duplicate server name: {descriptor.name}")
        seen.add(descriptor.name)
        descriptors.append(descriptor)
    return descriptors


def load_server_config(path: str | Path) -> list[ServerDescriptor]:
    """
    Load server descriptors from a JSON file.

    Accepted layouts:
        {"servers": [{"name": ..., "command": ...}, ...]}
        {"mcp": {"servers": [...]}}
        {"mcpServers": {"<name>": {"command": ..., "args": [...]}}}

    Raises:
        ConfigError: the file is missing, not JSON, or fails validation.
    """
    path = Path(path)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"Failed to read configuration from {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Failed to parse configuration from {path}: {e}") from e

    descriptors = parse_server_config(raw)
    enabled = sum(1 for d in descriptors if d.enabled)
    logger.info(f"Loaded {len(descriptors)} server(s) from {path} ({enabled} enabled)")
    return descriptors
