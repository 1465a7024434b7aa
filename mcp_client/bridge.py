"""
Bridge between MCP tool servers and LangChain / the agent.

Each discovered tool becomes a ToolAdapter: a validated, locally callable
view that always answers with a string. Adapters convert to LangChain
StructuredTools so they can be handed straight to an agent.

Usage:
    from mcp_client.bridge import mcp_to_langchain_tool, register_mcp_tools

    # Single tool
    lc_tool = mcp_to_langchain_tool(registry, "math_add")

    # All tools from all connected servers
    register_mcp_tools(registry, tool_registry)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from langchain_core.tools import StructuredTool
from pydantic import BaseModel, ValidationError

from mcp_client.errors import MCPClientError, RoutingError, ToolInputError
from mcp_client.results import normalize_result
from mcp_client.schema import schema_to_model

if TYPE_CHECKING:
    from mcp_client.registry import QualifiedTool, ServerRegistry

logger = logging.getLogger(__name__)


class ToolAdapter:
    """
    One remote tool as a local capability.

    ``invoke`` validates arguments before any I/O, routes the call through
    the registry, and never raises for call-path failures: errors come back
    as a readable string so one broken tool cannot abort the agent loop.
    """

    def __init__(self, tool: "QualifiedTool", registry: "ServerRegistry"):
        self.tool = tool
        self._registry = registry
        self._args_schema: type[BaseModel] | None = None

    @property
    def name(self) -> str:
        return self.tool.name

    @property
    def server_name(self) -> str:
        return self.tool.server_name

    @property
    def description(self) -> str:
        return self.tool.description or f"MCP tool: {self.tool.server_name}/{self.tool.local_name}"

    @property
    def args_schema(self) -> type[BaseModel]:
        if self._args_schema is None:
            self._args_schema = schema_to_model(self.name, self.tool.input_schema)
        return self._args_schema

    def validate(self, args: Any) -> dict[str, Any]:
        """Check ``args`` against the schema and return the wire arguments."""
        try:
            model = self.args_schema.model_validate(args if args is not None else {})
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
                for err in e.errors()
            )
            raise ToolInputError(self.name, problems) from e
        return model.model_dump(mode="json", by_alias=True, exclude_unset=True)

    async def invoke(self, args: Any = None) -> str:
        """
        Validate, call, and normalize.

        Raises:
            ToolInputError: ``args`` do not match the schema (nothing is sent).
        """
        arguments = self.validate(args)
        try:
            raw = await self._registry.call_tool(self.name, arguments)
        except MCPClientError as e:
            logger.warning(f"MCP tool {self.name} failed: {e}")
            return f"Error calling MCP tool {self.name}: {e}"
        return normalize_result(raw)

    def as_langchain_tool(self) -> StructuredTool:
        """Create a LangChain StructuredTool that proxies to this adapter."""

        async def _call_mcp(**kwargs: Any) -> str:
            """Proxy call to MCP tool server."""
            try:
                return await self.invoke(kwargs)
            except ToolInputError as e:
                return str(e)

        return StructuredTool.from_function(
            coroutine=_call_mcp,
            name=self.name,
            description=self.description,
            args_schema=self.args_schema,
        )

    def __repr__(self) -> str:
        return f"ToolAdapter({self.name!r})"


def mcp_to_langchain_tool(
    registry: "ServerRegistry",
    qualified_name: str,
    description_override: str | None = None,
) -> StructuredTool:
    """
    Create a LangChain StructuredTool for one discovered tool.

    Args:
        registry: The ServerRegistry holding the connected servers
        qualified_name: ``server_tool`` name of the tool
        description_override: Optional override for the tool description

    Raises:
        RoutingError: no connected server advertises that tool.
    """
    adapter = next((a for a in registry.get_tool_adapters() if a.name == qualified_name), None)
    if adapter is None:
        raise RoutingError(RoutingError.UNKNOWN_SERVER, f"No connected MCP tool named {qualified_name}")

    lc_tool = adapter.as_langchain_tool()
    if description_override:
        lc_tool.description = description_override
    return lc_tool


def register_mcp_tools(
    registry: "ServerRegistry",
    tool_registry: Any,  # agent-side registry exposing register_langchain_tool()
    domain_tags: dict[str, list[str]] | None = None,
    prompt_instructions: dict[str, str] | None = None,
) -> list[str]:
    """
    Register every tool from every connected server in an agent-side
    tool registry.

    Args:
        registry: The ServerRegistry with connected servers
        tool_registry: Object with a ``register_langchain_tool`` method
        domain_tags: Optional {qualified_name: [tags]} for categorization
        prompt_instructions: Optional {qualified_name: instructions} for
                             system prompt injection

    Returns:
        List of registered tool ids (qualified names).
    """
    domain_tags = domain_tags or {}
    prompt_instructions = prompt_instructions or {}
    registered = []

    for adapter in registry.get_tool_adapters():
        instructions = prompt_instructions.get(adapter.name) or _auto_prompt_instructions(adapter)
        tool_registry.register_langchain_tool(
            tool_id=adapter.name,
            tool=adapter.as_langchain_tool(),
            prompt_instructions=instructions,
            domain_tags=domain_tags.get(adapter.name, []),
        )
        registered.append(adapter.name)
        logger.info(f"Registered MCP tool: {adapter.name} (from {adapter.server_name})")

    return registered


def _auto_prompt_instructions(adapter: ToolAdapter) -> str:
    """Generate prompt instructions from a tool's input schema."""
    schema = adapter.tool.input_schema
    params = schema.get("properties", {}) if isinstance(schema, dict) else {}
    required = set(schema.get("required") or []) if isinstance(schema, dict) else set()

    lines = [f"## Tool: {adapter.name}", adapter.description, ""]
    if params:
        lines.append("Parameters:")
        for pname, pinfo in params.items():
            pinfo = pinfo if isinstance(pinfo, dict) else {}
            ptype = pinfo.get("type", "any")
            pdesc = pinfo.get("description", "")
            flag = "" if pname in required else ", optional"
            lines.append(f"  - {pname} ({ptype}{flag}): {pdesc}")

    return "\n".join(lines)
