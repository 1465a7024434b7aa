"""
Translate a tool's JSON Schema (MCP ``inputSchema``) into a pydantic model.

The model doubles as LangChain's ``args_schema`` and as the local
validator that runs before anything is sent to the tool server.

Type mapping:
    string  -> str
    number  -> float
    integer -> int
    boolean -> bool
    array   -> list[<items>]          (items translated recursively)
    object  -> nested model, or dict[str, Any] without properties
    other   -> Any                    (unknown or missing type tag)

Properties not listed in ``required`` become Optional with a None default.
"""

from __future__ import annotations

import keyword
import logging
import re
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, create_model

logger = logging.getLogger(__name__)

_SCALARS: dict[str, Any] = {
    "string": str,
    "number": float,
    "integer": int,
    "boolean": bool,
}

_NOT_IDENTIFIER = re.compile(r"\W")


class PermissiveArgs(BaseModel):
    """Accepts any keyword arguments. Used for non-object schemas."""

    model_config = ConfigDict(extra="allow")


def schema_to_model(name: str, schema: Any) -> type[BaseModel]:
    """
    Build a pydantic model class for a tool's input schema.

    Args:
        name: Model class name (usually derived from the qualified tool name).
        schema: The JSON Schema object advertised by the server.

    Returns:
        A BaseModel subclass. Non-object schemas yield a model that
        accepts anything.
    """
    if not isinstance(schema, dict) or schema.get("type") != "object":
        return create_model(_model_name(name), __base__=PermissiveArgs)

    properties = schema.get("properties") or {}
    required = set(schema.get("required") or [])

    fields: dict[str, Any] = {}
    for index, (prop_name, prop_schema) in enumerate(properties.items()):
        if not isinstance(prop_schema, dict):
            prop_schema = {}
        annotation = _property_type(prop_schema, f"{name}_{prop_name}", prop_name)
        description = prop_schema.get("description")

        field_name = _field_name(prop_name, index)
        alias = prop_name if field_name != prop_name else None

        if prop_name in required:
            fields[field_name] = (annotation, Field(..., alias=alias, description=description))
        else:
            fields[field_name] = (
                Optional[annotation],
                Field(None, alias=alias, description=description),
            )

    return create_model(
        _model_name(name),
        __config__=ConfigDict(populate_by_name=True, protected_namespaces=()),
        **fields,
    )


def _property_type(prop: dict[str, Any], path: str, prop_name: str) -> Any:
    type_tag = prop.get("type")

    # ["string", "null"] style unions: use the single non-null member if there is one
    if isinstance(type_tag, list):
        concrete = [t for t in type_tag if t != "null"]
        type_tag = concrete[0] if len(concrete) == 1 else None

    if type_tag in _SCALARS:
        return _SCALARS[type_tag]

    if type_tag == "array":
        items = prop.get("items")
        item_type = _property_type(items, f"{path}_item", prop_name) if isinstance(items, dict) else Any
        return list[item_type]

    if type_tag == "object":
        if prop.get("properties"):
            return schema_to_model(path, prop)
        return dict[str, Any]

    if type_tag is not None:
        logger.debug(f"Property '{prop_name}' has unrecognized type {type_tag!r}, accepting any value")
    return Any


def _field_name(prop_name: str, index: int) -> str:
    """Python-safe attribute name for a property; the original stays as alias."""
    if (
        prop_name.isidentifier()
        and not keyword.iskeyword(prop_name)
        and not prop_name.startswith("_")
        and not hasattr(BaseModel, prop_name)
    ):
        return prop_name
    cleaned = _NOT_IDENTIFIER.sub("_", prop_name).strip("_")
    return f"field_{index}_{cleaned}" if cleaned else f"field_{index}"


def _model_name(name: str) -> str:
    cleaned = _NOT_IDENTIFIER.sub("_", name) or "Tool"
    return f"{cleaned}_args"
