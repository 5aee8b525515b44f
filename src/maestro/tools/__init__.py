"""
In-process tool registry for Maestro.

This module provides a decorator to register tools and a registry to look them up by name.  Tools
are plain or ``async`` functions called with keyword arguments.  The registry is one of two tool
back-ends; the other is a remote MCP service (see :mod:`maestro.agent.mcp_client`).
"""

import inspect
import logging
from datetime import (
    datetime,
    timezone,
)
from typing import (
    Any,
    Callable,
    Dict,
    List,
    get_type_hints,
)

from maestro.core.schema import Tool

TOOL_REGISTRY: Dict[str, Callable] = {}
"""Global registry of tool functions."""

_JSON_TYPES: Dict[Any, str] = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    list: "array",
    dict: "object",
}


def register_tool(name: str) -> Callable:
    """
    Register a tool function with the given name.

    The function is registered as a decorator, so it can be used like this:
        @register_tool("my_tool")
        def my_tool_function(arg1: str, arg2: int) -> str:
            ...

    The first line of the docstring becomes the tool description shown to the model, and the
    annotated parameters become its JSON-schema ``properties``.

    Parameters
    ----------
    name: str
        The name of the tool.  This must be unique.
    Returns
    -------
    Callable
        A decorator that registers the function with the given name.
    Raises
    ------
    ValueError
        If a function with the same name is already registered.
    """
    if name in TOOL_REGISTRY:
        raise ValueError(f"Tool '{name}' is already registered.")
    logger = logging.getLogger(__name__)
    logger.debug("Registering tool '%s'", name)

    def wrapper(fn: Callable) -> Callable:
        TOOL_REGISTRY[name] = fn
        return fn

    return wrapper


def _input_schema(func: Callable) -> Dict[str, Any]:
    sig = inspect.signature(func)
    type_hints = get_type_hints(func)
    properties: Dict[str, Any] = {}
    required: List[str] = []
    for param_name, param in sig.parameters.items():
        param_type = type_hints.get(param_name)
        properties[param_name] = {"type": _JSON_TYPES.get(param_type, "string")}
        if param.default is inspect.Parameter.empty:
            required.append(param_name)
    schema: Dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


def get_tool_schemas() -> List[Tool]:
    """Describe every registered tool in the provider-agnostic :class:`Tool` shape."""
    tools = []
    for name, func in TOOL_REGISTRY.items():
        doc = inspect.getdoc(func) or ""
        tools.append(
            Tool(name=name, description=doc.split("\n")[0], input_schema=_input_schema(func))
        )
    return tools


@register_tool("current_time")
def current_time() -> str:
    """Return the current UTC time in ISO-8601 format."""
    return datetime.now(timezone.utc).isoformat()
