"""Dispatches tool calls to a tool back-end and wraps errors."""

import inspect
import logging
from typing import (
    Any,
    Dict,
    List,
    Protocol,
    runtime_checkable,
)

from maestro.core.schema import Tool
from maestro.tools import (
    TOOL_REGISTRY,
    get_tool_schemas,
)

logger = logging.getLogger(__name__)


class ToolExecutionError(RuntimeError):
    """Raised when a requested tool cannot run or fails."""


@runtime_checkable
class ToolInvoker(Protocol):
    """
    The capability the engine uses to run tools.

    Any exception raised by :meth:`call_tool` is treated as a failure of that one tool call, never
    as a protocol failure.
    """

    async def call_tool(self, name: str, args: Dict[str, Any]) -> Any:
        ...

    async def list_tools(self) -> List[Tool]:
        ...


async def execute_tool(name: str, args: Dict[str, Any] | None = None) -> Any:
    """
    Look up *name* in the in-process registry and invoke it with *args*.

    Parameters
    ----------
    name:
        The registered tool name.
    args:
        Keyword arguments to pass verbatim to the tool function.  If *None*,
        an empty dict is assumed.

    Returns
    -------
    Any
        Whatever the tool function returns (awaited if it is a coroutine).

    Raises
    ------
    ToolExecutionError
        If the tool is missing or its invocation raises an exception.
    """

    if args is None:
        args = {}

    tool_fn = TOOL_REGISTRY.get(name)
    if tool_fn is None:
        raise ToolExecutionError(f"Tool '{name}' is not registered.")

    try:
        logger.debug("Executing tool '%s' with args=%s", name, args)
        result = tool_fn(**args)
        if inspect.isawaitable(result):
            result = await result
        return result
    except TypeError as exc:
        # Argument mismatch: give the caller a clean exception.
        logger.exception("Argument error while executing tool '%s'", name)
        raise ToolExecutionError(f"Invalid arguments for tool '{name}': {exc}") from exc
    except Exception as exc:  # noqa: BLE001
        logger.exception("Unhandled error in tool '%s'", name)
        raise ToolExecutionError(f"Tool '{name}' raised an error: {exc}") from exc


class RegistryToolInvoker:
    """:class:`ToolInvoker` backed by the functions registered with ``@register_tool``."""

    async def call_tool(self, name: str, args: Dict[str, Any]) -> Any:
        return await execute_tool(name, args)

    async def list_tools(self) -> List[Tool]:
        return get_tool_schemas()
