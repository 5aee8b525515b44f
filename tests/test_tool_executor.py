"""
Basic sanity tests for the tool executor.

Run with:
$ pytest -q
"""

import pytest

from maestro.agent.tool_executor import (
    RegistryToolInvoker,
    ToolExecutionError,
    ToolInvoker,
    execute_tool,
)
from maestro.tools import (
    get_tool_schemas,
    register_tool,
)


# This is a stub tool for testing purposes.
@register_tool("add")
def _add(a: int, b: int = 0) -> int:
    """Return the sum of two integers (used only for tests)."""

    return a + b


@register_tool("async_echo")
async def _async_echo(text: str) -> str:
    """Echo *text* back."""

    return text


async def test_execute_tool_success() -> None:
    """Executor should return the correct value when the tool is valid."""

    assert await execute_tool("add", {"a": 2, "b": 3}) == 5


async def test_execute_async_tool() -> None:
    """Coroutine tools are awaited."""

    assert await execute_tool("async_echo", {"text": "hi"}) == "hi"


async def test_execute_tool_missing() -> None:
    """Executor should raise *ToolExecutionError* for an unknown tool."""

    with pytest.raises(ToolExecutionError, match="not_a_tool"):
        await execute_tool("not_a_tool", {})


async def test_execute_tool_bad_args() -> None:
    """Executor should raise *ToolExecutionError* for wrong arguments."""

    with pytest.raises(ToolExecutionError, match="Invalid arguments"):
        await execute_tool("add", {"b": 2})  # missing 'a'


def test_register_tool_twice() -> None:
    with pytest.raises(ValueError):
        register_tool("add")


def test_tool_schemas_describe_parameters() -> None:
    """Registered tools are described with their docstring and annotated parameters."""

    schemas = {tool.name: tool for tool in get_tool_schemas()}
    add = schemas["add"]
    assert add.description == "Return the sum of two integers (used only for tests)."
    assert add.input_schema["properties"] == {"a": {"type": "integer"}, "b": {"type": "integer"}}
    assert add.input_schema["required"] == ["a"]
    assert "current_time" in schemas


async def test_registry_invoker() -> None:
    invoker = RegistryToolInvoker()
    assert isinstance(invoker, ToolInvoker)
    assert await invoker.call_tool("add", {"a": 1, "b": 1}) == 2
    assert "add" in [tool.name for tool in await invoker.list_tools()]
