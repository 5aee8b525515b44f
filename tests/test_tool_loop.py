"""Tests for the generate -> invoke tools -> generate loop."""

from typing import (
    Any,
    Dict,
    List,
)

import httpx

from helpers import (
    BASE_URL,
    OllamaScript,
    chunk,
    done,
    tool_call,
)
from maestro.agent.tool_loop import ToolLoop
from maestro.core.cancel import CancelToken
from maestro.core.events import (
    DoneEvent,
    ErrorEvent,
    TokenEvent,
    ToolCallEvent,
    UsageEvent,
)
from maestro.core.schema import (
    GenerationRequest,
    Message,
    Role,
    Tool,
    ToolCallStatus,
)


class RecordingInvoker:
    """Tool back-end that records calls and can be told to fail."""

    def __init__(self, failing: tuple = ()) -> None:
        self.calls: List[tuple] = []
        self.failing = failing

    async def call_tool(self, name: str, args: Dict[str, Any]) -> Any:
        self.calls.append((name, args))
        if name in self.failing:
            raise RuntimeError(f"{name} exploded")
        return {"echo": args}

    async def list_tools(self) -> List[Tool]:
        return []


TOOLS = [Tool(name="lookup"), Tool(name="fetch"), Tool(name="boom")]


def _request(max_iterations: int = 5, tools: List[Tool] = TOOLS) -> GenerationRequest:
    return GenerationRequest(
        base_url=BASE_URL,
        model="test-model",
        messages=[Message(role=Role.USER, content="question")],
        tools=tools,
        max_iterations=max_iterations,
    )


async def _run(script: OllamaScript, request: GenerationRequest, invoker=None, cancel=None) -> list:
    loop = ToolLoop(script.client(), invoker)
    return [event async for event in loop.run(request, cancel or CancelToken())]


async def test_no_tool_calls_single_done() -> None:
    script = OllamaScript([chunk("Hello"), chunk(" world"), done()])
    events = await _run(script, _request(), RecordingInvoker())

    assert [e for e in events if isinstance(e, ToolCallEvent)] == []
    finals = [e for e in events if isinstance(e, (DoneEvent, ErrorEvent))]
    assert finals == [DoneEvent(content="Hello world", thinking="")]
    tokens = [e.content for e in events if isinstance(e, TokenEvent)]
    assert tokens == ["Hello", "Hello world"]
    assert len(script.requests) == 1


async def test_thinking_tags_are_split_from_content() -> None:
    script = OllamaScript([chunk("<think>plan"), chunk(" it</think>"), chunk("Answer"), done()])
    events = await _run(script, _request(), RecordingInvoker())
    assert events[-1] == DoneEvent(content="Answer", thinking="plan it")


async def test_unclosed_thinking_block_becomes_the_answer() -> None:
    script = OllamaScript([chunk("<think>never"), chunk(" closed"), done()])
    events = await _run(script, _request(), RecordingInvoker())

    tokens = [e.content for e in events if isinstance(e, TokenEvent)]
    assert tokens == ["", ""]
    assert events[-1] == DoneEvent(content="<think>never closed", thinking="")


async def test_tool_calls_run_in_order_before_next_round() -> None:
    invoker = RecordingInvoker()
    script = OllamaScript(
        [chunk("", tool_calls=[tool_call("lookup", q="a"), tool_call("fetch", url="b")]), done()],
        [chunk("All done"), done()],
    )
    events = await _run(script, _request(), invoker)

    snapshots = [(e.tool_call.name, e.tool_call.status) for e in events if isinstance(e, ToolCallEvent)]
    assert snapshots == [
        ("lookup", ToolCallStatus.PENDING),
        ("lookup", ToolCallStatus.RUNNING),
        ("lookup", ToolCallStatus.SUCCESS),
        ("fetch", ToolCallStatus.PENDING),
        ("fetch", ToolCallStatus.RUNNING),
        ("fetch", ToolCallStatus.SUCCESS),
    ]
    assert invoker.calls == [("lookup", {"q": "a"}), ("fetch", {"url": "b"})]
    assert events[-1] == DoneEvent(content="All done", thinking="")

    # The second round sees the assistant turn and one tool result per call
    second = script.requests[1]["messages"]
    assert [m["role"] for m in second] == ["user", "assistant", "tool", "tool"]
    assert second[1]["tool_calls"][0]["function"]["name"] == "lookup"
    assert second[2]["tool_name"] == "lookup"
    assert second[3]["content"] == '{"echo": {"url": "b"}}'


async def test_string_arguments_are_parsed() -> None:
    invoker = RecordingInvoker()
    raw = {"function": {"name": "lookup", "arguments": '{"q": "x"}'}}
    script = OllamaScript([chunk("", tool_calls=[raw]), done()], [chunk("ok"), done()])
    await _run(script, _request(), invoker)
    assert invoker.calls == [("lookup", {"q": "x"})]


async def test_failing_tool_is_reported_and_loop_continues() -> None:
    invoker = RecordingInvoker(failing=("boom",))
    script = OllamaScript(
        [chunk("", tool_calls=[tool_call("boom")]), done()],
        [chunk("Recovered"), done()],
    )
    events = await _run(script, _request(), invoker)

    final_call = [e.tool_call for e in events if isinstance(e, ToolCallEvent)][-1]
    assert final_call.status == ToolCallStatus.ERROR
    assert final_call.error == "boom exploded"
    assert events[-1] == DoneEvent(content="Recovered", thinking="")
    assert script.requests[1]["messages"][-1]["content"] == "boom exploded"


async def test_unknown_tool_is_not_invoked() -> None:
    invoker = RecordingInvoker()
    script = OllamaScript(
        [chunk("", tool_calls=[tool_call("missing")]), done()],
        [chunk("Sorry"), done()],
    )
    events = await _run(script, _request(), invoker)

    final_call = [e.tool_call for e in events if isinstance(e, ToolCallEvent)][-1]
    assert final_call.status == ToolCallStatus.ERROR
    assert final_call.error == "Tool 'missing' is not available."
    assert invoker.calls == []


async def test_max_iterations_bounds_rounds() -> None:
    """Tool calls requested in the last allowed round are not run."""

    invoker = RecordingInvoker()
    script = OllamaScript(
        [chunk("one", tool_calls=[tool_call("lookup")]), done()],
        [chunk("two", tool_calls=[tool_call("lookup")]), done()],
    )
    events = await _run(script, _request(max_iterations=2), invoker)

    assert len(script.requests) == 2
    assert len(invoker.calls) == 1
    assert events[-1] == DoneEvent(content="two", thinking="")


async def test_usage_reported_per_round() -> None:
    script = OllamaScript([chunk("x"), done(10, 4)])
    events = await _run(script, _request(), RecordingInvoker())
    (usage,) = [e for e in events if isinstance(e, UsageEvent)]
    assert usage.usage.total == 14


async def test_provider_error_keeps_partial_content() -> None:
    script = OllamaScript(
        [chunk("", tool_calls=[tool_call("lookup")]), done()],
        httpx.Response(500, text="out of memory"),
    )
    events = await _run(script, _request(), RecordingInvoker())
    assert isinstance(events[-1], ErrorEvent)
    assert events[-1].message == "Ollama error 500: out of memory"
    assert [e for e in events if isinstance(e, DoneEvent)] == []


async def test_cancelled_loop_ends_silently() -> None:
    cancel = CancelToken()
    cancel.cancel()
    script = OllamaScript([chunk("never"), done()])
    events = await _run(script, _request(), RecordingInvoker(), cancel)
    assert events == []
