"""Tests for the interactive shell helpers and the entry point."""

import pytest

from maestro.agent.planner import parse_plan
from maestro.client.cli import (
    ConsoleRenderer,
    format_plan,
    parse_command,
)
from maestro.core.schema import (
    ChatMode,
    Message,
    Role,
    ToolCall,
    ToolCallStatus,
)
from maestro.main import build_parser


@pytest.mark.parametrize(
    "text, expected",
    [
        ("hello there", (ChatMode.AGENT, "hello there")),
        ("/ask what time is it", (ChatMode.ASK, "what time is it")),
        ("/PLAN build a site", (ChatMode.PLAN, "build a site")),
        ("/agent", (ChatMode.AGENT, "")),
        ("/unknown thing", (ChatMode.AGENT, "/unknown thing")),
    ],
)
def test_parse_command(text: str, expected: tuple) -> None:
    assert parse_command(text, ChatMode.AGENT) == expected


def test_format_plan() -> None:
    plan = parse_plan('{"title": "T", "parallelGroups": [[{"name": "x", "description": "d"}]]}')
    assert format_plan(plan) == "📋 T\n  Group 1:\n    - x: d"


def test_renderer_streams_only_new_text(capsys: pytest.CaptureFixture) -> None:
    render = ConsoleRenderer()
    message = Message(role=Role.ASSISTANT, content="Hel", is_streaming=True)
    render(message)
    message.content = "Hello"
    render(message)
    message.is_streaming = False
    render(message)
    render(message)

    out = capsys.readouterr().out
    assert "Hel" in out and out.count("lo") == 1
    assert out.count("\n") == 1


def test_renderer_prints_finished_tool_calls_once(capsys: pytest.CaptureFixture) -> None:
    render = ConsoleRenderer()
    call = ToolCall(id="tc-1", name="search", status=ToolCallStatus.SUCCESS, result="42")
    message = Message(role=Role.TOOL, tool_calls=[call])
    render(message)
    render(message)
    assert capsys.readouterr().out.count("[search] 42") == 1


def test_main_parser() -> None:
    args = build_parser().parse_args(["--mode", "CLI", "--log-level", "DEBUG"])
    assert (args.mode, args.log_level) == ("cli", "debug")
    with pytest.raises(SystemExit):
        build_parser().parse_args(["--mode", "web"])
