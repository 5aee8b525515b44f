"""Interactive shell on a local Maestro chat session."""

from __future__ import annotations

import asyncio
import logging
from typing import (
    Dict,
    Set,
    Tuple,
)

from maestro.agent.factory import SessionFactory
from maestro.agent.session import ChatSession
from maestro.common import (
    AnsiColors,
    colored_print,
)
from maestro.config import settings
from maestro.core.schema import (
    AgentPlan,
    ChatMode,
    Message,
    Role,
)

logger = logging.getLogger(__name__)

MODE_PREFIXES = {f"/{mode.value}": mode for mode in ChatMode}


# ---------------------------------------------------------------------------
# Input helpers
# ---------------------------------------------------------------------------
def get_user_message() -> Tuple[str, bool]:
    """
    Get a message from the user via standard input.

    Returns:
        Tuple of (user_input, success_flag)
        The success_flag is False if input couldn't be read (e.g., Ctrl+C)
    """
    try:
        user_input = input().strip()
        return user_input, True
    except (EOFError, KeyboardInterrupt):
        return "", False


def parse_command(text: str, default: ChatMode) -> Tuple[ChatMode, str]:
    """Split an optional ``/ask``, ``/agent`` or ``/plan`` prefix off *text*."""
    head, _, rest = text.partition(" ")
    mode = MODE_PREFIXES.get(head.lower())
    if mode is None:
        return default, text
    return mode, rest.strip()


def format_plan(plan: AgentPlan) -> str:
    lines = [f"📋 {plan.title}"]
    for index, group in enumerate(plan.parallel_groups, start=1):
        lines.append(f"  Group {index}:")
        for task in group:
            lines.append(f"    - {task.name}: {task.description}")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------
class ConsoleRenderer:
    """Prints session messages as they stream in."""

    def __init__(self) -> None:
        self._printed: Dict[str, int] = {}
        self._tool_calls_shown: Set[str] = set()
        self._finished: Set[str] = set()

    def __call__(self, message: Message) -> None:
        if message.role == Role.ASSISTANT:
            self._render_assistant(message)
        elif message.role == Role.TOOL:
            for call in message.tool_calls or []:
                if call.is_terminal and call.id not in self._tool_calls_shown:
                    self._tool_calls_shown.add(call.id)
                    if call.error:
                        colored_print(f"[{call.name}] {call.error}", AnsiColors.RED)
                    else:
                        colored_print(f"[{call.name}] {call.result}", AnsiColors.GREEN)

    def _render_assistant(self, message: Message) -> None:
        if message.is_plan:
            if not message.is_streaming and message.agent_plan is None and message.error:
                colored_print(message.error, AnsiColors.RED)
            return

        printed = self._printed.get(message.id, 0)
        if len(message.content) > printed:
            colored_print(message.content[printed:], AnsiColors.YELLOW, end="", flush=True)
            self._printed[message.id] = len(message.content)
        if not message.is_streaming and message.id not in self._finished:
            self._finished.add(message.id)
            if message.error:
                colored_print(f"\n⚠️ {message.error}", AnsiColors.RED)
            elif message.content:
                print()


# ---------------------------------------------------------------------------
# CLI loop
# ---------------------------------------------------------------------------
async def _ask_approval(session: ChatSession, plan: AgentPlan) -> None:
    colored_print(format_plan(plan), AnsiColors.BLUE)
    colored_print("Approve this plan? [y/N] ", AnsiColors.BLUE, end="")
    answer, ok = await asyncio.to_thread(get_user_message)
    if ok and answer.lower() in {"y", "yes"}:
        session.approve_plan(plan.id)
    else:
        session.reject_plan(plan.id)


async def _run_turn(session: ChatSession, content: str, mode: ChatMode) -> None:
    turn = asyncio.create_task(session.send(content, mode))
    try:
        while not turn.done():
            plan = session.gate.pending_plan
            if plan is not None:
                await _ask_approval(session, plan)
            await asyncio.sleep(0.05)
        await turn
    except asyncio.CancelledError:
        session.stop()
        raise


async def run_shell(factory: SessionFactory) -> None:
    renderer = ConsoleRenderer()
    session = await factory.create(on_message=renderer)
    if not session.profile.is_configured:
        colored_print("⚠️ No model configured; set MODEL (and OLLAMA_URL) first", AnsiColors.RED)
        return

    default_mode = ChatMode(settings.CHAT_MODE)
    colored_print(
        "\n🎼 Maestro shell - prefix with /ask, /agent or /plan; type 'exit' or 'quit' (or Ctrl+C) to exit",
        AnsiColors.GREEN,
    )
    while True:
        colored_print("\n🧑 You: ", AnsiColors.BLUE, end="")
        user_msg, ok = await asyncio.to_thread(get_user_message)
        if not ok:
            break  # Exit if user input couldn't be retrieved (e.g., Ctrl+C)
        if user_msg.lower() in {"exit", "quit"}:
            break
        if not user_msg:
            continue

        mode, content = parse_command(user_msg, default_mode)
        if not content:
            colored_print(f"Usage: /{mode.value} <message>", AnsiColors.GREY)
            continue
        await _run_turn(session, content, mode)
        if session.used_tokens:
            colored_print(f"({session.used_tokens} tokens)", AnsiColors.GREY)


def run_cli() -> None:
    """Run the interactive shell until the user quits."""
    factory = SessionFactory(settings)

    async def _main() -> None:
        try:
            await run_shell(factory)
        finally:
            await factory.aclose()

    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        logger.info("Shell interrupted")


if __name__ == "__main__":
    run_cli()
