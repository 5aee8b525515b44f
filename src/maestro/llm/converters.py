"""
Pure converters between Maestro's data model and the Ollama wire format.

Kept free of I/O so the adapter, the planner and the tests can share them.
"""

import json
import logging
from typing import (
    Any,
    Dict,
    List,
    Tuple,
)

from maestro.core.errors import MalformedStreamError
from maestro.core.events import (
    Completion,
    ContentDelta,
    StreamRecord,
    ThinkingDelta,
    ToolCallBatch,
)
from maestro.core.schema import (
    Message,
    Role,
    Tool,
    Usage,
)

logger = logging.getLogger(__name__)

THINK_OPEN = "<think>"
THINK_CLOSE = "</think>"


# ---------------------------------------------------------------------------
# Thinking / content separation
# ---------------------------------------------------------------------------
def _drop_partial_suffix(text: str, tag: str) -> str:
    """Remove a trailing, incomplete copy of *tag* (``"...</thi"``)."""
    for size in range(len(tag) - 1, 0, -1):
        if text.endswith(tag[:size]):
            return text[:-size]
    return text


def split_thinking(raw: str, final: bool = False) -> Tuple[str, str]:
    """
    Split raw model content into ``(thinking, visible_text)``.

    A leading ``<think>...</think>`` block is thinking.  While the block is still open everything
    after the opening tag is thinking and nothing is visible yet; a buffer that could still grow
    into ``<think>`` is held back.  Content without the tag is returned untouched.

    With *final* set the round is over: a block that never closed is not thinking after all, and
    the raw content becomes visible as it is.
    """
    stripped = raw.lstrip()
    if not stripped:
        return "", ""
    if stripped.startswith(THINK_OPEN):
        body = stripped[len(THINK_OPEN) :]
        end = body.find(THINK_CLOSE)
        if end == -1:
            if final:
                return "", raw
            return _drop_partial_suffix(body, THINK_CLOSE).strip(), ""
        return body[:end].strip(), body[end + len(THINK_CLOSE) :].strip()
    if THINK_OPEN.startswith(stripped) and not final:
        return "", ""
    return "", raw


class ThinkingSplitter:
    """
    Accumulates content and native thinking deltas for one generation round.

    The split is recomputed from the whole raw buffer on every delta because the closing tag may
    arrive split across several deltas.
    """

    def __init__(self) -> None:
        self._raw = ""
        self._native_thinking = ""
        self._final = False

    def feed_content(self, delta: str) -> None:
        self._raw += delta

    def feed_thinking(self, delta: str) -> None:
        self._native_thinking += delta

    def finish(self) -> None:
        """Mark the round as complete; see :func:`split_thinking`."""
        self._final = True

    @property
    def content(self) -> str:
        return split_thinking(self._raw, self._final)[1]

    @property
    def thinking(self) -> str:
        embedded = split_thinking(self._raw, self._final)[0]
        return "\n".join(part for part in (self._native_thinking, embedded) if part)


# ---------------------------------------------------------------------------
# Request encoding
# ---------------------------------------------------------------------------
def tools_to_ollama(tools: List[Tool]) -> List[Dict[str, Any]]:
    """Convert tool definitions to Ollama's function-tool format."""
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.input_schema or {"type": "object", "properties": {}},
            },
        }
        for tool in tools
    ]


def _tool_result_text(result: Any, error: str | None) -> str:
    if result is None:
        return error or ""
    if isinstance(result, str):
        return result
    return json.dumps(result, default=str)


def messages_to_ollama(
    messages: List[Message], system_prompt: str | None = None
) -> List[Dict[str, Any]]:
    """
    Flatten the chat history into Ollama's message list.

    Streaming messages and plan bubbles are skipped.  A ``tool`` message expands into one wire message per tool
    call it carries.
    """
    result: List[Dict[str, Any]] = []
    if system_prompt:
        result.append({"role": "system", "content": system_prompt})

    for msg in messages:
        if msg.is_streaming or msg.is_plan:
            continue
        if msg.role == Role.USER:
            wire: Dict[str, Any] = {"role": "user", "content": msg.content}
            images = [a.payload for a in msg.attachments or [] if a.is_image]
            if images:
                wire["images"] = images
            result.append(wire)
        elif msg.role == Role.ASSISTANT:
            wire = {"role": "assistant", "content": msg.content}
            if msg.provider_tool_calls:
                wire["tool_calls"] = msg.provider_tool_calls
            result.append(wire)
        elif msg.role == Role.TOOL:
            for call in msg.tool_calls or []:
                result.append(
                    {
                        "role": "tool",
                        "content": _tool_result_text(call.result, call.error),
                        "tool_call_id": call.id,
                        "tool_name": call.name,
                    }
                )
        elif msg.role == Role.SYSTEM:
            result.append({"role": "system", "content": msg.content})
    return result


# ---------------------------------------------------------------------------
# Response decoding
# ---------------------------------------------------------------------------
def token_count(value: Any) -> int:
    """A token count from the wire; anything but an integer reads as 0."""
    # bool is an int subclass but never a token count
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return 0


def _valid_tool_calls(raw_calls: Any) -> List[Dict[str, Any]]:
    if not isinstance(raw_calls, list):
        return []
    calls = []
    for call in raw_calls:
        function = call.get("function") if isinstance(call, dict) else None
        if isinstance(function, dict) and isinstance(function.get("name"), str):
            calls.append(call)
        else:
            logger.debug("Dropping malformed tool call: %r", call)
    return calls


def decode_record(line: str) -> List[StreamRecord]:
    """
    Decode one NDJSON line into zero or more stream records.

    Lines that are not JSON objects are skipped; unknown fields are ignored and non-integer token
    counts read as 0.

    Raises
    ------
    MalformedStreamError
        If the endpoint reports an error inside the stream.
    """
    line = line.strip()
    if not line:
        return []
    try:
        raw = json.loads(line)
    except json.JSONDecodeError:
        logger.debug("Skipping unparseable stream line: %.200s", line)
        return []
    if not isinstance(raw, dict):
        logger.debug("Skipping non-object stream line: %.200s", line)
        return []
    if isinstance(raw.get("error"), str):
        raise MalformedStreamError(f"Ollama stream error: {raw['error']}")

    records: List[StreamRecord] = []
    message = raw.get("message")
    if isinstance(message, dict):
        calls = _valid_tool_calls(message.get("tool_calls"))
        if calls:
            records.append(ToolCallBatch(calls=calls))
        thinking = message.get("thinking")
        if isinstance(thinking, str) and thinking:
            records.append(ThinkingDelta(text=thinking))
        content = message.get("content")
        if isinstance(content, str) and content:
            records.append(ContentDelta(text=content))

    if raw.get("done") is True:
        records.append(
            Completion(
                usage=Usage(
                    prompt_tokens=token_count(raw.get("prompt_eval_count")),
                    completion_tokens=token_count(raw.get("eval_count")),
                )
            )
        )
    return records
