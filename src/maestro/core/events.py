"""
Typed events flowing out of the protocol adapter and the tool loop.

Two tagged unions live here:

* :data:`StreamRecord` -- what one NDJSON line from the model endpoint decodes to.
* :data:`LoopEvent` -- what the tool loop reports to the dispatcher.

Each member carries a ``kind`` literal so callers can ``match`` on it.
"""

from typing import (
    Any,
    Dict,
    List,
    Literal,
    Union,
)

from pydantic import BaseModel

from maestro.core.schema import (
    ToolCall,
    Usage,
)


# ---------------------------------------------------------------------------
# Wire records
# ---------------------------------------------------------------------------
class ContentDelta(BaseModel):
    kind: Literal["content"] = "content"
    text: str


class ThinkingDelta(BaseModel):
    kind: Literal["thinking"] = "thinking"
    text: str


class ToolCallBatch(BaseModel):
    """Tool calls proposed by the model, kept in the provider's raw shape for replay."""

    kind: Literal["tool_calls"] = "tool_calls"
    calls: List[Dict[str, Any]]


class Completion(BaseModel):
    kind: Literal["completion"] = "completion"
    usage: Usage


StreamRecord = Union[ContentDelta, ThinkingDelta, ToolCallBatch, Completion]


# ---------------------------------------------------------------------------
# Loop events
# ---------------------------------------------------------------------------
class TokenEvent(BaseModel):
    """Cumulative visible text and thinking of the current round."""

    kind: Literal["token"] = "token"
    content: str
    thinking: str = ""


class ToolCallEvent(BaseModel):
    """A snapshot of a tool call after one of its status transitions."""

    kind: Literal["tool_call"] = "tool_call"
    tool_call: ToolCall


class UsageEvent(BaseModel):
    kind: Literal["usage"] = "usage"
    usage: Usage


class DoneEvent(BaseModel):
    kind: Literal["done"] = "done"
    content: str
    thinking: str = ""


class ErrorEvent(BaseModel):
    kind: Literal["error"] = "error"
    message: str
    partial_content: str = ""


LoopEvent = Union[TokenEvent, ToolCallEvent, UsageEvent, DoneEvent, ErrorEvent]
