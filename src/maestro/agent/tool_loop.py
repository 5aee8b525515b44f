"""
The generate -> invoke tools -> generate loop for the local provider.

One :meth:`ToolLoop.run` call is one user turn.  Per round the state machine is::

    GENERATING --(no tool calls)--> DONE
    GENERATING --(tool calls)-----> INVOKING --> GENERATING (next round)

Every round re-sends the whole growing history: the caller's messages, then for each finished
round an assistant message with its text plus one tool message per invoked call.
"""

from __future__ import annotations

import json
import logging
from typing import (
    Any,
    AsyncIterator,
    Dict,
    List,
    Set,
)

from maestro.agent.tool_executor import ToolInvoker
from maestro.core.cancel import CancelToken
from maestro.core.errors import (
    GenerationCancelled,
    GenerationError,
)
from maestro.core.events import (
    Completion,
    ContentDelta,
    DoneEvent,
    ErrorEvent,
    LoopEvent,
    ThinkingDelta,
    TokenEvent,
    ToolCallBatch,
    ToolCallEvent,
    UsageEvent,
)
from maestro.core.schema import (
    GenerationRequest,
    Message,
    Role,
    ToolCall,
    ToolCallStatus,
)
from maestro.llm.converters import ThinkingSplitter
from maestro.llm.ollama import OllamaClient

logger = logging.getLogger(__name__)


def _parse_arguments(raw: Any) -> Dict[str, Any]:
    """Tool arguments arrive as an object, or from some models as a JSON string."""
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


class ToolLoop:
    """Runs generation rounds against an :class:`OllamaClient` until the model stops asking for tools."""

    def __init__(self, client: OllamaClient, invoker: ToolInvoker | None = None) -> None:
        self._client = client
        self._invoker = invoker

    async def run(self, request: GenerationRequest, cancel: CancelToken) -> AsyncIterator[LoopEvent]:
        """
        Yield loop events for one turn.

        The stream ends with exactly one :class:`DoneEvent` or :class:`ErrorEvent`, or with nothing
        at all if *cancel* fires.  At most ``request.max_iterations`` rounds are generated; tool
        calls requested in the last allowed round are not run and that round's text is final.
        """
        history: List[Message] = list(request.messages)
        available = {tool.name for tool in request.tools}

        for iteration in range(1, request.max_iterations + 1):
            splitter = ThinkingSplitter()
            requested: List[Dict[str, Any]] = []
            try:
                async for record in self._client.stream_chat(request, history, cancel):
                    if isinstance(record, ContentDelta):
                        splitter.feed_content(record.text)
                        yield TokenEvent(content=splitter.content, thinking=splitter.thinking)
                    elif isinstance(record, ThinkingDelta):
                        splitter.feed_thinking(record.text)
                        yield TokenEvent(content=splitter.content, thinking=splitter.thinking)
                    elif isinstance(record, ToolCallBatch):
                        requested.extend(record.calls)
                    elif isinstance(record, Completion):
                        yield UsageEvent(usage=record.usage)
            except GenerationCancelled:
                logger.debug("Generation cancelled during round %d", iteration)
                return
            except GenerationError as exc:
                logger.warning("Generation failed during round %d: %s", iteration, exc)
                yield ErrorEvent(message=str(exc), partial_content=splitter.content)
                return

            splitter.finish()
            if not requested:
                yield DoneEvent(content=splitter.content, thinking=splitter.thinking)
                return

            if iteration == request.max_iterations:
                logger.warning(
                    "Reached max_iterations=%d with %d tool call(s) pending; finishing turn",
                    request.max_iterations,
                    len(requested),
                )
                yield DoneEvent(content=splitter.content, thinking=splitter.thinking)
                return

            finished: List[ToolCall] = []
            try:
                for raw_call in requested:
                    async for event in self._invoke(raw_call, available, cancel, finished):
                        yield event
            except GenerationCancelled:
                logger.debug("Generation cancelled while invoking tools")
                return

            history.append(
                Message(
                    role=Role.ASSISTANT,
                    content=splitter.content,
                    thinking=splitter.thinking or None,
                    provider_tool_calls=requested,
                )
            )
            history.extend(
                Message(id=call.id, role=Role.TOOL, tool_calls=[call]) for call in finished
            )

    async def _invoke(
        self,
        raw_call: Dict[str, Any],
        available: Set[str],
        cancel: CancelToken,
        finished: List[ToolCall],
    ) -> AsyncIterator[ToolCallEvent]:
        """Run one requested call, yielding a snapshot on every status change."""
        function = raw_call["function"]
        call = ToolCall(name=function["name"], args=_parse_arguments(function.get("arguments")))
        yield ToolCallEvent(tool_call=call.model_copy(deep=True))

        call.status = ToolCallStatus.RUNNING
        yield ToolCallEvent(tool_call=call.model_copy(deep=True))

        if call.name not in available or self._invoker is None:
            call.status = ToolCallStatus.ERROR
            call.error = f"Tool '{call.name}' is not available."
            logger.warning("Model requested unknown tool '%s'", call.name)
        else:
            try:
                call.result = await cancel.guard(self._invoker.call_tool(call.name, call.args))
                call.status = ToolCallStatus.SUCCESS
            except GenerationCancelled:
                raise
            except Exception as exc:  # noqa: BLE001
                logger.warning("Tool '%s' failed: %s", call.name, exc)
                call.status = ToolCallStatus.ERROR
                call.error = str(exc) or exc.__class__.__name__

        finished.append(call)
        yield ToolCallEvent(tool_call=call.model_copy(deep=True))
