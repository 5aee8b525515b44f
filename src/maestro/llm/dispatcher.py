"""
Provider-agnostic entry point for generation.

``provider == "ollama"`` runs the tool loop in-process against the local endpoint.  Any other
provider is served by a remote backend over a :class:`~maestro.llm.channel.RemoteChannel`; its
inbound events are turned back into the same callback sequence, so callers never need to know
which path ran.
"""

from __future__ import annotations

import inspect
import logging
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
)

from maestro.agent.tool_executor import ToolInvoker
from maestro.agent.tool_loop import ToolLoop
from maestro.common import new_id
from maestro.core.cancel import CancelToken
from maestro.core.errors import (
    GenerationCancelled,
    TransportError,
)
from maestro.core.events import (
    DoneEvent,
    ErrorEvent,
    TokenEvent,
    ToolCallEvent,
    UsageEvent,
)
from maestro.core.schema import (
    GenerationRequest,
    ToolCall,
    ToolCallStatus,
)
from maestro.llm.channel import RemoteChannel
from maestro.llm.converters import token_count
from maestro.llm.ollama import OllamaClient

logger = logging.getLogger(__name__)

LOCAL_PROVIDER = "ollama"

Emit = Callable[..., Awaitable[None]]


class GenerationDispatcher:
    """
    Runs one generation at a time for one session.

    :meth:`stop` bumps a generation epoch; callbacks belonging to an older epoch are dropped, so
    nothing fires after a stop even if the transport keeps delivering events.
    """

    def __init__(
        self,
        client: OllamaClient | None = None,
        invoker: ToolInvoker | None = None,
        channel: RemoteChannel | None = None,
    ) -> None:
        self._tool_loop = ToolLoop(client or OllamaClient(), invoker)
        self._channel = channel
        self._epoch = 0
        self._cancel: CancelToken | None = None
        self._generating = False

    @property
    def is_generating(self) -> bool:
        return self._generating

    def stop(self) -> None:
        """Abort the active generation.  Safe to call at any time, any number of times."""
        self._epoch += 1
        if self._cancel is not None:
            self._cancel.cancel()
            self._cancel = None
        self._generating = False

    async def generate(self, request: GenerationRequest, cancel: CancelToken | None = None) -> None:
        """
        Run *request* to completion, reporting through ``request.callbacks``.

        Returns once the generation has finished, failed, or been stopped.  A stop (via
        :meth:`stop` or *cancel*) fires no callback at all.
        """
        if self._generating:
            self.stop()
        self._epoch += 1
        epoch = self._epoch
        token = cancel.child() if cancel is not None else CancelToken()
        self._cancel = token
        self._generating = True
        callbacks = request.callbacks

        async def emit(name: str, *args: Any) -> None:
            if epoch != self._epoch or token.cancelled:
                return
            callback = getattr(callbacks, name)
            if callback is None:
                return
            try:
                result = callback(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception:  # noqa: BLE001
                logger.exception("Generation callback '%s' raised", name)

        logger.info(
            "Generation started (provider=%s, model=%s, messages=%d)",
            request.provider,
            request.model,
            len(request.messages),
        )
        try:
            if request.provider == LOCAL_PROVIDER:
                await self._generate_local(request, token, emit)
            else:
                await self._generate_remote(request, token, emit)
        finally:
            if epoch == self._epoch:
                self._generating = False
                self._cancel = None

    async def _generate_local(
        self, request: GenerationRequest, token: CancelToken, emit: Emit
    ) -> None:
        async for event in self._tool_loop.run(request, token):
            if isinstance(event, TokenEvent):
                await emit("on_token", event.content, event.thinking)
            elif isinstance(event, ToolCallEvent):
                await emit("on_tool_call", event.tool_call)
            elif isinstance(event, UsageEvent):
                await emit("on_usage", event.usage.total)
            elif isinstance(event, DoneEvent):
                await emit("on_done", event.content, event.thinking)
            elif isinstance(event, ErrorEvent):
                await emit("on_error", event.message)

    async def _generate_remote(
        self, request: GenerationRequest, token: CancelToken, emit: Emit
    ) -> None:
        channel = self._channel
        if channel is None or not channel.connected:
            await emit("on_error", "Chat channel not connected.")
            return

        try:
            await channel.emit(
                "chat",
                {
                    "provider": request.provider,
                    "model": request.model,
                    "messages": [
                        m.model_dump(mode="json")
                        for m in request.messages
                        if not (m.is_streaming or m.is_plan)
                    ],
                    "systemPrompt": request.system_prompt,
                    "contextSize": request.context_size,
                },
            )
        except TransportError as exc:
            await emit("on_error", str(exc))
            return

        started: Dict[str, ToolCall] = {}
        while True:
            try:
                name, payload = await token.guard(channel.receive())
            except GenerationCancelled:
                await self._send_stop(channel)
                return
            except TransportError as exc:
                await emit("on_error", str(exc))
                return
            if token.cancelled:
                # An event won the race against stop(); it belongs to a dead generation
                await self._send_stop(channel)
                return

            if name == "token":
                await emit("on_token", payload.get("content", ""), payload.get("thinking") or "")
            elif name == "tool_start":
                call = ToolCall(
                    id=payload.get("id") or new_id("tc"),
                    name=payload.get("name", ""),
                    args=payload.get("args") or {},
                )
                started[call.id] = call
                await emit("on_tool_call", call.model_copy(deep=True))
                call.status = ToolCallStatus.RUNNING
                await emit("on_tool_call", call.model_copy(deep=True))
            elif name == "tool_done":
                await emit("on_tool_call", self._finished_call(payload, started))
            elif name == "done":
                usage = payload.get("usage")
                if isinstance(usage, dict):
                    total = token_count(usage.get("promptTokens")) + token_count(
                        usage.get("completionTokens")
                    )
                    await emit("on_usage", total)
                await emit("on_done", payload.get("content", ""), payload.get("thinking") or "")
                return
            elif name == "error":
                await emit("on_error", payload.get("message") or "Remote generation failed.")
                return
            else:
                logger.debug("Ignoring unknown channel event '%s'", name)

    @staticmethod
    def _finished_call(payload: Dict[str, Any], started: Dict[str, ToolCall]) -> ToolCall:
        call_id = payload.get("id", "")
        prior = started.pop(call_id, None)
        try:
            status = ToolCallStatus(payload.get("status"))
        except ValueError:
            status = ToolCallStatus.ERROR if payload.get("error") else ToolCallStatus.SUCCESS
        return ToolCall(
            id=call_id or new_id("tc"),
            name=payload.get("name") or (prior.name if prior else ""),
            args=prior.args if prior else {},
            status=status,
            result=payload.get("result"),
            error=payload.get("error"),
        )

    @staticmethod
    async def _send_stop(channel: RemoteChannel) -> None:
        try:
            await channel.emit("stop", {})
        except TransportError as exc:
            logger.warning("Could not send stop to remote backend: %s", exc)
