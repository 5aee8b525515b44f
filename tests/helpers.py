"""
Fakes shared by the test modules.

``OllamaScript`` plays a scripted ``/api/chat`` endpoint behind :class:`httpx.MockTransport`;
``FakeDispatcher`` stands in for a :class:`~maestro.llm.dispatcher.GenerationDispatcher` when a
test needs to control exactly when a generation settles.
"""

from __future__ import annotations

import inspect
import json
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
)

import httpx

from maestro.core.cancel import CancelToken
from maestro.core.errors import GenerationCancelled
from maestro.core.schema import GenerationRequest
from maestro.llm.ollama import OllamaClient

BASE_URL = "http://ollama.test"


# ---------------------------------------------------------------------------
# NDJSON records
# ---------------------------------------------------------------------------
def chunk(content: str = "", thinking: str | None = None, tool_calls: List[Dict] | None = None) -> Dict:
    message: Dict[str, Any] = {"role": "assistant", "content": content}
    if thinking is not None:
        message["thinking"] = thinking
    if tool_calls is not None:
        message["tool_calls"] = tool_calls
    return {"model": "test", "message": message, "done": False}


def done(prompt_tokens: int = 3, completion_tokens: int = 5) -> Dict:
    return {
        "model": "test",
        "message": {"role": "assistant", "content": ""},
        "done": True,
        "prompt_eval_count": prompt_tokens,
        "eval_count": completion_tokens,
    }


def tool_call(name: str, **arguments: Any) -> Dict:
    return {"function": {"name": name, "arguments": arguments}}


def ndjson(records: Iterable[Any]) -> bytes:
    return "".join(
        (record if isinstance(record, str) else json.dumps(record)) + "\n" for record in records
    ).encode()


class OllamaScript:
    """Answers each ``/api/chat`` request with the next scripted round."""

    def __init__(self, *rounds: Any) -> None:
        self.rounds = list(rounds)
        self.requests: List[Dict[str, Any]] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        if not self.rounds:
            raise AssertionError("Unexpected extra chat request")
        current = self.rounds.pop(0)
        if isinstance(current, httpx.Response):
            return current
        return httpx.Response(
            200, content=ndjson(current), headers={"content-type": "application/x-ndjson"}
        )

    def client(self) -> OllamaClient:
        return OllamaClient(client=httpx.AsyncClient(transport=httpx.MockTransport(self.handler)))


# ---------------------------------------------------------------------------
# Dispatcher stand-in
# ---------------------------------------------------------------------------
Script = Callable[[GenerationRequest, CancelToken], Awaitable[None]]


async def fire(callback: Optional[Callable[..., Any]], *args: Any) -> None:
    """Invoke a plain or async callback the way the dispatcher does."""
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class FakeDispatcher:
    """Runs *script* in place of a real generation; the script fires the request's callbacks."""

    def __init__(self, script: Script) -> None:
        self._script = script
        self._token: CancelToken | None = None
        self.requests: List[GenerationRequest] = []
        self.is_generating = False

    def stop(self) -> None:
        if self._token is not None:
            self._token.cancel()

    async def generate(self, request: GenerationRequest, cancel: CancelToken | None = None) -> None:
        self._token = cancel.child() if cancel is not None else CancelToken()
        self.requests.append(request)
        self.is_generating = True
        try:
            await self._script(request, self._token)
        except GenerationCancelled:
            pass
        finally:
            self.is_generating = False


def reply_with(text: str) -> Script:
    """A script that answers every request with *text*."""

    async def script(request: GenerationRequest, _cancel: CancelToken) -> None:
        await fire(request.callbacks.on_token, text, "")
        await fire(request.callbacks.on_done, text, "")

    return script


def fail_with(message: str) -> Script:
    async def script(request: GenerationRequest, _cancel: CancelToken) -> None:
        await fire(request.callbacks.on_error, message)

    return script
