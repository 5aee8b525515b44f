"""
Streaming client for an Ollama-style ``/api/chat`` endpoint.

One call to :meth:`OllamaClient.stream_chat` is one HTTP request.  The newline-delimited JSON body
is decoded line by line into :data:`~maestro.core.events.StreamRecord` values; the records are
yielded in the order the endpoint sent them and the stream ends with exactly one
:class:`~maestro.core.events.Completion`, an exception, or cancellation.
"""

import logging
from typing import (
    Any,
    AsyncIterator,
    Dict,
    List,
)

import httpx

from maestro.core.cancel import CancelToken
from maestro.core.errors import (
    MalformedStreamError,
    ProviderResponseError,
    TransportError,
)
from maestro.core.events import (
    Completion,
    StreamRecord,
)
from maestro.core.schema import (
    GenerationRequest,
    Message,
)
from maestro.llm.converters import (
    decode_record,
    messages_to_ollama,
    tools_to_ollama,
)

logger = logging.getLogger(__name__)

_END = object()


class OllamaClient:
    """Thin async wrapper around the Ollama HTTP API."""

    def __init__(self, client: httpx.AsyncClient | None = None, timeout: float = 120.0) -> None:
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout, connect=10.0))

    async def aclose(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _headers(api_key: str | None) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        return headers

    @staticmethod
    def build_payload(request: GenerationRequest, messages: List[Message]) -> Dict[str, Any]:
        """Request body for one streamed chat round."""
        payload: Dict[str, Any] = {
            "model": request.model,
            "messages": messages_to_ollama(messages, request.system_prompt),
            "stream": True,
            "options": {"num_ctx": request.context_size},
        }
        if request.tools:
            payload["tools"] = tools_to_ollama(request.tools)
        return payload

    async def stream_chat(
        self,
        request: GenerationRequest,
        messages: List[Message],
        cancel: CancelToken,
    ) -> AsyncIterator[StreamRecord]:
        """
        Stream one chat round.

        Raises
        ------
        ProviderResponseError
            On a non-2xx status.
        TransportError
            When the connection cannot be made or breaks mid-stream.
        MalformedStreamError
            When the body ends without a final record or reports an error.
        GenerationCancelled
            When *cancel* fires; the pending read is abandoned and the response closed.
        """
        url = f"{request.base_url.rstrip('/')}/api/chat"
        payload = self.build_payload(request, messages)
        logger.debug(
            "POST %s model=%s messages=%d tools=%d",
            url,
            request.model,
            len(payload["messages"]),
            len(request.tools),
        )

        try:
            async with self._client.stream(
                "POST", url, json=payload, headers=self._headers(request.api_key)
            ) as response:
                if response.status_code >= 400:
                    body = await cancel.guard(response.aread())
                    raise ProviderResponseError(
                        response.status_code, body.decode("utf-8", errors="replace")
                    )

                lines = response.aiter_lines()
                while True:
                    line = await cancel.guard(anext(lines, _END))
                    if line is _END:
                        break
                    for record in decode_record(line):
                        yield record
                        if isinstance(record, Completion):
                            return
        except httpx.HTTPError as exc:
            raise TransportError(f"Ollama request failed: {exc}") from exc

        raise MalformedStreamError("Ollama stream ended without a final record")

    async def list_models(self, base_url: str, api_key: str | None = None) -> List[str]:
        """Names of the models installed on the endpoint (``GET /api/tags``)."""
        try:
            response = await self._client.get(
                f"{base_url.rstrip('/')}/api/tags", headers=self._headers(api_key)
            )
        except httpx.HTTPError as exc:
            raise TransportError(f"Ollama request failed: {exc}") from exc
        if response.status_code >= 400:
            raise ProviderResponseError(response.status_code, response.text)
        return [model["name"] for model in response.json().get("models", []) if "name" in model]
