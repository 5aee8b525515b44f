"""
Event channel to a remote generation backend.

The socket transport itself lives outside Maestro; the dispatcher only needs something that can
send named events and hand back inbound ones.  :class:`QueueChannel` is an in-memory
implementation on top of :class:`asyncio.Queue`, used when the backend runs in-process and in
tests.
"""

import asyncio
import logging
from typing import (
    Any,
    Dict,
    List,
    Protocol,
    Tuple,
    runtime_checkable,
)

from maestro.core.errors import TransportError

logger = logging.getLogger(__name__)

Event = Tuple[str, Dict[str, Any]]


class ChannelClosed(TransportError):
    """The channel was closed while a generation was waiting for events."""


@runtime_checkable
class RemoteChannel(Protocol):
    """What :class:`~maestro.llm.dispatcher.GenerationDispatcher` needs from a transport."""

    @property
    def connected(self) -> bool:
        ...

    async def emit(self, event: str, payload: Dict[str, Any]) -> None:
        ...

    async def receive(self) -> Event:
        """Next inbound ``(event, payload)``; raises :class:`ChannelClosed` once closed."""
        ...


class QueueChannel:
    """In-memory :class:`RemoteChannel`.  The backend side calls :meth:`push` and reads :attr:`sent`."""

    def __init__(self) -> None:
        self._inbound: asyncio.Queue[Event | None] = asyncio.Queue()
        self.sent: List[Event] = []
        self._closed = False

    @property
    def connected(self) -> bool:
        return not self._closed

    async def emit(self, event: str, payload: Dict[str, Any]) -> None:
        if self._closed:
            raise ChannelClosed("Chat channel is closed")
        logger.debug("channel -> %s", event)
        self.sent.append((event, payload))

    def push(self, event: str, payload: Dict[str, Any] | None = None) -> None:
        """Deliver an inbound event, as the remote backend would."""
        self._inbound.put_nowait((event, payload or {}))

    def close(self) -> None:
        self._closed = True
        self._inbound.put_nowait(None)

    async def receive(self) -> Event:
        item = await self._inbound.get()
        if item is None:
            # Keep the sentinel for any other waiter
            self._inbound.put_nowait(None)
            raise ChannelClosed("Chat channel closed")
        return item
