"""
Cancellation tokens.

A :class:`CancelToken` is handed to every long-running operation.  Tokens form a tree: cancelling
a parent cancels every child, so stopping an orchestration reaches each in-flight generation it
fanned out to.
"""

from __future__ import annotations

import asyncio
import weakref
from typing import (
    Awaitable,
    TypeVar,
)

from maestro.core.errors import GenerationCancelled

T = TypeVar("T")


class CancelToken:
    """One-shot cancellation signal with parent -> child propagation."""

    def __init__(self, parent: CancelToken | None = None) -> None:
        self._event = asyncio.Event()
        self._children: weakref.WeakSet[CancelToken] = weakref.WeakSet()
        if parent is not None:
            parent._adopt(self)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """Fire the token and all of its descendants.  Idempotent."""
        if self._event.is_set():
            return
        self._event.set()
        for child in list(self._children):
            child.cancel()
        self._children.clear()

    def child(self) -> CancelToken:
        """Return a new token that is cancelled together with this one."""
        return CancelToken(parent=self)

    def _adopt(self, child: CancelToken) -> None:
        if self.cancelled:
            child.cancel()
        else:
            self._children.add(child)

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise GenerationCancelled()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """
        Await *awaitable* unless the token fires first.

        Raises
        ------
        GenerationCancelled
            If the token is (or becomes) cancelled before *awaitable* completes.  The pending
            awaitable is cancelled and fully unwound before this returns.
        """
        self.raise_if_cancelled()
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except BaseException:
            work.cancel()
            waiter.cancel()
            raise

        if work.done():
            waiter.cancel()
            return work.result()

        work.cancel()
        await asyncio.wait({work})
        raise GenerationCancelled()
