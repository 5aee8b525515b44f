"""Tests for cancellation tokens."""

import asyncio

import pytest

from maestro.core.cancel import CancelToken
from maestro.core.errors import GenerationCancelled


def test_cancel_propagates_to_children() -> None:
    root = CancelToken()
    child = root.child()
    grandchild = child.child()

    root.cancel()
    root.cancel()

    assert child.cancelled and grandchild.cancelled


def test_child_of_cancelled_parent_starts_cancelled() -> None:
    root = CancelToken()
    root.cancel()
    assert root.child().cancelled


def test_cancelling_child_leaves_parent() -> None:
    root = CancelToken()
    root.child().cancel()
    assert not root.cancelled


async def test_guard_returns_result() -> None:
    async def work() -> int:
        await asyncio.sleep(0)
        return 7

    assert await CancelToken().guard(work()) == 7


async def test_guard_propagates_errors() -> None:
    async def work() -> None:
        raise ValueError("bad")

    with pytest.raises(ValueError, match="bad"):
        await CancelToken().guard(work())


async def test_guard_abandons_pending_work() -> None:
    token = CancelToken()
    unwound = asyncio.Event()

    async def forever() -> None:
        try:
            await asyncio.Event().wait()
        finally:
            unwound.set()

    guarded = asyncio.create_task(token.guard(forever()))
    await asyncio.sleep(0)
    token.cancel()

    with pytest.raises(GenerationCancelled):
        await guarded
    assert unwound.is_set()
