"""Small asyncio helpers shared by the import engine."""

import asyncio
import inspect
from collections.abc import Awaitable
from typing import TypeVar

from app.exceptions import OperationTimeoutError

T = TypeVar("T")


async def with_timeout(awaitable: Awaitable[T], timeout: float | None, operation: str) -> T:
    """Await with an optional timeout.

    Raises:
        OperationTimeoutError: If ``timeout`` seconds pass first
    """
    if timeout is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError:
        raise OperationTimeoutError(operation, timeout)


async def notify(callback, *args) -> None:
    """Call a sync or async callback, ignoring a missing one."""
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result
