import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from mcpz.errors import OperationTimeoutError

T = TypeVar("T")


async def with_timeout(awaitable: Awaitable[T], seconds: float, operation: str) -> T:
    """Await ``awaitable``, failing with :class:`OperationTimeoutError` after ``seconds``.

    The timer belongs to the ``asyncio.timeout`` scope and is cancelled on
    every exit path. A ``TimeoutError`` raised by the awaitable itself is
    propagated unchanged.
    """
    scope = asyncio.timeout(seconds)
    try:
        async with scope:
            return await awaitable
    except TimeoutError as e:
        if not scope.expired():
            raise
        raise OperationTimeoutError(f"Timeout after {seconds:g}s: {operation}") from e
