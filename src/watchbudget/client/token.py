"""Per-controller cancellation token.

Every request a controller issues runs through its token. Cancelling the
token aborts whatever is in flight and makes any late result unusable,
so a response that arrives after teardown can never update state. This
is a promise to stop waiting, not a server-side abort: the server may
still complete the request.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OperationCancelled(Exception):
    """Raised to the awaiting caller when its token was cancelled."""


class CancellationToken:
    def __init__(self, name: str = "") -> None:
        self._name = name
        self._cancelled = False
        self._tasks: set[asyncio.Future] = set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def cancel(self) -> None:
        """Cancel the token and abort all in-flight operations. Idempotent."""
        if self._cancelled:
            return
        self._cancelled = True
        for task in list(self._tasks):
            task.cancel()
        logger.debug("Token %s cancelled (%d in flight)", self._name, len(self._tasks))

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` bound to this token.

        Raises:
            OperationCancelled: The token was cancelled before, during, or
                right after the operation.
        """
        if self._cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise OperationCancelled(f"Token {self._name} already cancelled")

        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)
        try:
            result = await task
        except asyncio.CancelledError:
            if self._cancelled:
                raise OperationCancelled(f"Token {self._name} cancelled") from None
            raise
        finally:
            self._tasks.discard(task)

        if self._cancelled:
            raise OperationCancelled(f"Token {self._name} cancelled; result dropped")
        return result
