"""Per-request cancellation tokens. One token per attempt; tokens are never reused."""

from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from typing import Awaitable, Iterator, TypeVar

from llmaxx.core.errors import RequestCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """Bound to at most one pending transport step at a time. cancel() is idempotent."""

    def __init__(self) -> None:
        self._cancelled = False
        self._task: asyncio.Future | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        task = self._task
        if task is not None and not task.done():
            task.cancel()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await one transport step; raise RequestCancelledError if the token fires meanwhile."""
        if self._cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise RequestCancelledError()
        task = asyncio.ensure_future(awaitable)
        self._task = task
        try:
            return await task
        except asyncio.CancelledError:
            # Our own cancel() landed on the step; an outer task cancellation propagates.
            if self._cancelled and task.cancelled():
                raise RequestCancelledError() from None
            raise
        finally:
            self._task = None


class CancellationController:
    """Holds the active token of one provider. Each attempt gets a fresh token."""

    def __init__(self) -> None:
        self._active: CancellationToken | None = None

    @property
    def active(self) -> CancellationToken | None:
        return self._active

    @contextmanager
    def attempt(self) -> Iterator[CancellationToken]:
        token = CancellationToken()
        self._active = token
        try:
            yield token
        finally:
            if self._active is token:
                self._active = None

    def cancel(self) -> bool:
        """Fire the active token. Returns False when nothing was in flight."""
        token = self._active
        if token is None:
            return False
        logger.debug("cancelling active request")
        token.cancel()
        return True
