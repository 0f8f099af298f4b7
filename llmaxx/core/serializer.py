"""Single-flight FIFO queue: at most one request in flight per client, executed in submission order."""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections import deque
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from llmaxx.core.errors import RequestCancelledError
from llmaxx.core.types import Request, RequestKind

logger = logging.getLogger(__name__)

# Marks the end of a stream entry's chunk channel.
END_OF_STREAM = object()


class SerializerState(str, Enum):
    IDLE = "idle"
    DRAINING = "draining"


class QueueEntry:
    """A submitted request, its completion handle and its position in the queue.

    Single-shot entries resolve ``future`` with the provider result or error.
    Stream entries deliver through ``chunks`` (StreamChunk, an exception, or
    END_OF_STREAM) and resolve ``future`` with None once the stream is over.
    The consumer asks for each chunk with request_chunk(); the dispatcher pulls
    from the provider only after wait_for_demand() returns.
    """

    def __init__(self, index: int, request: Request, loop: asyncio.AbstractEventLoop) -> None:
        self.index = index
        self.request = request
        self.future: asyncio.Future[Any] = loop.create_future()
        self.provider_name: Optional[str] = None
        self.chunks: Optional[asyncio.Queue[Any]] = (
            asyncio.Queue() if request.kind is RequestKind.STREAM else None
        )
        self.abandoned = False
        self._demand: Optional[asyncio.Semaphore] = (
            asyncio.Semaphore(0) if request.kind is RequestKind.STREAM else None
        )

    @property
    def is_stream(self) -> bool:
        return self.chunks is not None

    @property
    def finished(self) -> bool:
        return self.future.done()

    def request_chunk(self) -> None:
        if self._demand is not None:
            self._demand.release()

    async def wait_for_demand(self) -> None:
        if self._demand is not None:
            await self._demand.acquire()

    def abandon(self) -> None:
        """Caller gave up. Wakes a dispatcher waiting for demand."""
        self.abandoned = True
        self.request_chunk()

    def resolve(self, result: Any = None) -> None:
        if self.chunks is not None:
            self.chunks.put_nowait(END_OF_STREAM)
        if not self.future.done():
            self.future.set_result(result)

    def fail(self, exc: BaseException) -> None:
        if self.chunks is not None:
            self.chunks.put_nowait(exc)
            self.chunks.put_nowait(END_OF_STREAM)
            if not self.future.done():
                self.future.set_result(None)
            return
        if not self.future.done():
            self.future.set_exception(exc)

    def __repr__(self) -> str:
        return f"QueueEntry(index={self.index}, kind={self.request.kind.value})"


Dispatcher = Callable[[QueueEntry], Awaitable[Any]]


class RequestSerializer:
    """Idle -> Draining (one entry executing, others queued) -> Idle when the queue empties.

    submit() never blocks. A dedicated worker task pulls entries in order; one entry's
    failure resolves only its own handle and the worker moves on.
    """

    def __init__(self, dispatch: Dispatcher) -> None:
        self._dispatch = dispatch
        self._pending: deque[QueueEntry] = deque()
        self._executing: QueueEntry | None = None
        self._worker: asyncio.Task[None] | None = None
        self._counter = itertools.count()

    @property
    def state(self) -> SerializerState:
        if self._worker is not None and not self._worker.done():
            return SerializerState.DRAINING
        return SerializerState.IDLE

    @property
    def executing(self) -> QueueEntry | None:
        return self._executing

    @property
    def pending(self) -> int:
        return len(self._pending)

    def submit(self, request: Request) -> QueueEntry:
        loop = asyncio.get_running_loop()
        entry = QueueEntry(next(self._counter), request, loop)
        self._pending.append(entry)
        logger.debug("enqueued request", extra={"index": entry.index, "kind": request.kind.value})
        if self._worker is None or self._worker.done():
            self._worker = loop.create_task(self._drain())
        return entry

    async def _drain(self) -> None:
        try:
            while self._pending:
                entry = self._pending.popleft()
                if entry.finished or entry.abandoned:
                    # Caller gave up before dispatch.
                    if entry.is_stream:
                        entry.resolve()
                    continue
                self._executing = entry
                try:
                    result = await self._dispatch(entry)
                except asyncio.CancelledError:
                    entry.fail(RequestCancelledError())
                    raise
                except Exception as e:
                    logger.debug("request %s failed: %s", entry.index, e)
                    entry.fail(e)
                else:
                    entry.resolve(result)
                finally:
                    self._executing = None
        finally:
            self._worker = None

    async def close(self) -> None:
        """Stop the worker; queued entries resolve as cancelled."""
        worker = self._worker
        if worker is not None and not worker.done():
            worker.cancel()
            try:
                await worker
            except asyncio.CancelledError:
                pass
        while self._pending:
            entry = self._pending.popleft()
            if entry.is_stream:
                entry.resolve()
            else:
                entry.fail(RequestCancelledError())
