"""Tests for the single-flight FIFO request queue."""

from __future__ import annotations

import asyncio

import pytest

from llmaxx.core.errors import RequestCancelledError
from llmaxx.core.serializer import RequestSerializer, SerializerState
from llmaxx.core.types import Request, RequestKind


def _req(prompt: str = "p") -> Request:
    return Request(kind=RequestKind.GENERATE, prompt=prompt)


@pytest.mark.asyncio
async def test_entries_complete_in_submission_order():
    completed: list[int] = []
    running = 0
    max_running = 0

    async def dispatch(entry):
        nonlocal running, max_running
        running += 1
        max_running = max(max_running, running)
        # Later entries are faster; order must still hold.
        await asyncio.sleep(0.001 * (20 - entry.index))
        running -= 1
        completed.append(entry.index)
        return entry.index

    serializer = RequestSerializer(dispatch)
    entries = [serializer.submit(_req(str(i))) for i in range(20)]
    results = await asyncio.gather(*(e.future for e in entries))
    assert results == list(range(20))
    assert completed == sorted(completed)
    assert max_running == 1


@pytest.mark.asyncio
async def test_submit_returns_immediately_and_state_transitions():
    gate = asyncio.Event()

    async def dispatch(entry):
        await gate.wait()
        return "ok"

    serializer = RequestSerializer(dispatch)
    assert serializer.state is SerializerState.IDLE
    first = serializer.submit(_req())
    second = serializer.submit(_req())
    assert not first.finished
    assert serializer.state is SerializerState.DRAINING
    await asyncio.sleep(0)
    assert serializer.executing is first
    assert serializer.pending == 1
    gate.set()
    assert await second.future == "ok"
    assert serializer.executing is None
    assert serializer.state is SerializerState.IDLE


@pytest.mark.asyncio
async def test_failure_does_not_block_next_entry():
    async def dispatch(entry):
        if entry.request.prompt == "bad":
            raise RuntimeError("boom")
        return entry.request.prompt

    serializer = RequestSerializer(dispatch)
    bad = serializer.submit(_req("bad"))
    good = serializer.submit(_req("good"))
    with pytest.raises(RuntimeError, match="boom"):
        await bad.future
    assert await good.future == "good"


@pytest.mark.asyncio
async def test_abandoned_entry_is_skipped():
    seen: list[str] = []
    gate = asyncio.Event()

    async def dispatch(entry):
        seen.append(entry.request.prompt)
        if entry.request.prompt == "first":
            await gate.wait()
        return entry.request.prompt

    serializer = RequestSerializer(dispatch)
    first = serializer.submit(_req("first"))
    dropped = serializer.submit(_req("dropped"))
    last = serializer.submit(_req("last"))
    await asyncio.sleep(0)
    dropped.future.cancel()
    gate.set()
    assert await first.future == "first"
    assert await last.future == "last"
    assert seen == ["first", "last"]


@pytest.mark.asyncio
async def test_worker_restarts_after_idle():
    async def dispatch(entry):
        return entry.index

    serializer = RequestSerializer(dispatch)
    assert await serializer.submit(_req()).future == 0
    assert serializer.state is SerializerState.IDLE
    assert await serializer.submit(_req()).future == 1


@pytest.mark.asyncio
async def test_close_cancels_pending_entries():
    async def dispatch(entry):
        await asyncio.sleep(10)

    serializer = RequestSerializer(dispatch)
    running = serializer.submit(_req())
    queued = serializer.submit(_req())
    await asyncio.sleep(0)
    await serializer.close()
    with pytest.raises(RequestCancelledError):
        await running.future
    with pytest.raises(RequestCancelledError):
        await queued.future
    assert serializer.state is SerializerState.IDLE


@pytest.mark.asyncio
async def test_stream_entry_delivers_through_chunks():
    async def dispatch(entry):
        entry.chunks.put_nowait("a")
        raise RuntimeError("late failure")

    serializer = RequestSerializer(dispatch)
    entry = serializer.submit(Request(kind=RequestKind.STREAM))
    await entry.future
    assert entry.chunks.get_nowait() == "a"
    err = entry.chunks.get_nowait()
    assert isinstance(err, RuntimeError)
