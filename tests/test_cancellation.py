"""Tests for CancellationSignal guard/iterate."""

import asyncio

import pytest

from tony.errors import RequestAborted
from tony.llm.cancellation import CancellationSignal

from conftest import FakeStream


class TestGuard:
    """guard() passes results through until the signal trips."""

    @pytest.mark.asyncio
    async def test_returns_result(self) -> None:
        signal = CancellationSignal()

        async def work() -> int:
            return 7

        assert await signal.guard(work()) == 7
        assert signal.tripped is False

    @pytest.mark.asyncio
    async def test_propagates_work_exception(self) -> None:
        signal = CancellationSignal()

        async def work() -> None:
            raise ValueError("nope")

        with pytest.raises(ValueError):
            await signal.guard(work())

    @pytest.mark.asyncio
    async def test_trip_cancels_pending_work(self) -> None:
        signal = CancellationSignal()
        cancelled = asyncio.Event()

        async def work() -> None:
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        asyncio.get_running_loop().call_later(0.01, signal.trip, "test")
        with pytest.raises(RequestAborted, match="test"):
            await signal.guard(work())
        assert cancelled.is_set()

    @pytest.mark.asyncio
    async def test_stays_tripped(self) -> None:
        signal = CancellationSignal()
        signal.trip("first")
        signal.trip("second")
        with pytest.raises(RequestAborted, match="first"):
            signal.raise_if_tripped()

    @pytest.mark.asyncio
    async def test_guard_after_trip_closes_coroutine(self) -> None:
        signal = CancellationSignal()
        signal.trip("done")
        started = []

        async def work() -> None:
            started.append(True)

        coro = work()
        with pytest.raises(RequestAborted):
            await signal.guard(coro)
        assert started == []
        assert coro.cr_frame is None


class TestIterate:
    """iterate() yields stream items and aborts on trip."""

    @pytest.mark.asyncio
    async def test_yields_all_items(self) -> None:
        signal = CancellationSignal()
        items = [item async for item in signal.iterate(FakeStream([1, 2, 3]))]
        assert items == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_abort_between_items(self) -> None:
        signal = CancellationSignal()
        seen = []
        with pytest.raises(RequestAborted):
            async for item in signal.iterate(FakeStream([1, 2, 3])):
                seen.append(item)
                signal.trip("stop")
        assert seen == [1]
