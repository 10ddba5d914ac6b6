"""Run-wide cancellation signal attached to every model and network request."""

import asyncio
import inspect
import logging
from typing import Any, AsyncIterable, AsyncIterator, Awaitable, TypeVar

from tony.errors import RequestAborted

logger = logging.getLogger(__name__)

T = TypeVar("T")

_END = object()


async def _next_or_end(iterator: AsyncIterator[Any]) -> Any:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return _END


class CancellationSignal:
    """One per process run. Once tripped it stays tripped: every in-flight and
    future guarded request raises RequestAborted."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def tripped(self) -> bool:
        return self._event.is_set()

    def trip(self, reason: str = "interrupted") -> None:
        if not self._event.is_set():
            self._reason = reason
            logger.warning("cancellation: tripped (%s)", reason)
        self._event.set()

    def raise_if_tripped(self) -> None:
        if self._event.is_set():
            raise RequestAborted(f"Request aborted: {self._reason}")

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await `awaitable`, aborting it as soon as the signal trips."""
        if self.tripped:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            self.raise_if_tripped()
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not work.done():
                work.cancel()
                try:
                    await work
                except asyncio.CancelledError:
                    pass
        if work.cancelled():
            self.raise_if_tripped()
            raise asyncio.CancelledError()
        return work.result()

    async def iterate(self, stream: AsyncIterable[T]) -> AsyncIterator[T]:
        """Yield from `stream`, aborting between or during chunks when the signal trips."""
        iterator = stream.__aiter__()
        while True:
            item = await self.guard(_next_or_end(iterator))
            if item is _END:
                return
            yield item
