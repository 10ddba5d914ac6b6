"""Chat completion requests with bounded exponential-backoff retry."""

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable

from tony.errors import RequestAborted, StreamDefectError
from tony.llm.cancellation import CancellationSignal
from tony.llm.stream import StreamAccumulator, StreamResult

logger = logging.getLogger(__name__)

# Messages of the HTTP-level failure raised when a streamed body ends early
_STREAM_DEFECT_MARKERS = ("incomplete chunked read", "peer closed connection")


def get_error_status(error: BaseException) -> int | None:
    """HTTP status carried by an SDK error (openai uses status_code), if any."""
    status = getattr(error, "status_code", None)
    if status is None:
        status = getattr(error, "status", None)
    return status if isinstance(status, int) else None


def should_retry(error: BaseException) -> bool:
    """Transient iff HTTP 429 or any 5xx. Errors without a status are not retried."""
    status = get_error_status(error)
    return status == 429 or (status is not None and status >= 500)


def is_stream_defect(error: BaseException) -> bool:
    if isinstance(error, StreamDefectError):
        return True
    message = str(error).lower()
    return any(marker in message for marker in _STREAM_DEFECT_MARKERS)


def compute_retry_delay(attempt: int, base: float, jitter: bool = True) -> float:
    """Exponential backoff: base * 2**(attempt-1), scaled by uniform(0.5, 1.5) with jitter."""
    delay = base * (2 ** (attempt - 1))
    if jitter:
        delay *= 0.5 + random.random()
    return delay


class _ReplayEcho:
    """Observer wrapper that spans re-issued attempts of one streamed request.

    A re-issued stream usually replays the text shown before the break; that
    prefix is held back so the observer sees each character once.
    """

    def __init__(self, on_content: Callable[[str], None]) -> None:
        self._on_content = on_content
        self._shown = ""
        self._attempt = ""

    def restart(self) -> None:
        self._attempt = ""

    def __call__(self, text: str) -> None:
        self._attempt += text
        if self._shown.startswith(self._attempt):
            return
        if self._attempt.startswith(self._shown):
            self._on_content(self._attempt[len(self._shown):])
        else:
            # Replay diverged from what was shown; start the new text on a fresh line
            self._on_content("\n" + self._attempt)
        self._shown = self._attempt


async def _close_stream(stream: Any) -> None:
    close = getattr(stream, "close", None)
    if close is None:
        return
    try:
        await close()
    except Exception as e:
        logger.debug("Closing stream failed: %s", e)


class RetryingTransport:
    """Wraps `client.chat.completions.create` with retry and the run's cancellation signal."""

    def __init__(
        self,
        get_client: Callable[[], Any],
        cancellation: CancellationSignal,
        max_retries: int = 8,
        base_delay: float = 0.5,
        jitter: bool = True,
        stream_defect_retries: int = 2,
        extra_body: dict[str, Any] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._get_client = get_client
        self._cancellation = cancellation
        self._max_retries = max_retries
        self._base_delay = base_delay
        self._jitter = jitter
        self._stream_defect_retries = stream_defect_retries
        self._extra_body = extra_body
        self._sleep = sleep

    @property
    def cancellation(self) -> CancellationSignal:
        return self._cancellation

    async def create(self, params: dict[str, Any]) -> Any:
        """One completion request, retried on 429/5xx. Returns the SDK response (or stream)."""
        request = dict(params)
        if self._extra_body and "extra_body" not in request:
            request["extra_body"] = self._extra_body
        attempt = 0
        while True:
            self._cancellation.raise_if_tripped()
            try:
                client = self._get_client()
                return await self._cancellation.guard(client.chat.completions.create(**request))
            except RequestAborted:
                raise
            except Exception as e:
                attempt += 1
                if attempt > self._max_retries or not should_retry(e):
                    raise
                delay = compute_retry_delay(attempt, self._base_delay, self._jitter)
                logger.warning(
                    "Retrying request (attempt %d) after %dms: %s", attempt, int(delay * 1000), e
                )
                await self._cancellation.guard(self._sleep(delay))

    async def complete(self, params: dict[str, Any]) -> Any:
        """Non-streaming completion."""
        return await self.create({**params, "stream": False})

    async def stream(
        self,
        params: dict[str, Any],
        on_content: Callable[[str], None] | None = None,
    ) -> StreamResult:
        """Streaming completion folded into one assistant message.

        The whole request is re-issued when the stream breaks mid-body; that
        narrower path is bounded by stream_defect_retries and ignores status.
        """
        echo = _ReplayEcho(on_content) if on_content is not None else None
        defects = 0
        while True:
            stream = await self.create(
                {**params, "stream": True, "stream_options": {"include_usage": True}}
            )
            if echo is not None:
                echo.restart()
            accumulator = StreamAccumulator(on_content=echo)
            try:
                async for chunk in self._cancellation.iterate(stream):
                    accumulator.feed(chunk)
            except RequestAborted:
                raise
            except Exception as e:
                if not is_stream_defect(e) or defects >= self._stream_defect_retries:
                    raise
                defects += 1
                logger.warning("Stream broke mid-response, re-issuing (retry %d): %s", defects, e)
                continue
            finally:
                await _close_stream(stream)
            return accumulator.finish()
