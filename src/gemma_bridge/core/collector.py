"""
Response collection for Gemma Bridge

A ResponseCollector gathers the content of one exchange. In streaming mode
it doubles as a bounded channel between the stdout reader and the consumer
of a ResponseStream.
"""

import asyncio
from collections import deque
from typing import Deque, List, Optional

from ..utils.error_handler import SessionTimeoutError
from ..utils.logging_setup import get_logger

logger = get_logger('collector')


class ResponseCollector:
    """Accumulates response chunks for exactly one in-flight request.

    ``put()`` is awaited by the stdout reader. For a streaming collector
    with ``max_buffered`` set, it suspends while that many chunks are waiting
    to be consumed, which in turn stops reads from the child's stdout.
    """

    def __init__(self, request: str, streaming: bool = False,
                 max_buffered: Optional[int] = None):
        self.request = request
        self.streaming = streaming
        self.max_buffered = max_buffered
        self.chunks: List[str] = []
        self._pending: Deque[str] = deque()
        self._cond = asyncio.Condition()
        self._done = False
        self._error: Optional[BaseException] = None
        self._abandoned = False
        self._unbounded = False

    @property
    def done(self) -> bool:
        return self._done

    @property
    def abandoned(self) -> bool:
        return self._abandoned

    @property
    def buffered(self) -> int:
        """Chunks received but not yet consumed from the stream"""
        return len(self._pending)

    def _has_room(self) -> bool:
        return (
            self.max_buffered is None
            or self._abandoned
            or self._unbounded
            or len(self._pending) < self.max_buffered
        )

    async def put(self, chunk: str):
        """Add a chunk, waiting for the consumer if the stream buffer is full"""
        async with self._cond:
            if self.streaming:
                await self._cond.wait_for(self._has_room)
                if not self._abandoned:
                    self._pending.append(chunk)
            else:
                self.chunks.append(chunk)
            self._cond.notify_all()

    async def finish(self):
        """Mark the response complete"""
        async with self._cond:
            self._done = True
            self._cond.notify_all()

    async def fail(self, error: BaseException):
        """Complete the response with an error; buffered chunks stay readable"""
        async with self._cond:
            self._error = error
            self._done = True
            self._unbounded = True
            self._cond.notify_all()

    async def release(self):
        """Stop applying backpressure so the reader can drain to EOF"""
        async with self._cond:
            self._unbounded = True
            self._cond.notify_all()

    async def abandon(self):
        """The consumer went away; drop buffered and future chunks"""
        async with self._cond:
            self._abandoned = True
            self._pending.clear()
            self._cond.notify_all()

    async def result(self) -> List[str]:
        """Wait for completion and return every collected chunk"""
        async with self._cond:
            await self._cond.wait_for(lambda: self._done)
        if self._error is not None:
            raise self._error
        return list(self.chunks)

    async def next_chunk(self) -> Optional[str]:
        """Next streamed chunk, or None once the response is complete"""
        async with self._cond:
            await self._cond.wait_for(lambda: self._pending or self._done)
            if self._pending:
                chunk = self._pending.popleft()
                self._cond.notify_all()
                return chunk
        if self._error is not None:
            raise self._error
        return None


class ResponseStream:
    """Async iterator over the chunks of one streamed exchange.

    Iteration ends when gemma is ready for input again. A timeout applies to
    the exchange as a whole; when it elapses, or when the stream is closed
    early, the remaining output of the exchange is discarded.
    """

    def __init__(self, collector: ResponseCollector, timeout: Optional[float] = None):
        self._collector = collector
        self._timeout = timeout
        self._deadline: Optional[float] = None
        if timeout is not None:
            self._deadline = asyncio.get_running_loop().time() + timeout
        self._closed = False

    @property
    def request(self) -> str:
        return self._collector.request

    def __aiter__(self) -> 'ResponseStream':
        return self

    async def __anext__(self) -> str:
        if self._closed:
            raise StopAsyncIteration

        if self._deadline is None:
            chunk = await self._collector.next_chunk()
        else:
            remaining = self._deadline - asyncio.get_running_loop().time()
            try:
                if remaining <= 0:
                    raise asyncio.TimeoutError
                chunk = await asyncio.wait_for(self._collector.next_chunk(), timeout=remaining)
            except asyncio.TimeoutError:
                await self.aclose()
                raise SessionTimeoutError(
                    f"No complete response within {self._timeout}s"
                ) from None

        if chunk is None:
            self._closed = True
            raise StopAsyncIteration
        return chunk

    async def collect(self) -> List[str]:
        """Consume the rest of the stream into a list"""
        return [chunk async for chunk in self]

    async def aclose(self):
        """Stop consuming; the exchange still runs to completion in gemma"""
        if self._closed:
            return
        self._closed = True
        if not self._collector.done:
            logger.debug(f"Response stream for {self.request!r} abandoned")
            await self._collector.abandon()

    async def __aenter__(self) -> 'ResponseStream':
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()
