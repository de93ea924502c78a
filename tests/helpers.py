"""Controllable stand-ins for the HTTP server and the reconnect timer."""
from __future__ import annotations

import asyncio
from typing import Callable

import httpx

URL = "http://example.com/stream"


class FakeStream(httpx.AsyncByteStream):
    """Response body whose chunks are pushed by the test."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def write(self, chunk: bytes | str) -> None:
        if isinstance(chunk, str):
            chunk = chunk.encode("utf-8")
        self._queue.put_nowait(chunk)

    def end(self) -> None:
        self._queue.put_nowait(None)

    def fail(self, error: Exception) -> None:
        self._queue.put_nowait(error)

    async def __aiter__(self):
        while True:
            item = await self._queue.get()
            if item is None:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    async def aclose(self) -> None:
        self.closed = True


class FakeServer:
    """httpx transport that holds every request until the test answers it."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.cancelled = 0
        self._pending: list[asyncio.Future] = []
        self.transport = httpx.MockTransport(self._handle)

    async def _handle(self, request: httpx.Request) -> httpx.Response:
        future = asyncio.get_running_loop().create_future()
        self.requests.append(request)
        self._pending.append(future)
        try:
            return await future
        except asyncio.CancelledError:
            self.cancelled += 1
            raise

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport)

    async def wait_for_request(self, count: int = 1) -> httpx.Request:
        await wait_until(lambda: len(self.requests) >= count)
        return self.requests[count - 1]

    async def wait_for_pending(self) -> None:
        await wait_until(lambda: bool(self._pending))

    def respond(
        self,
        status: int = 200,
        headers: dict[str, str] | None = None,
        stream: FakeStream | None = None,
    ) -> FakeStream:
        stream = stream or FakeStream()
        if headers is None:
            headers = {"Content-Type": "text/event-stream"}
        self._pending.pop(0).set_result(httpx.Response(status, headers=headers, stream=stream))
        return stream

    def reject(self, error: Exception) -> None:
        self._pending.pop(0).set_exception(error)


class FakeTimer:
    def __init__(self, delay: float, callback: Callable[[], object]) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Records reconnect timers instead of running them; the test fires them."""

    def __init__(self) -> None:
        self.timers: list[FakeTimer] = []

    def call_later(self, delay: float, callback: Callable[[], object]) -> FakeTimer:
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer

    def fire(self, index: int = -1) -> None:
        self.timers[index].callback()


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)


async def settle(rounds: int = 50) -> None:
    """Let every ready task run until nothing is left to do."""
    for _ in range(rounds):
        await asyncio.sleep(0)
