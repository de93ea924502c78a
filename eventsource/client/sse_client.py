"""
MODULE OVERVIEW:
The Server-Sent Events client: a browser-style `EventSource` built on asyncio and HTTPX.

WHAT IS HAPPENING HERE:
The EventSource is a small state machine (CONNECTING -> OPEN -> CONNECTING ... -> CLOSED).
Each connection attempt runs as one asyncio task:

  1. send a streaming GET (`client.send(request, stream=True)`),
  2. reject anything that is not `200` + `text/event-stream` (fatal, no retry),
  3. feed the body chunks into a `FrameBuffer` and dispatch every decoded message,
  4. when the body ends (cleanly or not) go back to CONNECTING and ask the scheduler
     to start the next attempt after `reconnect_delay` seconds.

The last seen event id is sent back as `Last-Event-ID` so the server can resume, and a
`retry:` field from the server changes the reconnect delay.

Every reaction happens on the event loop thread and checks for CLOSED before doing
anything visible, so `close()` can be called from anywhere, including from inside a
listener, and nothing is delivered or scheduled afterwards.

Usage::

    async with EventSource("https://example.com/stream") as es:
        es.on("message", lambda message: print(message.data))
        es.on("error", lambda error: print("error:", error, es.ready_state))
        await asyncio.sleep(60)
"""
import asyncio
import re

import httpx
from loguru import logger

from eventsource.shared.client_utils import Scheduler, TimerHandle, make_client_stats, utc_now_iso
from eventsource.shared.config import settings
from eventsource.shared.decoder import FrameBuffer, parse_message
from eventsource.shared.errors import (
    ConnectionFailedError,
    FatalProtocolError,
    InvalidInputError,
    StreamClosedError,
    UnexpectedContentTypeError,
    UnexpectedStatusError,
)
from eventsource.shared.events import EventEmitter
from eventsource.shared.log_utils import log_connection
from eventsource.shared.models import ConnectionState

# `text/event-stream`, case insensitive, optionally followed by `;` parameters
_EVENT_STREAM = re.compile(r"text/event-stream(?:$|;)", re.IGNORECASE)


def _current_task() -> asyncio.Task | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class EventSource(EventEmitter):
    CONNECTING = ConnectionState.CONNECTING
    OPEN = ConnectionState.OPEN
    CLOSED = ConnectionState.CLOSED

    def __init__(
        self,
        url: str,
        client: httpx.AsyncClient | None = None,
        scheduler: Scheduler | None = None,
        reconnect_delay: float | None = None,
    ):
        """
        Validates `url` and immediately starts the first connection attempt, so this
        must be called while an event loop is running.

        `client` is used as-is when given (custom transport, TLS, proxies, redirects);
        otherwise the EventSource owns one and closes it in `aclose()`.
        `scheduler` runs the reconnect timer and defaults to the running loop.
        """
        if not isinstance(url, str):
            raise InvalidInputError(f"Invalid URL {url!r}, must be a string")
        try:
            parsed = httpx.URL(url)
        except httpx.InvalidURL as e:
            raise InvalidInputError(f"Invalid URL {url!r}") from e
        if parsed.scheme not in ("http", "https") or not parsed.host:
            raise InvalidInputError(f"Invalid URL {url!r}, must be an absolute http:// or https:// URL")
        if reconnect_delay is not None and reconnect_delay < 0:
            raise InvalidInputError(f"Invalid reconnect_delay {reconnect_delay!r}, must not be negative")

        super().__init__()
        loop = asyncio.get_running_loop()

        self._url = url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.CONNECT_TIMEOUT_S, read=settings.READ_TIMEOUT_S)
        )
        self._scheduler: Scheduler = scheduler or loop

        self._ready_state = ConnectionState.CONNECTING
        self._last_event_id = ""
        self._reconnect_delay = settings.RECONNECT_DELAY_S if reconnect_delay is None else reconnect_delay

        # At most one live attempt and one live timer; both are cleared as soon as they are used up
        self._request: asyncio.Task | None = None
        self._timer: TimerHandle | None = None
        # Every attempt task still running its cleanup, so aclose() can wait for them
        self._attempts: set[asyncio.Task] = set()

        self.stats = make_client_stats()

        self._request_stream()

    @property
    def url(self) -> str:
        return self._url

    @property
    def ready_state(self) -> ConnectionState:
        return self._ready_state

    @property
    def last_event_id(self) -> str:
        return self._last_event_id

    @property
    def reconnect_delay(self) -> float:
        return self._reconnect_delay

    # ==========================
    # CONNECTION ATTEMPT
    # ==========================
    def _request_stream(self) -> None:
        headers = {
            "Accept": "text/event-stream",
            "Cache-Control": "no-cache",
        }
        if self._last_event_id != "":
            # Sent as UTF-8; httpx would only accept ASCII for a str value
            headers["Last-Event-ID"] = self._last_event_id.encode("utf-8")

        log_connection("connect", self._url, {"last_event_id": repr(self._last_event_id)})
        task = asyncio.get_running_loop().create_task(self._connect(headers))
        self._attempts.add(task)
        task.add_done_callback(self._attempts.discard)
        self._request = task

    async def _connect(self, headers: dict) -> None:
        try:
            await self._run_attempt(headers)
        finally:
            # An owned client is never reused once closed
            if self._ready_state is ConnectionState.CLOSED and self._owns_client:
                await self._client.aclose()

    async def _run_attempt(self, headers: dict) -> None:
        try:
            request = self._client.build_request("GET", self._url, headers=headers)
            response = await self._client.send(request, stream=True)
        except Exception as e:
            self._on_request_failed(e)
            return

        try:
            if self._on_response(response):
                await self._read_body(response)
        finally:
            await self._close_response(response)

    def _on_response(self, response: httpx.Response) -> bool:
        """Validates the response envelope. Returns True when the body should be read."""
        if self._ready_state is ConnectionState.CLOSED:
            return False

        if response.status_code != 200:
            self._fail(UnexpectedStatusError(response.status_code))
            return False

        content_type = response.headers.get("content-type", "")
        if not _EVENT_STREAM.match(content_type):
            self._fail(UnexpectedContentTypeError(content_type))
            return False

        self._ready_state = ConnectionState.OPEN
        self.stats["connected_at"] = utc_now_iso()
        log_connection("open", self._url)
        self.emit("open")
        return self._ready_state is ConnectionState.OPEN

    async def _read_body(self, response: httpx.Response) -> None:
        buffer = FrameBuffer()
        reason = None
        try:
            async for chunk in response.aiter_bytes():
                self.stats["bytes_received"] += len(chunk)
                for block in buffer.feed(chunk):
                    self._dispatch(block)
                    # A listener closed us; the remaining blocks of this chunk are dropped
                    if self._ready_state is ConnectionState.CLOSED:
                        return
        except Exception as e:
            reason = e

        buffer.clear()
        self._on_stream_closed(reason)

    async def _close_response(self, response: httpx.Response) -> None:
        try:
            await response.aclose()
        except Exception as e:
            logger.debug(f"protocol=sse url={self._url} event=teardown ignored='{e!r}'")

    # ==========================
    # MESSAGE DISPATCH
    # ==========================
    def _dispatch(self, block: bytes) -> None:
        parsed = parse_message(block, self._last_event_id)
        message = parsed.message

        self._last_event_id = message.last_event_id
        if parsed.retry_seconds is not None:
            self._reconnect_delay = parsed.retry_seconds

        # Blocks without data only update the id and retry state
        if message.data == "":
            return
        self.stats["events_received"] += 1
        self.stats["last_event_at"] = utc_now_iso()
        self.emit(message.type, message)

    # ==========================
    # FAILURE & RECONNECT
    # ==========================
    def _fail(self, error: FatalProtocolError) -> None:
        self._ready_state = ConnectionState.CLOSED
        log_connection("fatal", self._url, {"reason": f"'{error}'"})
        self.emit("error", error)
        self.close()

    def _on_stream_closed(self, reason: BaseException | None = None) -> None:
        self._request = None
        if self._ready_state is not ConnectionState.OPEN:
            return

        self._ready_state = ConnectionState.CONNECTING
        log_connection("dropped", self._url, {"reason": f"'{reason!r}'" if reason else "eof"})
        self.emit("error", StreamClosedError(self._reconnect_delay, reason))
        if self._ready_state is ConnectionState.CLOSED:
            return
        self._schedule_reconnect()

    def _on_request_failed(self, error: Exception) -> None:
        self._request = None
        if self._ready_state is ConnectionState.CLOSED:
            return

        log_connection("failed", self._url, {"reason": f"'{error!r}'"})
        self.emit("error", ConnectionFailedError(error))
        if self._ready_state is ConnectionState.CLOSED:
            return
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        self.stats["reconnect_count"] += 1
        log_connection("reconnect", self._url, {"delay": f"{self._reconnect_delay:g}s"})
        self._timer = self._scheduler.call_later(self._reconnect_delay, self._on_reconnect_timer)

    def _on_reconnect_timer(self) -> None:
        self._timer = None
        if self._ready_state is ConnectionState.CLOSED:
            return
        self._request_stream()

    # ==========================
    # TEARDOWN
    # ==========================
    def close(self) -> None:
        """
        Stops the EventSource for good: cancels the pending attempt and the reconnect
        timer and removes every listener. Safe to call more than once and from any listener.

        An owned HTTP client is released by the attempt that was running when the
        source closed. When no attempt was running (e.g. closed while waiting for the
        reconnect timer) the client stays open until `aclose()`.
        """
        if self._ready_state is not ConnectionState.CLOSED:
            log_connection("close", self._url)
        self._ready_state = ConnectionState.CLOSED

        request, self._request = self._request, None
        # From inside the attempt's own listener call the task unwinds by itself after
        # seeing CLOSED; cancelling it would interrupt its response cleanup.
        if request is not None and request is not _current_task():
            request.cancel()

        timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()

        self.remove_all_listeners()

    async def aclose(self) -> None:
        """`close()`, then wait for the attempt cleanup and close the owned HTTP client."""
        self.close()
        pending = self._attempts - {_current_task()}
        if pending:
            await asyncio.wait(pending)
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "EventSource":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
