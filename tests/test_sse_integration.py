"""End-to-end tests: EventSource against a FastAPI app speaking text/event-stream.

The app is mounted on `httpx.ASGITransport`, which runs each request to completion,
so every stream below ends after its last event and the client goes through the
reconnect path. Reconnect timers are recorded by a FakeScheduler and fired by hand.
"""

import httpx
import pytest
from fastapi import FastAPI, Request
from fastapi.responses import StreamingResponse

from eventsource.client.sse_client import EventSource
from eventsource.shared.errors import StreamClosedError, UnexpectedContentTypeError, UnexpectedStatusError
from tests.helpers import FakeScheduler, wait_until


def make_app(last_event_ids: list) -> FastAPI:
    app = FastAPI()

    @app.get("/stream")
    async def stream(request: Request):
        last_event_ids.append(request.headers.get("last-event-id"))
        resume_from = int(request.headers.get("last-event-id", "0"))

        async def events():
            yield ": connected\n\n"
            yield "retry: 1500\n\n"
            for n in range(resume_from + 1, resume_from + 3):
                yield f"id: {n}\nevent: tick\ndata: {{\"n\": {n}}}\n\n"
            yield "data: done\r\n\r\n"

        return StreamingResponse(events(), media_type="text/event-stream")

    @app.get("/json")
    async def json_endpoint():
        return {"ok": True}

    return app


@pytest.fixture
def last_event_ids() -> list:
    return []


@pytest.fixture
def client(last_event_ids: list) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=make_app(last_event_ids)))


class TestAgainstFastAPI:
    @pytest.mark.asyncio
    async def test_stream_reconnect_and_resume(self, client: httpx.AsyncClient, last_event_ids: list) -> None:
        scheduler = FakeScheduler()
        async with client:
            es = EventSource("http://testserver/stream", client=client, scheduler=scheduler)
            ticks, messages, errors = [], [], []
            es.on("tick", lambda message: ticks.append((message.last_event_id, message.data)))
            es.on("message", lambda message: messages.append(message.data))
            es.on("error", errors.append)

            await wait_until(lambda: len(scheduler.timers) == 1)

            assert ticks == [("1", '{"n": 1}'), ("2", '{"n": 2}')]
            assert messages == ["done"]
            assert isinstance(errors[0], StreamClosedError)
            assert scheduler.timers[0].delay == 1.5
            assert es.last_event_id == "2"

            scheduler.fire()
            await wait_until(lambda: len(scheduler.timers) == 2)

            assert last_event_ids == [None, "2"]
            assert ticks[2:] == [("3", '{"n": 3}'), ("4", '{"n": 4}')]
            assert es.stats["reconnect_count"] == 2
            await es.aclose()

    @pytest.mark.asyncio
    async def test_missing_route_is_fatal(self, client: httpx.AsyncClient) -> None:
        scheduler = FakeScheduler()
        async with client:
            es = EventSource("http://testserver/missing", client=client, scheduler=scheduler)
            errors = []
            es.on("error", errors.append)

            await wait_until(lambda: es.ready_state is EventSource.CLOSED)

            assert len(errors) == 1
            assert isinstance(errors[0], UnexpectedStatusError)
            assert errors[0].status_code == 404
            assert scheduler.timers == []
            await es.aclose()

    @pytest.mark.asyncio
    async def test_json_response_is_fatal(self, client: httpx.AsyncClient) -> None:
        scheduler = FakeScheduler()
        async with client:
            es = EventSource("http://testserver/json", client=client, scheduler=scheduler)
            errors = []
            es.on("error", errors.append)

            await wait_until(lambda: es.ready_state is EventSource.CLOSED)

            assert len(errors) == 1
            assert isinstance(errors[0], UnexpectedContentTypeError)
            assert errors[0].content_type.startswith("application/json")
            assert scheduler.timers == []
            await es.aclose()
