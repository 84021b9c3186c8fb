"""End-to-end tests: KinveyRequest through the default Kinvey rack.

The httpx transport is replaced with httpx.MockTransport so the full chain
(serialize -> http -> parse -> error classification) runs without a network.
"""

import asyncio
import json

import httpx
import pytest

from kinvey_request.errors import NotFoundError, RequestCancelledError
from kinvey_request.middleware import kinvey_rack
from kinvey_request.request import JSON_MEDIA_TYPE, KinveyRequest
from kinvey_request.response import Response
from tests.conftest import StaticDevice

BOOKS_URL = "https://baas.kinvey.com/appdata/kid_123/books"


class RecordingHandler:
    """MockTransport handler that records requests and replays a fixed response."""

    def __init__(self, response: httpx.Response) -> None:
        self.response = response
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.response


def make_request(handler, **kwargs) -> KinveyRequest:
    kwargs.setdefault("url", BOOKS_URL)
    return KinveyRequest(
        device=StaticDevice(),
        rack=kinvey_rack(transport=httpx.MockTransport(handler)),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_get_with_query() -> None:
    handler = RecordingHandler(httpx.Response(200, json=[{"_id": "b1", "title": "Dune"}]))
    request = make_request(
        handler,
        query={"filter": {"author": "Herbert"}, "fields": ["x", "y"], "limit": 5},
    )

    response = await request.execute()

    assert isinstance(response, Response)
    assert response.status_code == 200
    assert response.data == [{"_id": "b1", "title": "Dune"}]

    sent = handler.requests[0]
    assert sent.method == "GET"
    assert sent.url.path == "/appdata/kid_123/books"
    params = sent.url.params
    assert json.loads(params["query"]) == {"author": "Herbert"}
    assert params["fields"] == "x,y"
    assert params["limit"] == "5"
    assert "skip" not in params
    assert "sort" not in params


@pytest.mark.asyncio
async def test_protocol_headers_sent() -> None:
    handler = RecordingHandler(httpx.Response(200, json={}))
    request = make_request(
        handler,
        properties={"appVersion": "1.2.0", "region": "eu"},
        skip_bl=True,
        trace=True,
    )

    await request.execute()

    headers = handler.requests[0].headers
    assert headers["x-kinvey-api-version"] == "3"
    assert json.loads(headers["x-kinvey-device-information"]) == {"platform": {"name": "test"}}
    assert headers["x-kinvey-client-app-version"] == "1.2.0"
    assert json.loads(headers["x-kinvey-custom-request-properties"]) == {"region": "eu"}
    assert headers["x-kinvey-skip-business-logic"] == "true"
    assert headers["x-kinvey-include-headers-in-response"] == "X-Kinvey-Request-Id"
    assert headers["x-kinvey-responsewrapper"] == "true"
    assert headers["accept"] == JSON_MEDIA_TYPE


@pytest.mark.asyncio
async def test_post_sends_json_body() -> None:
    handler = RecordingHandler(httpx.Response(201, json={"_id": "b2", "title": "Emma"}))
    request = make_request(handler, method="post", data={"title": "Emma"})

    response = await request.execute()

    assert response.status_code == 201
    sent = handler.requests[0]
    assert sent.method == "POST"
    assert sent.headers["content-type"] == JSON_MEDIA_TYPE
    assert json.loads(sent.content) == {"title": "Emma"}


@pytest.mark.asyncio
async def test_not_found_raises_classified_error() -> None:
    handler = RecordingHandler(
        httpx.Response(404, json={"name": "EntityNotFound", "description": "No book b9", "debug": ""})
    )
    request = make_request(handler, url=f"{BOOKS_URL}/b9")

    with pytest.raises(NotFoundError) as excinfo:
        await request.execute()

    assert excinfo.value.message == "No book b9"
    assert excinfo.value.status_code == 404
    assert not request.is_executing()


@pytest.mark.asyncio
async def test_cancel_in_flight() -> None:
    started = asyncio.Event()

    async def handler(request: httpx.Request) -> httpx.Response:
        started.set()
        await asyncio.Event().wait()
        return httpx.Response(200)

    request = make_request(handler)
    task = asyncio.create_task(request.execute())
    await started.wait()
    assert request.is_executing()

    request.cancel()
    with pytest.raises(RequestCancelledError):
        await task
    assert not request.is_executing()
