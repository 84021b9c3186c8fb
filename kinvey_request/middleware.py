"""Middleware - The default stages of a Kinvey rack.

kinvey_rack() builds the chain every KinveyRequest runs through by default:

    SerializeMiddleware -> ParseMiddleware -> HttpMiddleware

SerializeMiddleware freezes the request into a SerializedRequest with an
encoded body, HttpMiddleware sends it with httpx, and ParseMiddleware turns
the httpx.Response on its way back into a Response.

Cancellation: HttpMiddleware.cancel() aborts the in-flight send and the
execution settles with RequestCancelledError. The other stages do no
cancellable work of their own.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel, ConfigDict, Field

from kinvey_request.errors import (
    InvalidArgumentError,
    RequestCancelledError,
    RequestTimeoutError,
    TransportError,
)
from kinvey_request.rack import CallNext, Middleware, Rack
from kinvey_request.response import Response
from kinvey_request.utils import json_dumps

logger = logging.getLogger(__name__)


class SerializedRequest(BaseModel):
    """A request frozen for the transport: body encoded, URL resolved."""

    model_config = ConfigDict(extra="forbid")

    method: str = Field(description="HTTP method")
    url: str = Field(description="Effective URL including the query string")
    headers: dict[str, str] = Field(default_factory=dict, description="Request headers")
    content: bytes | None = Field(default=None, description="Encoded body")
    timeout: float | None = Field(default=None, description="Timeout in seconds (None = no timeout)")
    follow_redirect: bool = Field(default=True, description="Follow redirects")


def _sanitize_header_value(value: str) -> str:
    """Replace non-ASCII characters with '?' (RFC 7230 headers are ASCII)."""
    return value.encode("ascii", errors="replace").decode("ascii")


def serialize_body(data: Any, content_type: str | None) -> bytes | None:
    """Encode data for the wire according to content_type.

    bytes pass through, form-urlencoded mappings become key=value pairs,
    strings are UTF-8 encoded, and everything else is compact JSON.
    """
    if not data:
        return None
    if isinstance(data, bytes):
        return data

    media_type = (content_type or "").lower()
    if media_type.startswith("application/x-www-form-urlencoded") and isinstance(data, Mapping):
        return urlencode(data, doseq=True).encode("utf-8")
    if isinstance(data, str):
        return data.encode("utf-8")
    return json_dumps(data).encode("utf-8")


def serialize_request(request: Any) -> SerializedRequest:
    """Build a SerializedRequest from a Request or KinveyRequest."""
    if isinstance(request, SerializedRequest):
        return request

    if not request.url:
        raise InvalidArgumentError("A url must be provided to send a request.")

    headers = request.headers.all()
    timeout_ms = request.timeout

    return SerializedRequest(
        method=request.method,
        url=request.url,
        headers=headers,
        content=serialize_body(request.data, request.get_header("Content-Type")),
        timeout=timeout_ms / 1000 if timeout_ms else None,
        follow_redirect=request.follow_redirect,
    )


class SerializeMiddleware(Middleware):
    async def process(self, request: Any, call_next: CallNext) -> Any:
        return await call_next(serialize_request(request))


class ParseMiddleware(Middleware):
    """Converts an httpx.Response coming back up the chain into a Response."""

    async def process(self, request: Any, call_next: CallNext) -> Any:
        result = await call_next(request)
        if isinstance(result, httpx.Response):
            return Response.from_httpx(result)
        return result


class HttpMiddleware(Middleware):
    """Sends the request with httpx.

    Usage:
        # Own client per send (closed afterwards)
        HttpMiddleware()

        # Shared client or test transport
        HttpMiddleware(client=httpx.AsyncClient(...))
        HttpMiddleware(transport=httpx.MockTransport(handler))

    This is the last stage of the chain: it never calls ``call_next``.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = client
        self._transport = transport
        self._task: asyncio.Future[httpx.Response] | None = None
        self._cancelled = False

    async def process(self, request: Any, call_next: CallNext) -> httpx.Response:
        request = serialize_request(request)
        self._cancelled = False

        if self._client is not None:
            return await self._send(self._client, request)

        async with httpx.AsyncClient(transport=self._transport) as client:
            return await self._send(client, request)

    async def _send(self, client: httpx.AsyncClient, request: SerializedRequest) -> httpx.Response:
        """Send request, translating httpx failures into TransportError.

        Raises:
            RequestTimeoutError: If the transport timed out.
            TransportError: If the request failed (connection error, etc.).
            RequestCancelledError: If cancel() aborted the send.
        """
        headers = {name: _sanitize_header_value(value) for name, value in request.headers.items()}

        logger.debug("Sending %s %s", request.method, request.url)
        self._task = asyncio.ensure_future(
            client.request(
                method=request.method,
                url=request.url,
                headers=headers,
                content=request.content,
                timeout=request.timeout,
                follow_redirects=request.follow_redirect,
            )
        )

        try:
            http_response = await self._task
        except asyncio.CancelledError as e:
            # Only our own cancel() is translated; outer cancellation propagates
            if not self._cancelled:
                raise
            raise RequestCancelledError() from e
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(f"Request timeout: {e}") from e
        except httpx.RequestError as e:
            raise TransportError(f"Request error: {e}") from e
        finally:
            self._task = None

        logger.debug("Received %s for %s %s", http_response.status_code, request.method, request.url)
        return http_response

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._cancelled = True
            self._task.cancel()


def kinvey_rack(
    client: httpx.AsyncClient | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Rack:
    """Build the default rack for a KinveyRequest."""
    return Rack(
        [
            SerializeMiddleware(),
            ParseMiddleware(),
            HttpMiddleware(client=client, transport=transport),
        ],
        name="Kinvey Rack",
    )
