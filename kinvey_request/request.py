"""Request - Building and executing requests against the Kinvey backend.

Request is a plain HTTP request (method, URL, headers, body) with a
single-flight execution guard. KinveyRequest composes a Request, adds the
protocol headers the backend expects, derives its URL from a structured
query, and executes through a Rack.

Usage:
    request = KinveyRequest(
        method="GET",
        url="https://baas.kinvey.com/appdata/kid_123/books",
        query={"filter": {"author": "Le Guin"}, "limit": 10},
        properties={"appVersion": "1.2.0", "region": "eu"},
    )
    response = await request.execute()
    print(response.data)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from enum import Enum
from typing import Any, TypeVar

from kinvey_request.config import RequestConfig
from kinvey_request.device import DeviceInfoProvider, DeviceInformation
from kinvey_request.errors import (
    AlreadyExecutingError,
    InvalidArgumentError,
    NoResponseError,
    SizeLimitExceededError,
)
from kinvey_request.headers import HeaderStore
from kinvey_request.middleware import kinvey_rack
from kinvey_request.properties import RequestProperties
from kinvey_request.query import Query, encode_url
from kinvey_request.rack import Rack
from kinvey_request.response import Response
from kinvey_request.utils import byte_count, json_dumps

logger = logging.getLogger(__name__)

T = TypeVar("T")

JSON_MEDIA_TYPE = "application/json; charset=utf-8"

# Protocol headers
API_VERSION_HEADER = "X-Kinvey-Api-Version"
DEVICE_INFORMATION_HEADER = "X-Kinvey-Device-Information"
CONTENT_TYPE_OVERRIDE_HEADER = "X-Kinvey-Content-Type"
SKIP_BUSINESS_LOGIC_HEADER = "X-Kinvey-Skip-Business-Logic"
INCLUDE_HEADERS_IN_RESPONSE_HEADER = "X-Kinvey-Include-Headers-In-Response"
RESPONSE_WRAPPER_HEADER = "X-Kinvey-ResponseWrapper"
REQUEST_ID_HEADER = "X-Kinvey-Request-Id"
CLIENT_APP_VERSION_HEADER = "X-Kinvey-Client-App-Version"
CUSTOM_PROPERTIES_HEADER = "X-Kinvey-Custom-Request-Properties"


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PATCH = "PATCH"
    PUT = "PUT"
    DELETE = "DELETE"


class Request:
    """A generic HTTP request with a single-flight execution guard.

    Setting data to a truthy value guarantees a Content-Type header (JSON by
    default, a caller-supplied one is kept); clearing data removes it. Use
    set_data()/clear_data() so the coupling is re-applied on every change.

    Mutating headers or data while is_executing() is True is undefined:
    stages may or may not observe the change.
    """

    def __init__(
        self,
        method: str | HttpMethod = HttpMethod.GET,
        url: str | None = None,
        headers: Mapping[str, Any] | None = None,
        data: Any = None,
        body: Any = None,
        timeout: int | None = None,
        follow_redirect: bool = True,
        config: RequestConfig | None = None,
    ) -> None:
        """Initialize the request.

        Args:
            method: GET, POST, PATCH, PUT or DELETE (any casing).
            url: Request URL. Not validated here.
            headers: Initial headers. Accept defaults to JSON.
            data: Request payload.
            body: Alias for data, used when data is not given.
            timeout: Timeout in milliseconds. Defaults to config.default_timeout.
            follow_redirect: Whether the transport should follow redirects.
            config: Process-wide defaults. RequestConfig() when omitted.

        Raises:
            InvalidArgumentError: If method, headers or timeout are invalid.
        """
        self.config = config or RequestConfig()
        self.headers = HeaderStore()
        self._executing: asyncio.Future[Any] | None = None
        self._data: Any = None

        self.method = method
        self.url = url
        self.timeout = self.config.default_timeout if timeout is None else timeout
        self.follow_redirect = follow_redirect

        if headers is None:
            headers = {}
        if not isinstance(headers, Mapping):
            raise InvalidArgumentError("Headers argument must be a mapping.")
        if not any(str(name).lower() == "accept" for name in headers):
            headers = {"Accept": JSON_MEDIA_TYPE, **headers}
        self.add_headers(headers)

        self.set_data(data if data is not None else body)

    # -------------------------------------------------------------------------
    # Method / timeout
    # -------------------------------------------------------------------------

    @property
    def method(self) -> str:
        return self._method.value

    @method.setter
    def method(self, method: str | HttpMethod) -> None:
        value = method.value if isinstance(method, HttpMethod) else str(method)
        try:
            self._method = HttpMethod(value.upper())
        except ValueError:
            raise InvalidArgumentError(
                "Invalid Http Method. Only GET, POST, PATCH, PUT, and DELETE are allowed."
            ) from None

    @property
    def timeout(self) -> int:
        """Timeout in milliseconds, handed to the transport stage."""
        return self._timeout

    @timeout.setter
    def timeout(self, timeout: int) -> None:
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout < 0:
            raise InvalidArgumentError("Timeout must be a non-negative number of milliseconds.")
        self._timeout = timeout

    # -------------------------------------------------------------------------
    # Body
    # -------------------------------------------------------------------------

    @property
    def data(self) -> Any:
        return self._data

    @property
    def body(self) -> Any:
        return self._data

    def set_data(self, data: Any) -> None:
        """Replace the payload.

        Postcondition: Content-Type exists iff data is truthy.
        """
        if data:
            if self.get_header("Content-Type") is None:
                self.set_header("Content-Type", JSON_MEDIA_TYPE)
        else:
            self.remove_header("Content-Type")
        self._data = data

    set_body = set_data

    def clear_data(self) -> None:
        self.set_data(None)

    # -------------------------------------------------------------------------
    # Headers
    # -------------------------------------------------------------------------

    def get_header(self, name: str) -> str | None:
        return self.headers.get(name)

    def set_header(self, name: str, value: Any) -> None:
        self.headers.set(name, value)

    def add_headers(self, headers: Mapping[str, Any]) -> None:
        if not isinstance(headers, Mapping):
            raise InvalidArgumentError("Headers argument must be a mapping.")
        for name, value in headers.items():
            self.set_header(name, value)

    def remove_header(self, name: str) -> None:
        self.headers.remove(name)

    def clear_headers(self) -> None:
        self.headers.clear()

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    @property
    def executing(self) -> asyncio.Future[Any] | None:
        """The in-flight execution, or None when idle."""
        return self._executing

    def is_executing(self) -> bool:
        return self._executing is not None

    async def execute(self, send: Callable[[], Awaitable[T]] | None = None) -> T | None:
        """Run send() under the single-flight guard and return its result.

        The guard is released when the execution settles, whether it succeeds,
        fails, or is cancelled. Without send the execution resolves with None.

        Raises:
            AlreadyExecutingError: If an execution is already in flight.
        """
        if self._executing is not None:
            raise AlreadyExecutingError()

        async def _settle() -> T | None:
            return await send() if send is not None else None

        logger.debug("Executing %s %s", self.method, self.url)
        self._executing = asyncio.ensure_future(_settle())
        try:
            return await self._executing
        finally:
            self._executing = None
            logger.debug("Settled %s %s", self.method, self.url)

    def to_json(self) -> dict[str, Any]:
        """Snapshot for logging and diagnostics."""
        return {
            "method": self.method,
            "headers": self.headers.all(),
            "url": self.url,
            "data": self.data,
            "followRedirect": self.follow_redirect,
        }


class KinveyRequest:
    """A Request carrying the Kinvey protocol headers, executed through a Rack.

    KinveyRequest wraps a Request rather than subclassing it: header and body
    operations are forwarded, while ``url`` is recomputed from the base URL
    and the structured query on every read. Each instance owns its own Rack,
    so cancel() never reaches another request's stages.
    """

    def __init__(
        self,
        method: str | HttpMethod = HttpMethod.GET,
        url: str | None = None,
        headers: Mapping[str, Any] | None = None,
        data: Any = None,
        body: Any = None,
        timeout: int | None = None,
        follow_redirect: bool = True,
        properties: Any = None,
        auth: Any = None,
        query: Any = None,
        content_type: str | None = None,
        skip_bl: bool = False,
        trace: bool = False,
        config: RequestConfig | None = None,
        device: DeviceInfoProvider | None = None,
        rack: Rack | None = None,
    ) -> None:
        """Initialize the request.

        Args:
            method, url, headers, data, body, timeout, follow_redirect:
                As for Request.
            properties: Custom request properties (RequestProperties, mapping,
                or anything with to_json()).
            auth: Authentication descriptor for downstream stages. Not read here.
            query: Structured query (Query, mapping, or anything with to_json()).
            content_type: Value for X-Kinvey-Content-Type.
            skip_bl: Ask the backend to skip business logic.
            trace: Ask the backend to echo X-Kinvey-Request-Id and wrap responses.
            config: Process-wide defaults. RequestConfig() when omitted.
            device: Device information provider. DeviceInformation() when omitted.
            rack: Rack to execute through. A fresh kinvey_rack() when omitted.

        Raises:
            InvalidArgumentError: If any argument is malformed.
            SizeLimitExceededError: If the custom properties are too large.
        """
        self.config = config or RequestConfig()
        self._request = Request(
            method=method,
            url=url,
            headers=headers,
            data=data,
            body=body,
            timeout=timeout,
            follow_redirect=follow_redirect,
            config=self.config,
        )
        self.rack = rack if rack is not None else kinvey_rack()
        self._properties: RequestProperties | None = None
        self.set_properties(properties)
        self.auth = auth
        self.query = query

        device = device if device is not None else DeviceInformation()
        protocol_headers: dict[str, Any] = {
            API_VERSION_HEADER: self.config.api_version,
            DEVICE_INFORMATION_HEADER: json_dumps(device.to_json()),
        }

        if content_type:
            protocol_headers[CONTENT_TYPE_OVERRIDE_HEADER] = content_type

        if skip_bl is True:
            protocol_headers[SKIP_BUSINESS_LOGIC_HEADER] = True

        if trace is True:
            protocol_headers[INCLUDE_HEADERS_IN_RESPONSE_HEADER] = REQUEST_ID_HEADER
            protocol_headers[RESPONSE_WRAPPER_HEADER] = True

        self.add_headers(protocol_headers)

    @property
    def request(self) -> Request:
        """The wrapped base request."""
        return self._request

    # -------------------------------------------------------------------------
    # Forwarded request state
    # -------------------------------------------------------------------------

    @property
    def method(self) -> str:
        return self._request.method

    @method.setter
    def method(self, method: str | HttpMethod) -> None:
        self._request.method = method

    @property
    def base_url(self) -> str | None:
        """The URL without the query-derived parameters."""
        return self._request.url

    @property
    def url(self) -> str | None:
        """The effective URL: base URL plus the encoded query, if any."""
        return encode_url(self._request.url, self._query)

    @url.setter
    def url(self, url: str | None) -> None:
        self._request.url = url

    @property
    def timeout(self) -> int:
        return self._request.timeout

    @timeout.setter
    def timeout(self, timeout: int) -> None:
        self._request.timeout = timeout

    @property
    def follow_redirect(self) -> bool:
        return self._request.follow_redirect

    @follow_redirect.setter
    def follow_redirect(self, follow_redirect: bool) -> None:
        self._request.follow_redirect = follow_redirect

    @property
    def data(self) -> Any:
        return self._request.data

    @property
    def body(self) -> Any:
        return self._request.data

    def set_data(self, data: Any) -> None:
        self._request.set_data(data)

    set_body = set_data

    def clear_data(self) -> None:
        self._request.clear_data()

    @property
    def headers(self) -> HeaderStore:
        return self._request.headers

    def get_header(self, name: str) -> str | None:
        return self._request.get_header(name)

    def set_header(self, name: str, value: Any) -> None:
        self._request.set_header(name, value)

    def add_headers(self, headers: Mapping[str, Any]) -> None:
        self._request.add_headers(headers)

    def remove_header(self, name: str) -> None:
        self._request.remove_header(name)

    def clear_headers(self) -> None:
        self._request.clear_headers()

    @property
    def executing(self) -> asyncio.Future[Any] | None:
        return self._request.executing

    def is_executing(self) -> bool:
        return self._request.is_executing()

    # -------------------------------------------------------------------------
    # Kinvey state
    # -------------------------------------------------------------------------

    @property
    def query(self) -> Query | None:
        return self._query

    @query.setter
    def query(self, query: Any) -> None:
        self._query = Query.coerce(query)

    @property
    def properties(self) -> RequestProperties | None:
        return self._properties

    def set_properties(self, properties: Any) -> None:
        """Install custom properties into the protocol headers.

        The application version goes to X-Kinvey-Client-App-Version (removed
        when absent); the rest is JSON-encoded into
        X-Kinvey-Custom-Request-Properties. None leaves the headers untouched.

        Raises:
            SizeLimitExceededError: If the encoded custom properties are
                config.max_header_bytes bytes or more. Headers are unchanged.
        """
        if properties is None:
            return

        properties = RequestProperties.coerce(properties)

        custom_properties_header = json_dumps(properties.custom_properties())
        custom_properties_byte_count = byte_count(custom_properties_header)
        max_bytes = self.config.max_header_bytes

        if custom_properties_byte_count >= max_bytes:
            raise SizeLimitExceededError(custom_properties_byte_count, max_bytes)

        if properties.app_version:
            self.set_header(CLIENT_APP_VERSION_HEADER, properties.app_version)
        else:
            self.remove_header(CLIENT_APP_VERSION_HEADER)

        self.set_header(CUSTOM_PROPERTIES_HEADER, custom_properties_header)
        self._properties = properties

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    async def execute(self) -> Response:
        """Execute the request through the rack.

        Raises:
            AlreadyExecutingError: If this request is already in flight.
            NoResponseError: If the rack produced no response.
            KinveyError: The response's own error, if it was not successful.
            Exception: Stage failures propagate unchanged.
        """
        return await self._request.execute(self._execute_rack)

    async def _execute_rack(self) -> Response:
        result = await self.rack.execute(self)

        if result is None:
            raise NoResponseError()

        response = Response.coerce(result)

        if not response.is_success():
            logger.debug(
                "%s %s failed with status %s", self.method, self.url, response.status_code
            )
            raise response.error

        return response

    def cancel(self) -> None:
        """Forward cancellation to the active rack stage (no-op when idle)."""
        self.rack.cancel()

    def to_json(self) -> dict[str, Any]:
        json = self._request.to_json()
        json["url"] = self.url
        json["query"] = self._query.to_json() if self._query is not None else None
        return json
