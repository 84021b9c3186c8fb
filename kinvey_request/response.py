"""Normalized responses and error classification.

Whatever the rack hands back (a Response, an httpx.Response, or a raw
``{statusCode, headers, data}`` mapping) is coerced into a Response here.
A Response that is not successful exposes the KinveyError describing why.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import IntEnum
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from kinvey_request.errors import (
    BusinessLogicError,
    FeatureUnavailableError,
    InsufficientCredentialsError,
    InvalidCredentialsError,
    KinveyError,
    NoResponseError,
    NotFoundError,
    ServerError,
)
from kinvey_request.utils import to_string


class StatusCode(IntEnum):
    OK = 200
    CREATED = 201
    EMPTY = 204
    MOVED_PERMANENTLY = 301
    FOUND = 302
    NOT_MODIFIED = 304
    TEMPORARY_REDIRECT = 307
    PERMANENT_REDIRECT = 308
    UNAUTHORIZED = 401
    FORBIDDEN = 403
    NOT_FOUND = 404
    SERVER_ERROR = 500


# Redirects that reach the client are treated as settled, not failed
_SUCCESS_REDIRECTS = frozenset({
    StatusCode.MOVED_PERMANENTLY,
    StatusCode.FOUND,
    StatusCode.NOT_MODIFIED,
    StatusCode.TEMPORARY_REDIRECT,
    StatusCode.PERMANENT_REDIRECT,
})

# Backend error names (the "name" field of an error body) -> error class
ERROR_NAMES: dict[str, type[KinveyError]] = {
    "InvalidCredentials": InvalidCredentialsError,
    "InsufficientCredentials": InsufficientCredentialsError,
    "EntityNotFound": NotFoundError,
    "CollectionNotFound": NotFoundError,
    "AppNotFound": NotFoundError,
    "UserNotFound": NotFoundError,
    "BlobNotFound": NotFoundError,
    "DocumentNotFound": NotFoundError,
    "FeatureUnavailable": FeatureUnavailableError,
    "BLRuntimeError": BusinessLogicError,
    "BLSyntaxError": BusinessLogicError,
    "BLTimeoutError": BusinessLogicError,
    "BLViolationError": BusinessLogicError,
    "BLInternalError": BusinessLogicError,
    "KinveyInternalErrorRetry": ServerError,
    "KinveyInternalErrorStop": ServerError,
}


def _error_class_for_status(status_code: int) -> type[KinveyError]:
    if status_code == StatusCode.UNAUTHORIZED:
        return InvalidCredentialsError
    if status_code == StatusCode.FORBIDDEN:
        return InsufficientCredentialsError
    if status_code == StatusCode.NOT_FOUND:
        return NotFoundError
    if status_code >= StatusCode.SERVER_ERROR:
        return ServerError
    return KinveyError


class Response(BaseModel):
    """Status, headers and data of a settled request.

    ``error`` is None exactly when ``is_success()`` is True. A raw result may
    carry its own error (passed as ``error=``); it is surfaced unchanged when
    the response is unsuccessful. Otherwise the error is derived from the
    body's ``name``/``description``/``debug`` fields and the status code.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, populate_by_name=True)

    status_code: int = Field(alias="statusCode", description="HTTP status code")
    headers: dict[str, Any] = Field(default_factory=dict, description="Response headers, values as given")
    data: Any = Field(default=None, description="Parsed body")
    raw_error: Exception | None = Field(
        default=None, alias="error", exclude=True, repr=False,
        description="Error supplied by the stage that produced this response",
    )

    @field_validator("headers", mode="before")
    @classmethod
    def normalize_headers(cls, v: Any) -> dict[str, Any]:
        """Accept a mapping or a sequence of (name, value) pairs."""
        if v is None:
            return {}
        if isinstance(v, Mapping):
            return dict(v.items())
        try:
            return dict(v)
        except (TypeError, ValueError) as e:
            raise ValueError(f"headers must be a mapping or (name, value) pairs: {e}") from e

    def is_success(self) -> bool:
        return 200 <= self.status_code < 300 or self.status_code in _SUCCESS_REDIRECTS

    @property
    def error(self) -> Exception | None:
        if self.is_success():
            return None

        if self.raw_error is not None:
            return self.raw_error

        body = self.data if isinstance(self.data, Mapping) else {}
        name = body.get("name") or body.get("error")
        message = body.get("description") or body.get("message")
        debug = body.get("debug") or ""

        error_class = ERROR_NAMES.get(name) if isinstance(name, str) else None
        if error_class is None:
            error_class = _error_class_for_status(self.status_code)

        return error_class(
            message if isinstance(message, str) else None,
            debug=to_string(debug),
            status_code=self.status_code,
        )

    @classmethod
    def from_httpx(cls, response: httpx.Response) -> Response:
        """Convert an httpx Response, parsing the body by content-type.

        JSON -> parsed value (text if it does not parse), text/* -> str,
        anything else -> bytes.
        """
        data: Any = None
        content_type = response.headers.get("content-type", "")

        if response.content:
            if "json" in content_type.lower():
                try:
                    data = response.json()
                except ValueError:
                    data = response.text
            elif content_type.lower().startswith("text/"):
                data = response.text
            else:
                data = response.content

        return cls(
            status_code=response.status_code,
            headers=response.headers,
            data=data,
        )

    @classmethod
    def coerce(cls, raw: Any) -> Response:
        """Normalize whatever a rack produced into a Response.

        Only ``statusCode``/``status_code``, ``headers`` and ``data`` are read;
        ``error`` is kept when it is an exception and ignored otherwise.

        Raises:
            NoResponseError: If raw is None or carries no usable status code.
        """
        if raw is None:
            raise NoResponseError()
        if isinstance(raw, Response):
            return raw
        if isinstance(raw, httpx.Response):
            return cls.from_httpx(raw)

        if isinstance(raw, Mapping):
            get = raw.get
        else:
            def get(name: str, default: Any = None) -> Any:
                return getattr(raw, name, default)

        status_code = get("statusCode")
        if status_code is None:
            status_code = get("status_code")
        if status_code is None:
            raise NoResponseError("The rack produced a response without a status code.")

        raw_error = get("error")
        fields = {
            "status_code": status_code,
            "headers": get("headers"),
            "data": get("data"),
            "error": raw_error if isinstance(raw_error, Exception) else None,
        }

        try:
            return cls.model_validate(fields)
        except ValidationError as e:
            raise NoResponseError(f"The rack produced an unusable response: {e}") from e

    def to_json(self) -> dict[str, Any]:
        return {
            "statusCode": self.status_code,
            "headers": self.headers,
            "data": self.data,
        }
