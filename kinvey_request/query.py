"""Structured queries and their URL query-string encoding.

A Query carries filter/fields/limit/skip/sort. encode_url() turns it into the
``query``, ``fields``, ``limit``, ``skip`` and ``sort`` parameters understood by
the backend and appends them onto a base URL.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from urllib.parse import quote, urlencode, urlsplit, urlunsplit

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from kinvey_request.errors import InvalidArgumentError
from kinvey_request.utils import to_string


class Query(BaseModel):
    """Filter, projection, paging and ordering for a collection read."""

    model_config = ConfigDict(extra="ignore")

    filter: dict[str, Any] = Field(default_factory=dict, description="Filter document")
    fields: list[str] = Field(default_factory=list, description="Fields to return")
    limit: int | None = Field(default=None, description="Maximum number of entities")
    skip: int = Field(default=0, description="Number of entities to skip")
    sort: dict[str, Any] = Field(default_factory=dict, description="Field -> direction")

    @classmethod
    def coerce(cls, value: Any) -> Query | None:
        """Normalize a Query, a mapping, or anything exposing to_json()."""
        if value is None:
            return None
        if isinstance(value, Query):
            return value

        to_json = getattr(value, "to_json", None)
        if callable(to_json):
            value = to_json()

        if not isinstance(value, Mapping):
            raise InvalidArgumentError("A query must be a Query or a mapping.")

        try:
            return cls.model_validate(dict(value))
        except ValidationError as e:
            raise InvalidArgumentError(f"Invalid query: {e}") from e

    def to_json(self) -> dict[str, Any]:
        return self.model_dump()


def query_params(query: Query | None) -> dict[str, str]:
    """Build the query-string parameters for query, in emission order."""
    if query is None:
        return {}

    params: dict[str, Any] = {"query": query.filter}

    if query.fields:
        params["fields"] = ",".join(query.fields)

    if query.limit:
        params["limit"] = query.limit

    if query.skip > 0:
        params["skip"] = query.skip

    if query.sort:
        params["sort"] = query.sort

    return {key: to_string(value) for key, value in params.items()}


def encode_url(base_url: str | None, query: Query | None) -> str | None:
    """Append the parameters for query onto base_url.

    An existing query string on base_url is kept; the new parameters follow
    it. Commas stay literal so ``fields=a,b`` is readable on the wire.
    """
    if base_url is None or query is None:
        return base_url

    params = query_params(query)
    encoded = urlencode(params, safe=",", quote_via=quote)

    parts = urlsplit(base_url)
    query_string = f"{parts.query}&{encoded}" if parts.query else encoded
    return urlunsplit(parts._replace(query=query_string))
