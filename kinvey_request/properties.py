"""Custom request properties sent with every KinveyRequest.

The backend receives the application version in its own header and every
other property JSON-encoded in ``X-Kinvey-Custom-Request-Properties``.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from kinvey_request.errors import InvalidArgumentError


def _normalize_app_version(value: Any) -> str | None:
    if value is None or value == "":
        return None
    if isinstance(value, (list, tuple)):
        return ".".join(str(part) for part in value)
    return str(value)


class RequestProperties(BaseModel):
    """Canonical form of the custom properties attached to a request.

    ``app_version`` (``appVersion`` on the wire) is a dedicated field; any
    other keyword becomes a custom property.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    app_version: str | None = Field(default=None, alias="appVersion")

    @field_validator("app_version", mode="before")
    @classmethod
    def normalize_app_version(cls, v: Any) -> str | None:
        return _normalize_app_version(v)

    @classmethod
    def coerce(cls, value: Any) -> RequestProperties:
        """Normalize a RequestProperties, a mapping, or anything exposing to_json()."""
        if isinstance(value, RequestProperties):
            return value

        to_json = getattr(value, "to_json", None)
        if callable(to_json):
            value = to_json()

        if not isinstance(value, Mapping):
            raise InvalidArgumentError("Request properties must be a mapping.")

        try:
            return cls.model_validate(dict(value))
        except ValidationError as e:
            raise InvalidArgumentError(f"Invalid request properties: {e}") from e

    def custom_properties(self) -> dict[str, Any]:
        """Every property except the application version."""
        return dict(self.model_extra or {})

    def add_property(self, name: str, value: Any) -> None:
        if not name:
            raise InvalidArgumentError("A property name must be provided.")
        if name in ("appVersion", "app_version"):
            self.app_version = _normalize_app_version(value)
            return
        self.__pydantic_extra__[name] = value

    def add_properties(self, properties: Mapping[str, Any]) -> None:
        if not isinstance(properties, Mapping):
            raise InvalidArgumentError("Properties argument must be a mapping.")
        for name, value in properties.items():
            self.add_property(name, value)

    def remove_property(self, name: str) -> None:
        if name in ("appVersion", "app_version"):
            self.app_version = None
            return
        self.__pydantic_extra__.pop(name, None)

    def clear(self) -> None:
        self.app_version = None
        self.__pydantic_extra__.clear()

    def to_json(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.app_version is not None:
            result["appVersion"] = self.app_version
        result.update(self.custom_properties())
        return result
