"""Case-insensitive header storage for outgoing requests."""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any

from kinvey_request.errors import InvalidArgumentError
from kinvey_request.utils import to_string


class HeaderStore:
    """Header bag with case-insensitive lookup.

    Stored names keep the casing of their first insertion; setting a header
    whose name matches an existing one (ignoring case) overwrites the value in
    place. Values are always strings: anything else is JSON-encoded on set.
    """

    def __init__(self, headers: dict[str, Any] | None = None) -> None:
        self._headers: dict[str, str] = {}
        if headers:
            for name, value in headers.items():
                self.set(name, value)

    def _find(self, name: str) -> str | None:
        """Return the stored key matching name (ignoring case), if any."""
        lowered = name.lower()
        for key in self._headers:
            if key.lower() == lowered:
                return key
        return None

    def get(self, name: Any) -> str | None:
        if not name:
            return None
        key = self._find(str(name))
        return self._headers[key] if key is not None else None

    def set(self, name: Any, value: Any) -> None:
        if not name or value is None or value == "":
            raise InvalidArgumentError("A name and value must be provided to set a header.")

        name = str(name)
        key = self._find(name)
        self._headers[key if key is not None else name] = to_string(value)

    def remove(self, name: Any) -> None:
        if not name:
            return
        key = self._find(str(name))
        if key is not None:
            del self._headers[key]

    def clear(self) -> None:
        self._headers.clear()

    def all(self) -> dict[str, str]:
        """Copy of every header, in insertion order."""
        return dict(self._headers)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self._find(name) is not None

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._headers))

    def __len__(self) -> int:
        return len(self._headers)

    def __repr__(self) -> str:
        return f"HeaderStore({self._headers!r})"
