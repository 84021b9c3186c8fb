"""Pytest configuration and fixtures for kinvey-request tests.

This file provides:
- make_response: Response factory with sensible defaults
- Stub stages: StaticMiddleware, RecordingMiddleware, BlockingMiddleware
- StaticDevice: deterministic device-information provider
- Marker hook: unit/integration markers by test location
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import pytest

from kinvey_request.errors import RequestCancelledError
from kinvey_request.rack import CallNext, Middleware
from kinvey_request.response import Response


def make_response(
    status_code: int = 200,
    headers: dict[str, str] | None = None,
    data: Any = None,
    error: Exception | None = None,
) -> Response:
    """Create a Response for testing.

    Prefer this over constructing Response directly - it provides sensible
    defaults and documents which fields are typically varied in tests.
    """
    return Response(
        status_code=status_code,
        headers=headers or {},
        data=data,
        error=error,
    )


class StaticDevice:
    """Device provider with fixed output so header values are predictable."""

    def to_json(self) -> dict[str, Any]:
        return {"platform": {"name": "test"}}


class StaticMiddleware(Middleware):
    """Short-circuits the rack with a fixed result (or raises a fixed error)."""

    def __init__(self, result: Any = None, error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.requests: list[Any] = []

    async def process(self, request: Any, call_next: CallNext) -> Any:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.result


class RecordingMiddleware(Middleware):
    """Forwards to the next stage, recording entry/exit into a shared log."""

    def __init__(self, label: str, log: list[str]) -> None:
        self.label = label
        self.log = log
        self.cancel_calls = 0

    async def process(self, request: Any, call_next: CallNext) -> Any:
        self.log.append(f"{self.label}:before")
        result = await call_next(request)
        self.log.append(f"{self.label}:after")
        return result

    def cancel(self) -> None:
        self.cancel_calls += 1


class BlockingMiddleware(Middleware):
    """Waits until released; cancel() releases it with RequestCancelledError."""

    def __init__(self, result: Any = None) -> None:
        self.result = result
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.cancelled = False

    async def process(self, request: Any, call_next: CallNext) -> Any:
        self.started.set()
        await self.release.wait()
        if self.cancelled:
            raise RequestCancelledError()
        return self.result

    def cancel(self) -> None:
        self.cancelled = True
        self.release.set()


# =============================================================================
# Pytest Fixtures
# =============================================================================


@pytest.fixture
def device() -> StaticDevice:
    return StaticDevice()


@pytest.fixture
def ok_response() -> dict[str, Any]:
    """Raw transport-shaped success result."""
    return {"statusCode": 200, "headers": {}, "data": {"ok": True}}


# =============================================================================
# Pytest Hooks
# =============================================================================


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Automatically apply markers based on test location.

    Enables running subsets via:
        pytest -m integration  # only integration tests
        pytest -m unit         # only unit tests
    """
    for item in items:
        test_path = Path(item.fspath)
        if "integration" in test_path.parts:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)
