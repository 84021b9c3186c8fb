"""Rack - The ordered chain of stages a request is executed through.

Each stage (a Middleware) receives the request and a ``call_next`` coroutine
function. A stage may transform the request before forwarding it, short-circuit
by returning a response without calling ``call_next``, or post-process what
the rest of the chain returned. Stages run in registration order.

A Rack belongs to exactly one KinveyRequest, so cancel() only ever reaches the
stage that is active for that request.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from kinvey_request.errors import InvalidArgumentError

logger = logging.getLogger(__name__)

CallNext = Callable[[Any], Awaitable[Any]]


class Middleware:
    """One stage of a Rack.

    Subclasses override process(); the default forwards to the next stage.
    cancel() is delivered while the stage is active and should abort any
    in-flight work. It must be safe to call when nothing is in flight.
    """

    @property
    def name(self) -> str:
        return type(self).__name__

    async def process(self, request: Any, call_next: CallNext) -> Any:
        return await call_next(request)

    def cancel(self) -> None:
        pass

    def __repr__(self) -> str:
        return f"<{self.name}>"


MiddlewareRef = type[Middleware] | Middleware


class Rack:
    """Ordered, mutable list of middleware with cooperative cancellation.

    Usage:
        rack = Rack([SerializeMiddleware(), ParseMiddleware(), HttpMiddleware()])
        rack.use_before(HttpMiddleware, LoggingMiddleware())
        response = await rack.execute(request)

    The rack resolves with whatever the first stage returns. When every stage
    forwards and none produces a result, execute() resolves with None.
    """

    def __init__(self, middlewares: Iterable[Middleware] = (), name: str = "Rack") -> None:
        self.name = name
        self._middlewares: list[Middleware] = []
        # Stages currently inside process(), outermost first
        self._active: list[Middleware] = []
        for middleware in middlewares:
            self.use(middleware)

    @property
    def middlewares(self) -> tuple[Middleware, ...]:
        return tuple(self._middlewares)

    def is_executing(self) -> bool:
        return bool(self._active)

    # -------------------------------------------------------------------------
    # Composition
    # -------------------------------------------------------------------------

    def _index(self, ref: MiddlewareRef) -> int:
        for i, middleware in enumerate(self._middlewares):
            if middleware is ref or (isinstance(ref, type) and isinstance(middleware, ref)):
                return i
        raise InvalidArgumentError(f"{ref!r} is not part of the {self.name} rack.")

    @staticmethod
    def _check(middleware: Any) -> Middleware:
        if not isinstance(middleware, Middleware):
            raise InvalidArgumentError(f"{middleware!r} is not a Middleware.")
        return middleware

    def use(self, middleware: Middleware) -> None:
        """Append middleware to the end of the chain."""
        self._middlewares.append(self._check(middleware))

    def use_before(self, ref: MiddlewareRef, middleware: Middleware) -> None:
        self._middlewares.insert(self._index(ref), self._check(middleware))

    def use_after(self, ref: MiddlewareRef, middleware: Middleware) -> None:
        self._middlewares.insert(self._index(ref) + 1, self._check(middleware))

    def swap(self, ref: MiddlewareRef, middleware: Middleware) -> None:
        """Replace the stage matching ref with middleware."""
        self._middlewares[self._index(ref)] = self._check(middleware)

    def remove(self, ref: MiddlewareRef) -> None:
        """Remove every stage matching ref (a class matches all its instances)."""
        self._index(ref)
        self._middlewares = [
            m for m in self._middlewares
            if not (m is ref or (isinstance(ref, type) and isinstance(m, ref)))
        ]

    def reset(self) -> None:
        self._middlewares = []

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    async def execute(self, request: Any) -> Any:
        """Run request through every stage in order and return the result."""
        pipeline = self._compose(list(self._middlewares))
        return await pipeline(request)

    def _compose(self, middlewares: list[Middleware]) -> CallNext:
        async def terminal(request: Any) -> Any:
            return None

        pipeline: CallNext = terminal
        for middleware in reversed(middlewares):
            next_pipeline = pipeline

            async def _wrapped(
                request: Any,
                *,
                _mw: Middleware = middleware,
                _n: CallNext = next_pipeline,
            ) -> Any:
                self._active.append(_mw)
                logger.debug("%s: entering %s", self.name, _mw.name)
                try:
                    return await _mw.process(request, _n)
                finally:
                    self._active.pop()
                    logger.debug("%s: leaving %s", self.name, _mw.name)

            pipeline = _wrapped
        return pipeline

    def cancel(self) -> None:
        """Deliver cancellation to the innermost active stage.

        No-op when nothing is executing.
        """
        if not self._active:
            return
        middleware = self._active[-1]
        logger.debug("%s: cancelling %s", self.name, middleware.name)
        middleware.cancel()
