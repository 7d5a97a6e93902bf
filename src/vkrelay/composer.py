"""
Middleware composition and dispatch.

A middleware is ``(context, next) -> awaitable``. Calling ``await next()``
runs the rest of the chain; returning without calling it stops the chain for
that context.
"""

from __future__ import annotations

import inspect
import typing as t

import structlog

from vkrelay.exceptions import NEXT_CALLED_TWICE, HandlerError, StateError
from vkrelay.utils.logging import logging_context

if t.TYPE_CHECKING:
    from vkrelay.contexts import Context

log = structlog.get_logger(__name__)

NextMiddleware = t.Callable[[], t.Awaitable[t.Any]]
Middleware = t.Callable[["Context", NextMiddleware], t.Any]
ErrorHandler = t.Callable[[HandlerError], t.Any]
ComposedMiddleware = t.Callable[["Context", NextMiddleware], t.Awaitable[t.Any]]


async def noop_next() -> None:
    return None


async def maybe_await(value: t.Any) -> t.Any:
    if inspect.isawaitable(value):
        return await value
    return value


def compose(middlewares: t.Sequence[Middleware]) -> ComposedMiddleware:
    """
    Chain middlewares into one callable.

    Parameters
    ----------
    middlewares : typing.Sequence[Middleware]
        Stages in execution order. Sync callables are accepted too.

    Returns
    -------
    ComposedMiddleware
        Callable running the stages for one context.

    Raises
    ------
    TypeError
        If a stage is not callable.
    """
    stack = tuple(middlewares)
    for middleware in stack:
        if not callable(middleware):
            raise TypeError(f"Middleware must be callable, got {type(middleware).__name__}")

    async def composed(context: "Context", next_: NextMiddleware = noop_next) -> t.Any:
        last_index = -1

        async def run_stage(index: int) -> t.Any:
            nonlocal last_index
            if index <= last_index:
                raise StateError(message="next() called multiple times", code=NEXT_CALLED_TWICE)
            last_index = index
            if index == len(stack):
                return await next_()
            return await maybe_await(value=stack[index](context, lambda: run_stage(index + 1)))

        return await run_stage(0)

    return composed


class Composer:
    """
    Ordered list of middlewares plus the error boundary around their execution.
    """

    def __init__(self) -> None:
        self._middlewares: list[Middleware] = []
        self._error_handlers: list[ErrorHandler] = []
        self._composed: ComposedMiddleware | None = None

    def __len__(self) -> int:
        return len(self._middlewares)

    def use(self, middleware: Middleware) -> Middleware:
        """
        Append a middleware. Returns it unchanged so ``use`` works as a decorator.
        """
        if not callable(middleware):
            raise TypeError(f"Middleware must be callable, got {type(middleware).__name__}")
        self._middlewares.append(middleware)
        self._composed = None
        return middleware

    def on_error(self, handler: ErrorHandler) -> ErrorHandler:
        """
        Register a handler for errors no middleware caught.

        The handler receives a ``HandlerError`` whose ``context`` is the failed
        context and whose ``__cause__`` is the original exception.
        """
        self._error_handlers.append(handler)
        return handler

    def compose(self) -> ComposedMiddleware:
        if self._composed is None:
            self._composed = compose(middlewares=self._middlewares)
        return self._composed

    async def dispatch(self, context: "Context") -> bool:
        """
        Run the chain for one context.

        Parameters
        ----------
        context : Context
            Context to dispatch.

        Returns
        -------
        bool
            ``False`` when an error escaped the chain. The error itself is
            logged and passed to the error handlers, never raised.
        """
        with logging_context(context=context):
            try:
                await self.compose()(context, noop_next)
            except Exception as error:
                await self._report(error=error, context=context)
                return False
            return True

    async def _report(self, *, error: Exception, context: "Context") -> None:
        log.error(
            event="Unhandled error in middleware chain",
            context_type=context.type,
            error_type=type(error).__name__,
            error=str(object=error),
            exc_info=error,
        )
        handler_error = HandlerError(message=str(object=error), context=context)
        handler_error.__cause__ = error
        for handler in self._error_handlers:
            try:
                await maybe_await(value=handler(handler_error))
            except Exception as callback_error:
                log.error(
                    event="Error handler failed",
                    handler=getattr(handler, "__name__", repr(handler)),
                    error=str(object=callback_error),
                )
