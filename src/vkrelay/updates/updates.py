"""
Entry point for update handling: registration of middlewares and handlers,
and wiring of the transports to the context factory and the composer.
"""

from __future__ import annotations

import typing as t

import structlog
from fastapi import FastAPI

from vkrelay.composer import Composer, ErrorHandler, Middleware, NextMiddleware, maybe_await
from vkrelay.config import VKOptions
from vkrelay.hear import Condition, MatchMode, build_hear_middleware
from vkrelay.updates.envelope import RawEnvelope
from vkrelay.updates.factory import ContextFactory
from vkrelay.updates.polling import FatalErrorHandler, PollingTransport
from vkrelay.updates.webhook import WebhookTransport, create_webhook_app

if t.TYPE_CHECKING:
    from vkrelay.api import API
    from vkrelay.contexts import Context

log = structlog.get_logger(__name__)

HandlerT = t.TypeVar("HandlerT", bound=Middleware)


class Updates:
    """
    Update handling facade.

    Parameters
    ----------
    api : API
        Client passed to contexts and used by the polling transport.
    options : VKOptions | None, optional
        Options, defaults to ``api.options``.
    context_factory : ContextFactory | None, optional
        Custom factory.

    Examples
    --------
    >>> updates = Updates(api=api)
    >>> @updates.on("message_new")
    ... async def greet(context, next_):
    ...     await context.send("hello")
    """

    def __init__(
        self,
        api: "API",
        options: VKOptions | None = None,
        context_factory: ContextFactory | None = None,
    ) -> None:
        self.api = api
        self.options = options or api.options
        self.composer = Composer()
        self.factory = context_factory or ContextFactory(api=api)
        self._polling: PollingTransport | None = None
        self._webhook: WebhookTransport | None = None

    def use(self, middleware: HandlerT) -> HandlerT:
        self.composer.use(middleware=middleware)
        return middleware

    @t.overload
    def on(self, types: str | t.Sequence[str], handler: None = None) -> t.Callable[[HandlerT], HandlerT]: ...

    @t.overload
    def on(self, types: str | t.Sequence[str], handler: HandlerT) -> HandlerT: ...

    def on(self, types: str | t.Sequence[str], handler: Middleware | None = None) -> t.Any:
        """
        Register a handler for contexts of the given types.

        Parameters
        ----------
        types : str | typing.Sequence[str]
            Context types or sub types, e.g. ``"message"`` or ``"new_message"``.
        handler : Middleware | None, optional
            Handler called as ``handler(context, next)``. When omitted, a
            decorator is returned.

        Returns
        -------
        typing.Any
            The handler, or a decorator registering it.
        """
        names = (types,) if isinstance(types, str) else tuple(types)
        if not names:
            raise ValueError("on() requires at least one type")

        def register(func: HandlerT) -> HandlerT:
            async def on_middleware(context: "Context", next_: NextMiddleware) -> t.Any:
                if not context.is_(names):
                    return await next_()
                return await maybe_await(value=func(context, next_))

            self.composer.use(middleware=on_middleware)
            return func

        if handler is None:
            return register
        return register(handler)

    def hear(
        self,
        conditions: Condition | t.Sequence[Condition],
        handler: Middleware | None = None,
        *,
        match: MatchMode = "all",
    ) -> t.Any:
        """
        Register a handler for messages whose text matches ``conditions``.

        See ``vkrelay.hear.build_hear_middleware`` for the matching rules. When ``handler`` is
        omitted, a decorator is returned.
        """

        def register(func: HandlerT) -> HandlerT:
            self.composer.use(
                middleware=build_hear_middleware(conditions=conditions, handler=func, match=match)
            )
            return func

        if handler is None:
            return register
        return register(handler)

    def on_error(self, handler: ErrorHandler) -> ErrorHandler:
        return self.composer.on_error(handler=handler)

    async def handle_envelope(self, envelope: RawEnvelope) -> bool:
        """
        Normalize an envelope and dispatch the resulting context.

        Parameters
        ----------
        envelope : RawEnvelope
            Envelope from a transport.

        Returns
        -------
        bool
            ``False`` when an error escaped the middleware chain.
        """
        context = self.factory.create(envelope=envelope)
        return await self.dispatch(context=context)

    async def dispatch(self, context: "Context") -> bool:
        return await self.composer.dispatch(context=context)

    @property
    def polling(self) -> PollingTransport:
        if self._polling is None:
            self._polling = PollingTransport(api=self.api, handler=self.handle_envelope, options=self.options)
        return self._polling

    @property
    def webhook(self) -> WebhookTransport:
        if self._webhook is None:
            self._webhook = WebhookTransport(handler=self.handle_envelope, options=self.options)
        return self._webhook

    async def start_polling(self, on_fatal_error: FatalErrorHandler | None = None) -> PollingTransport:
        """
        Start the long-poll transport.

        Parameters
        ----------
        on_fatal_error : FatalErrorHandler | None, optional
            Called with the error that stops the loop.

        Returns
        -------
        PollingTransport
            The running transport. ``await transport.join()`` waits for it.
        """
        if on_fatal_error is not None:
            self.polling.on_fatal_error = on_fatal_error
        await self.polling.start()
        log.info(event="Polling started", group=self.polling.is_group)
        return self.polling

    def create_webhook_app(self, path: str | None = None) -> FastAPI:
        return create_webhook_app(transport=self.webhook, path=path)

    async def stop(self) -> None:
        if self._polling is not None:
            await self._polling.stop()

    async def close(self) -> None:
        """
        Stop polling and wait for in-flight webhook dispatches.
        """
        if self._polling is not None:
            await self._polling.stop(cancel=True)
        if self._webhook is not None:
            await self._webhook.close()
