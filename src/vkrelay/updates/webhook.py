"""
Webhook update source.

``WebhookTransport`` holds the protocol logic (secret check, confirmation,
de-duplication, background dispatch) and is independent of the web framework;
``create_webhook_app`` mounts it on FastAPI.
"""

from __future__ import annotations

import asyncio
import hmac
import json
import time
import typing as t
from contextlib import asynccontextmanager
from dataclasses import dataclass

import structlog
from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import PlainTextResponse

from vkrelay.config import VKOptions
from vkrelay.updates.envelope import EnvelopeHandler, RawEnvelope

log = structlog.get_logger(__name__)

CONFIRMATION_TYPE = "confirmation"


@dataclass(frozen=True)
class WebhookReply:
    status_code: int
    text: str


OK_REPLY = WebhookReply(status_code=200, text="ok")
BAD_REQUEST_REPLY = WebhookReply(status_code=400, text="bad request")
UNAUTHORIZED_REPLY = WebhookReply(status_code=401, text="unauthorized")


class WebhookTransport:
    """
    Framework-independent webhook handling.

    Parameters
    ----------
    handler : EnvelopeHandler
        Coroutine receiving every accepted envelope.
    options : VKOptions | None, optional
        Secret, confirmation token, path and de-duplication window.
    clock : typing.Callable[[], float] | None, optional
        Monotonic clock used for de-duplication expiry.
    """

    def __init__(
        self,
        handler: EnvelopeHandler,
        options: VKOptions | None = None,
        clock: t.Callable[[], float] | None = None,
    ) -> None:
        self._handler = handler
        self.options = options or VKOptions()
        self._clock = clock or time.monotonic
        self._seen: dict[str, float] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    def handle(self, body: t.Any) -> WebhookReply:
        """
        Process one webhook request body.

        Parameters
        ----------
        body : typing.Any
            Decoded JSON body.

        Returns
        -------
        WebhookReply
            Reply to send. Accepted events are acknowledged before their
            dispatch runs; dispatch happens in a background task.
        """
        if not isinstance(body, dict) or not isinstance(body.get("type"), str):
            log.warning(event="Rejected malformed webhook body")
            return BAD_REQUEST_REPLY

        if not self._check_secret(secret=body.get("secret")):
            log.warning(event="Rejected webhook with invalid secret", update_type=body["type"])
            return UNAUTHORIZED_REPLY

        if body["type"] == CONFIRMATION_TYPE:
            if self.options.webhook_confirmation is None:
                log.error(event="Confirmation requested but no confirmation token is configured")
                return WebhookReply(status_code=500, text="confirmation token is not configured")
            log.info(event="Answering webhook confirmation", group_id=body.get("group_id"))
            return WebhookReply(status_code=200, text=self.options.webhook_confirmation)

        envelope = RawEnvelope.from_webhook_body(body=body)
        if self._is_duplicate(delivery_id=envelope.delivery_id):
            log.debug(event="Skipping duplicate webhook delivery", delivery_id=envelope.delivery_id)
            return OK_REPLY

        self._schedule(envelope=envelope)
        return OK_REPLY

    def _check_secret(self, *, secret: t.Any) -> bool:
        expected = self.options.webhook_secret
        if expected is None:
            return True
        if not isinstance(secret, str):
            return False
        return hmac.compare_digest(secret.encode(), expected.encode())

    def _is_duplicate(self, *, delivery_id: str | None) -> bool:
        if delivery_id is None:
            return False
        now = self._clock()
        expired = [key for key, expires_at in self._seen.items() if expires_at <= now]
        for key in expired:
            del self._seen[key]
        if delivery_id in self._seen:
            return True
        self._seen[delivery_id] = now + self.options.webhook_dedupe_ttl_seconds
        return False

    def _schedule(self, *, envelope: RawEnvelope) -> None:
        task = asyncio.create_task(self._dispatch(envelope=envelope))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _dispatch(self, *, envelope: RawEnvelope) -> None:
        try:
            await self._handler(envelope)
        except Exception as error:
            log.error(
                event="Webhook dispatch failed",
                update_type=envelope.update_type,
                error=str(object=error),
            )

    async def close(self) -> None:
        """
        Wait for background dispatches still in flight.
        """
        if self._tasks:
            log.debug(event="Waiting for webhook dispatches", count=len(self._tasks))
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


def create_webhook_router(transport: WebhookTransport, path: str | None = None) -> APIRouter:
    """
    Build a router exposing ``transport`` as a ``POST`` endpoint.

    Parameters
    ----------
    transport : WebhookTransport
        Transport handling the requests.
    path : str | None, optional
        Route path, defaults to ``transport.options.webhook_path``.

    Returns
    -------
    fastapi.APIRouter
        Router with the webhook route.
    """
    router = APIRouter(tags=["Webhook"])
    route_path = path or transport.options.webhook_path

    @router.post(route_path, response_class=PlainTextResponse)
    async def receive_update(request: Request) -> PlainTextResponse:
        raw = await request.body()
        try:
            body = json.loads(raw)
        except ValueError:
            log.warning(event="Webhook body is not valid JSON")
            return PlainTextResponse(content=BAD_REQUEST_REPLY.text, status_code=BAD_REQUEST_REPLY.status_code)
        reply = transport.handle(body=body)
        return PlainTextResponse(content=reply.text, status_code=reply.status_code)

    return router


def create_webhook_app(transport: WebhookTransport, path: str | None = None) -> FastAPI:
    """
    Build a FastAPI application serving the webhook.

    In-flight dispatches are awaited when the application shuts down.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> t.AsyncIterator[None]:
        yield
        await transport.close()

    app = FastAPI(lifespan=lifespan)
    app.include_router(create_webhook_router(transport=transport, path=path))
    return app
