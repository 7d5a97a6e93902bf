"""
Long-poll update source.

The transport owns one ``PollingSession`` at a time and a single loop task.
Updates of one response are dispatched strictly in order, each dispatch is
awaited before the next one starts, and the cursor only advances once the
whole response has been handed over.
"""

from __future__ import annotations

import asyncio
import typing as t
from dataclasses import dataclass, replace
from enum import Enum

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from vkrelay.composer import maybe_await
from vkrelay.config import USER_POLLING_VERSION, VKOptions
from vkrelay.exceptions import ProtocolError, SessionExpired, TransportError
from vkrelay.updates.envelope import EnvelopeHandler, RawEnvelope

if t.TYPE_CHECKING:
    from vkrelay.api import API

log = structlog.get_logger(__name__)

T = t.TypeVar("T")
FatalErrorHandler = t.Callable[[BaseException], t.Any]

FAILED_OUTDATED_TS = 1
FAILED_SESSION_CODES = (2, 3)


class PollingState(str, Enum):
    IDLE = "idle"
    FETCHING_SERVER_INFO = "fetching_server_info"
    POLLING = "polling"
    RECOVERING = "recovering"
    STOPPED = "stopped"


@dataclass(frozen=True)
class PollingSession:
    """
    Long-poll session.

    Parameters
    ----------
    server : str
        Absolute URL of the long-poll server.
    key : str
        Session key.
    ts : str | int
        Cursor of the next expected update.
    """

    server: str
    key: str
    ts: str | int


class PollingTransport:
    """
    Long-poll client feeding raw envelopes to a handler.

    Parameters
    ----------
    api : API
        Client used for session acquisition and long-poll requests.
    handler : EnvelopeHandler
        Coroutine called once per update, awaited before the next update.
    options : VKOptions | None, optional
        Options, defaults to ``api.options``.
    on_fatal_error : FatalErrorHandler | None, optional
        Called with the error that stopped the loop.

    Notes
    -----
    Exceptions raised by ``handler`` are logged and do not stop the loop.
    """

    def __init__(
        self,
        api: "API",
        handler: EnvelopeHandler,
        options: VKOptions | None = None,
        on_fatal_error: FatalErrorHandler | None = None,
    ) -> None:
        self._api = api
        self._handler = handler
        self.options = options or api.options
        self.on_fatal_error = on_fatal_error
        self._state = PollingState.IDLE
        self._stopping = False
        self._task: asyncio.Task[None] | None = None
        self.session: PollingSession | None = None
        self.error: BaseException | None = None

    @property
    def state(self) -> PollingState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def is_group(self) -> bool:
        return self.options.polling_group_id is not None

    async def start(self) -> None:
        """
        Acquire a session and spawn the polling loop.

        Calling ``start`` on a running transport does nothing. A transport
        that was asked to stop but still has a request in flight is cancelled
        and started again with a fresh session.

        Raises
        ------
        TransportError
            If the session could not be acquired within the retry budget.
        RemoteCallError
            If the platform refused to hand out a session.
        """
        if self.is_running:
            if not self._stopping:
                log.debug(event="Polling already running")
                return
            await self.stop(cancel=True)

        self._stopping = False
        self.error = None
        try:
            await self._acquire_session()
        except Exception:
            self._state = PollingState.STOPPED
            raise
        self._state = PollingState.POLLING
        self._task = asyncio.create_task(self._run(), name="vkrelay-polling")

    async def stop(self, *, cancel: bool = False) -> None:
        """
        Stop the loop.

        Parameters
        ----------
        cancel : bool, optional
            Cancel the loop task and wait for it. By default an in-flight
            request finishes on its own and its updates are discarded.
        """
        self._stopping = True
        self._state = PollingState.STOPPED
        task = self._task
        if task is None or task.done():
            return
        log.debug(event="Stopping polling", cancel=cancel)
        if cancel:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def join(self) -> None:
        """
        Wait for the loop to end.

        Raises
        ------
        Exception
            The fatal error that stopped the loop, if any.
        """
        if self._task is not None:
            await asyncio.shield(self._task)
        if self.error is not None:
            raise self.error

    async def _run(self) -> None:
        try:
            while not self._stopping:
                try:
                    await self._poll_once()
                except SessionExpired as error:
                    if self._stopping:
                        break
                    await self._recover(error=error)
        except asyncio.CancelledError:
            raise
        except Exception as error:
            self.error = error
            self._state = PollingState.STOPPED
            log.error(
                event="Polling stopped on fatal error",
                error_type=type(error).__name__,
                error=str(object=error),
            )
            if self.on_fatal_error is not None:
                try:
                    await maybe_await(value=self.on_fatal_error(error))
                except Exception as callback_error:
                    log.error(event="Fatal error callback failed", error=str(object=callback_error))
        finally:
            self._state = PollingState.STOPPED

    async def _poll_once(self) -> None:
        session = self.session
        if session is None:
            raise SessionExpired(message="No active polling session")

        body = await self._with_retries(operation=lambda: self._fetch(session=session))
        if self._stopping:
            log.debug(event="Discarding long-poll response after stop")
            return

        failed = body.get("failed")
        if failed is not None:
            self._handle_failure(session=session, failed=failed, body=body)
            return

        updates = body.get("updates")
        next_ts = body.get("ts")
        if not isinstance(updates, list) or next_ts is None:
            raise ProtocolError(message="Long-poll response has no 'updates' or 'ts'")

        for update in updates:
            if self._stopping:
                # Skipped updates are lost: the cursor still advances and a
                # restart acquires a fresh session anyway.
                break
            envelope = RawEnvelope.from_polling_update(update=update)
            try:
                await self._handler(envelope)
            except Exception as error:
                log.error(
                    event="Update handler failed",
                    update_type=envelope.update_type,
                    error=str(object=error),
                )
        self.session = replace(session, ts=next_ts)

    def _handle_failure(self, *, session: PollingSession, failed: t.Any, body: dict[str, t.Any]) -> None:
        if failed == FAILED_OUTDATED_TS:
            if body.get("ts") is None:
                raise ProtocolError(message="Long-poll failure 1 without 'ts'")
            log.debug(event="Long-poll cursor outdated", ts=body["ts"])
            self.session = replace(session, ts=body["ts"])
            return
        if failed in FAILED_SESSION_CODES:
            raise SessionExpired(message=f"Long-poll session expired (failed={failed})", code=failed)
        raise ProtocolError(message=f"Unknown long-poll failure code: {failed!r}", code=failed)

    async def _recover(self, *, error: SessionExpired) -> None:
        self._state = PollingState.RECOVERING
        log.info(event="Refreshing long-poll session", code=error.code)
        self.session = None
        await self._acquire_session()
        if not self._stopping:
            self._state = PollingState.POLLING

    async def _acquire_session(self) -> PollingSession:
        self._state = PollingState.FETCHING_SERVER_INFO
        if self.is_group:
            method = "groups.getLongPollServer"
            params: dict[str, t.Any] = {"group_id": self.options.polling_group_id}
        else:
            method = "messages.getLongPollServer"
            params = {"lp_version": USER_POLLING_VERSION}

        info = await self._with_retries(operation=lambda: self._api.call(method=method, params=params))
        if not isinstance(info, dict) or not all(key in info for key in ("server", "key", "ts")):
            raise ProtocolError(message=f"Unexpected {method} response")

        server = str(info["server"])
        if not server.startswith(("http://", "https://")):
            server = f"https://{server}"
        self.session = PollingSession(server=server, key=str(info["key"]), ts=info["ts"])
        log.debug(event="Polling session acquired", server=server, ts=info["ts"])
        return self.session

    async def _fetch(self, *, session: PollingSession) -> dict[str, t.Any]:
        params: dict[str, t.Any] = {
            "act": "a_check",
            "key": session.key,
            "ts": session.ts,
            "wait": self.options.polling_wait,
        }
        if not self.is_group:
            params["mode"] = self.options.polling_mode
            params["version"] = USER_POLLING_VERSION

        try:
            response = await self._api.client.get(
                url=session.server,
                params=params,
                timeout=self.options.polling_request_timeout_seconds,
            )
            response.raise_for_status()
        except httpx.HTTPError as error:
            raise TransportError(message=f"Long-poll request failed: {error}") from error

        try:
            body = response.json()
        except ValueError as error:
            raise ProtocolError(message="Long-poll response is not valid JSON") from error
        if not isinstance(body, dict):
            raise ProtocolError(message="Long-poll response is not an object")
        return body

    async def _with_retries(self, operation: t.Callable[[], t.Awaitable[T]]) -> T:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.options.polling_retry_attempts),
            wait=wait_exponential(
                multiplier=self.options.polling_retry_initial_seconds,
                max=self.options.polling_retry_max_seconds,
            )
            + wait_random(min=0, max=self.options.polling_retry_jitter_seconds),
            retry=retry_if_exception_type(TransportError),
            before_sleep=_log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await operation()
        raise AssertionError("retry loop ended without an outcome")


def _log_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome is not None else None
    log.warning(
        event="Retrying polling request",
        attempt=retry_state.attempt_number,
        sleep=retry_state.next_action.sleep if retry_state.next_action is not None else None,
        error=str(object=error),
    )
