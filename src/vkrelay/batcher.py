"""
Automatic execute batching used by the ``parallel`` API mode.
The mechanism acts as a queue that collects calls and submits them as execute scripts.
"""

from __future__ import annotations

import asyncio
import typing as t
import uuid

import structlog

from vkrelay.config import EXECUTE_SLICE_SIZE
from vkrelay.execute import build_execute_code, resolve_execute_requests
from vkrelay.request import APIRequest

if t.TYPE_CHECKING:
    from vkrelay.api import API

log = structlog.get_logger(__name__)


class ExecuteBatcher:
    """
    Manage the pending queue, the window timer and slice submission.

    Calls are sent when either:
    - ``EXECUTE_SLICE_SIZE`` calls are pending, OR
    - ``batch_window_seconds`` elapsed since the first pending call

    Notes
    -----
    Submitted slices run as independent tasks; a failed execute call rejects
    only the calls of its own slice.
    """

    def __init__(self, api: "API", batch_window_seconds: float = 0.05) -> None:
        """
        Initialize the batcher.

        Parameters
        ----------
        api : API
            Client used to send execute scripts.
        batch_window_seconds : float
            Submit pending calls after this many seconds, even if the slice is not full.
        """
        self._api = api
        self._batch_size = EXECUTE_SLICE_SIZE
        self._batch_window_seconds = batch_window_seconds

        self._pending: list[APIRequest] = []
        self._pending_lock = asyncio.Lock()
        self._window_task: asyncio.Task[None] | None = None
        self._batch_tasks: set[asyncio.Task[None]] = set()

        log.debug(
            event="Initialized ExecuteBatcher",
            batch_size=self._batch_size,
            batch_window_seconds=batch_window_seconds,
        )

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def submit(self, method: str, params: t.Mapping[str, t.Any] | None = None) -> t.Any:
        """
        Queue a call and return its result.

        Parameters
        ----------
        method : str
            Remote method name.
        params : typing.Mapping[str, typing.Any] | None, optional
            Method parameters.

        Returns
        -------
        typing.Any
            Result of the call once its slice is processed.
        """
        request = APIRequest.create(method=method, params=params)
        requests_to_submit: list[APIRequest] = []

        async with self._pending_lock:
            self._pending.append(request)
            pending_count = len(self._pending)
            log.debug(event="Queued call for execute", method=method, pending_count=pending_count)

            if pending_count == 1:
                self._window_task = asyncio.create_task(
                    coro=self._window_timer(),
                    name="execute_window_timer",
                )

            if pending_count >= self._batch_size:
                log.debug(event="Execute slice full", batch_size=self._batch_size)
                requests_to_submit = self._drain_queue()

        if requests_to_submit:
            self._submit_requests(requests=requests_to_submit)

        return await request.future

    async def _window_timer(self) -> None:
        try:
            await asyncio.sleep(delay=self._batch_window_seconds)
            async with self._pending_lock:
                requests_to_submit = self._drain_queue()
            if requests_to_submit:
                log.debug(event="Execute window elapsed", request_count=len(requests_to_submit))
                self._submit_requests(requests=requests_to_submit)
        except asyncio.CancelledError:
            log.debug(event="Execute window timer cancelled")
            raise

    def _drain_queue(self) -> list[APIRequest]:
        """
        Take every pending call and cancel the window timer.

        Returns
        -------
        list[APIRequest]
            Drained calls, in submission order.
        """
        current_task = asyncio.current_task()
        window_task = self._window_task
        if window_task and not window_task.done() and window_task is not current_task:
            window_task.cancel()
        self._window_task = None

        requests, self._pending = self._pending, []
        return requests

    def _submit_requests(self, *, requests: list[APIRequest]) -> None:
        task = asyncio.create_task(
            coro=self._process_batch(requests=requests),
            name=f"execute_batch_{uuid.uuid4()}",
        )
        self._batch_tasks.add(task)
        task.add_done_callback(self._batch_tasks.discard)

    async def _process_batch(self, *, requests: list[APIRequest]) -> None:
        log.info(event="Submitting execute slice", request_count=len(requests))
        try:
            code = build_execute_code(requests=requests)
            execute_response = await self._api.execute(code=code)
        except Exception as error:
            log.error(
                event="Execute slice failed",
                request_count=len(requests),
                error=str(object=error),
            )
            for request in requests:
                request.reject(error=error)
            return
        resolve_execute_requests(requests=requests, execute_response=execute_response)

    async def close(self) -> None:
        """
        Cancel the window timer, flush pending calls and wait for in-flight slices.
        """
        window_task = self._window_task
        if window_task is not None and not window_task.done():
            window_task.cancel()
            try:
                await window_task
            except asyncio.CancelledError:
                pass

        async with self._pending_lock:
            requests = self._drain_queue()
        if requests:
            log.info(event="Submitting final execute slice on close", request_count=len(requests))
            self._submit_requests(requests=requests)

        if self._batch_tasks:
            await asyncio.gather(*self._batch_tasks, return_exceptions=True)
        log.debug(event="ExecuteBatcher closed")
