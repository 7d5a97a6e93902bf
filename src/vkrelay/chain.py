"""
One-shot chain of API calls sent through ``execute`` in slices of 25.
"""

from __future__ import annotations

import asyncio
import typing as t

import structlog

from vkrelay.config import EXECUTE_SLICE_SIZE
from vkrelay.exceptions import ALREADY_STARTED, StateError
from vkrelay.execute import (
    ChainResult,
    ExecuteResponse,
    build_execute_code,
    iter_slices,
    resolve_execute_requests,
)
from vkrelay.request import APIRequest

if t.TYPE_CHECKING:
    from vkrelay.api import API

log = structlog.get_logger(__name__)


class Chain:
    """
    Accumulate calls, then run them as execute scripts.

    Notes
    -----
    ``started`` is a one-way latch: once ``run`` begins, ``append`` raises
    ``StateError`` and nothing is enqueued. Slices run one after another, never
    concurrently.
    """

    def __init__(self, api: "API") -> None:
        self._api = api
        self._queue: list[APIRequest] = []
        self.started = False

    def __repr__(self) -> str:
        return f"Chain(started={self.started}, queued={len(self._queue)})"

    def append(self, method: str, params: t.Mapping[str, t.Any] | None = None) -> asyncio.Future[t.Any]:
        """
        Queue a call and return its result handle.

        Parameters
        ----------
        method : str
            Remote method name.
        params : typing.Mapping[str, typing.Any] | None, optional
            Method parameters.

        Returns
        -------
        asyncio.Future[typing.Any]
            Future settled once the call's slice is processed.

        Raises
        ------
        StateError
            If the chain has already started.
        """
        if self.started:
            raise StateError(message="Chain already started", code=ALREADY_STARTED)

        request = APIRequest.create(method=method, params=params)
        self._queue.append(request)
        return request.future

    async def run(self) -> ChainResult:
        """
        Execute every queued call.

        Returns
        -------
        ChainResult
            Results and errors of every slice, in submission order.

        Raises
        ------
        StateError
            If called more than once.
        TransportError
            If an execute call fails as a whole; remaining slices are aborted.
        """
        if self.started:
            raise StateError(message="Chain already started", code=ALREADY_STARTED)
        self.started = True

        out = ChainResult()
        queue, self._queue = self._queue, []
        if not queue:
            return out

        slices = list(iter_slices(requests=queue, size=EXECUTE_SLICE_SIZE))
        log.debug(event="Running chain", request_count=len(queue), slice_count=len(slices))
        for slice_index, tasks in enumerate(slices):
            code = build_execute_code(requests=tasks)
            try:
                execute_response: ExecuteResponse = await self._api.execute(code=code)
            except Exception as error:
                log.error(
                    event="Chain slice failed",
                    slice_index=slice_index,
                    request_count=len(tasks),
                    error=str(object=error),
                )
                # run() raises the same error, unawaited futures stay silent.
                for pending_tasks in slices[slice_index:]:
                    for task in pending_tasks:
                        task.reject(error=error, retrieved=True)
                raise

            resolve_execute_requests(requests=tasks, execute_response=execute_response)
            out.extend(execute_response=execute_response)

        return out

    def __await__(self) -> t.Generator[t.Any, None, ChainResult]:
        return self.run().__await__()
