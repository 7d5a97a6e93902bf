"""
Compilation of queued calls into execute scripts and fan-out of their results.
"""

from __future__ import annotations

import typing as t
from dataclasses import dataclass, field

import structlog

from vkrelay.config import EXECUTE_SLICE_SIZE
from vkrelay.exceptions import ExecuteError, ProtocolError
from vkrelay.request import APIRequest

log = structlog.get_logger(__name__)

# Value placed in the execute response for a call that failed.
EXECUTE_FAILURE_MARKER = False


@dataclass
class ExecuteResponse:
    """
    Parsed answer of an ``execute`` call.

    Parameters
    ----------
    response : list[typing.Any]
        Per-call results, ``False`` for calls that failed.
    errors : list[ExecuteError]
        Detailed errors, in the order of the failed calls.
    """

    response: list[t.Any] = field(default_factory=list)
    errors: list[ExecuteError] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: t.Any) -> "ExecuteResponse":
        """
        Parse the body returned by the execute endpoint.

        Parameters
        ----------
        payload : typing.Any
            Decoded JSON body.

        Returns
        -------
        ExecuteResponse
            Parsed response.

        Raises
        ------
        ProtocolError
            If the body does not carry a response list.
        """
        if not isinstance(payload, dict):
            raise ProtocolError(message="Execute response is not an object")
        response = payload.get("response")
        if response is None:
            response = []
        if not isinstance(response, list):
            raise ProtocolError(message="Execute response must be a list of call results")
        errors = [
            ExecuteError.from_payload(payload=item)
            for item in payload.get("execute_errors") or []
        ]
        return cls(response=response, errors=errors)


@dataclass
class ChainResult:
    """Aggregate of every processed slice, in submission order."""

    response: list[t.Any] = field(default_factory=list)
    errors: list[ExecuteError] = field(default_factory=list)

    def extend(self, execute_response: ExecuteResponse) -> None:
        self.response.extend(execute_response.response)
        self.errors.extend(execute_response.errors)


def iter_slices(
    requests: list[APIRequest], size: int = EXECUTE_SLICE_SIZE
) -> t.Iterator[list[APIRequest]]:
    for start in range(0, len(requests), size):
        yield requests[start : start + size]


def build_execute_code(requests: t.Sequence[APIRequest]) -> str:
    """
    Compile calls into one execute script returning every result.

    Parameters
    ----------
    requests : typing.Sequence[APIRequest]
        At most ``EXECUTE_SLICE_SIZE`` requests.

    Returns
    -------
    str
        Script source, e.g. ``return [API.users.get({}),API.groups.get({})];``.

    Raises
    ------
    ValueError
        If the slice is empty or too large.
    """
    if not requests:
        raise ValueError("Cannot compile an empty execute slice")
    if len(requests) > EXECUTE_SLICE_SIZE:
        raise ValueError(
            f"An execute script holds at most {EXECUTE_SLICE_SIZE} calls, got {len(requests)}"
        )
    return f"return [{','.join(request.to_code() for request in requests)}];"


def resolve_execute_requests(
    requests: t.Sequence[APIRequest], execute_response: ExecuteResponse
) -> None:
    """
    Settle each request from a successful execute response.

    Failure markers consume the detailed errors positionally: the n-th
    ``False`` in ``response`` matches the n-th entry of ``errors``.

    Parameters
    ----------
    requests : typing.Sequence[APIRequest]
        Requests of the slice, in script order.
    execute_response : ExecuteResponse
        Parsed execute answer.
    """
    error_index = 0
    results = execute_response.response
    for index, request in enumerate(requests):
        if index >= len(results):
            request.reject(
                error=ProtocolError(message=f"Execute response has no result for {request.method}")
            )
            continue
        result = results[index]
        if result is not EXECUTE_FAILURE_MARKER:
            request.resolve(value=result)
            continue
        if error_index < len(execute_response.errors):
            error = execute_response.errors[error_index]
        else:
            error = ExecuteError(message="Execute call failed without details", method=request.method)
        error_index += 1
        request.reject(error=error)

    if len(results) > len(requests):
        log.warning(
            event="Execute response has more results than calls",
            result_count=len(results),
            request_count=len(requests),
        )
