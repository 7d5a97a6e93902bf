"""
vkrelay-specific runtime exceptions.
"""

from __future__ import annotations

import typing as t

ALREADY_STARTED = "ALREADY_STARTED"
NEXT_CALLED_TWICE = "NEXT_CALLED_TWICE"
PAYLOAD_IS_NOT_FULL = "PAYLOAD_IS_NOT_FULL"
IS_NOT_CHAT = "IS_NOT_CHAT"


class VKRelayError(Exception):
    """
    Base error for the package.

    Parameters
    ----------
    message : str
        Human readable error message.
    code : str | int | None, optional
        Machine readable error code.
    """

    def __init__(self, message: str, code: str | int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class StateError(VKRelayError):
    """Operation is not allowed in the current object state."""


class TransportError(VKRelayError):
    """
    Network level failure: timeout, connection error or unexpected HTTP status.

    Notes
    -----
    Retried with backoff by the polling source, surfaced immediately by
    batching.
    """


class SessionExpired(VKRelayError):
    """
    Long-poll session was invalidated by the server (``failed`` is 2 or 3).

    Never surfaced to user handlers: the polling source recovers by acquiring
    a new session.
    """


class ProtocolError(VKRelayError):
    """Server answered with a malformed or unexpected response shape."""


class HandlerError(VKRelayError):
    """
    Exception escaping a middleware chain.

    Parameters
    ----------
    message : str
        Error message.
    context : typing.Any
        Context being dispatched when the error escaped.
    """

    def __init__(self, message: str, context: t.Any = None) -> None:
        super().__init__(message)
        self.context = context


class RemoteCallError(VKRelayError):
    """
    A single remote method call failed.

    Parameters
    ----------
    message : str
        Error message reported by the platform.
    code : int | None
        Platform error code.
    method : str | None, optional
        Name of the remote method.
    params : list[dict[str, typing.Any]] | None, optional
        Request parameters echoed back by the platform.
    """

    def __init__(
        self,
        message: str,
        code: int | None = None,
        method: str | None = None,
        params: list[dict[str, t.Any]] | None = None,
    ) -> None:
        super().__init__(message, code)
        self.method = method
        self.params = params or []


class APIError(RemoteCallError):
    """Error payload returned by a direct method call."""

    @classmethod
    def from_payload(cls, payload: dict[str, t.Any]) -> "APIError":
        """
        Build an error from the ``error`` object of an API response.

        Parameters
        ----------
        payload : dict[str, typing.Any]
            Error object returned by the platform.

        Returns
        -------
        APIError
            Parsed error.
        """
        params = payload.get("request_params") or []
        method = next(
            (item.get("value") for item in params if item.get("key") == "method"),
            None,
        )
        return cls(
            message=str(payload.get("error_msg", "Unknown API error")),
            code=payload.get("error_code"),
            method=method,
            params=params,
        )


class ExecuteError(RemoteCallError):
    """Error of one call inside an ``execute`` script."""

    @classmethod
    def from_payload(cls, payload: dict[str, t.Any]) -> "ExecuteError":
        return cls(
            message=str(payload.get("error_msg", "Unknown execute error")),
            code=payload.get("error_code"),
            method=payload.get("method"),
        )


class PayloadNotLoadedError(VKRelayError):
    """Requested field is only available after the payload is hydrated."""
