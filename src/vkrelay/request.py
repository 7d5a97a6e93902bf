from __future__ import annotations

import asyncio
import json
import typing as t
from dataclasses import dataclass, field


def _serialize_param(value: t.Any) -> t.Any:
    # The platform takes lists as comma separated strings.
    if isinstance(value, (list, tuple, set, frozenset)):
        return ",".join(str(object=item) for item in value)
    if isinstance(value, bool):
        return int(value)
    return value


def prepare_params(params: t.Mapping[str, t.Any] | None) -> dict[str, t.Any]:
    """
    Drop ``None`` values and flatten sequences for the wire.

    Parameters
    ----------
    params : typing.Mapping[str, typing.Any] | None
        Raw method parameters.

    Returns
    -------
    dict[str, typing.Any]
        Parameters ready for form encoding or script compilation.
    """
    if not params:
        return {}
    return {
        key: _serialize_param(value=value)
        for key, value in params.items()
        if value is not None
    }


@dataclass
class APIRequest:
    """
    A pending remote call with a single-settle result handle.

    Parameters
    ----------
    method : str
        Remote method name, e.g. ``messages.send``.
    params : dict[str, typing.Any]
        Method parameters.
    future : asyncio.Future[typing.Any]
        Result handle settled exactly once.
    """

    method: str
    params: dict[str, t.Any]
    future: asyncio.Future[t.Any] = field(repr=False)

    @classmethod
    def create(cls, *, method: str, params: t.Mapping[str, t.Any] | None = None) -> "APIRequest":
        """
        Build a request bound to the running event loop.

        Parameters
        ----------
        method : str
            Remote method name.
        params : typing.Mapping[str, typing.Any] | None, optional
            Method parameters.

        Returns
        -------
        APIRequest
            Request with an unsettled future.
        """
        loop = asyncio.get_running_loop()
        return cls(
            method=method,
            params=prepare_params(params=params),
            future=loop.create_future(),
        )

    @property
    def settled(self) -> bool:
        return self.future.done()

    def resolve(self, value: t.Any) -> None:
        if not self.future.done():
            self.future.set_result(value)

    def reject(self, error: BaseException, *, retrieved: bool = False) -> None:
        """
        Settle the future with ``error``.

        Parameters
        ----------
        error : BaseException
            Error delivered to awaiting callers.
        retrieved : bool, optional
            Mark the error as consumed so an unawaited future is not reported
            by the event loop. Used when the error is raised elsewhere too.
        """
        if not self.future.done():
            self.future.set_exception(error)
            if retrieved:
                self.future.exception()

    def to_code(self) -> str:
        """
        Render the call as an execute script expression.

        Returns
        -------
        str
            Expression such as ``API.users.get({"user_ids":"1"})``.
        """
        return f"API.{self.method}({json.dumps(obj=self.params, ensure_ascii=False)})"

    def __str__(self) -> str:
        return self.to_code()
