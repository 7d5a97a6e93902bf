"""
Base class shared by every normalized update context.
"""

from __future__ import annotations

import typing as t
from types import MappingProxyType

from vkrelay.constants import UpdateSource

if t.TYPE_CHECKING:
    from vkrelay.api import API


def freeze(value: t.Any) -> t.Any:
    """
    Return a read-only view of decoded JSON.

    Parameters
    ----------
    value : typing.Any
        Decoded JSON value.

    Returns
    -------
    typing.Any
        Dicts become ``MappingProxyType`` and lists become tuples, recursively.
    """
    if isinstance(value, dict):
        return MappingProxyType({key: freeze(value=item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(value=item) for item in value)
    return value


class Context:
    """
    One normalized event travelling through the middleware chain.

    Parameters
    ----------
    api : API
        Client used by context actions.
    payload : dict[str, typing.Any]
        Canonical (webhook-shaped) event object.
    source : UpdateSource
        Transport the event arrived through.
    update_type : str | int
        Event name or user long-poll code.
    group_id : int | None, optional
        Community the event belongs to.
    delivery_id : str | None, optional
        Delivery identifier, when the transport provides one.

    Notes
    -----
    ``state`` is a scratch dict created empty for every context and shared by
    the stages of the one dispatch that receives it.
    """

    type: t.ClassVar[str] = "context"
    public_fields: t.ClassVar[tuple[str, ...]] = ()

    def __init__(
        self,
        *,
        api: "API",
        payload: dict[str, t.Any],
        source: UpdateSource,
        update_type: str | int,
        group_id: int | None = None,
        delivery_id: str | None = None,
    ) -> None:
        self.api = api
        self.payload = payload
        self.source = source
        self.update_type = update_type
        self.group_id = group_id
        self.delivery_id = delivery_id
        self.state: dict[str, t.Any] = {}
        self.sub_types: tuple[str, ...] = self._resolve_sub_types()

    def _resolve_sub_types(self) -> tuple[str, ...]:
        if isinstance(self.update_type, str):
            return (self.update_type,)
        return ()

    def is_(self, types: str | t.Iterable[str]) -> bool:
        """
        Check the context type or any of its sub types.

        Parameters
        ----------
        types : str | typing.Iterable[str]
            One type name or several.

        Returns
        -------
        bool
            ``True`` when any name matches.
        """
        names = (types,) if isinstance(types, str) else tuple(types)
        return any(name == self.type or name in self.sub_types for name in names)

    def to_dict(self) -> dict[str, t.Any]:
        return {name: getattr(self, name) for name in self.public_fields}

    def __repr__(self) -> str:
        fields = ", ".join(f"{name}={value!r}" for name, value in self.to_dict().items())
        return (
            f"<{type(self).__name__} source={self.source.value} "
            f"sub_types={list(self.sub_types)} {fields}>"
        )
