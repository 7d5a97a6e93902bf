from __future__ import annotations

import typing as t
from dataclasses import dataclass

from vkrelay.constants import UpdateSource

EnvelopeHandler = t.Callable[["RawEnvelope"], t.Awaitable[None]]


@dataclass(frozen=True)
class RawEnvelope:
    """
    One update as delivered by a transport, before normalization.

    Parameters
    ----------
    event_type : str | None
        Event name for object-shaped updates, ``None`` for positional ones.
    event_payload : typing.Any
        Event object, or the whole positional array for user long-poll updates.
    update_type : str | int
        Event name or user long-poll code.
    source : UpdateSource
        Transport the update arrived through.
    group_id : int | None
        Community the update belongs to.
    delivery_id : str | None
        Platform ``event_id`` of the delivery.
    """

    event_type: str | None
    event_payload: t.Any
    update_type: str | int
    source: UpdateSource
    group_id: int | None = None
    delivery_id: str | None = None

    @property
    def is_positional(self) -> bool:
        return isinstance(self.event_payload, (list, tuple))

    @classmethod
    def from_polling_update(cls, update: t.Any) -> "RawEnvelope":
        """
        Wrap one element of a long-poll ``updates`` array.

        Parameters
        ----------
        update : typing.Any
            Positional array (user long poll) or event object (group long poll).

        Returns
        -------
        RawEnvelope
            Envelope with ``update_type`` ``"unknown"`` when the shape is not recognised.
        """
        if isinstance(update, list) and update and isinstance(update[0], int):
            return cls(
                event_type=None,
                event_payload=update,
                update_type=update[0],
                source=UpdateSource.POLLING,
            )
        if isinstance(update, dict) and isinstance(update.get("type"), str):
            return cls(
                event_type=update["type"],
                event_payload=update.get("object"),
                update_type=update["type"],
                source=UpdateSource.POLLING,
                group_id=update.get("group_id"),
                delivery_id=update.get("event_id"),
            )
        return cls(
            event_type=None,
            event_payload=update,
            update_type="unknown",
            source=UpdateSource.POLLING,
        )

    @classmethod
    def from_webhook_body(cls, body: t.Mapping[str, t.Any]) -> "RawEnvelope":
        return cls(
            event_type=body["type"],
            event_payload=body.get("object"),
            update_type=body["type"],
            source=UpdateSource.WEBHOOK,
            group_id=body.get("group_id"),
            delivery_id=body.get("event_id"),
        )
