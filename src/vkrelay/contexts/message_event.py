from __future__ import annotations

import json
import typing as t
from functools import cached_property

from vkrelay.contexts.base import Context, freeze


class MessageEventContext(Context):
    """
    Press of a callback keyboard button.

    Notes
    -----
    The platform waits for ``answer`` to stop the button spinner on the
    client side.
    """

    type = "message_event"
    public_fields = ("user_id", "peer_id", "event_id", "conversation_message_id", "event_payload")

    @property
    def user_id(self) -> int | None:
        return self.payload.get("user_id")

    @property
    def peer_id(self) -> int | None:
        return self.payload.get("peer_id")

    @property
    def event_id(self) -> str | None:
        return self.payload.get("event_id")

    @property
    def conversation_message_id(self) -> int | None:
        return self.payload.get("conversation_message_id")

    @cached_property
    def event_payload(self) -> t.Any:
        return freeze(value=self.payload.get("payload"))

    async def answer(self, event_data: t.Mapping[str, t.Any] | None = None) -> t.Any:
        """
        Answer the button press.

        Parameters
        ----------
        event_data : typing.Mapping[str, typing.Any] | None, optional
            Action shown to the user, e.g. ``{"type": "show_snackbar", "text": "Done"}``.

        Returns
        -------
        typing.Any
            API response of ``messages.sendMessageEventAnswer``.
        """
        params: dict[str, t.Any] = {
            "event_id": self.event_id,
            "user_id": self.user_id,
            "peer_id": self.peer_id,
        }
        if event_data is not None:
            params["event_data"] = json.dumps(obj=dict(event_data), ensure_ascii=False)
        return await self.api.call(method="messages.sendMessageEventAnswer", params=params)
