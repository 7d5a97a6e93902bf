"""
Dialog bookkeeping events: message flag changes and read receipts.
"""

from __future__ import annotations

from vkrelay.constants import MessageFlag
from vkrelay.contexts.base import Context

FLAGS_SUB_TYPES: dict[int, str] = {
    1: "message_flags_replace",
    2: "message_flags_set",
    3: "message_flags_reset",
}


class MessageFlagsContext(Context):
    """Flags of a message were replaced, set or reset."""

    type = "message_flags"
    public_fields = ("id", "peer_id", "flags")

    def _resolve_sub_types(self) -> tuple[str, ...]:
        sub_type = FLAGS_SUB_TYPES.get(self.update_type)  # type: ignore[arg-type]
        return (sub_type,) if sub_type else ()

    @property
    def id(self) -> int:
        return self.payload["id"]

    @property
    def peer_id(self) -> int | None:
        return self.payload.get("peer_id")

    @property
    def flags(self) -> int:
        return int(self.payload.get("flags", 0))

    @property
    def is_replace(self) -> bool:
        return self.update_type == 1

    @property
    def is_set(self) -> bool:
        return self.update_type == 2

    @property
    def is_reset(self) -> bool:
        return self.update_type == 3

    def has_flag(self, flag: MessageFlag | int) -> bool:
        return bool(self.flags & int(flag))

    @property
    def is_important(self) -> bool:
        return self.has_flag(flag=MessageFlag.IMPORTANT)

    @property
    def is_spam(self) -> bool:
        return self.has_flag(flag=MessageFlag.SPAM)

    @property
    def is_deleted(self) -> bool:
        return self.has_flag(flag=MessageFlag.DELETED)

    @property
    def is_deleted_for_all(self) -> bool:
        return self.has_flag(flag=MessageFlag.DELETED_FOR_ALL)


class ReadMessagesContext(Context):
    """
    Messages of a conversation were read up to ``read_message_id``.

    Notes
    -----
    ``inbox`` means the account read incoming messages, ``outbox`` means the
    other side read messages the account sent. Webhook ``message_read`` events
    are always outbox reads.
    """

    type = "read_messages"
    public_fields = ("peer_id", "read_message_id", "is_inbox", "is_outbox")

    def _resolve_sub_types(self) -> tuple[str, ...]:
        return ("read_theirs_messages",) if self.is_inbox else ("read_my_messages",)

    @property
    def peer_id(self) -> int | None:
        return self.payload.get("peer_id")

    @property
    def from_id(self) -> int | None:
        return self.payload.get("from_id")

    @property
    def read_message_id(self) -> int | None:
        return self.payload.get("read_message_id")

    @property
    def is_inbox(self) -> bool:
        return self.payload.get("direction") == "inbox"

    @property
    def is_outbox(self) -> bool:
        return not self.is_inbox
