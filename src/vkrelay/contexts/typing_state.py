from __future__ import annotations

from vkrelay.constants import CHAT_PEER, PeerType, get_peer_type
from vkrelay.contexts.base import Context

SUB_TYPES: dict[str | int, str] = {
    61: "typing_user",
    62: "typing_group",
    63: "typing_group",
    64: "typing_group",
    "message_typing_state": "typing_user",
}


class TypingContext(Context):
    """Someone is typing or recording a voice message."""

    type = "typing"
    public_fields = ("from_id", "to_id", "typing_state", "is_typing", "chat_id")

    def _resolve_sub_types(self) -> tuple[str, ...]:
        sub_type = SUB_TYPES.get(self.update_type)
        return (sub_type,) if sub_type else ()

    @property
    def from_id(self) -> int | None:
        return self.payload.get("from_id")

    @property
    def to_id(self) -> int | None:
        return self.payload.get("to_id")

    @property
    def typing_state(self) -> str:
        return str(self.payload.get("state", "typing"))

    @property
    def is_typing(self) -> bool:
        return self.typing_state == "typing"

    @property
    def is_audio_message(self) -> bool:
        return self.typing_state == "audiomessage"

    @property
    def is_chat(self) -> bool:
        return get_peer_type(peer_id=self.to_id) == PeerType.CHAT

    @property
    def chat_id(self) -> int | None:
        if not self.is_chat or self.to_id is None:
            return None
        return self.to_id - CHAT_PEER
