from __future__ import annotations

from enum import Enum

# Peer ids above this value address multi-user chats.
CHAT_PEER = 2_000_000_000


class UpdateSource(str, Enum):
    """Transport an update arrived through."""

    POLLING = "polling"
    WEBHOOK = "webhook"


class PeerType(str, Enum):
    USER = "user"
    GROUP = "group"
    CHAT = "chat"


class MessageFlag(int, Enum):
    """Bits of the user long-poll message flags field."""

    UNREAD = 1
    OUTBOX = 2
    REPLIED = 4
    IMPORTANT = 8
    CHAT = 16
    FRIENDS = 32
    SPAM = 64
    DELETED = 128
    FIXED = 256
    MEDIA = 512
    HIDDEN = 65536
    DELETED_FOR_ALL = 131072


def get_peer_type(peer_id: int | None) -> PeerType | None:
    """
    Classify a peer id.

    Parameters
    ----------
    peer_id : int | None
        Peer identifier.

    Returns
    -------
    PeerType | None
        ``None`` when the id is unknown.
    """
    if peer_id is None:
        return None
    if peer_id > CHAT_PEER:
        return PeerType.CHAT
    if peer_id < 0:
        return PeerType.GROUP
    return PeerType.USER
