"""
Normalizers reshaping positional user long-poll updates into the object layout
the webhook transport delivers for the same events.

Each normalizer is a pure function of one update array. Malformed arrays raise
``IndexError``, ``TypeError``, ``KeyError`` or ``ValueError``; the context
factory turns those into an unsupported context.
"""

from __future__ import annotations

import typing as t

from vkrelay.constants import CHAT_PEER, MessageFlag

Normalizer = t.Callable[[t.Sequence[t.Any]], dict[str, t.Any]]

MAX_LONG_POLL_ATTACHMENTS = 10


def _at(update: t.Sequence[t.Any], index: int, default: t.Any = None) -> t.Any:
    return update[index] if len(update) > index else default


def parse_attachment_reference(attachment_type: str, value: str) -> dict[str, t.Any]:
    """
    Expand an ``owner_id`` ``_`` ``item_id`` [``_`` ``access_key``] reference.

    Parameters
    ----------
    attachment_type : str
        Attachment type, e.g. ``photo``.
    value : str
        Reference string such as ``-1_456239017_ab12``.

    Returns
    -------
    dict[str, typing.Any]
        API attachment object ``{"type": ..., type: {"owner_id", "id", ...}}``.
    """
    owner_id, item_id, *rest = value.split("_", 2)
    body: dict[str, t.Any] = {"owner_id": int(owner_id), "id": int(item_id)}
    if rest and rest[0]:
        body["access_key"] = rest[0]
    return {"type": attachment_type, attachment_type: body}


def _transform_attachments(raw: t.Mapping[str, t.Any]) -> list[dict[str, t.Any]]:
    attachments: list[dict[str, t.Any]] = []
    for index in range(1, MAX_LONG_POLL_ATTACHMENTS + 1):
        attachment_type = raw.get(f"attach{index}_type")
        if attachment_type is None:
            break
        reference = raw.get(f"attach{index}")
        if attachment_type == "link" or not isinstance(reference, str) or "_" not in reference:
            attachments.append({"type": attachment_type})
            continue
        attachments.append(
            parse_attachment_reference(attachment_type=attachment_type, value=reference)
        )
    return attachments


def _transform_action(extra: t.Mapping[str, t.Any]) -> dict[str, t.Any] | None:
    action_type = extra.get("source_act")
    if not action_type:
        return None
    action: dict[str, t.Any] = {"type": action_type}
    if extra.get("source_mid") is not None:
        action["member_id"] = int(extra["source_mid"])
    if extra.get("source_text") is not None:
        action["text"] = extra["source_text"]
    if extra.get("source_email") is not None:
        action["email"] = extra["source_email"]
    return action


def transform_message(update: t.Sequence[t.Any]) -> dict[str, t.Any]:
    """
    Normalize a new/edited message update (codes 4, 5 and 18).

    Layout: ``[code, message_id, flags, peer_id, timestamp, text, extra,
    attachments, random_id, conversation_message_id, edit_time]``.

    Parameters
    ----------
    update : typing.Sequence[typing.Any]
        Long-poll update array.

    Returns
    -------
    dict[str, typing.Any]
        ``{"message": {...}}`` in webhook layout. ``fwd_messages`` and
        ``reply_message`` are left out when the long poll only signals their
        presence, so the context knows they must be loaded.
    """
    message_id = int(update[1])
    flags = int(update[2])
    peer_id = int(update[3])
    extra = _at(update, 6) or {}
    raw_attachments = _at(update, 7) or {}
    if not isinstance(extra, dict) or not isinstance(raw_attachments, dict):
        raise TypeError("Long-poll message extra fields must be objects")

    is_outbox = bool(flags & MessageFlag.OUTBOX)
    if peer_id > CHAT_PEER:
        sender = extra.get("from")
        from_id = int(sender) if sender is not None else None
    elif is_outbox:
        from_id = None
    else:
        from_id = peer_id

    message: dict[str, t.Any] = {
        "id": message_id,
        "conversation_message_id": _at(update, 9),
        "date": _at(update, 4),
        "peer_id": peer_id,
        "from_id": from_id,
        "out": int(is_outbox),
        "important": bool(flags & MessageFlag.IMPORTANT),
        "text": _at(update, 5, ""),
        "random_id": _at(update, 8),
        "attachments": _transform_attachments(raw=raw_attachments),
    }

    edit_time = _at(update, 10)
    if edit_time:
        message["update_time"] = edit_time
    if "fwd" not in raw_attachments:
        message["fwd_messages"] = []
    if "reply" not in raw_attachments:
        message["reply_message"] = None
    if "geo" in raw_attachments:
        message["geo"] = {"provider_id": raw_attachments["geo"]}
    for field_name in ("payload", "ref", "ref_source"):
        if extra.get(field_name) is not None:
            message[field_name] = extra[field_name]
    action = _transform_action(extra=extra)
    if action is not None:
        message["action"] = action

    return {"message": message}


def transform_message_flags(update: t.Sequence[t.Any]) -> dict[str, t.Any]:
    """``[code, message_id, flags, peer_id]`` for codes 1, 2 and 3."""
    return {
        "id": int(update[1]),
        "flags": int(update[2]),
        "peer_id": _at(update, 3),
    }


def transform_read_messages(update: t.Sequence[t.Any]) -> dict[str, t.Any]:
    return {
        "peer_id": int(update[1]),
        "read_message_id": int(update[2]),
        "direction": "inbox" if update[0] == 6 else "outbox",
    }


def transform_friend_activity(update: t.Sequence[t.Any]) -> dict[str, t.Any]:
    # user ids arrive negated in this event
    user_id = abs(int(update[1]))
    if update[0] == 8:
        return {
            "user_id": user_id,
            "is_online": True,
            "platform": _at(update, 2),
            "timestamp": _at(update, 3),
        }
    return {
        "user_id": user_id,
        "is_online": False,
        "is_timeout": _at(update, 2) == 1,
        "timestamp": _at(update, 3),
    }


def transform_typing(update: t.Sequence[t.Any]) -> dict[str, t.Any]:
    """
    Normalize typing updates.

    ``[61, user_id, flags]`` in a dialog, ``[62, user_id, chat_id]`` in a chat,
    ``[63|64, peer_id, user_ids, total_count, ts]`` for the grouped variants
    (64 is voice recording).
    """
    code = update[0]
    if code == 61:
        return {"state": "typing", "from_id": int(update[1]), "to_id": None}
    if code == 62:
        return {"state": "typing", "from_id": int(update[1]), "to_id": CHAT_PEER + int(update[2])}
    user_ids = update[2]
    if not isinstance(user_ids, list) or not user_ids:
        raise ValueError("Grouped typing update has no user ids")
    return {
        "state": "audiomessage" if code == 64 else "typing",
        "from_id": int(user_ids[0]),
        "to_id": int(update[1]),
    }


POLLING_NORMALIZERS: dict[int, Normalizer] = {
    1: transform_message_flags,
    2: transform_message_flags,
    3: transform_message_flags,
    4: transform_message,
    5: transform_message,
    18: transform_message,
    6: transform_read_messages,
    7: transform_read_messages,
    8: transform_friend_activity,
    9: transform_friend_activity,
    61: transform_typing,
    62: transform_typing,
    63: transform_typing,
    64: transform_typing,
}

