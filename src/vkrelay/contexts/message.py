"""
Message context and forwarded/replied message structures.
"""

from __future__ import annotations

import html
import json
import secrets
import typing as t
from functools import cached_property

import structlog

from vkrelay.constants import CHAT_PEER, PeerType, UpdateSource, get_peer_type
from vkrelay.contexts.attachments import Attachment, AttachmentsView, parse_attachments
from vkrelay.contexts.base import Context, freeze
from vkrelay.exceptions import IS_NOT_CHAT, PAYLOAD_IS_NOT_FULL, PayloadNotLoadedError, StateError

log = structlog.get_logger(__name__)

SUB_TYPES: dict[str | int, str] = {
    4: "new_message",
    5: "edit_message",
    18: "edit_message",
    "message_new": "new_message",
    "message_edit": "edit_message",
    "message_reply": "reply_message",
}

# Sent by the platform only with message_new, other events get this stand-in.
DEFAULT_CLIENT_INFO: dict[str, t.Any] = {
    "button_actions": ["text"],
    "keyboard": True,
    "inline_keyboard": False,
    "lang_id": 0,
}


def unescape_text(text: t.Any) -> str | None:
    if text is None or text == "":
        return None
    if not isinstance(text, str):
        raise TypeError(f"Message text must be a string, got {type(text).__name__}")
    return html.unescape(text.replace("<br>", "\n"))


def _not_loaded(field_name: str) -> PayloadNotLoadedError:
    return PayloadNotLoadedError(
        message=f"'{field_name}' is not available until the message payload is loaded",
        code=PAYLOAD_IS_NOT_FULL,
    )


class ForwardsCollection(tuple):
    """Tuple of forwarded messages with attachment lookups across nesting levels."""

    @property
    def flatten(self) -> tuple["ForwardedMessage", ...]:
        flattened: list[ForwardedMessage] = []
        for forward in self:
            flattened.append(forward)
            flattened.extend(forward.forwards.flatten)
        return tuple(flattened)

    def has_attachments(self, type: str | None = None) -> bool:
        return any(forward.has_attachments(type=type) for forward in self.flatten)

    def get_attachments(self, type: str | None = None) -> tuple[Attachment, ...]:
        return tuple(
            attachment
            for forward in self.flatten
            for attachment in forward.get_attachments(type=type)
        )


class ForwardedMessage:
    """
    Message nested in another one, either forwarded or replied to.

    Parameters
    ----------
    payload : dict[str, typing.Any]
        Message object.
    """

    def __init__(self, payload: t.Mapping[str, t.Any]) -> None:
        self._payload = payload

    @property
    def id(self) -> int | None:
        return self._payload.get("id")

    @property
    def conversation_message_id(self) -> int | None:
        return self._payload.get("conversation_message_id")

    @property
    def peer_id(self) -> int | None:
        return self._payload.get("peer_id")

    @property
    def sender_id(self) -> int | None:
        return self._payload.get("from_id")

    @property
    def created_at(self) -> int | None:
        return self._payload.get("date")

    @property
    def updated_at(self) -> int | None:
        return self._payload.get("update_time")

    @cached_property
    def text(self) -> str | None:
        return unescape_text(text=self._payload.get("text"))

    @cached_property
    def attachments_view(self) -> AttachmentsView:
        return AttachmentsView(attachments=parse_attachments(raw=self._payload.get("attachments")))

    @property
    def attachments(self) -> tuple[Attachment, ...]:
        return self.attachments_view.attachments

    def has_attachments(self, type: str | None = None) -> bool:
        return self.attachments_view.has_attachments(type=type)

    def get_attachments(self, type: str | None = None) -> tuple[Attachment, ...]:
        return self.attachments_view.get_attachments(type=type)

    @cached_property
    def forwards(self) -> ForwardsCollection:
        return ForwardsCollection(
            ForwardedMessage(payload=item) for item in self._payload.get("fwd_messages") or ()
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ForwardedMessage):
            return NotImplemented
        return (
            self.id,
            self.conversation_message_id,
            self.sender_id,
            self.text,
            self.attachments,
            self.forwards,
        ) == (
            other.id,
            other.conversation_message_id,
            other.sender_id,
            other.text,
            other.attachments,
            other.forwards,
        )

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return (
            f"<ForwardedMessage id={self.id} conversation_message_id="
            f"{self.conversation_message_id} sender_id={self.sender_id} text={self.text!r}>"
        )


class MessageContext(Context):
    """
    New, edited or replied message.

    Notes
    -----
    Polling payloads are reshaped into the webhook layout before they reach
    this class, but the polling transport omits part of the message (forwards,
    full reply, geo). Such contexts are not filled: the affected fields raise
    ``PayloadNotLoadedError`` until ``load_message_payload`` fetches the full
    message. Lazy fields keep the value computed on first access, so hydrate
    before reading them.
    """

    type = "message"
    public_fields = (
        "id",
        "conversation_message_id",
        "peer_id",
        "peer_type",
        "sender_id",
        "sender_type",
        "created_at",
        "text",
        "event_type",
        "event_member_id",
        "event_text",
        "reply_message",
        "forwards",
        "attachments",
        "message_payload",
        "is_outbox",
        "referral_value",
        "referral_source",
        "has_geo",
    )

    def __init__(self, **kwargs: t.Any) -> None:
        super().__init__(**kwargs)
        self.match: t.Any = None
        self.is_filled = self.source == UpdateSource.WEBHOOK
        self.text: str | None = None
        self._apply_payload(payload=self.payload)

    def _resolve_sub_types(self) -> tuple[str, ...]:
        sub_type = SUB_TYPES.get(self.update_type)
        return (sub_type,) if sub_type else ()

    def _apply_payload(self, *, payload: t.Mapping[str, t.Any]) -> None:
        if not ("client_info" in payload or isinstance(payload.get("message"), dict)):
            payload = {"message": payload, "client_info": DEFAULT_CLIENT_INFO}
        elif "client_info" not in payload:
            payload = {**payload, "client_info": DEFAULT_CLIENT_INFO}
        if not isinstance(payload.get("message"), dict):
            raise TypeError("Message payload is not an object")
        self.payload = dict(payload)
        self.text = unescape_text(text=self.message.get("text"))
        action_type = self.event_type
        if action_type and action_type not in self.sub_types:
            self.sub_types = (*self.sub_types, action_type)

    @property
    def message(self) -> dict[str, t.Any]:
        return self.payload["message"]

    async def load_message_payload(self, *, force: bool = False) -> None:
        """
        Fetch the full message and mark the context as filled.

        Parameters
        ----------
        force : bool, optional
            Fetch even if the context is already filled.
        """
        if self.is_filled and not force:
            return

        if self.id:
            response = await self.api.call(method="messages.getById", params={"message_ids": self.id})
        else:
            response = await self.api.call(
                method="messages.getByConversationMessageId",
                params={
                    "peer_id": self.peer_id,
                    "conversation_message_ids": self.conversation_message_id,
                },
            )
        items = response.get("items") or []
        if not items:
            log.warning(event="Message payload not found", message_id=self.id, peer_id=self.peer_id)
            return
        self._apply_payload(payload={**self.payload, "message": items[0]})
        self.is_filled = True

    @property
    def id(self) -> int:
        return self.message.get("id", 0)

    @property
    def conversation_message_id(self) -> int | None:
        return self.message.get("conversation_message_id")

    @property
    def peer_id(self) -> int | None:
        return self.message.get("peer_id")

    @property
    def peer_type(self) -> PeerType | None:
        return get_peer_type(peer_id=self.peer_id)

    @property
    def sender_id(self) -> int | None:
        return self.message.get("from_id")

    @property
    def sender_type(self) -> PeerType | None:
        return get_peer_type(peer_id=self.sender_id)

    @property
    def chat_id(self) -> int | None:
        if not self.is_chat or self.peer_id is None:
            return None
        return self.peer_id - CHAT_PEER

    @property
    def created_at(self) -> int | None:
        return self.message.get("date")

    @property
    def updated_at(self) -> int | None:
        return self.message.get("update_time")

    @property
    def random_id(self) -> int | None:
        return self.message.get("random_id")

    @property
    def referral_value(self) -> str | None:
        return self.message.get("ref")

    @property
    def referral_source(self) -> str | None:
        return self.message.get("ref_source")

    @property
    def has_text(self) -> bool:
        return bool(self.text)

    @property
    def is_chat(self) -> bool:
        return self.peer_type == PeerType.CHAT

    @property
    def is_user(self) -> bool:
        return self.sender_type == PeerType.USER

    @property
    def is_group(self) -> bool:
        return self.sender_type == PeerType.GROUP

    @property
    def is_from_user(self) -> bool:
        return self.peer_type == PeerType.USER

    @property
    def is_from_group(self) -> bool:
        return self.peer_type == PeerType.GROUP

    @property
    def is_dm(self) -> bool:
        return self.is_from_user or self.is_from_group

    @property
    def is_outbox(self) -> bool:
        return bool(self.message.get("out"))

    @property
    def is_inbox(self) -> bool:
        return not self.is_outbox

    @property
    def is_important(self) -> bool:
        return bool(self.message.get("important"))

    @property
    def action(self) -> t.Mapping[str, t.Any] | None:
        action = self.message.get("action")
        return action if isinstance(action, dict) else None

    @property
    def is_event(self) -> bool:
        return self.event_type is not None

    @property
    def event_type(self) -> str | None:
        return self.action.get("type") if self.action else None

    @property
    def event_member_id(self) -> int | None:
        return self.action.get("member_id") if self.action else None

    @property
    def event_text(self) -> str | None:
        return self.action.get("text") if self.action else None

    @property
    def event_email(self) -> str | None:
        return self.action.get("email") if self.action else None

    @property
    def client_info(self) -> t.Mapping[str, t.Any]:
        return freeze(value=self.payload["client_info"])

    @property
    def has_message_payload(self) -> bool:
        return bool(self.message.get("payload"))

    @cached_property
    def message_payload(self) -> t.Any:
        raw = self.message.get("payload")
        if raw is None:
            return None
        try:
            return freeze(value=json.loads(raw) if isinstance(raw, str) else raw)
        except ValueError:
            log.debug(event="Message payload is not JSON", message_id=self.id)
            return raw

    @property
    def has_geo(self) -> bool:
        return bool(self.message.get("geo"))

    @property
    def geo(self) -> t.Mapping[str, t.Any] | None:
        if not self.has_geo:
            return None
        if not self.is_filled:
            raise _not_loaded(field_name="geo")
        return freeze(value=self.message["geo"])

    @cached_property
    def forwards(self) -> ForwardsCollection:
        if "fwd_messages" not in self.message and not self.is_filled:
            raise _not_loaded(field_name="forwards")
        return ForwardsCollection(
            ForwardedMessage(payload=item) for item in self.message.get("fwd_messages") or ()
        )

    @property
    def has_forwards(self) -> bool:
        return len(self.forwards) > 0

    @cached_property
    def reply_message(self) -> ForwardedMessage | None:
        if "reply_message" not in self.message and not self.is_filled:
            raise _not_loaded(field_name="reply_message")
        reply = self.message.get("reply_message")
        return ForwardedMessage(payload=reply) if reply else None

    @property
    def has_reply_message(self) -> bool:
        return self.reply_message is not None

    @cached_property
    def attachments_view(self) -> AttachmentsView:
        return AttachmentsView(attachments=parse_attachments(raw=self.message.get("attachments")))

    @property
    def attachments(self) -> tuple[Attachment, ...]:
        return self.attachments_view.attachments

    def has_attachments(self, type: str | None = None) -> bool:
        return self.attachments_view.has_attachments(type=type)

    def get_attachments(self, type: str | None = None) -> tuple[Attachment, ...]:
        return self.attachments_view.get_attachments(type=type)

    def has_all_attachments(self, type: str | None = None) -> bool:
        """
        Check attachments of the message, its reply and all forwards.
        """
        return (
            self.has_attachments(type=type)
            or (self.reply_message is not None and self.reply_message.has_attachments(type=type))
            or self.forwards.has_attachments(type=type)
        )

    def get_all_attachments(self, type: str | None = None) -> tuple[Attachment, ...]:
        reply_attachments = (
            self.reply_message.get_attachments(type=type) if self.reply_message is not None else ()
        )
        return (
            *self.get_attachments(type=type),
            *reply_attachments,
            *self.forwards.get_attachments(type=type),
        )

    async def send(self, text: str | None = None, **params: t.Any) -> t.Any:
        """
        Send a message to the current conversation.

        Parameters
        ----------
        text : str | None, optional
            Message text.
        **params : typing.Any
            Extra ``messages.send`` parameters.

        Returns
        -------
        typing.Any
            API response of ``messages.send``.
        """
        request_params: dict[str, t.Any] = {
            "peer_id": self.peer_id,
            "random_id": secrets.randbits(31),
            **params,
        }
        if text is not None:
            request_params["message"] = text
        return await self.api.call(method="messages.send", params=request_params)

    async def reply(self, text: str | None = None, **params: t.Any) -> t.Any:
        if self.id:
            params.setdefault("reply_to", self.id)
        else:
            params.setdefault(
                "forward",
                json.dumps(
                    obj={
                        "peer_id": self.peer_id,
                        "conversation_message_ids": [self.conversation_message_id],
                        "is_reply": True,
                    }
                ),
            )
        return await self.send(text=text, **params)

    async def edit_message(self, **params: t.Any) -> t.Any:
        """
        Edit the message, keeping its attachments, forwards and snippets by default.
        """
        request_params: dict[str, t.Any] = {
            "message": self.text,
            "attachment": ",".join(
                str(object=attachment) for attachment in self.attachments if attachment.can_be_attached
            ),
            "keep_forward_messages": 1,
            "keep_snippets": 1,
            **params,
            "peer_id": self.peer_id,
        }
        if self.id:
            request_params["message_id"] = self.id
        else:
            request_params["conversation_message_id"] = self.conversation_message_id
        response = await self.api.call(method="messages.edit", params=request_params)
        if "message" in params:
            self.text = params["message"]
        return response

    async def set_activity(self, activity: str = "typing") -> bool:
        response = await self.api.call(
            method="messages.setActivity",
            params={"peer_id": self.peer_id, "type": activity},
        )
        return bool(response)

    async def kick_user(self, member_id: int | None = None) -> bool:
        self._assert_is_chat()
        response = await self.api.call(
            method="messages.removeChatUser",
            params={"chat_id": self.chat_id, "member_id": member_id or self.event_member_id},
        )
        return bool(response)

    def _assert_is_chat(self) -> None:
        if not self.is_chat:
            raise StateError(message="This method is only available in chat", code=IS_NOT_CHAT)
