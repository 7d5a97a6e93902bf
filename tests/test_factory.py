"""
Tests for ContextFactory and the long-poll normalizers.
"""

import pytest

from vkrelay.api import API
from vkrelay.constants import PeerType, UpdateSource
from vkrelay.contexts import (
    FriendActivityContext,
    GroupMemberContext,
    MessageContext,
    MessageEventContext,
    MessageFlagsContext,
    MessageSubscriptionContext,
    ReadMessagesContext,
    TypingContext,
    UnsupportedContext,
)
from vkrelay.exceptions import PayloadNotLoadedError
from vkrelay.updates.envelope import RawEnvelope
from vkrelay.updates.factory import ContextFactory
from vkrelay.updates.transform import parse_attachment_reference, transform_message

CHAT_PEER_ID = 2_000_000_001


@pytest.fixture
def factory() -> ContextFactory:
    return ContextFactory(api=API())


def _polling(update) -> RawEnvelope:
    return RawEnvelope.from_polling_update(update=update)


def _webhook(event_type: str, obj) -> RawEnvelope:
    return RawEnvelope.from_webhook_body(
        body={"type": event_type, "object": obj, "group_id": 1, "event_id": "ev1"}
    )


def test_polling_and_webhook_messages_are_equivalent(factory: ContextFactory):
    """Test that the same chat message yields equal fields from both transports."""
    polling = factory.create(
        envelope=_polling(
            update=[
                4,
                10,
                0,
                CHAT_PEER_ID,
                1700000000,
                "hello &amp; bye<br>next",
                {"from": "42"},
                {"attach1_type": "photo", "attach1": "42_100_key"},
                555,
                7,
            ]
        )
    )
    webhook = factory.create(
        envelope=_webhook(
            event_type="message_new",
            obj={
                "message": {
                    "id": 10,
                    "conversation_message_id": 7,
                    "date": 1700000000,
                    "peer_id": CHAT_PEER_ID,
                    "from_id": 42,
                    "out": 0,
                    "text": "hello &amp; bye<br>next",
                    "random_id": 555,
                    "attachments": [
                        {"type": "photo", "photo": {"owner_id": 42, "id": 100, "access_key": "key"}}
                    ],
                    "fwd_messages": [],
                },
                "client_info": {"keyboard": True},
            },
        )
    )

    assert isinstance(polling, MessageContext)
    assert isinstance(webhook, MessageContext)
    assert polling.source == UpdateSource.POLLING
    assert webhook.source == UpdateSource.WEBHOOK
    for field_name in (
        "id",
        "conversation_message_id",
        "peer_id",
        "peer_type",
        "sender_id",
        "created_at",
        "text",
        "attachments",
        "is_outbox",
        "chat_id",
        "forwards",
        "random_id",
    ):
        assert getattr(polling, field_name) == getattr(webhook, field_name), field_name
    assert polling.text == "hello & bye\nnext"
    assert polling.peer_type == PeerType.CHAT
    assert polling.chat_id == 1
    assert str(polling.attachments[0]) == "photo42_100_key"
    assert polling.is_("new_message") and webhook.is_("new_message")


def test_polling_message_without_forward_details_is_not_filled(factory: ContextFactory):
    context = factory.create(
        envelope=_polling(update=[4, 11, 2, 5, 1700000000, "hi", {}, {"fwd": "0_0", "reply": "{}"}])
    )

    assert isinstance(context, MessageContext)
    assert context.is_outbox
    assert context.sender_id is None
    assert not context.is_filled
    with pytest.raises(PayloadNotLoadedError):
        context.forwards
    with pytest.raises(PayloadNotLoadedError):
        context.reply_message


def test_polling_dm_inbox_sender_is_peer(factory: ContextFactory):
    context = factory.create(envelope=_polling(update=[4, 12, 1, 77, 1700000000, "yo", {}, {}]))

    assert context.sender_id == 77
    assert context.is_dm
    assert context.forwards == ()
    assert context.reply_message is None


def test_polling_chat_action_is_mapped(factory: ContextFactory):
    context = factory.create(
        envelope=_polling(
            update=[4, 13, 0, CHAT_PEER_ID, 1700000000, "", {"from": "1", "source_act": "chat_invite_user", "source_mid": "99"}, {}]
        )
    )

    assert context.event_type == "chat_invite_user"
    assert context.event_member_id == 99
    assert context.is_("chat_invite_user")


def test_edit_code_18_has_edit_sub_type(factory: ContextFactory):
    context = factory.create(envelope=_polling(update=[18, 1, 0, 5, 1700000000, "edited", {}, {}, 0, 3, 1700000100]))

    assert context.is_("edit_message")
    assert context.updated_at == 1700000100


@pytest.mark.parametrize(
    ("update", "context_cls", "sub_type"),
    [
        ([2, 10, 128, 5], MessageFlagsContext, "message_flags_set"),
        ([6, 5, 100], ReadMessagesContext, "read_theirs_messages"),
        ([7, 5, 100], ReadMessagesContext, "read_my_messages"),
        ([8, -42, 7, 1700000000], FriendActivityContext, "friend_online"),
        ([9, -42, 1, 1700000000], FriendActivityContext, "friend_offline"),
        ([61, 42, 1], TypingContext, "typing_user"),
        ([62, 42, 3], TypingContext, "typing_group"),
        ([64, CHAT_PEER_ID, [42], 1, 1700000000], TypingContext, "typing_group"),
    ],
)
def test_polling_codes_map_to_contexts(factory: ContextFactory, update, context_cls, sub_type):
    context = factory.create(envelope=_polling(update=update))

    assert isinstance(context, context_cls)
    assert context.is_(sub_type)


def test_friend_activity_fields(factory: ContextFactory):
    context = factory.create(envelope=_polling(update=[8, -42, 7, 1700000000]))

    assert context.user_id == 42
    assert context.platform_name == "web"
    assert context.created_at == 1700000000


def test_typing_fields(factory: ContextFactory):
    chat = factory.create(envelope=_polling(update=[62, 42, 3]))
    voice = factory.create(envelope=_polling(update=[64, CHAT_PEER_ID, [42], 1, 1700000000]))

    assert chat.from_id == 42
    assert chat.chat_id == 3
    assert voice.is_audio_message
    assert voice.from_id == 42


def test_message_flags_fields(factory: ContextFactory):
    context = factory.create(envelope=_polling(update=[2, 10, 128 | 131072, 5]))

    assert context.is_set
    assert context.is_deleted
    assert context.is_deleted_for_all
    assert not context.is_spam


@pytest.mark.parametrize(
    ("event_type", "obj", "context_cls"),
    [
        ("message_event", {"user_id": 1, "peer_id": 1, "event_id": "abc", "payload": {"a": 1}}, MessageEventContext),
        ("group_join", {"user_id": 1, "join_type": "join"}, GroupMemberContext),
        ("group_leave", {"user_id": 1, "self": 1}, GroupMemberContext),
        ("message_typing_state", {"state": "typing", "from_id": 1, "to_id": -1}, TypingContext),
        ("message_read", {"from_id": 1, "peer_id": 1, "read_message_id": 9}, ReadMessagesContext),
        ("message_allow", {"user_id": 1, "key": "k"}, MessageSubscriptionContext),
        ("message_deny", {"user_id": 1}, MessageSubscriptionContext),
    ],
)
def test_webhook_types_map_to_contexts(factory: ContextFactory, event_type, obj, context_cls):
    context = factory.create(envelope=_webhook(event_type=event_type, obj=obj))

    assert isinstance(context, context_cls)
    assert context.delivery_id == "ev1"
    assert context.group_id == 1


def test_unknown_event_type_is_unsupported(factory: ContextFactory):
    context = factory.create(envelope=_webhook(event_type="wall_post_new", obj={"id": 1}))

    assert isinstance(context, UnsupportedContext)
    assert context.raw["id"] == 1
    assert context.is_("wall_post_new")


@pytest.mark.parametrize(
    "update",
    [
        [4],
        [4, "not-a-number", 0, 5],
        [64, 5, [], 0],
        [99, 1, 2],
        [4, 10, 1, 5, 1700000000, 123, {}, {}],
        "garbage",
        {"no_type": True},
    ],
)
def test_malformed_polling_updates_are_unsupported(factory: ContextFactory, update):
    context = factory.create(envelope=_polling(update=update))

    assert isinstance(context, UnsupportedContext)


@pytest.mark.parametrize(
    "obj",
    [
        {"message": None, "client_info": {}},
        {"message": {"id": 1, "peer_id": 5, "text": ["a"]}, "client_info": {}},
    ],
)
def test_malformed_webhook_messages_are_unsupported(factory: ContextFactory, obj):
    context = factory.create(envelope=_webhook(event_type="message_new", obj=obj))

    assert isinstance(context, UnsupportedContext)
    assert context.is_("message_new")


def test_state_is_fresh_per_context(factory: ContextFactory):
    first = factory.create(envelope=_polling(update=[4, 1, 0, 5, 0, "a", {}, {}]))
    second = factory.create(envelope=_polling(update=[4, 1, 0, 5, 0, "a", {}, {}]))

    first.state["seen"] = True

    assert second.state == {}


def test_parse_attachment_reference():
    assert parse_attachment_reference(attachment_type="doc", value="-1_456_ab_cd") == {
        "type": "doc",
        "doc": {"owner_id": -1, "id": 456, "access_key": "ab_cd"},
    }


def test_transform_message_copies_payload_and_geo():
    message = transform_message(
        update=[4, 1, 0, 5, 0, "", {"payload": '{"command":"start"}'}, {"geo": "2_SVK-RU"}]
    )["message"]

    assert message["payload"] == '{"command":"start"}'
    assert message["geo"] == {"provider_id": "2_SVK-RU"}
