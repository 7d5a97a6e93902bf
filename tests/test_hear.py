"""
Tests for the text matching middleware.
"""

import re

import pytest

from vkrelay.api import API
from vkrelay.composer import Composer
from vkrelay.constants import UpdateSource
from vkrelay.contexts import GroupMemberContext, MessageContext
from vkrelay.hear import build_hear_middleware


def _message(text: str | None) -> MessageContext:
    return MessageContext(
        api=API(),
        payload={"message": {"id": 1, "peer_id": 5, "from_id": 5, "text": text}},
        source=UpdateSource.WEBHOOK,
        update_type="message_new",
    )


async def _run(middleware, context) -> list:
    calls = []
    composer = Composer()
    composer.use(middleware=middleware)

    @composer.use
    async def fallback(context, next_):
        calls.append("fallback")

    await composer.dispatch(context=context)
    return calls


def _recording_handler(calls: list):
    async def handler(context, next_):
        calls.append("handler")

    return handler


@pytest.mark.asyncio
async def test_exact_string_match():
    calls = []
    middleware = build_hear_middleware(conditions="/start", handler=_recording_handler(calls))

    fallback_calls = await _run(middleware=middleware, context=_message(text="/start"))
    other_calls = await _run(middleware=middleware, context=_message(text="/start now"))

    assert calls == ["handler"]
    assert fallback_calls == []
    assert other_calls == ["fallback"]


@pytest.mark.asyncio
async def test_regex_match_is_stored_on_context():
    seen = []

    async def handler(context, next_):
        seen.append(context.match.group("name"))

    middleware = build_hear_middleware(conditions=re.compile(r"^hi (?P<name>\w+)"), handler=handler)
    context = _message(text="hi Alice!")

    await _run(middleware=middleware, context=context)

    assert seen == ["Alice"]
    assert context.match is not None


@pytest.mark.asyncio
async def test_all_conditions_must_match_by_default():
    calls = []
    middleware = build_hear_middleware(
        conditions=[re.compile(r"^/buy"), lambda text, context: context.peer_id == 5],
        handler=_recording_handler(calls),
    )

    await _run(middleware=middleware, context=_message(text="/buy apples"))
    fallback_calls = await _run(middleware=middleware, context=_message(text="/sell apples"))

    assert calls == ["handler"]
    assert fallback_calls == ["fallback"]


@pytest.mark.asyncio
async def test_any_mode_matches_first_condition():
    calls = []
    middleware = build_hear_middleware(
        conditions=["hello", "hi"],
        handler=_recording_handler(calls),
        match="any",
    )

    await _run(middleware=middleware, context=_message(text="hi"))
    fallback_calls = await _run(middleware=middleware, context=_message(text="hey"))

    assert calls == ["handler"]
    assert fallback_calls == ["fallback"]


@pytest.mark.asyncio
async def test_async_predicates_are_awaited():
    calls = []

    async def is_admin(text, context):
        return context.sender_id == 5

    middleware = build_hear_middleware(conditions=is_admin, handler=_recording_handler(calls))

    await _run(middleware=middleware, context=_message(text="anything"))

    assert calls == ["handler"]


@pytest.mark.asyncio
async def test_messages_without_text_fall_through():
    calls = []
    middleware = build_hear_middleware(conditions=re.compile(".*"), handler=_recording_handler(calls))

    fallback_calls = await _run(middleware=middleware, context=_message(text=None))

    assert calls == []
    assert fallback_calls == ["fallback"]


@pytest.mark.asyncio
async def test_non_message_contexts_fall_through():
    calls = []
    middleware = build_hear_middleware(conditions=lambda text, context: True, handler=_recording_handler(calls))
    context = GroupMemberContext(
        api=API(),
        payload={"user_id": 1},
        source=UpdateSource.WEBHOOK,
        update_type="group_join",
    )

    fallback_calls = await _run(middleware=middleware, context=context)

    assert calls == []
    assert fallback_calls == ["fallback"]


def test_empty_conditions_are_rejected():
    with pytest.raises(ValueError):
        build_hear_middleware(conditions=[], handler=lambda context, next_: None)
