"""
Selection of the context class for a raw envelope.
"""

from __future__ import annotations

import typing as t

import structlog

from vkrelay.contexts import (
    Context,
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
from vkrelay.updates.envelope import RawEnvelope
from vkrelay.updates.transform import POLLING_NORMALIZERS

if t.TYPE_CHECKING:
    from vkrelay.api import API

log = structlog.get_logger(__name__)

CONTEXT_TYPES: dict[str | int, type[Context]] = {
    "message_new": MessageContext,
    "message_edit": MessageContext,
    "message_reply": MessageContext,
    4: MessageContext,
    5: MessageContext,
    18: MessageContext,
    "message_event": MessageEventContext,
    "group_join": GroupMemberContext,
    "group_leave": GroupMemberContext,
    "message_typing_state": TypingContext,
    61: TypingContext,
    62: TypingContext,
    63: TypingContext,
    64: TypingContext,
    1: MessageFlagsContext,
    2: MessageFlagsContext,
    3: MessageFlagsContext,
    "message_read": ReadMessagesContext,
    6: ReadMessagesContext,
    7: ReadMessagesContext,
    8: FriendActivityContext,
    9: FriendActivityContext,
    "message_allow": MessageSubscriptionContext,
    "message_deny": MessageSubscriptionContext,
}

_NORMALIZATION_ERRORS = (AttributeError, IndexError, KeyError, TypeError, ValueError)


class ContextFactory:
    """
    Map raw envelopes to context objects.

    Notes
    -----
    The mapping is closed. Unknown event types, positional updates without a
    normalizer and payloads that fail normalization all become
    ``UnsupportedContext``; ``create`` never raises for bad input.
    """

    def __init__(self, api: "API", context_types: t.Mapping[str | int, type[Context]] | None = None) -> None:
        self._api = api
        self._context_types = dict(context_types or CONTEXT_TYPES)

    def create(self, envelope: RawEnvelope) -> Context:
        """
        Build the context for an envelope.

        Parameters
        ----------
        envelope : RawEnvelope
            Envelope produced by a transport.

        Returns
        -------
        Context
            Typed context, or ``UnsupportedContext``.
        """
        key = envelope.event_type if envelope.event_type is not None else envelope.update_type
        context_cls = self._context_types.get(key)
        if context_cls is None:
            log.debug(event="No context for update type", update_type=envelope.update_type)
            return self._unsupported(envelope=envelope)

        payload = envelope.event_payload
        if envelope.is_positional:
            normalizer = POLLING_NORMALIZERS.get(envelope.update_type)  # type: ignore[arg-type]
            if normalizer is None:
                log.warning(event="Missing normalizer for update", update_type=envelope.update_type)
                return self._unsupported(envelope=envelope)
            try:
                payload = normalizer(payload)
            except _NORMALIZATION_ERRORS as error:
                log.warning(
                    event="Failed to normalize polling update",
                    update_type=envelope.update_type,
                    error=str(object=error),
                )
                return self._unsupported(envelope=envelope)

        if not isinstance(payload, dict):
            log.warning(event="Update payload is not an object", update_type=envelope.update_type)
            return self._unsupported(envelope=envelope)

        try:
            return context_cls(
                api=self._api,
                payload=payload,
                source=envelope.source,
                update_type=envelope.update_type,
                group_id=envelope.group_id,
                delivery_id=envelope.delivery_id,
            )
        except _NORMALIZATION_ERRORS as error:
            log.warning(
                event="Failed to build context",
                update_type=envelope.update_type,
                context_type=context_cls.type,
                error=str(object=error),
            )
            return self._unsupported(envelope=envelope)

    def _unsupported(self, *, envelope: RawEnvelope) -> UnsupportedContext:
        payload = envelope.event_payload
        return UnsupportedContext(
            api=self._api,
            payload=payload if isinstance(payload, dict) else {"update": payload},
            source=envelope.source,
            update_type=envelope.update_type,
            group_id=envelope.group_id,
            delivery_id=envelope.delivery_id,
        )
