from __future__ import annotations

from vkrelay.contexts.base import Context


class MessageSubscriptionContext(Context):
    """User allowed or denied messages from the community."""

    type = "message_subscription"
    public_fields = ("user_id", "key", "is_subscribed")

    @property
    def user_id(self) -> int | None:
        return self.payload.get("user_id")

    @property
    def key(self) -> str | None:
        return self.payload.get("key")

    @property
    def is_subscribed(self) -> bool:
        return self.update_type == "message_allow"
