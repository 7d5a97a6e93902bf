from __future__ import annotations

from vkrelay.contexts.base import Context

PLATFORMS: dict[int, str] = {
    1: "mobile",
    2: "iphone",
    3: "ipad",
    4: "android",
    5: "wphone",
    6: "windows",
    7: "web",
}


class FriendActivityContext(Context):
    """A friend went online or offline. Only delivered by the user long poll."""

    type = "friend_activity"
    public_fields = ("user_id", "is_online", "platform", "is_timeout", "created_at")

    def _resolve_sub_types(self) -> tuple[str, ...]:
        return ("friend_online",) if self.is_online else ("friend_offline",)

    @property
    def user_id(self) -> int:
        return self.payload["user_id"]

    @property
    def is_online(self) -> bool:
        return bool(self.payload.get("is_online"))

    @property
    def is_offline(self) -> bool:
        return not self.is_online

    @property
    def is_timeout(self) -> bool:
        return bool(self.payload.get("is_timeout"))

    @property
    def platform(self) -> int | None:
        return self.payload.get("platform")

    @property
    def platform_name(self) -> str | None:
        if self.platform is None:
            return None
        return PLATFORMS.get(self.platform, "unknown")

    @property
    def created_at(self) -> int | None:
        return self.payload.get("timestamp")
