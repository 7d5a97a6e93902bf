from __future__ import annotations

from vkrelay.contexts.base import Context


class GroupMemberContext(Context):
    """User joined or left the community."""

    type = "group_member"
    public_fields = ("user_id", "join_type", "is_join", "is_leave", "is_self_leave")

    @property
    def user_id(self) -> int | None:
        return self.payload.get("user_id")

    @property
    def is_join(self) -> bool:
        return self.update_type == "group_join"

    @property
    def is_leave(self) -> bool:
        return self.update_type == "group_leave"

    @property
    def join_type(self) -> str | None:
        return self.payload.get("join_type") if self.is_join else None

    @property
    def is_self_leave(self) -> bool | None:
        if not self.is_leave:
            return None
        return bool(self.payload.get("self"))
