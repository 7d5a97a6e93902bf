from __future__ import annotations

import typing as t

from vkrelay.contexts.base import Context, freeze


class UnsupportedContext(Context):
    """Fallback for events with no dedicated context, or with a payload that could not be normalized."""

    type = "unsupported"
    public_fields = ("raw",)

    @property
    def raw(self) -> t.Any:
        return freeze(value=self.payload)
