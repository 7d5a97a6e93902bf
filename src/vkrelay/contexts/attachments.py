"""
Attachment model and the attachment capability shared by messages and forwards.
"""

from __future__ import annotations

import typing as t

from pydantic import BaseModel, ConfigDict


class Attachment(BaseModel):
    """
    Reference to a platform object attached to a message.

    Notes
    -----
    Only the addressing fields are kept, they are the part both transports
    deliver. ``str(attachment)`` renders the value accepted by the
    ``attachment`` parameter of send methods.
    """

    model_config = ConfigDict(frozen=True)

    type: str
    owner_id: int | None = None
    id: int | None = None
    access_key: str | None = None

    @property
    def can_be_attached(self) -> bool:
        return self.owner_id is not None and self.id is not None

    @classmethod
    def from_api(cls, raw: t.Mapping[str, t.Any]) -> "Attachment":
        """
        Build an attachment from an API attachment object.

        Parameters
        ----------
        raw : typing.Mapping[str, typing.Any]
            Object shaped like ``{"type": "photo", "photo": {...}}``.

        Returns
        -------
        Attachment
            Parsed attachment.
        """
        attachment_type = str(raw.get("type", "unknown"))
        body = raw.get(attachment_type)
        if not isinstance(body, t.Mapping):
            return cls(type=attachment_type)
        owner_id = body.get("owner_id")
        item_id = body.get("id")
        return cls(
            type=attachment_type,
            owner_id=int(owner_id) if owner_id is not None else None,
            id=int(item_id) if item_id is not None else None,
            access_key=body.get("access_key"),
        )

    def __str__(self) -> str:
        if not self.can_be_attached:
            return self.type
        value = f"{self.type}{self.owner_id}_{self.id}"
        if self.access_key:
            value = f"{value}_{self.access_key}"
        return value


def parse_attachments(raw: t.Iterable[t.Any] | None) -> tuple[Attachment, ...]:
    if not raw:
        return ()
    return tuple(
        Attachment.from_api(raw=item) for item in raw if isinstance(item, t.Mapping)
    )


@t.runtime_checkable
class HasAttachments(t.Protocol):
    """Capability of objects carrying attachments."""

    @property
    def attachments(self) -> tuple[Attachment, ...]: ...

    def has_attachments(self, type: str | None = None) -> bool: ...

    def get_attachments(self, type: str | None = None) -> tuple[Attachment, ...]: ...


class AttachmentsView:
    """
    Implementation of ``HasAttachments`` that owners delegate to.

    Parameters
    ----------
    attachments : tuple[Attachment, ...]
        Attachments of the owner.
    """

    def __init__(self, attachments: tuple[Attachment, ...]) -> None:
        self._attachments = attachments

    @property
    def attachments(self) -> tuple[Attachment, ...]:
        return self._attachments

    def has_attachments(self, type: str | None = None) -> bool:
        if type is None:
            return len(self._attachments) > 0
        return any(attachment.type == type for attachment in self._attachments)

    def get_attachments(self, type: str | None = None) -> tuple[Attachment, ...]:
        if type is None:
            return self._attachments
        return tuple(attachment for attachment in self._attachments if attachment.type == type)

    def __len__(self) -> int:
        return len(self._attachments)

    def __iter__(self) -> t.Iterator[Attachment]:
        return iter(self._attachments)
