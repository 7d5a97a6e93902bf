from __future__ import annotations

import typing as t

import httpx

from vkrelay.api import API
from vkrelay.chain import Chain
from vkrelay.config import VKOptions
from vkrelay.updates import Updates


class VK:
    """
    Top-level facade holding the API client and the update handling.

    Parameters
    ----------
    options : VKOptions | None, optional
        Base options.
    client_factory : typing.Callable[[], httpx.AsyncClient] | None, optional
        Factory for the shared HTTP client.
    **overrides : typing.Any
        Option fields overriding ``options``, e.g. ``token="..."``.

    Examples
    --------
    >>> vk = VK(token="secret", polling_group_id=1)
    >>> vk.updates.hear("/start", lambda context, next_: context.send("hi"))
    >>> await vk.updates.start_polling()
    """

    def __init__(
        self,
        options: VKOptions | None = None,
        client_factory: t.Callable[[], httpx.AsyncClient] | None = None,
        **overrides: t.Any,
    ) -> None:
        if options is None:
            options = VKOptions.model_validate(obj=overrides)
        elif overrides:
            options = VKOptions.model_validate(obj={**options.model_dump(), **overrides})
        self.options = options
        self.api = API(options=options, client_factory=client_factory)
        self.updates = Updates(api=self.api, options=options)

    def chain(self) -> Chain:
        return self.api.chain()

    async def close(self) -> None:
        await self.updates.close()
        await self.api.close()

    async def __aenter__(self) -> "VK":
        return self

    async def __aexit__(self, exc_type: t.Any, exc_val: t.Any, exc_tb: t.Any) -> None:
        await self.close()
