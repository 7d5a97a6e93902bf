"""
Generic API client.

Every outgoing call (direct methods, execute scripts, long-poll requests) goes
through the single ``httpx.AsyncClient`` owned by ``API``.
"""

from __future__ import annotations

import typing as t

import httpx
import structlog

from vkrelay.batcher import ExecuteBatcher
from vkrelay.chain import Chain
from vkrelay.config import VKOptions
from vkrelay.exceptions import APIError, ProtocolError, TransportError
from vkrelay.execute import ExecuteResponse
from vkrelay.request import prepare_params

log = structlog.get_logger(__name__)

EXECUTE_METHOD = "execute"


class _MethodGroup:
    """Attribute proxy turning ``api.messages.send(...)`` into ``call("messages.send")``."""

    def __init__(self, api: "API", group: str) -> None:
        self._api = api
        self._group = group

    def __getattr__(self, name: str) -> t.Callable[..., t.Awaitable[t.Any]]:
        if name.startswith("_"):
            raise AttributeError(name)
        method = f"{self._group}.{name}"

        async def call_method(params: t.Mapping[str, t.Any] | None = None, **kwargs: t.Any) -> t.Any:
            merged = {**(params or {}), **kwargs}
            return await self._api.call(method=method, params=merged)

        call_method.__name__ = name
        call_method.__qualname__ = method
        return call_method

    def __repr__(self) -> str:
        return f"<MethodGroup {self._group}>"


class API:
    """
    Platform API client.

    Parameters
    ----------
    options : VKOptions | None, optional
        Runtime options. Defaults are used when omitted.
    client_factory : typing.Callable[[], httpx.AsyncClient] | None, optional
        Factory for the shared HTTP client, mostly useful in tests.
    """

    def __init__(
        self,
        options: VKOptions | None = None,
        client_factory: t.Callable[[], httpx.AsyncClient] | None = None,
    ) -> None:
        self.options = options or VKOptions()
        self._client_factory: t.Callable[[], httpx.AsyncClient] = client_factory or (
            lambda: httpx.AsyncClient(timeout=self.options.api_timeout_seconds)
        )
        self._client: httpx.AsyncClient | None = None
        self._batcher: ExecuteBatcher | None = None
        if self.options.api_mode == "parallel":
            self._batcher = ExecuteBatcher(
                api=self,
                batch_window_seconds=self.options.api_batch_window_seconds,
            )

    def __getattr__(self, name: str) -> _MethodGroup:
        if name.startswith("_"):
            raise AttributeError(name)
        return _MethodGroup(api=self, group=name)

    def __repr__(self) -> str:
        return f"API(version={self.options.api_version!r}, mode={self.options.api_mode!r})"

    @property
    def client(self) -> httpx.AsyncClient:
        """
        Return the shared HTTP client, creating it on first use.

        Returns
        -------
        httpx.AsyncClient
            Connection pool shared by every outgoing request.
        """
        if self._client is None or self._client.is_closed:
            self._client = self._client_factory()
        return self._client

    def chain(self) -> Chain:
        return Chain(api=self)

    async def call(self, method: str, params: t.Mapping[str, t.Any] | None = None) -> t.Any:
        """
        Call a remote method.

        In ``parallel`` mode the call is queued on the execute batcher and
        shares a round trip with other calls issued in the same window.

        Parameters
        ----------
        method : str
            Remote method name.
        params : typing.Mapping[str, typing.Any] | None, optional
            Method parameters.

        Returns
        -------
        typing.Any
            The ``response`` field of the API answer.
        """
        if self._batcher is not None and method != EXECUTE_METHOD:
            return await self._batcher.submit(method=method, params=params)
        payload = await self._post(method=method, params=params)
        if "response" not in payload:
            raise ProtocolError(message=f"Response of {method} has no 'response' field")
        return payload["response"]

    async def execute(self, code: str, **params: t.Any) -> ExecuteResponse:
        """
        Run an execute script.

        Parameters
        ----------
        code : str
            Script source.
        **params : typing.Any
            Extra parameters passed to ``execute``.

        Returns
        -------
        ExecuteResponse
            Per-call results and detailed errors.
        """
        payload = await self._post(method=EXECUTE_METHOD, params={**params, "code": code})
        return ExecuteResponse.from_payload(payload=payload)

    async def _post(self, *, method: str, params: t.Mapping[str, t.Any] | None) -> dict[str, t.Any]:
        data = prepare_params(params=params)
        data["v"] = self.options.api_version
        if self.options.token is not None:
            data["access_token"] = self.options.token

        url = f"{self.options.api_base_url}/method/{method}"
        log.debug(event="Calling API method", method=method)
        try:
            response = await self.client.post(url=url, data=data)
            response.raise_for_status()
        except httpx.HTTPError as error:
            log.warning(event="API transport failure", method=method, error=str(object=error))
            raise TransportError(message=f"Request to {method} failed: {error}") from error

        try:
            payload = response.json()
        except ValueError as error:
            raise ProtocolError(message=f"Response of {method} is not valid JSON") from error

        if not isinstance(payload, dict):
            raise ProtocolError(message=f"Response of {method} is not an object")
        if "error" in payload:
            error = APIError.from_payload(payload=payload["error"])
            log.debug(event="API method failed", method=method, code=error.code)
            raise error
        return payload

    async def close(self) -> None:
        """
        Flush queued calls and release the HTTP client.
        """
        if self._batcher is not None:
            await self._batcher.close()
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "API":
        return self

    async def __aexit__(self, exc_type: t.Any, exc_val: t.Any, exc_tb: t.Any) -> None:
        await self.close()
