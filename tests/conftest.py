import os
import typing as t

import pytest

from tests.mocks.vk import FakeVKAPI
from vkrelay.api import API
from vkrelay.config import VKOptions


@pytest.fixture(autouse=True)
def test_clear_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("VK_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def fake_vk() -> FakeVKAPI:
    """
    Create a fresh platform emulation.

    Returns
    -------
    FakeVKAPI
        Emulated API, execute and long-poll endpoints.
    """
    return FakeVKAPI()


@pytest.fixture
def options() -> VKOptions:
    """
    Options with instant retries, so backoff does not slow tests down.
    """
    return VKOptions(
        token="test-token",
        polling_retry_attempts=3,
        polling_retry_initial_seconds=0,
        polling_retry_max_seconds=0,
        polling_retry_jitter_seconds=0,
    )


@pytest.fixture
def make_api(fake_vk: FakeVKAPI, options: VKOptions) -> t.Callable[..., API]:
    """
    Build API clients wired to ``fake_vk``.

    Returns
    -------
    typing.Callable[..., API]
        Factory accepting option overrides.
    """

    def factory(**overrides: t.Any) -> API:
        api_options = options.model_copy(update=overrides) if overrides else options
        return API(options=api_options, client_factory=fake_vk.client_factory())

    return factory
