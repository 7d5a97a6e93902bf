"""
Runtime options shared by the API client, update sources and batching.
"""

from __future__ import annotations

import os
import typing as t

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

ENV_PREFIX = "VK_"

# Platform limit on calls compiled into a single execute script.
EXECUTE_SLICE_SIZE = 25

# attachments + extended events + extra online data + random_id
DEFAULT_POLLING_MODE = 2 | 8 | 64 | 128
USER_POLLING_VERSION = 3

ApiMode = t.Literal["sequential", "parallel"]


class VKOptions(BaseModel):
    """
    Validated configuration surface.

    Notes
    -----
    ``from_env`` reads ``VK_*`` variables, optionally from a ``.env`` file.
    The execute slice size is not part of the options: it is fixed at
    ``EXECUTE_SLICE_SIZE``.
    """

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    token: str | None = None
    api_version: str = "5.131"
    api_base_url: str = "https://api.vk.com"
    api_timeout_seconds: float = Field(default=30.0, gt=0)
    api_mode: ApiMode = "sequential"
    api_batch_window_seconds: float = Field(default=0.05, ge=0)

    polling_group_id: int | None = None
    polling_wait: int = Field(default=25, ge=1, le=90)
    polling_mode: int = DEFAULT_POLLING_MODE
    polling_retry_attempts: int = Field(default=5, ge=1)
    polling_retry_initial_seconds: float = Field(default=1.0, ge=0)
    polling_retry_max_seconds: float = Field(default=30.0, ge=0)
    polling_retry_jitter_seconds: float = Field(default=1.0, ge=0)

    webhook_path: str = "/"
    webhook_secret: str | None = None
    webhook_confirmation: str | None = None
    webhook_dedupe_ttl_seconds: float = Field(default=60.0, ge=0)

    @field_validator("api_base_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("webhook_path")
    @classmethod
    def ensure_leading_slash(cls, value: str) -> str:
        return value if value.startswith("/") else f"/{value}"

    @property
    def polling_request_timeout_seconds(self) -> float:
        """
        HTTP timeout for a long-poll request.

        Returns
        -------
        float
            Server wait plus a margin for the network round trip.
        """
        return float(self.polling_wait) + 10.0

    @classmethod
    def from_env(
        cls,
        *,
        load_env_file: bool = True,
        env_file: str | os.PathLike[str] | None = None,
        **overrides: t.Any,
    ) -> "VKOptions":
        """
        Build options from ``VK_*`` environment variables.

        Parameters
        ----------
        load_env_file : bool, optional
            Whether to load a ``.env`` file before reading the environment.
        env_file : str | os.PathLike[str] | None, optional
            Explicit ``.env`` path. By default the file is searched for.
        **overrides : typing.Any
            Explicit values taking precedence over the environment.

        Returns
        -------
        VKOptions
            Validated options.
        """
        if load_env_file:
            load_dotenv(dotenv_path=env_file)

        env_fields = {
            "token": "TOKEN",
            "api_version": "API_VERSION",
            "api_base_url": "API_BASE_URL",
            "api_timeout_seconds": "API_TIMEOUT",
            "api_mode": "API_MODE",
            "polling_group_id": "POLLING_GROUP_ID",
            "polling_wait": "POLLING_WAIT",
            "polling_retry_attempts": "POLLING_RETRY_ATTEMPTS",
            "webhook_path": "WEBHOOK_PATH",
            "webhook_secret": "WEBHOOK_SECRET",
            "webhook_confirmation": "WEBHOOK_CONFIRMATION",
        }
        values: dict[str, t.Any] = {}
        for field_name, env_suffix in env_fields.items():
            raw = os.getenv(key=f"{ENV_PREFIX}{env_suffix}")
            if raw is not None and raw != "":
                values[field_name] = raw
        values.update(overrides)
        return cls.model_validate(obj=values)
