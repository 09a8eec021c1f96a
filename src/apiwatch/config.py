"""
Runtime configuration for apiwatch clients and schedulers.
"""

from __future__ import annotations

import os
import typing as t
from enum import StrEnum

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from apiwatch.models import ParameterLocation

ENV_PREFIX = "APIWATCH_"


class UpstreamErrorPolicy(StrEnum):
    drop = "drop"
    retry = "retry"


class ApiConfig(BaseModel):
    """
    Client configuration.

    Parameters
    ----------
    enable_event_queue : bool
        If ``False``, scheduling polls raises ``EventsDisabled``.
    initial_poll_delay_seconds : float
        Delay before the first check of a newly scheduled request.
    upstream_error_policy : UpstreamErrorPolicy
        ``drop`` stops polling a request after an error response, ``retry``
        reschedules it after ``upstream_retry_seconds``.
    upstream_retry_seconds : float
        Retry delay used by the ``retry`` policy.
    default_expiry_seconds : float
        Freshness lifetime of responses that carry no caching headers.
    request_timeout_seconds : float
        Timeout of the underlying HTTP client.
    default_user : str
        Acting user when a call does not name one.
    user_agent : str
        ``User-Agent`` header sent with every request.
    token_name : str | None
        Name of the parameter carrying the access token.
    token_location : ParameterLocation | None
        Where the access token is carried.
    """

    enable_event_queue: bool = True
    initial_poll_delay_seconds: float = Field(default=1.0, ge=0.0)
    upstream_error_policy: UpstreamErrorPolicy = UpstreamErrorPolicy.drop
    upstream_retry_seconds: float = Field(default=30.0, ge=0.0)
    default_expiry_seconds: float = Field(default=60.0, ge=0.0)
    request_timeout_seconds: float = Field(default=30.0, gt=0.0)
    default_user: str = ""
    user_agent: str = "apiwatch"
    token_name: str | None = "Authorization"
    token_location: ParameterLocation | None = ParameterLocation.header

    @classmethod
    def from_env(cls, **overrides: t.Any) -> "ApiConfig":
        """
        Build a config from ``APIWATCH_*`` environment variables.

        A ``.env`` file in the working directory is loaded first; explicit
        keyword overrides win over the environment.

        Parameters
        ----------
        **overrides : typing.Any
            Field values taking precedence over the environment.

        Returns
        -------
        ApiConfig
            Validated configuration.
        """
        load_dotenv()
        values: dict[str, t.Any] = {}
        for name in cls.model_fields:
            env_value = os.getenv(f"{ENV_PREFIX}{name.upper()}")
            if env_value is not None:
                values[name] = env_value
        values.update(overrides)
        return cls.model_validate(values)
