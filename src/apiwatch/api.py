"""
Main endpoint for users.
Exposes a ``connect`` function that builds an :class:`ApiClient` from an API document.
"""

from __future__ import annotations

import typing as t
from pathlib import Path

from apiwatch.auth import TokenProvider
from apiwatch.cache import CacheCoordinator
from apiwatch.client import ApiClient
from apiwatch.config import ApiConfig
from apiwatch.spec import OpenApiSpec


def connect(
    document: Path | str | dict[str, t.Any] | OpenApiSpec,
    *,
    server_url: str | None = None,
    config: ApiConfig | None = None,
    cache: CacheCoordinator | None = None,
    token_provider: TokenProvider | None = None,
) -> ApiClient:
    """
    Build a client for the operations declared by an API document.

    Parameters
    ----------
    document : Path | str | dict[str, typing.Any] | OpenApiSpec
        Path to a JSON/YAML document, an already parsed document, or a spec.
    server_url : str | None, optional
        Override of the server URL declared by the document.
    config : ApiConfig | None, optional
        Client configuration. Defaults to ``ApiConfig.from_env()``.
    cache : CacheCoordinator | None, optional
        Response cache. Defaults to an in-memory cache.
    token_provider : TokenProvider | None, optional
        Token source for scoped operations.

    Returns
    -------
    ApiClient
        Client usable as an async context manager; leaving the context stops
        the background poll worker.
    """
    if isinstance(document, OpenApiSpec):
        spec = document
    elif isinstance(document, dict):
        spec = OpenApiSpec(document, server_url=server_url)
    else:
        spec = OpenApiSpec.from_path(document, server_url=server_url)

    return ApiClient(
        spec=spec,
        config=config if config is not None else ApiConfig.from_env(),
        cache=cache,
        token_provider=token_provider,
    )
