"""
Response cache collaborator used by the client and the poll scheduler.
"""

from __future__ import annotations

import asyncio
import re
import typing as t
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime

import httpx
import structlog

from apiwatch.auth import TokenProvider, apply_token
from apiwatch.config import ApiConfig
from apiwatch.models import ApiError, ApiResponse, RequestDescriptor, utcnow

log = structlog.get_logger(__name__)

_MAX_AGE_PATTERN = re.compile(r"max-age\s*=\s*(\d+)", flags=re.IGNORECASE)


@t.runtime_checkable
class CacheCoordinator(t.Protocol):
    """
    Contract the poll scheduler needs from a cache.

    ``resolve`` must return an :class:`ApiError` rather than raise when the
    upstream call fails.
    """

    def peek(self, identity: str) -> ApiResponse | None: ...

    async def resolve(self, request: RequestDescriptor) -> ApiResponse: ...

    async def resolve_many(
        self, requests: t.Sequence[RequestDescriptor]
    ) -> list[ApiResponse]: ...


def resolve_expiry(
    *,
    headers: httpx.Headers,
    default_seconds: float,
    now: datetime | None = None,
) -> datetime:
    """
    Compute when a response stops being fresh.

    Parameters
    ----------
    headers : httpx.Headers
        Response headers.
    default_seconds : float
        Lifetime used when no caching header is present.
    now : datetime | None, optional
        Reference time, defaults to the current UTC time.

    Returns
    -------
    datetime
        Timezone-aware expiry timestamp.
    """
    now = now or utcnow()
    cache_control = headers.get("cache-control", "")
    match = _MAX_AGE_PATTERN.search(cache_control)
    if match is not None:
        return now + timedelta(seconds=int(match.group(1)))
    if "no-cache" in cache_control.lower() or "no-store" in cache_control.lower():
        return now

    expires = headers.get("expires")
    if expires:
        try:
            expires_at = parsedate_to_datetime(expires)
        except (TypeError, ValueError):
            log.debug(event="Ignoring malformed Expires header", expires=expires)
        else:
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
            return expires_at

    return now + timedelta(seconds=default_seconds)


class ResponseCache:
    """
    In-memory response cache keyed by request identity.

    Fresh entries are served without network access. Expired entries are
    revalidated with ``If-None-Match`` when an ``ETag`` is known; a ``304``
    answer extends the stored entry. Error responses are never stored.

    Parameters
    ----------
    config : ApiConfig | None, optional
        Client configuration.
    token_provider : TokenProvider | None, optional
        Source of access tokens for scoped requests.
    """

    def __init__(
        self,
        *,
        config: ApiConfig | None = None,
        token_provider: TokenProvider | None = None,
    ) -> None:
        self._config = config or ApiConfig()
        self._token_provider = token_provider
        self._entries: dict[str, ApiResponse] = {}
        self._client_factory: t.Callable[[], httpx.AsyncClient] = lambda: httpx.AsyncClient(
            timeout=self._config.request_timeout_seconds
        )

    def __len__(self) -> int:
        return len(self._entries)

    def peek(self, identity: str) -> ApiResponse | None:
        """Return the stored entry, expired or not, without network access."""
        return self._entries.get(identity)

    def invalidate(self, identity: str | None = None) -> None:
        if identity is None:
            self._entries.clear()
        else:
            self._entries.pop(identity, None)

    async def _prepare(
        self,
        *,
        request: RequestDescriptor,
        cached: ApiResponse | None,
    ) -> tuple[str, dict[str, str]]:
        """
        Build the outgoing URL and headers for a request.

        Parameters
        ----------
        request : RequestDescriptor
            Request to send.
        cached : ApiResponse | None
            Stored entry used for conditional revalidation.

        Returns
        -------
        tuple[str, dict[str, str]]
            URL and headers.
        """
        url = request.url
        headers = {"User-Agent": self._config.user_agent, **request.headers}
        if cached is not None and cached.etag:
            headers["If-None-Match"] = cached.etag

        if self._token_provider is not None and (request.user or request.scope):
            token = await self._token_provider.get_token(user=request.user, scope=request.scope)
            if token:
                url, headers = apply_token(
                    settings=self._token_provider.settings,
                    token=token,
                    url=url,
                    headers=headers,
                )
        return url, headers

    async def resolve(self, request: RequestDescriptor) -> ApiResponse:
        """
        Return a fresh response for ``request``, hitting the network if needed.

        Parameters
        ----------
        request : RequestDescriptor
            Request to resolve.

        Returns
        -------
        ApiResponse
            Cached or fetched response, or an :class:`ApiError`.
        """
        identity = request.identity
        cached = self._entries.get(identity)
        if cached is not None and not cached.is_expired():
            log.debug(event="Cache hit", identity=identity, url=request.url)
            return cached

        url, headers = await self._prepare(request=request, cached=cached)
        log.debug(
            event="Sending request",
            identity=identity,
            method=request.method,
            url=request.url,
            revalidating=cached is not None,
        )
        try:
            async with self._client_factory() as client:
                response = await client.request(
                    method=str(request.method),
                    url=url,
                    headers=headers,
                )
        except httpx.HTTPError as error:
            log.error(
                event="Request failed",
                identity=identity,
                url=request.url,
                error=str(object=error),
            )
            return ApiError(status_code=0, message=f"{type(error).__name__}: {error}")

        expires_at = resolve_expiry(
            headers=response.headers,
            default_seconds=self._config.default_expiry_seconds,
        )
        if response.status_code == 304 and cached is not None:
            result = cached.model_copy(
                update={
                    "expires_at": expires_at,
                    "cache_control": response.headers.get("cache-control", cached.cache_control),
                }
            )
        elif response.is_error:
            log.warning(
                event="Upstream returned an error status",
                identity=identity,
                url=request.url,
                status_code=response.status_code,
            )
            return ApiError(
                payload=response.text,
                status_code=response.status_code,
                message=f"{response.status_code} {response.reason_phrase}: {response.text}",
            )
        else:
            result = ApiResponse(
                payload=response.text,
                status_code=response.status_code,
                etag=response.headers.get("etag"),
                expires_at=expires_at,
                cache_control=response.headers.get("cache-control"),
            )

        self._entries[identity] = result
        return result

    async def resolve_many(self, requests: t.Sequence[RequestDescriptor]) -> list[ApiResponse]:
        """
        Resolve several requests concurrently.

        Returns
        -------
        list[ApiResponse]
            Responses in the order of ``requests``.
        """
        return list(await asyncio.gather(*(self.resolve(request) for request in requests)))
