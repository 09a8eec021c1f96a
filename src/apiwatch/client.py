"""
High level client tying the API document, the cache and the poll scheduler.
"""

from __future__ import annotations

import typing as t

import structlog

from apiwatch.auth import TokenProvider, TokenSettings
from apiwatch.cache import CacheCoordinator, ResponseCache
from apiwatch.config import ApiConfig
from apiwatch.core import PollScheduler
from apiwatch.models import ApiResponse, EventKind, HttpMethod, RequestDescriptor
from apiwatch.registry import ApiUpdate, SubscriptionRegistry
from apiwatch.request import ParameterBundle, get_requests
from apiwatch.spec import OpenApiSpec

log = structlog.get_logger(__name__)


class ApiClient:
    """
    Request and watch operations declared by an API document.

    Parameters
    ----------
    spec : OpenApiSpec
        Operation lookup.
    config : ApiConfig | None, optional
        Client configuration.
    cache : CacheCoordinator | None, optional
        Response cache. Defaults to an in-memory :class:`ResponseCache`.
    token_provider : TokenProvider | None, optional
        Token source for scoped operations.
    """

    def __init__(
        self,
        *,
        spec: OpenApiSpec,
        config: ApiConfig | None = None,
        cache: CacheCoordinator | None = None,
        token_provider: TokenProvider | None = None,
    ) -> None:
        self.spec = spec
        self.config = config or ApiConfig()
        self.cache = (
            cache
            if cache is not None
            else ResponseCache(config=self.config, token_provider=token_provider)
        )
        if token_provider is not None:
            self.token = token_provider.settings
        else:
            self.token = TokenSettings(
                name=self.config.token_name,
                location=self.config.token_location,
            )
        self.registry = SubscriptionRegistry()
        self.scheduler = PollScheduler(
            cache=self.cache,
            registry=self.registry,
            config=self.config,
        )

    def get_requests(
        self,
        path: str,
        method: HttpMethod | str = HttpMethod.GET,
        parameters: ParameterBundle | None = None,
        users: t.Sequence[str] | None = None,
    ) -> list[RequestDescriptor]:
        """
        Expand a call into concrete requests without sending them.

        Parameters
        ----------
        path : str
            Declared path template.
        method : HttpMethod | str, optional
            HTTP method or operation type.
        parameters : ParameterBundle | None, optional
            Values per parameter name.
        users : typing.Sequence[str] | None, optional
            Acting users; defaults to ``config.default_user``.

        Returns
        -------
        list[RequestDescriptor]
            Requests in batch index order.
        """
        operation = self.spec.get_operation(path, method)
        return get_requests(
            operation,
            parameters,
            users if users else [self.config.default_user],
            token=self.token,
        )

    async def request(
        self,
        path: str,
        method: HttpMethod | str = HttpMethod.GET,
        parameters: ParameterBundle | None = None,
        users: t.Sequence[str] | None = None,
    ) -> list[ApiResponse]:
        """
        Send a batch through the cache.

        Returns
        -------
        list[ApiResponse]
            One response per request, in batch index order. Failed requests
            are returned as :class:`~apiwatch.models.ApiError`.
        """
        requests = self.get_requests(path, method, parameters, users)
        return await self.cache.resolve_many(requests)

    async def subscribe(
        self,
        path: str,
        method: HttpMethod | str = HttpMethod.GET,
        event_kind: EventKind = EventKind.update,
        callback: ApiUpdate | None = None,
        parameters: ParameterBundle | None = None,
        users: t.Sequence[str] | None = None,
    ) -> list[RequestDescriptor]:
        """
        Watch a batch and call ``callback`` on each update or change.

        Parameters
        ----------
        path : str
            Declared path template.
        method : HttpMethod | str, optional
            HTTP method or operation type.
        event_kind : EventKind, optional
            ``update`` fires on every successful poll, ``change`` only when the
            response version differs from the previous one.
        callback : ApiUpdate | None, optional
            Called with ``(current, previous)``. Replaces any callback already
            registered for the same request and event kind.
        parameters : ParameterBundle | None, optional
            Values per parameter name.
        users : typing.Sequence[str] | None, optional
            Acting users.

        Returns
        -------
        list[RequestDescriptor]
            Scheduled requests, usable with :meth:`unsubscribe`.

        Raises
        ------
        EventsDisabled
            If ``config.enable_event_queue`` is ``False``.
        """
        requests = self.get_requests(path, method, parameters, users)
        await self.scheduler.schedule(requests, event_kind=event_kind)
        if callback is not None:
            for request in requests:
                self.registry.register(request.identity, event_kind, callback)
        log.info(
            event="Subscribed",
            path=path,
            method=str(method).upper(),
            event_kind=event_kind,
            request_count=len(requests),
        )
        return requests

    async def unsubscribe(
        self,
        request: RequestDescriptor,
        event_kind: EventKind | None = None,
    ) -> None:
        """
        Remove a subscription; polling stops once no callback is left.

        Parameters
        ----------
        request : RequestDescriptor
            Request returned by :meth:`subscribe`.
        event_kind : EventKind | None, optional
            Event to drop; all events when ``None``.
        """
        self.registry.unregister(request.identity, event_kind)
        if not self.registry.has_subscribers(request.identity):
            self.registry.unregister(request.identity)
            await self.scheduler.unschedule(request)

    async def close(self) -> None:
        await self.scheduler.close()

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: t.Any,
    ) -> None:
        await self.close()
