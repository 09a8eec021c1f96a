"""
Poll scheduler and event dispatcher.

A single background task re-checks scheduled requests when their cached
response expires, compares the new response with the previous one and fires
the registered ``update`` / ``change`` callbacks.
"""

from __future__ import annotations

import asyncio
import heapq
import inspect
import itertools
import time
import typing as t
from dataclasses import dataclass, field

import structlog

from apiwatch.cache import CacheCoordinator
from apiwatch.config import ApiConfig, UpstreamErrorPolicy
from apiwatch.exceptions import EventsDisabled, UpstreamError
from apiwatch.models import ApiError, ApiResponse, EventKind, RequestDescriptor
from apiwatch.registry import SubscriptionRegistry
from apiwatch.utils.logging import logging_context

log = structlog.get_logger(__name__)


@dataclass(order=True)
class _PendingPoll:
    """A request waiting for its next check."""

    due_at: float
    sequence: int
    request: RequestDescriptor = field(compare=False)


class PollScheduler:
    """
    Keep scheduled requests fresh and dispatch change events.

    Parameters
    ----------
    cache : CacheCoordinator
        Cache used to read previous responses and resolve fresh ones.
    registry : SubscriptionRegistry | None, optional
        Registry holding the callbacks. A new one is created when omitted.
    config : ApiConfig | None, optional
        Scheduler configuration.

    Notes
    -----
    Polls are processed one at a time, in due-at order. Requests with the
    same due-at are processed in scheduling order. A slow upstream call
    delays every other due poll.
    """

    def __init__(
        self,
        *,
        cache: CacheCoordinator,
        registry: SubscriptionRegistry | None = None,
        config: ApiConfig | None = None,
    ) -> None:
        self._cache = cache
        self.registry = registry if registry is not None else SubscriptionRegistry()
        self._config = config or ApiConfig()

        self._pending: list[_PendingPoll] = []
        self._pending_lock = asyncio.Lock()
        self._sequence = itertools.count()
        # identity -> current poll, pending or in flight
        self._tracked: dict[str, _PendingPoll] = {}
        self._wake = asyncio.Event()
        self._worker: asyncio.Task[None] | None = None
        self._in_flight: _PendingPoll | None = None

        log.debug(
            event="Initialized PollScheduler",
            enable_event_queue=self._config.enable_event_queue,
            initial_poll_delay_seconds=self._config.initial_poll_delay_seconds,
            upstream_error_policy=self._config.upstream_error_policy,
        )

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @property
    def pending_count(self) -> int:
        return len(self._tracked)

    def is_scheduled(self, request: RequestDescriptor) -> bool:
        return request.identity in self._tracked

    def next_due_at(self) -> float | None:
        """Return the earliest due-at of a live pending poll, if any."""
        for poll in sorted(self._pending):
            if self._is_live(poll=poll):
                return poll.due_at
        return None

    def _is_live(self, *, poll: _PendingPoll) -> bool:
        return self._tracked.get(poll.request.identity) is poll

    async def schedule(
        self,
        requests: t.Sequence[RequestDescriptor],
        *,
        event_kind: EventKind = EventKind.update,
    ) -> t.Sequence[RequestDescriptor]:
        """
        Start watching requests.

        Parameters
        ----------
        requests : typing.Sequence[RequestDescriptor]
            Requests to poll. Requests already pending are left untouched.
        event_kind : EventKind, optional
            Event slot to create in the registry for each request.

        Returns
        -------
        typing.Sequence[RequestDescriptor]
            The scheduled requests.

        Raises
        ------
        EventsDisabled
            If the event queue is disabled in the configuration.
        """
        if not self._config.enable_event_queue:
            raise EventsDisabled()

        due_at = time.time() + self._config.initial_poll_delay_seconds
        added = 0
        async with self._pending_lock:
            for request in requests:
                self.registry.ensure(request.identity, event_kind)
                if request.identity in self._tracked:
                    log.debug(
                        event="Request already scheduled",
                        identity=request.identity,
                        url=request.url,
                    )
                    continue
                self._push(request=request, due_at=due_at)
                added += 1

        log.debug(
            event="Scheduled requests",
            request_count=len(requests),
            added_count=added,
            pending_count=self.pending_count,
        )
        self._wake.set()
        self._ensure_worker()
        return requests

    async def unschedule(self, request: RequestDescriptor) -> bool:
        """
        Stop polling a request. Its heap entry is discarded when it surfaces.

        Returns
        -------
        bool
            ``True`` if the request was being tracked.
        """
        async with self._pending_lock:
            removed = self._tracked.pop(request.identity, None) is not None
        if removed:
            log.debug(event="Unscheduled request", identity=request.identity, url=request.url)
            self._wake.set()
        return removed

    def _push(self, *, request: RequestDescriptor, due_at: float) -> None:
        poll = _PendingPoll(due_at=due_at, sequence=next(self._sequence), request=request)
        self._tracked[request.identity] = poll
        heapq.heappush(self._pending, poll)

    def _ensure_worker(self) -> None:
        if self.is_running:
            return
        self._worker = asyncio.create_task(coro=self._run(), name="apiwatch_poll_worker")
        log.debug(event="Started poll worker")

    async def _pop_due(self) -> tuple[_PendingPoll | None, float | None]:
        """
        Pop the earliest pending poll if it is due.

        Returns
        -------
        tuple[_PendingPoll | None, float | None]
            The due poll (if any) and the due-at of the earliest live poll
            left waiting (if any).
        """
        async with self._pending_lock:
            while self._pending and not self._is_live(poll=self._pending[0]):
                heapq.heappop(self._pending)
            if not self._pending:
                return None, None
            earliest = self._pending[0]
            if earliest.due_at > time.time():
                return None, earliest.due_at
            heapq.heappop(self._pending)
            return earliest, None

    async def _run(self) -> None:
        while True:
            poll, due_at = await self._pop_due()
            if poll is not None:
                self._in_flight = poll
                await self._process(poll=poll)
                self._in_flight = None
                continue

            timeout = None if due_at is None else max(0.0, due_at - time.time())
            try:
                async with asyncio.timeout(timeout):
                    await self._wake.wait()
            except TimeoutError:
                continue
            self._wake.clear()

    async def _process(self, *, poll: _PendingPoll) -> None:
        """
        Check one due request and dispatch its events.

        Parameters
        ----------
        poll : _PendingPoll
            Poll popped from the pending queue.
        """
        request = poll.request
        identity = request.identity
        with logging_context(identity=identity, url=request.url, user=request.user):
            previous: ApiResponse | None = None
            try:
                previous = self._cache.peek(identity)
                current = await self._cache.resolve(request)
            except Exception as error:
                log.exception(event="Cache raised while resolving request")
                current = ApiError(status_code=0, message=f"{type(error).__name__}: {error}")

            if isinstance(current, ApiError):
                await self._handle_upstream_error(poll=poll, error=UpstreamError(current))
                return

            await self._dispatch(
                event_kind=EventKind.update, identity=identity, current=current, previous=previous
            )
            if previous is not None and current.version != previous.version:
                log.debug(
                    event="Response changed",
                    previous_version=previous.version,
                    current_version=current.version,
                )
                await self._dispatch(
                    event_kind=EventKind.change,
                    identity=identity,
                    current=current,
                    previous=previous,
                )

            await self._reschedule(poll=poll, due_at=current.expires_at.timestamp())

    async def _reschedule(self, *, poll: _PendingPoll, due_at: float) -> None:
        async with self._pending_lock:
            if self._tracked.get(poll.request.identity) is not poll:
                log.debug(event="Dropped unscheduled request after poll")
                return
            self._push(request=poll.request, due_at=due_at)
        log.debug(event="Rescheduled request", due_in_seconds=round(due_at - time.time(), 3))

    async def _handle_upstream_error(self, *, poll: _PendingPoll, error: UpstreamError) -> None:
        log.error(
            event="Poll failed with upstream error",
            status_code=error.response.status_code,
            error=str(object=error),
            policy=self._config.upstream_error_policy,
        )
        if self._config.upstream_error_policy == UpstreamErrorPolicy.retry:
            await self._reschedule(
                poll=poll,
                due_at=time.time() + self._config.upstream_retry_seconds,
            )
            return
        async with self._pending_lock:
            if self._tracked.get(poll.request.identity) is poll:
                del self._tracked[poll.request.identity]

    async def _dispatch(
        self,
        *,
        event_kind: EventKind,
        identity: str,
        current: ApiResponse,
        previous: ApiResponse | None,
    ) -> None:
        callback = self.registry.lookup(identity, event_kind)
        if callback is None:
            return
        try:
            result = callback(current, previous)
            if inspect.isawaitable(result):
                await result
        except Exception as error:
            log.error(
                event="Subscription callback failed",
                event_kind=event_kind,
                error=str(object=error),
            )

    async def close(self) -> None:
        """Stop the background worker. Pending polls are kept."""
        worker = self._worker
        if worker is None or worker.done():
            self._worker = None
            return
        worker.cancel()
        try:
            await worker
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            log.debug(event="Poll worker cancelled during close")
        self._worker = None

        # requeue a poll interrupted mid-flight
        poll, self._in_flight = self._in_flight, None
        if poll is not None and self._is_live(poll=poll):
            self._push(request=poll.request, due_at=time.time())
