"""
Scripted cache collaborator for scheduler and client tests.
"""

import asyncio
import typing as t
from collections import defaultdict, deque
from datetime import timedelta

from apiwatch.models import ApiError, ApiResponse, RequestDescriptor, utcnow


def make_response(
    payload: str = "{}",
    *,
    etag: str | None = None,
    expires_in: float = 3600.0,
) -> ApiResponse:
    """
    Build a response expiring ``expires_in`` seconds from now.
    """
    return ApiResponse(
        payload=payload,
        etag=etag,
        expires_at=utcnow() + timedelta(seconds=expires_in),
    )


class FakeCache:
    """
    Cache returning scripted responses per request identity.

    Once the script of a request is exhausted, the last stored entry is
    returned with a one hour expiry so the request stops being re-polled.
    """

    def __init__(self) -> None:
        self._entries: dict[str, ApiResponse] = {}
        self._scripted: dict[str, deque[ApiResponse | Exception]] = defaultdict(deque)
        self.resolved: list[str] = []
        self.delay_seconds = 0.0
        self.peek_errors: dict[str, Exception] = {}

    def script(self, request: RequestDescriptor, *responses: ApiResponse | Exception) -> None:
        self._scripted[request.identity].extend(responses)

    def peek(self, identity: str) -> ApiResponse | None:
        error = self.peek_errors.pop(identity, None)
        if error is not None:
            raise error
        return self._entries.get(identity)

    async def resolve(self, request: RequestDescriptor) -> ApiResponse:
        self.resolved.append(request.identity)
        if self.delay_seconds:
            await asyncio.sleep(delay=self.delay_seconds)
        queue = self._scripted[request.identity]
        if queue:
            response = queue.popleft()
        else:
            stored = self._entries.get(request.identity) or make_response()
            response = stored.model_copy(update={"expires_at": utcnow() + timedelta(hours=1)})
        if isinstance(response, Exception):
            raise response
        if not isinstance(response, ApiError):
            self._entries[request.identity] = response
        return response

    async def resolve_many(self, requests: t.Sequence[RequestDescriptor]) -> list[ApiResponse]:
        return [await self.resolve(request) for request in requests]

    def resolve_count(self, request: RequestDescriptor) -> int:
        return self.resolved.count(request.identity)


async def wait_until(predicate: t.Callable[[], bool], timeout: float = 2.0) -> None:
    """
    Wait until ``predicate`` holds, failing the test after ``timeout`` seconds.
    """

    async def poll() -> None:
        while not predicate():
            await asyncio.sleep(delay=0.005)

    await asyncio.wait_for(poll(), timeout=timeout)
