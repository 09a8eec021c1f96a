"""
Subscription registry mapping ``(request identity, event kind)`` to a callback.
"""

from __future__ import annotations

import typing as t

import structlog

from apiwatch.models import ApiResponse, EventKind

log = structlog.get_logger(__name__)

ApiUpdate = t.Callable[[ApiResponse, ApiResponse | None], t.Any]
SubscriptionKey = tuple[str, EventKind]


class SubscriptionRegistry:
    """
    Hold at most one callback per ``(identity, event kind)`` key.

    Notes
    -----
    Registration is last-write-wins: registering a second callback for the
    same key replaces the first one. ``register`` returns the replaced
    callback and logs a warning so callers juggling several subscriptions to
    the same request can notice the replacement.
    """

    def __init__(self) -> None:
        self._callbacks: dict[SubscriptionKey, ApiUpdate | None] = {}

    def __contains__(self, key: object) -> bool:
        return key in self._callbacks

    def __len__(self) -> int:
        return len(self._callbacks)

    def ensure(self, identity: str, event_kind: EventKind) -> None:
        """Create an empty slot for a key unless one exists."""
        self._callbacks.setdefault((identity, EventKind(event_kind)), None)

    def register(
        self,
        identity: str,
        event_kind: EventKind,
        callback: ApiUpdate,
    ) -> ApiUpdate | None:
        """
        Register ``callback`` for a key, replacing any previous callback.

        Parameters
        ----------
        identity : str
            Request identity.
        event_kind : EventKind
            Event to subscribe to.
        callback : ApiUpdate
            Called with ``(current, previous)``; may be a coroutine function.

        Returns
        -------
        ApiUpdate | None
            The callback that was replaced, if any.
        """
        key = (identity, EventKind(event_kind))
        previous = self._callbacks.get(key)
        self._callbacks[key] = callback
        if previous is not None and previous is not callback:
            log.warning(
                event="Replaced existing subscription callback",
                identity=identity,
                event_kind=key[1],
            )
        return previous

    def lookup(self, identity: str, event_kind: EventKind) -> ApiUpdate | None:
        return self._callbacks.get((identity, EventKind(event_kind)))

    def unregister(self, identity: str, event_kind: EventKind | None = None) -> int:
        """
        Remove one key, or every key of ``identity`` when ``event_kind`` is ``None``.

        Returns
        -------
        int
            Number of removed keys.
        """
        if event_kind is not None:
            keys = [(identity, EventKind(event_kind))]
        else:
            keys = [key for key in self._callbacks if key[0] == identity]
        keys = [key for key in keys if key in self._callbacks]
        for key in keys:
            del self._callbacks[key]
        return len(keys)

    def has_subscribers(self, identity: str) -> bool:
        return any(
            callback is not None
            for (key_identity, _), callback in self._callbacks.items()
            if key_identity == identity
        )
