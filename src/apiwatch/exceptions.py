"""
apiwatch-specific runtime exceptions.
"""

from __future__ import annotations

import typing as t

if t.TYPE_CHECKING:
    from apiwatch.models import ApiError


class ApiWatchError(Exception):
    """Base class for every error raised by apiwatch."""


class ParameterValidationError(ApiWatchError, ValueError):
    """
    Raised while classifying a parameter bundle against an operation.

    Notes
    -----
    Validation errors abort the whole batch: no partial request list is ever
    returned to the caller.
    """


class MissingRequiredParameter(ParameterValidationError):
    """A required operation parameter was not supplied."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Required parameter '{name}' not supplied.")
        self.name = name


class InconsistentBatchLength(ParameterValidationError):
    """Two multi-valued parameters disagree on the batch length."""

    def __init__(self, name: str, length: int, batch_length: int) -> None:
        super().__init__(
            f"Parameter '{name}' has {length} value(s) but the batch length is "
            f"{batch_length}. Every batch parameter must have one value for all "
            "requests or one value for each request."
        )
        self.name = name
        self.length = length
        self.batch_length = batch_length


class InconsistentUserCount(ParameterValidationError):
    """The user list length is neither 1 nor the batch length."""

    def __init__(self, user_count: int, batch_length: int) -> None:
        super().__init__(
            f"Number of users must be 1 or the batch length ({batch_length}), got {user_count}."
        )
        self.user_count = user_count
        self.batch_length = batch_length


class UnknownOperation(ApiWatchError, LookupError):
    """An HTTP method or path has no recognized operation mapping."""


class EventsDisabled(ApiWatchError, RuntimeError):
    """Raised when scheduling while the event queue is disabled."""

    def __init__(self) -> None:
        super().__init__(
            "Events have been disabled. Enable them via 'enable_event_queue' in the config."
        )


class UpstreamError(ApiWatchError, RuntimeError):
    """
    Wrap an error response observed while processing a poll.

    Parameters
    ----------
    response : ApiError
        Error variant returned by the cache collaborator.
    """

    def __init__(self, response: ApiError) -> None:
        super().__init__(response.message)
        self.response = response
