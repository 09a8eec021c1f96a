from __future__ import annotations

import hashlib
import json
import typing as t
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from functools import cached_property

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, computed_field, field_validator

from apiwatch.exceptions import UnknownOperation

T = t.TypeVar("T")


class ParameterLocation(StrEnum):
    query = "query"
    path = "path"
    header = "header"
    cookie = "cookie"


class HttpMethod(StrEnum):
    GET = "GET"
    PUT = "PUT"
    POST = "POST"
    DELETE = "DELETE"
    OPTIONS = "OPTIONS"
    HEAD = "HEAD"
    PATCH = "PATCH"
    TRACE = "TRACE"

    @classmethod
    def from_operation(cls, operation: str) -> "HttpMethod":
        """
        Map an OpenAPI operation type (``get``, ``post``...) to an HTTP method.

        Parameters
        ----------
        operation : str
            Operation type, case-insensitive.

        Returns
        -------
        HttpMethod
            Matching HTTP method.

        Raises
        ------
        UnknownOperation
            If the operation type has no HTTP method counterpart.
        """
        try:
            return cls(str(operation).upper())
        except ValueError:
            raise UnknownOperation(f"Unknown operation type: {operation!r}") from None


class EventKind(StrEnum):
    update = "update"
    change = "change"


class ParameterSpec(BaseModel):
    """A declared operation parameter."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    location: ParameterLocation = Field(alias="in")
    required: bool = False


class OperationDescriptor(BaseModel):
    """
    One documented API action, as declared by the API specification.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    path: str
    method: HttpMethod
    operation_id: str | None = None
    parameters: tuple[ParameterSpec, ...] = ()
    security: tuple[dict[str, list[str]], ...] = ()
    server_url: str = ""

    @property
    def scope(self) -> str:
        """
        First scope of the first scheme of the first security requirement.

        Returns
        -------
        str
            Scope name, or an empty string when the operation declares none.
        """
        if not self.security:
            return ""
        requirement = self.security[0]
        if not requirement:
            return ""
        scopes = next(iter(requirement.values()))
        return scopes[0] if scopes else ""

    @property
    def url_template(self) -> str:
        """
        Absolute URL template with ``{name}`` path placeholders.

        Returns
        -------
        str
            Server URL and path joined by exactly one slash.
        """
        return join_url(base=self.server_url, path=self.path)


def join_url(*, base: str, path: str) -> str:
    if not base:
        return path
    if not path:
        return base
    return f"{base.rstrip('/')}/{path.lstrip('/')}"


@dataclass(frozen=True)
class RequestDescriptor:
    """
    One concrete, fully resolved unit of work.

    Parameters
    ----------
    url : str
        Absolute URL with path and query parameters resolved.
    method : HttpMethod
        HTTP method.
    headers : dict[str, str]
        Resolved header parameters.
    user : str
        Acting user.
    scope : str
        Security scope required by the operation, possibly empty.
    """

    url: str
    method: HttpMethod = HttpMethod.GET
    headers: dict[str, str] = field(default_factory=dict, hash=False)
    user: str = ""
    scope: str = ""

    @cached_property
    def identity(self) -> str:
        """
        Content-derived key shared by the cache, the scheduler and the registry.

        Returns
        -------
        str
            SHA-256 fingerprint of method, URL, sorted headers and user.
        """
        canonical_payload = json.dumps(
            obj={
                "method": str(self.method),
                "url": self.url,
                "headers": dict(sorted(self.headers.items())),
                "user": self.user,
            },
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
        )
        return hashlib.sha256(canonical_payload.encode(encoding="utf-8")).hexdigest()


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class ApiResponse(BaseModel):
    """
    Response returned by the cache collaborator.

    ``version`` is the marker used for change detection: the ``ETag`` when the
    server sent one, otherwise a fingerprint of the payload.
    """

    model_config = ConfigDict(frozen=True)

    payload: str = ""
    status_code: int = 200
    etag: str | None = None
    expires_at: datetime = Field(default_factory=utcnow)
    cache_control: str | None = None

    @field_validator("expires_at")
    @classmethod
    def ensure_timezone(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @computed_field  # type: ignore[prop-decorator]
    @property
    def version(self) -> str:
        if self.etag:
            return self.etag
        return hashlib.sha256(self.payload.encode(encoding="utf-8")).hexdigest()

    @property
    def is_error(self) -> bool:
        return False

    def is_expired(self, *, now: datetime | None = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    @property
    def data(self) -> t.Any:
        """Payload decoded as JSON."""
        return json.loads(s=self.payload) if self.payload else None

    def parse(self, type_: type[T]) -> T:
        """
        Validate the JSON payload into ``type_``.

        Parameters
        ----------
        type_ : type[T]
            Any type pydantic can validate (models, lists of models...).

        Returns
        -------
        T
            Validated payload.
        """
        return TypeAdapter(type_).validate_json(self.payload or "null")


class ApiError(ApiResponse):
    """Error variant of :class:`ApiResponse`."""

    message: str = ""

    @property
    def is_error(self) -> bool:
        return True
