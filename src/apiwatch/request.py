"""
Expand one logical API call into a batch of concrete request descriptors.

Every parameter carries a sequence of values. A sequence of length 1 is
broadcast to every request of the batch, longer sequences provide one value
per request and must all share the same length.
"""

from __future__ import annotations

import typing as t
from dataclasses import dataclass, field

import structlog

from apiwatch.auth import TokenSettings
from apiwatch.exceptions import (
    InconsistentBatchLength,
    InconsistentUserCount,
    MissingRequiredParameter,
)
from apiwatch.models import (
    HttpMethod,
    OperationDescriptor,
    ParameterLocation,
    RequestDescriptor,
)

log = structlog.get_logger(__name__)

ParameterValues = t.Iterable[t.Any] | t.Any
ParameterBundle = t.Mapping[str, ParameterValues]
ParameterGroup = list[tuple[str, list[str]]]


@dataclass(frozen=True)
class ClassifiedParameters:
    """
    Parameters sorted into their request location.

    Parameters
    ----------
    batch_length : int
        Number of requests the bundle expands to.
    queries : ParameterGroup
        Query parameters, in declaration order.
    path_parameters : ParameterGroup
        Path template parameters.
    headers : ParameterGroup
        Header parameters.
    users : list[str]
        Acting users, one for all requests or one per request.
    scope : str
        Security scope required by the operation.
    """

    batch_length: int = 1
    queries: ParameterGroup = field(default_factory=list)
    path_parameters: ParameterGroup = field(default_factory=list)
    headers: ParameterGroup = field(default_factory=list)
    users: list[str] = field(default_factory=lambda: [""])
    scope: str = ""


def first_or_index(values: t.Sequence[str], index: int) -> str:
    """Return the single broadcast value, or the value at ``index``."""
    if len(values) == 1:
        return values[0]
    return values[index]


def _as_sequence(value: ParameterValues) -> list[t.Any]:
    if isinstance(value, (str, bytes)) or not isinstance(value, t.Iterable):
        return [value]
    return list(value)


def _to_string(value: t.Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def classify(
    operation: OperationDescriptor,
    parameters: ParameterBundle | None = None,
    users: t.Sequence[str] | None = None,
    *,
    token: TokenSettings | None = None,
) -> ClassifiedParameters:
    """
    Sort a parameter bundle into query, path and header groups.

    Parameters
    ----------
    operation : OperationDescriptor
        Operation the bundle is meant for.
    parameters : ParameterBundle | None, optional
        Values per parameter name. Scalars count as one value.
    users : typing.Sequence[str] | None, optional
        Acting users. Defaults to a single anonymous user.
    token : TokenSettings | None, optional
        Token carrier; the token parameter is never reported missing.

    Returns
    -------
    ClassifiedParameters
        Validated parameter groups.

    Raises
    ------
    MissingRequiredParameter
        A required parameter is absent and is not the token parameter.
    InconsistentBatchLength
        Two parameters disagree on the batch length.
    InconsistentUserCount
        The user count is neither 1 nor the batch length.
    """
    parameters = parameters or {}
    users = list(users) if users is not None else [""]
    token = token or TokenSettings()

    batch_length = 1
    groups: dict[ParameterLocation, ParameterGroup] = {
        ParameterLocation.query: [],
        ParameterLocation.path: [],
        ParameterLocation.header: [],
    }

    for declared in operation.parameters:
        if declared.name not in parameters:
            if declared.required and not token.carries(
                name=declared.name, location=declared.location
            ):
                raise MissingRequiredParameter(declared.name)
            continue

        values = [_to_string(value) for value in _as_sequence(parameters[declared.name])]
        if not values:
            raise InconsistentBatchLength(declared.name, 0, batch_length)
        if batch_length == 1 and len(values) > 1:
            batch_length = len(values)
        elif len(values) not in (1, batch_length):
            raise InconsistentBatchLength(declared.name, len(values), batch_length)

        group = groups.get(declared.location)
        if group is None:
            log.debug(
                event="Ignoring parameter with unsupported location",
                parameter=declared.name,
                location=declared.location,
            )
            continue
        group.append((declared.name, values))

    undeclared = set(parameters) - {declared.name for declared in operation.parameters}
    if undeclared:
        log.debug(
            event="Ignoring undeclared parameters",
            operation_id=operation.operation_id,
            parameters=sorted(undeclared),
        )

    if len(users) not in (1, batch_length):
        raise InconsistentUserCount(len(users), batch_length)

    return ClassifiedParameters(
        batch_length=batch_length,
        queries=groups[ParameterLocation.query],
        path_parameters=groups[ParameterLocation.path],
        headers=groups[ParameterLocation.header],
        users=users,
        scope=operation.scope,
    )


def build_url(url_template: str, classified: ClassifiedParameters, index: int) -> str:
    """
    Resolve the URL of the request at ``index``.

    Parameters
    ----------
    url_template : str
        Absolute URL with ``{name}`` path placeholders.
    classified : ClassifiedParameters
        Classified parameters.
    index : int
        Batch index.

    Returns
    -------
    str
        URL with path parameters substituted and query parameters appended.
    """
    url = url_template
    for name, values in classified.path_parameters:
        url = url.replace(f"{{{name}}}", first_or_index(values, index))

    query = "&".join(
        f"{name}={first_or_index(values, index)}" for name, values in classified.queries
    )
    if query:
        url = f"{url}?{query}"
    return url


def build_requests(
    url_template: str,
    classified: ClassifiedParameters,
    method: HttpMethod | str,
) -> list[RequestDescriptor]:
    """
    Expand classified parameters into one request per batch index.

    Parameters
    ----------
    url_template : str
        Absolute URL with ``{name}`` path placeholders.
    classified : ClassifiedParameters
        Output of :func:`classify`.
    method : HttpMethod | str
        HTTP method or OpenAPI operation type.

    Returns
    -------
    list[RequestDescriptor]
        Requests in batch index order.
    """
    http_method = HttpMethod.from_operation(method)
    return [
        RequestDescriptor(
            url=build_url(url_template, classified, index),
            method=http_method,
            headers={
                name: first_or_index(values, index) for name, values in classified.headers
            },
            user=first_or_index(classified.users, index),
            scope=classified.scope,
        )
        for index in range(classified.batch_length)
    ]


def get_requests(
    operation: OperationDescriptor,
    parameters: ParameterBundle | None = None,
    users: t.Sequence[str] | None = None,
    *,
    token: TokenSettings | None = None,
) -> list[RequestDescriptor]:
    """
    Classify a bundle and build the full request batch for an operation.

    Parameters
    ----------
    operation : OperationDescriptor
        Target operation.
    parameters : ParameterBundle | None, optional
        Values per parameter name.
    users : typing.Sequence[str] | None, optional
        Acting users.
    token : TokenSettings | None, optional
        Token carrier.

    Returns
    -------
    list[RequestDescriptor]
        Requests in batch index order. An empty bundle yields one request.
    """
    classified = classify(operation, parameters, users, token=token)
    requests = build_requests(operation.url_template, classified, operation.method)
    log.debug(
        event="Built request batch",
        operation_id=operation.operation_id,
        method=operation.method,
        path=operation.path,
        batch_length=classified.batch_length,
    )
    return requests
