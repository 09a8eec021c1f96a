"""
Tests for the parameter classifier and batch request builder in apiwatch.request.
"""

import pytest

from apiwatch.auth import TokenSettings
from apiwatch.exceptions import (
    InconsistentBatchLength,
    InconsistentUserCount,
    MissingRequiredParameter,
    UnknownOperation,
)
from apiwatch.models import HttpMethod, OperationDescriptor, ParameterLocation, ParameterSpec
from apiwatch.request import build_requests, build_url, classify, first_or_index, get_requests


@pytest.fixture
def operation() -> OperationDescriptor:
    return OperationDescriptor(
        path="/characters/{id}/mail",
        method=HttpMethod.GET,
        operation_id="get_characters_id_mail",
        parameters=[
            ParameterSpec(name="id", location=ParameterLocation.path, required=True),
            ParameterSpec(name="labels", location=ParameterLocation.query),
            ParameterSpec(name="page", location=ParameterLocation.query),
            ParameterSpec(name="X-Tenant", location=ParameterLocation.header),
            ParameterSpec(name="session", location=ParameterLocation.cookie),
            ParameterSpec(name="token", location=ParameterLocation.query, required=True),
        ],
        security=[{"evesso": ["esi-mail.read_mail.v1", "esi-mail.send_mail.v1"]}],
        server_url="https://api.example/",
    )


@pytest.fixture
def token() -> TokenSettings:
    return TokenSettings(name="token", location=ParameterLocation.query)


def test_first_or_index_broadcasts_single_value():
    assert first_or_index(["x"], 2) == "x"
    assert first_or_index(["a", "b", "c"], 2) == "c"


def test_end_to_end_mail_batch(operation: OperationDescriptor, token: TokenSettings):
    """Two ids and one user expand to two requests attributed to that user."""
    requests = get_requests(operation, {"id": [100, 200]}, ["alice"], token=token)

    assert [request.url for request in requests] == [
        "https://api.example/characters/100/mail",
        "https://api.example/characters/200/mail",
    ]
    assert all(request.method == HttpMethod.GET for request in requests)
    assert all(request.user == "alice" for request in requests)
    assert all(request.scope == "esi-mail.read_mail.v1" for request in requests)


def test_batch_output_follows_input_order(operation: OperationDescriptor, token: TokenSettings):
    classified = classify(
        operation,
        {"id": [1, 2, 3], "page": [7, 8, 9]},
        ["u1", "u2", "u3"],
        token=token,
    )
    requests = build_requests(operation.url_template, classified, "get")

    assert classified.batch_length == 3
    assert [request.url for request in requests] == [
        "https://api.example/characters/1/mail?page=7",
        "https://api.example/characters/2/mail?page=8",
        "https://api.example/characters/3/mail?page=9",
    ]
    assert [request.user for request in requests] == ["u1", "u2", "u3"]


def test_single_value_broadcasts_to_every_index(
    operation: OperationDescriptor, token: TokenSettings
):
    requests = get_requests(operation, {"id": [1, 2, 3], "labels": ["x"]}, token=token)

    assert len(requests) == 3
    assert all(request.url.endswith("?labels=x") for request in requests)


def test_query_parameters_are_joined_without_trailing_separator(
    operation: OperationDescriptor, token: TokenSettings
):
    (request,) = get_requests(
        operation, {"id": 5, "labels": "inbox", "page": 2}, token=token
    )

    assert request.url == "https://api.example/characters/5/mail?labels=inbox&page=2"


def test_headers_resolved_per_index(operation: OperationDescriptor, token: TokenSettings):
    requests = get_requests(
        operation, {"id": [1, 2], "X-Tenant": ["north", "south"]}, token=token
    )

    assert [request.headers for request in requests] == [
        {"X-Tenant": "north"},
        {"X-Tenant": "south"},
    ]


def test_values_are_stringified(operation: OperationDescriptor, token: TokenSettings):
    (request,) = get_requests(operation, {"id": 9, "labels": True}, token=token)

    assert request.url == "https://api.example/characters/9/mail?labels=true"


def test_iterables_expand_into_batches(operation: OperationDescriptor, token: TokenSettings):
    requests = get_requests(
        operation, {"id": (i for i in (1, 2)), "labels": {"inbox"}}, token=token
    )

    assert [request.url for request in requests] == [
        "https://api.example/characters/1/mail?labels=inbox",
        "https://api.example/characters/2/mail?labels=inbox",
    ]


def test_cookie_and_undeclared_parameters_are_ignored(
    operation: OperationDescriptor, token: TokenSettings
):
    (request,) = get_requests(
        operation, {"id": 1, "session": "abc", "unknown": "zzz"}, token=token
    )

    assert request.url == "https://api.example/characters/1/mail"
    assert request.headers == {}


def test_inconsistent_batch_length(operation: OperationDescriptor, token: TokenSettings):
    with pytest.raises(InconsistentBatchLength) as exc_info:
        classify(operation, {"id": [1, 2], "page": [1, 2, 3]}, token=token)

    assert exc_info.value.name == "page"
    assert exc_info.value.batch_length == 2


def test_empty_value_sequence_is_rejected(operation: OperationDescriptor, token: TokenSettings):
    with pytest.raises(InconsistentBatchLength):
        classify(operation, {"id": []}, token=token)


def test_inconsistent_user_count(operation: OperationDescriptor, token: TokenSettings):
    with pytest.raises(InconsistentUserCount):
        classify(operation, {"id": [1, 2, 3]}, ["alice", "bob"], token=token)


def test_empty_user_list_is_rejected(operation: OperationDescriptor, token: TokenSettings):
    with pytest.raises(InconsistentUserCount):
        classify(operation, {"id": 1}, [], token=token)


def test_missing_required_parameter(operation: OperationDescriptor, token: TokenSettings):
    with pytest.raises(MissingRequiredParameter) as exc_info:
        classify(operation, {"page": [1, 2]}, token=token)

    assert exc_info.value.name == "id"


def test_missing_required_parameter_even_when_batch_is_invalid(
    operation: OperationDescriptor, token: TokenSettings
):
    with pytest.raises(MissingRequiredParameter):
        classify(operation, {"labels": ["a"], "page": [1]}, ["a", "b"], token=token)


def test_token_parameter_is_satisfied_externally(operation: OperationDescriptor):
    with pytest.raises(MissingRequiredParameter) as exc_info:
        classify(operation, {"id": 1})
    assert exc_info.value.name == "token"

    header_token = TokenSettings(name="token", location=ParameterLocation.header)
    with pytest.raises(MissingRequiredParameter):
        classify(operation, {"id": 1}, token=header_token)

    query_token = TokenSettings(name="token", location=ParameterLocation.query)
    assert classify(operation, {"id": 1}, token=query_token).batch_length == 1


def test_empty_bundle_yields_single_request():
    operation = OperationDescriptor(
        path="/status", method=HttpMethod.GET, server_url="https://api.example"
    )

    requests = get_requests(operation, {})

    assert len(requests) == 1
    assert requests[0].url == "https://api.example/status"
    assert requests[0].user == ""
    assert requests[0].scope == ""


def test_build_url_without_query_has_no_question_mark(operation: OperationDescriptor):
    classified = classify(operation, {"id": 3, "token": "t"})

    assert build_url(operation.url_template, classified, 0) == (
        "https://api.example/characters/3/mail?token=t"
    )


def test_unknown_http_method(operation: OperationDescriptor, token: TokenSettings):
    classified = classify(operation, {"id": 1}, token=token)

    with pytest.raises(UnknownOperation):
        build_requests(operation.url_template, classified, "connect-ish")


def test_identity_is_content_derived(operation: OperationDescriptor, token: TokenSettings):
    first = get_requests(operation, {"id": [1, 2]}, ["alice"], token=token)
    second = get_requests(operation, {"id": [1, 2]}, ["alice"], token=token)
    other_user = get_requests(operation, {"id": [1, 2]}, ["bob"], token=token)

    assert [request.identity for request in first] == [request.identity for request in second]
    assert first[0].identity != first[1].identity
    assert first[0].identity != other_user[0].identity
