import typing as t

import pytest

from apiwatch.models import OperationDescriptor
from apiwatch.spec import OpenApiSpec


@pytest.fixture(autouse=True)
def test_set_env(monkeypatch):
    monkeypatch.delenv("APIWATCH_ENABLE_EVENT_QUEUE", raising=False)
    monkeypatch.delenv("APIWATCH_DEFAULT_USER", raising=False)


@pytest.fixture
def document() -> dict[str, t.Any]:
    """
    Minimal Swagger 2 document in the style of a game API.
    """
    return {
        "swagger": "2.0",
        "host": "api.example",
        "basePath": "/",
        "schemes": ["https"],
        "parameters": {
            "character_id": {
                "name": "id",
                "in": "path",
                "required": True,
                "type": "integer",
            },
            "token": {"name": "token", "in": "query", "type": "string"},
        },
        "paths": {
            "/characters/{id}/mail": {
                "get": {
                    "operationId": "get_characters_id_mail",
                    "parameters": [
                        {"$ref": "#/parameters/character_id"},
                        {"name": "labels", "in": "query", "type": "array"},
                        {"name": "last_mail_id", "in": "query", "type": "integer"},
                        {"name": "Accept-Language", "in": "header", "type": "string"},
                        {"$ref": "#/parameters/token"},
                    ],
                    "security": [{"evesso": ["esi-mail.read_mail.v1"]}],
                }
            },
            "/status": {
                "get": {"operationId": "get_status", "parameters": []},
            },
            "/markets/{region_id}/orders": {
                "parameters": [
                    {"name": "region_id", "in": "path", "required": True, "type": "integer"}
                ],
                "get": {
                    "operationId": "get_markets_region_id_orders",
                    "parameters": [
                        {"name": "type_id", "in": "query", "required": True, "type": "integer"},
                        {"name": "Authorization", "in": "header", "required": True},
                    ],
                },
            },
        },
    }


@pytest.fixture
def spec(document: dict[str, t.Any]) -> OpenApiSpec:
    return OpenApiSpec(document)


@pytest.fixture
def mail_operation(spec: OpenApiSpec) -> OperationDescriptor:
    return spec.get_operation("/characters/{id}/mail", "get")
