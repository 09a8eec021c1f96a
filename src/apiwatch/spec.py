"""
Operation lookup over an already parsed OpenAPI 3 or Swagger 2 document.
"""

from __future__ import annotations

import json
import typing as t
from pathlib import Path

import structlog
import yaml

from apiwatch.exceptions import UnknownOperation
from apiwatch.models import HttpMethod, OperationDescriptor, ParameterSpec

log = structlog.get_logger(__name__)

_SUPPORTED_LOCATIONS = frozenset({"query", "path", "header", "cookie"})


class OpenApiSpec:
    """
    Serve :class:`OperationDescriptor` objects from an API document.

    Parameters
    ----------
    document : dict[str, typing.Any]
        Parsed OpenAPI 3 or Swagger 2 document.
    server_url : str | None, optional
        Override of the server URL declared by the document.
    """

    def __init__(self, document: dict[str, t.Any], *, server_url: str | None = None) -> None:
        self._document = document
        self.server_url = server_url if server_url is not None else self._declared_server_url()
        self._operations: dict[tuple[str, HttpMethod], OperationDescriptor] = {}

    @classmethod
    def from_path(cls, path: Path | str, *, server_url: str | None = None) -> "OpenApiSpec":
        """
        Load a JSON or YAML document from disk.

        Parameters
        ----------
        path : Path | str
            Document path. ``.json`` files are read as JSON, anything else as YAML.
        server_url : str | None, optional
            Override of the declared server URL.

        Returns
        -------
        OpenApiSpec
            Spec wrapping the loaded document.
        """
        path = Path(path)
        text = path.read_text(encoding="utf-8")
        document = json.loads(text) if path.suffix == ".json" else yaml.safe_load(text)
        if not isinstance(document, dict):
            raise ValueError(f"API document {path} does not contain a mapping")
        log.debug(event="Loaded API document", path=path.as_posix())
        return cls(document, server_url=server_url)

    def _declared_server_url(self) -> str:
        servers = self._document.get("servers") or []
        if servers and servers[0].get("url"):
            return str(servers[0]["url"])
        host = self._document.get("host")
        if not host:
            return ""
        scheme = (self._document.get("schemes") or ["https"])[0]
        base_path = self._document.get("basePath", "")
        return f"{scheme}://{host}{base_path}"

    @property
    def paths(self) -> list[str]:
        return list(self._document.get("paths", {}))

    def _resolve_ref(self, node: dict[str, t.Any]) -> dict[str, t.Any]:
        ref = node.get("$ref")
        if ref is None:
            return node
        if not ref.startswith("#/"):
            raise ValueError(f"Only local references are supported, got {ref!r}")
        target: t.Any = self._document
        for part in ref[2:].split("/"):
            target = target[part.replace("~1", "/").replace("~0", "~")]
        return self._resolve_ref(target)

    def _parameters(
        self,
        *,
        path_item: dict[str, t.Any],
        operation: dict[str, t.Any],
    ) -> tuple[ParameterSpec, ...]:
        # operation-level parameters override path-level ones with the same name and location
        merged: dict[tuple[str, str], ParameterSpec] = {}
        for raw in [*path_item.get("parameters", []), *operation.get("parameters", [])]:
            parameter = self._resolve_ref(raw)
            location = parameter.get("in")
            if location not in _SUPPORTED_LOCATIONS:
                log.debug(
                    event="Skipping parameter with unsupported location",
                    parameter=parameter.get("name"),
                    location=location,
                )
                continue
            merged[(parameter["name"], location)] = ParameterSpec(
                name=parameter["name"],
                location=location,
                required=bool(parameter.get("required", location == "path")),
            )
        return tuple(merged.values())

    def get_operation(self, path: str, method: HttpMethod | str) -> OperationDescriptor:
        """
        Describe the operation declared for ``method`` on ``path``.

        Parameters
        ----------
        path : str
            Path template exactly as declared (e.g. ``/characters/{id}/mail``).
        method : HttpMethod | str
            HTTP method or operation type.

        Returns
        -------
        OperationDescriptor
            Operation descriptor.

        Raises
        ------
        UnknownOperation
            If the document does not declare this path and method.
        """
        http_method = HttpMethod.from_operation(method)
        key = (path, http_method)
        if key in self._operations:
            return self._operations[key]

        path_item = self._document.get("paths", {}).get(path)
        if path_item is None:
            raise UnknownOperation(f"Path {path!r} is not declared in the API document")
        operation = path_item.get(http_method.lower())
        if operation is None:
            raise UnknownOperation(f"{http_method} {path} is not declared in the API document")

        security = operation.get("security", self._document.get("security", []))
        descriptor = OperationDescriptor(
            path=path,
            method=http_method,
            operation_id=operation.get("operationId"),
            parameters=self._parameters(path_item=path_item, operation=operation),
            security=tuple(security),
            server_url=self.server_url,
        )
        self._operations[key] = descriptor
        return descriptor
