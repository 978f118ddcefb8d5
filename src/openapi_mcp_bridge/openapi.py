"""OpenAPI spec loader and operation parser."""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple, Union

import httpx
import yaml

from .auth import AuthConfig, AuthState, authenticated_transport, config_from_environment, state_from_config
from .client import OpenAPIClient
from .models import OperationEntry, ParameterDescriptor
from .schema import schema_description


logger = logging.getLogger(__name__)

HTTP_METHODS = ("get", "put", "post", "delete", "options", "head", "patch", "trace")

_UNSAFE_ID_CHARS = re.compile(r"[^A-Za-z0-9_-]")


class SpecLoadError(Exception):
    pass


def load_openapi_spec(spec_source: str) -> Union[Dict[str, Any], str]:
    """Load a local document, or pass a remote URL through unfetched."""
    logger.debug("Loading OpenAPI spec from %s", spec_source)
    if spec_source.startswith(("http://", "https://")):
        logger.debug("Detected remote URL for OpenAPI spec")
        return spec_source

    try:
        content = Path(spec_source).read_text(encoding="utf-8")
    except OSError as exc:
        logger.error("Failed to read OpenAPI spec %s: %s", spec_source, exc)
        raise SpecLoadError(f"Failed to read OpenAPI spec {spec_source}: {exc}") from exc
    return parse_document(content, spec_source)


def parse_document(content: str, spec_source: str) -> Dict[str, Any]:
    is_json = spec_source.endswith(".json") or content.lstrip().startswith("{")
    try:
        if is_json:
            logger.debug("Parsing OpenAPI spec as JSON")
            document = json.loads(content)
        else:
            logger.debug("Parsing OpenAPI spec as YAML")
            document = yaml.safe_load(content)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        logger.error("Failed to parse OpenAPI spec %s: %s", spec_source, exc)
        raise SpecLoadError(f"Failed to parse OpenAPI spec {spec_source}: {exc}") from exc

    if not isinstance(document, dict):
        raise SpecLoadError(f"OpenAPI spec {spec_source} is not a mapping")
    return document


async def fetch_openapi_spec(
    url: str,
    timeout_seconds: float = 30,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, Any]:
    try:
        async with httpx.AsyncClient(timeout=timeout_seconds, follow_redirects=True, transport=transport) as client:
            response = await client.get(url)
    except httpx.HTTPError as exc:
        raise SpecLoadError(f"Failed to fetch OpenAPI spec {url}: {exc}") from exc
    if response.status_code != 200:
        logger.warning("Failed to fetch OpenAPI spec: %s (%s)", url, response.status_code)
        raise SpecLoadError(f"Failed to fetch OpenAPI spec {url}: HTTP {response.status_code}")
    return parse_document(response.text, url)


def resolve_refs(document: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of ``document`` with local ``#/`` references inlined.

    Sibling keys next to a ``$ref`` override the target's. A reference that
    re-enters itself is replaced by a plain object schema.
    """

    def lookup(ref: str) -> Optional[Any]:
        node: Any = document
        for part in ref[2:].split("/"):
            part = part.replace("~1", "/").replace("~0", "~")
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return node

    def walk(node: Any, active: FrozenSet[str]) -> Any:
        if isinstance(node, list):
            return [walk(item, active) for item in node]
        if not isinstance(node, dict):
            return node

        ref = node.get("$ref")
        if isinstance(ref, str) and ref.startswith("#/"):
            siblings = {key: value for key, value in node.items() if key != "$ref"}
            if ref in active:
                logger.debug("Circular reference %s left unexpanded", ref)
                return {"type": "object", **siblings}
            target = lookup(ref)
            if not isinstance(target, dict):
                logger.warning("Unresolvable reference %s", ref)
                return walk(siblings, active)
            return walk({**target, **siblings}, active | {ref})

        return {key: walk(value, active) for key, value in node.items()}

    return walk(document, frozenset())


def derive_operation_id(operation: Mapping[str, Any], method: str, path: str) -> str:
    """Pick a protocol-safe tool name for an operation.

    Uses ``operationId`` when present, else the sanitized description (64
    chars), else ``{method}_{path}`` keeping the last 55 chars of the path.
    """
    operation_id = operation.get("operationId")
    if operation_id:
        return str(operation_id)
    description = operation.get("description")
    if description:
        return _UNSAFE_ID_CHARS.sub("_", str(description))[:64]
    return f"{method}_{_UNSAFE_ID_CHARS.sub('_', path)[-55:]}"


def extract_operations(document: Mapping[str, Any], client: OpenAPIClient) -> List[OperationEntry]:
    operations: List[OperationEntry] = []
    paths = document.get("paths") or {}

    for path, path_item in paths.items():
        if not isinstance(path_item, dict):
            continue
        shared_parameters = path_item.get("parameters") or []
        for method in HTTP_METHODS:
            operation = path_item.get(method)
            if not isinstance(operation, dict):
                continue

            operation_id = derive_operation_id(operation, method, path)
            client.register_route(method, path, operation_id)
            operations.append(
                OperationEntry(
                    operation_id=operation_id,
                    description=operation.get("description") or operation.get("summary") or "",
                    parameters=_operation_parameters(shared_parameters, operation),
                    callback=client.operation(method, path),
                    method=method,
                    path=path,
                )
            )
            logger.debug("Mapped operation %s -> %s %s", operation_id, method.upper(), path)

    return operations


def _operation_parameters(
    shared_parameters: List[Dict[str, Any]], operation: Mapping[str, Any]
) -> Tuple[ParameterDescriptor, ...]:
    merged: Dict[Tuple[str, str], ParameterDescriptor] = {}
    for parameter in [*shared_parameters, *(operation.get("parameters") or [])]:
        if not isinstance(parameter, dict) or not parameter.get("name"):
            continue
        descriptor = ParameterDescriptor.from_openapi(parameter)
        merged[(descriptor.name, descriptor.location)] = descriptor

    parameters = list(merged.values())
    body = _request_body_parameter(operation.get("requestBody") or {})
    if body is not None:
        parameters.append(body)
    return tuple(parameters)


def _request_body_parameter(request_body: Mapping[str, Any]) -> Optional[ParameterDescriptor]:
    content = request_body.get("content") or {}
    if not content:
        return None
    media = content.get("application/json")
    if media is None:
        json_types = [value for key, value in content.items() if "json" in key]
        media = json_types[0] if json_types else next(iter(content.values()))
    schema = (media or {}).get("schema") or {"type": "object"}
    return ParameterDescriptor(
        name="body",
        location="body",
        required=bool(request_body.get("required", False)),
        schema=schema,
        description=request_body.get("description") or schema_description(schema) or "Request body",
    )


async def load_operations(
    spec_source: str,
    base_url: str,
    extra_headers: Optional[Mapping[str, str]] = None,
    auth_config: Optional[AuthConfig] = None,
    auth_state: Optional[AuthState] = None,
    timeout_seconds: float = 30,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> List[OperationEntry]:
    """Load a specification and bind one callable entry per operation.

    Default request headers are ``extra_headers`` overlaid with the resolved
    auth headers, so auth wins on a key collision.
    """
    logger.debug("Creating OpenAPI client instance for %s", spec_source)
    definition = load_openapi_spec(spec_source)

    if auth_config is None:
        auth_config = config_from_environment()
    if auth_state is None:
        auth_state = state_from_config(auth_config)
    auth = await authenticated_transport(auth_config, auth_state, base_url)
    merged_headers = {**(extra_headers or {}), **auth.headers}

    client = OpenAPIClient(
        base_url,
        headers=merged_headers,
        auth_config=auth_config,
        auth_state=auth_state,
        verify=auth.verify(),
        timeout_seconds=timeout_seconds,
        transport=transport,
    )
    logger.debug(
        "Initializing OpenAPI client base_url=%s auth_type=%s header_count=%s",
        base_url,
        auth_config.type.value,
        len(merged_headers),
    )

    if isinstance(definition, str):
        document = await fetch_openapi_spec(definition, timeout_seconds, transport)
    else:
        document = definition

    operations = extract_operations(resolve_refs(document), client)
    logger.info("Extracted %s operations from OpenAPI specification", len(operations))
    return operations
