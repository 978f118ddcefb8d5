"""HTTP client bound to one OpenAPI document and one target API."""

from __future__ import annotations

import json
import logging
import ssl
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
from urllib.parse import quote

import httpx
from pydantic_core import to_jsonable_python

from .auth import AuthConfig, AuthState, AuthType, headers_for
from .logging import redact_payload
from .models import ApiResponse, OperationCallback, ParameterValue


logger = logging.getLogger(__name__)


class RouteNotFoundError(Exception):
    pass


class UpstreamHttpError(Exception):
    def __init__(self, response: ApiResponse) -> None:
        super().__init__(f"Request failed with status code {response.status}")
        self.response = response


class OpenAPIClient:
    def __init__(
        self,
        base_url: str,
        headers: Optional[Dict[str, str]] = None,
        auth_config: Optional[AuthConfig] = None,
        auth_state: Optional[AuthState] = None,
        verify: Union[bool, ssl.SSLContext] = True,
        timeout_seconds: float = 30,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.headers = dict(headers or {})
        self.auth_config = auth_config or AuthConfig()
        self.auth_state = auth_state or AuthState()
        self.verify = verify
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self.routes: Dict[Tuple[str, str], str] = {}

    def register_route(self, method: str, path: str, operation_id: str) -> None:
        self.routes[(method.lower(), path)] = operation_id

    def operation(self, method: str, path: str) -> OperationCallback:
        """Return the invocation callback for ``method`` + ``path``.

        The route is looked up when the callback runs, so a missing route
        surfaces as ``RouteNotFoundError`` on the first call.
        """
        method = method.lower()

        async def call(params: List[ParameterValue], body: Optional[Any] = None) -> ApiResponse:
            if (method, path) not in self.routes:
                message = f"No operation found for {method} {path}"
                logger.error(message)
                raise RouteNotFoundError(message)
            return await self.request(method, path, params, body)

        return call

    async def request(
        self,
        method: str,
        path: str,
        params: Sequence[ParameterValue],
        body: Optional[Any] = None,
    ) -> ApiResponse:
        url = self.base_url + self._expand_path(path, params)
        query: Dict[str, Any] = {}
        param_headers: Dict[str, str] = {}
        cookies: Dict[str, str] = {}
        for param in params:
            if param.location == "query":
                query[param.name] = _query_value(param.value)
            elif param.location == "header":
                param_headers[param.name] = _scalar(param.value)
            elif param.location == "cookie":
                cookies[param.name] = _scalar(param.value)

        headers = dict(self.headers)
        if self.auth_config.type is AuthType.OAUTH2:
            # Re-resolved per call; a failed renewal must not resend the old token.
            headers = {key: value for key, value in headers.items() if key.lower() != "authorization"}
            headers.update(await headers_for(self.auth_config, self.auth_state))
        headers.update(param_headers)

        request_kwargs: Dict[str, Any] = {"params": query, "headers": headers}
        if isinstance(body, (bytes, bytearray)):
            request_kwargs["content"] = bytes(body)
        elif body is not None:
            request_kwargs["json"] = to_jsonable_python(body)

        logger.debug(
            "HTTP %s %s query=%s headers=%s",
            method.upper(),
            url,
            query,
            redact_payload(headers),
        )
        async with httpx.AsyncClient(
            timeout=self.timeout_seconds,
            verify=self.verify,
            cookies=cookies or None,
            follow_redirects=True,
            transport=self._transport,
        ) as client:
            response = await client.request(method.upper(), url, **request_kwargs)

        api_response = to_api_response(response)
        if response.is_error:
            raise UpstreamHttpError(api_response)
        return api_response

    def _expand_path(self, path: str, params: Sequence[ParameterValue]) -> str:
        for param in params:
            if param.location == "path":
                path = path.replace(f"{{{param.name}}}", quote(_scalar(param.value), safe=""))
        return path


def to_api_response(response: httpx.Response) -> ApiResponse:
    return ApiResponse(
        status=response.status_code,
        headers=dict(response.headers),
        data=response_data(response),
    )


def response_data(response: httpx.Response) -> Any:
    """Decode a response body by its media type.

    JSON is parsed, text-like bodies stay text, everything else (images,
    audio, archives) is returned as raw bytes.
    """
    if not response.content:
        return ""
    mime = response.headers.get("content-type", "").split(";")[0].strip().lower()
    if not mime or mime == "application/json" or mime.endswith("+json"):
        try:
            return response.json()
        except ValueError:
            return response.text
    if mime.startswith("text/") or mime.endswith("xml") or mime == "application/x-www-form-urlencoded":
        return response.text
    return response.content


def _scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _query_value(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return [_scalar(item) for item in value]
    if isinstance(value, dict):
        return json.dumps(to_jsonable_python(value))
    return _scalar(value)
