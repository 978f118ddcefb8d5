"""Operation execution and result formatting for tool calls."""

from __future__ import annotations

import base64
import json
import logging
from enum import Enum
from typing import Any, Mapping, Union

import httpx
from mcp.types import AudioContent, ImageContent, TextContent
from pydantic_core import to_jsonable_python

from .client import UpstreamHttpError, to_api_response
from .logging import redact_payload
from .models import ApiResponse, OperationEntry, ToolCallResult
from .parameters import arguments_to_call


logger = logging.getLogger(__name__)

ContentItem = Union[TextContent, ImageContent, AudioContent]


class ContentKind(str, Enum):
    IMAGE = "image"
    AUDIO = "audio"
    TEXT = "text"


def content_kind(content_type: str) -> ContentKind:
    mime = content_type.strip().lower()
    if mime.startswith("image/"):
        return ContentKind.IMAGE
    if mime.startswith("audio/"):
        return ContentKind.AUDIO
    return ContentKind.TEXT


async def call_operation(entry: OperationEntry, args: Mapping[str, Any]) -> ToolCallResult:
    """Run one operation and capture its outcome as a ``ToolCallResult``.

    Never raises: upstream error responses keep their status, headers and
    body, and any other failure becomes a 500 carrying the error message.
    """
    operation_id = entry.operation_id
    logger.debug("Executing tool call %s args=%s", operation_id, redact_payload(args))

    try:
        call = arguments_to_call(args, entry.parameters)
        logger.debug(
            "Calling OpenAPI operation %s params=%s body=%s",
            operation_id,
            len(call.params),
            "present" if call.body is not None else "none",
        )
        response = await entry.callback(call.params, call.body)
    except UpstreamHttpError as exc:
        logger.warning("API error in operation %s: %s", operation_id, exc)
        return _result_from_response(exc.response)
    except httpx.HTTPStatusError as exc:
        logger.warning("API error in operation %s: %s", operation_id, exc)
        return _result_from_response(to_api_response(exc.response))
    except Exception as exc:
        logger.error("Unexpected error in operation %s: %s", operation_id, exc, exc_info=True)
        return ToolCallResult(status_code=500, headers={}, data=str(exc) or exc.__class__.__name__)

    logger.info("OpenAPI operation completed: %s status=%s", operation_id, response.status)
    return _result_from_response(response)


def to_content(result: ToolCallResult) -> ContentItem:
    content_type = result.content_type()
    mime_type = content_type.split(";")[0].strip()
    kind = content_kind(mime_type)
    logger.debug("Processing tool call result status=%s content_type=%s", result.status_code, content_type)

    if kind is ContentKind.IMAGE:
        return ImageContent(type="image", data=_encode_payload(result.data), mimeType=mime_type)
    if kind is ContentKind.AUDIO:
        return AudioContent(type="audio", data=_encode_payload(result.data), mimeType=mime_type)
    return TextContent(type="text", text=result.model_dump_json(by_alias=True, indent=2))


def _result_from_response(response: ApiResponse) -> ToolCallResult:
    return ToolCallResult(
        status_code=response.status or 500,
        headers={str(key): str(value) for key, value in (response.headers or {}).items()},
        data=response.data,
    )


def _encode_payload(data: Any) -> str:
    # MCP carries binary content as base64 text.
    if isinstance(data, (bytes, bytearray)):
        raw = bytes(data)
    elif isinstance(data, str):
        raw = data.encode("utf-8")
    else:
        raw = json.dumps(to_jsonable_python(data)).encode("utf-8")
    return base64.b64encode(raw).decode("ascii")
