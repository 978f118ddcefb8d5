"""MCP server setup for the OpenAPI bridge."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx
from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from fastmcp.tools import Tool
from fastmcp.tools.tool import ToolResult
from pydantic import Field, ValidationError

from .auth import config_from_environment, state_from_config
from .config import Settings
from .models import OperationEntry
from .openapi import load_operations
from .parameters import build_input_model, validate_arguments
from .service import call_operation, to_content

logger = logging.getLogger(__name__)


class OperationTool(Tool):
    """A tool that forwards validated arguments to one API operation."""

    entry: Any = Field(exclude=True)
    input_model: Any = Field(exclude=True)

    @classmethod
    def from_entry(cls, entry: OperationEntry) -> "OperationTool":
        input_model = build_input_model(entry.operation_id, entry.parameters)
        return cls(
            name=entry.operation_id,
            description=entry.description,
            parameters=input_model.model_json_schema(by_alias=True),
            entry=entry,
            input_model=input_model,
        )

    async def run(self, arguments: Dict[str, Any]) -> ToolResult:
        try:
            args = validate_arguments(self.input_model, arguments)
        except ValidationError as exc:
            raise ToolError(f"Invalid arguments for tool {self.name}: {exc}") from exc

        logger.debug("Tool %s called with %s arguments", self.name, len(args))
        result = await call_operation(self.entry, args)
        logger.debug("Tool %s completed status=%s", self.name, result.status_code)
        return ToolResult(content=[to_content(result)])


async def build_server(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastMCP:
    settings.validate_startup()
    auth_config = config_from_environment(settings)
    auth_state = state_from_config(auth_config)

    operations = await load_operations(
        settings.openapi_spec_url or "",
        settings.openapi_spec_base_url or "",
        extra_headers=settings.extra_headers(),
        auth_config=auth_config,
        auth_state=auth_state,
        timeout_seconds=settings.openapi_request_timeout_seconds,
        transport=transport,
    )

    mcp = FastMCP(settings.service_name, instructions=_instructions())
    register_operations(mcp, operations)
    return mcp


def register_operations(mcp: FastMCP, operations: Sequence[OperationEntry]) -> List[OperationTool]:
    logger.info("Setting up %s tools for MCP server", len(operations))
    return [register_operation(mcp, entry) for entry in operations]


def register_operation(mcp: FastMCP, entry: OperationEntry) -> OperationTool:
    tool = OperationTool.from_entry(entry)
    mcp.add_tool(tool)
    logger.info("Registered tool: %s", tool.name)
    return tool


def _instructions() -> str:
    return (
        "OpenAPI bridge. Each tool calls one operation of the configured REST API "
        "and returns its status code, headers and response body."
    )
