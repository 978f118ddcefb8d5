"""Internal models for operations and tool results."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


@dataclass(frozen=True)
class ParameterDescriptor:
    name: str
    location: str
    required: bool = False
    schema: Mapping[str, Any] = field(default_factory=dict)
    description: str = ""

    @classmethod
    def from_openapi(cls, parameter: Mapping[str, Any]) -> "ParameterDescriptor":
        """Build a descriptor from an OpenAPI parameter object.

        Swagger 2 parameters carry their type inline instead of under
        ``schema``; in that case the parameter object itself is the schema.
        """
        schema = parameter.get("schema") or parameter
        return cls(
            name=parameter["name"],
            location=parameter.get("in", "query"),
            required=bool(parameter.get("required", False)),
            schema=schema,
            description=parameter.get("description") or "",
        )


@dataclass(frozen=True)
class ParameterValue:
    name: str
    location: str
    value: Any


@dataclass(frozen=True)
class CallArguments:
    params: List[ParameterValue]
    body: Optional[Any] = None


@dataclass(frozen=True)
class ApiResponse:
    status: int
    headers: Dict[str, str]
    data: Any = None


OperationCallback = Callable[[List[ParameterValue], Optional[Any]], Awaitable[ApiResponse]]


@dataclass(frozen=True)
class OperationEntry:
    operation_id: str
    description: str
    parameters: Tuple[ParameterDescriptor, ...]
    callback: OperationCallback
    method: str = ""
    path: str = ""


class ToolCallResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True, ser_json_bytes="base64")

    status_code: int = Field(alias="statusCode")
    headers: Dict[str, str] = Field(default_factory=dict)
    data: Any = None

    def content_type(self) -> str:
        for key, value in self.headers.items():
            if key.lower() == "content-type":
                return value
        return "application/json"
