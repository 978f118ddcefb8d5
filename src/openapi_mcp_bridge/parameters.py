"""Conversion between OpenAPI parameters and tool arguments."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, create_model

from .models import CallArguments, ParameterDescriptor, ParameterValue
from .schema import field_name, model_field, schema_description, schema_to_type


logger = logging.getLogger(__name__)


def parameters_to_schema(params: Sequence[ParameterDescriptor]) -> Dict[str, Tuple[Any, Any]]:
    """Map each parameter name to its validated field definition.

    Required parameters keep the bridged type, the rest become optional.
    A repeated name replaces the earlier definition.
    """
    schema: Dict[str, Tuple[Any, Any]] = {}
    for param in params:
        annotation = schema_to_type(param.schema, param.name)
        description = param.description or schema_description(param.schema)
        schema[param.name] = model_field(annotation, param.name, param.required, description)

    logger.debug(
        "Converted %s parameters to schema (%s required)",
        len(schema),
        sum(1 for param in params if param.required),
    )
    return schema


def build_input_model(model_name: str, params: Sequence[ParameterDescriptor]) -> type[BaseModel]:
    fields = {field_name(name): definition for name, definition in parameters_to_schema(params).items()}
    model_config = ConfigDict(extra="ignore", populate_by_name=True, protected_namespaces=())
    return create_model(f"{_sanitize_name(model_name)}Input", __config__=model_config, **fields)


def validate_arguments(input_model: type[BaseModel], arguments: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Validate raw tool arguments and return them keyed by parameter name.

    Arguments the caller did not send are left out, so optional parameters
    never reach the outgoing request.
    """
    validated = input_model.model_validate(dict(arguments or {}))
    return validated.model_dump(by_alias=True, exclude_unset=True)


def arguments_to_call(args: Mapping[str, Any], params: Sequence[ParameterDescriptor]) -> CallArguments:
    body: Optional[Any] = None
    ordered: List[ParameterValue] = []

    for param in params:
        if param.name not in args:
            logger.debug("Parameter %s not provided in arguments", param.name)
            continue

        if param.location == "body":
            body = args[param.name]
        else:
            ordered.append(ParameterValue(name=param.name, location=param.location, value=args[param.name]))

    logger.debug(
        "Arguments converted: %s positional parameters, body %s",
        len(ordered),
        "present" if body is not None else "absent",
    )
    return CallArguments(params=ordered, body=body)


def _sanitize_name(name: str) -> str:
    return "".join(ch if ch.isalnum() else "_" for ch in name)
