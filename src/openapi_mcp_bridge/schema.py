"""Bridge from OpenAPI schema nodes to pydantic types.

Only the OpenAPI subset used for tool arguments is covered: object, array,
string, number, integer and boolean, with ``enum``, ``minimum``/``maximum``,
``format: date-time`` and ``required`` lists.
"""

from __future__ import annotations

import keyword
import re
from datetime import datetime
from typing import Annotated, Any, Callable, Dict, List, Literal, Mapping, Optional, Sequence, Tuple, Union

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    WithJsonSchema,
    create_model,
)


_RESERVED_NAMES = set(dir(BaseModel))


class UnsupportedTypeError(Exception):
    pass


def schema_description(schema: Mapping[str, Any]) -> str:
    return schema.get("description") or schema.get("title") or ""


def schema_to_type(schema: Mapping[str, Any], name: str = "Object") -> Any:
    """Convert one OpenAPI schema node into a pydantic-validated annotation.

    Object nodes become generated models, everything else an ``Annotated``
    type carrying the node's description and constraints.
    """
    schema_type = schema.get("type") or ("object" if schema.get("properties") else "string")
    description = schema_description(schema)

    if schema_type == "object":
        return _object_model(
            schema.get("properties") or {},
            schema.get("required") or [],
            name,
            description,
        )
    if schema_type == "array":
        item_type = _array_item_type(schema, name)
        return Annotated[List[item_type], _described(description)]  # type: ignore[valid-type]
    if schema_type == "string":
        return _string_type(schema, description)
    if schema_type == "integer":
        return _integer_type(schema.get("minimum"), schema.get("maximum"), description)
    if schema_type == "number":
        return _numeric_type(schema.get("minimum"), schema.get("maximum"), description)
    if schema_type == "boolean":
        return Annotated[StrictBool, _described(description)]

    raise UnsupportedTypeError(f"Unsupported type: {schema_type}")


def field_name(name: str) -> str:
    """Return a python identifier usable as a model field for ``name``.

    The source name is kept as the field alias by callers whenever the two
    differ.
    """
    candidate = re.sub(r"\W", "_", name)
    if (
        not candidate.isidentifier()
        or keyword.iskeyword(candidate)
        or candidate.startswith("_")
        or candidate.startswith("model_")
        or candidate in _RESERVED_NAMES
    ):
        candidate = f"field_{candidate.lstrip('_')}"
    return candidate


def model_field(annotation: Any, name: str, required: bool, description: str = "") -> Tuple[Any, Any]:
    """Build a ``create_model`` field definition.

    Optional fields default to ``None`` without widening the annotation: an
    absent key validates, an explicit ``null`` does not.
    """
    kwargs: Dict[str, Any] = {}
    if field_name(name) != name:
        kwargs["alias"] = name
    if description:
        kwargs["description"] = description
    return annotation, Field(... if required else None, **kwargs)


def _object_model(
    properties: Mapping[str, Mapping[str, Any]],
    required: Sequence[str],
    name: str,
    description: str,
) -> type[BaseModel]:
    fields: Dict[str, Tuple[Any, Any]] = {}
    for prop_name, prop_schema in properties.items():
        annotation = schema_to_type(prop_schema, f"{name}_{prop_name}")
        fields[field_name(prop_name)] = model_field(
            annotation,
            prop_name,
            prop_name in required,
            schema_description(prop_schema),
        )

    return create_model(
        _model_name(name),
        __config__=ConfigDict(protected_namespaces=(), populate_by_name=True),
        __doc__=description or None,
        **fields,
    )


def _array_item_type(schema: Mapping[str, Any], name: str) -> Any:
    items = schema.get("items") or {}
    item_type = items.get("type")
    if item_type and item_type != "object" and not items.get("properties"):
        return schema_to_type(items, f"{name}Item")

    # Object-shaped items; older documents put the item properties on the
    # array node itself.
    if items.get("properties"):
        properties, required = items["properties"], items.get("required") or []
    else:
        properties, required = schema.get("properties") or {}, schema.get("required") or []
    return _object_model(properties, required, f"{name}Item", schema_description(items))


def _string_type(schema: Mapping[str, Any], description: str) -> Any:
    enum_values = schema.get("enum")
    base: Any = StrictStr
    if enum_values:
        base = Literal[tuple(str(value) for value in enum_values)]  # type: ignore[misc]

    if schema.get("format") == "date-time":
        return Annotated[
            base,
            AfterValidator(_parse_datetime),
            _described(description, {"format": "date-time"}),
        ]
    return Annotated[base, _described(description)]


def _numeric_type(minimum: Optional[float], maximum: Optional[float], description: str) -> Any:
    base = Union[StrictInt, StrictFloat]
    extra: Dict[str, Any] = {}
    if minimum is not None:
        extra["minimum"] = minimum
    if maximum is not None:
        extra["maximum"] = maximum
    if not extra:
        return Annotated[base, _described(description)]
    return Annotated[
        base,
        AfterValidator(_bounds_check(minimum, maximum)),
        _described(description, extra),
    ]


def _integer_type(minimum: Optional[float], maximum: Optional[float], description: str) -> Any:
    """Accept ints and whole floats such as ``5.0``, returning an ``int``."""
    json_schema: Dict[str, Any] = {"type": "integer"}
    if minimum is not None:
        json_schema["minimum"] = minimum
    if maximum is not None:
        json_schema["maximum"] = maximum
    if description:
        json_schema["description"] = description
    return Annotated[
        Union[StrictInt, StrictFloat],
        AfterValidator(_whole_number),
        AfterValidator(_bounds_check(minimum, maximum)),
        WithJsonSchema(json_schema),
    ]


def _whole_number(value: Any) -> int:
    if value % 1:
        raise ValueError("must have no fractional part")
    return int(value)


def _bounds_check(minimum: Optional[float], maximum: Optional[float]) -> Callable[[Any], Any]:
    def check(value: Any) -> Any:
        if minimum is not None and value < minimum:
            raise ValueError(f"must be greater than or equal to {minimum}")
        if maximum is not None and value > maximum:
            raise ValueError(f"must be less than or equal to {maximum}")
        return value

    return check


def _described(description: str, extra: Optional[Dict[str, Any]] = None) -> Any:
    kwargs: Dict[str, Any] = {}
    if description:
        kwargs["description"] = description
    if extra:
        kwargs["json_schema_extra"] = extra
    return Field(**kwargs)


def _parse_datetime(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError as exc:
        raise ValueError(f"invalid date-time: {value!r}") from exc


def _model_name(name: str) -> str:
    return "".join(ch if ch.isalnum() else "_" for ch in name) or "Object"
