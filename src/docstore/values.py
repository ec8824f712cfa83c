"""
Closed value model for schemaless records.

A record is an ordered mapping of field name to JsonValue. Only the JSON
shapes below are accepted, so copy, merge, projection and redaction are
defined over a known set of types.
"""

from __future__ import annotations

from typing import Any, TypeAlias, cast

JsonValue: TypeAlias = (
    str | int | float | bool | None | list["JsonValue"] | dict[str, "JsonValue"]
)
Record: TypeAlias = dict[str, JsonValue]

_SCALARS = (str, int, float, bool, type(None))


def deep_copy(value: Any) -> JsonValue:
    """
    Clone a JSON value so the result shares no mutable structure with the input.

    Raises:
        ValueError: If the value (or anything nested in it) is not a JSON value
    """
    if isinstance(value, _SCALARS):
        return value
    if isinstance(value, dict):
        result: dict[str, JsonValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValueError(f"Field names must be strings, got {type(key).__name__}")
            result[key] = deep_copy(item)
        return result
    if isinstance(value, (list, tuple)):
        return [deep_copy(item) for item in value]
    raise ValueError(f"Unsupported value type: {type(value).__name__}")


def copy_record(record: Any) -> Record:
    """Clone a record, rejecting anything that is not a JSON object."""
    if not isinstance(record, dict):
        raise ValueError("Record must be a JSON object")
    return cast(Record, deep_copy(record))


def is_number(value: Any) -> bool:
    """True for int/float but not bool."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)
