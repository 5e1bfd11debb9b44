"""
Base domain model with camelCase JSON serialization.

Run records are persisted and served over HTTP as camelCase JSON.
All domain dataclasses should inherit from BaseDomainModel.
"""

from __future__ import annotations

import dataclasses
from dataclasses import fields
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Type, TypeVar

T = TypeVar("T", bound="BaseDomainModel")


def to_camel_case(snake_str: str) -> str:
    """
    Convert snake_case to camelCase.

    Examples:
        >>> to_camel_case("stage_results")
        'stageResults'
        >>> to_camel_case("exit_code")
        'exitCode'
    """
    components = snake_str.split("_")
    return components[0] + "".join(x.title() for x in components[1:])


def to_snake_case(camel_str: str) -> str:
    """
    Convert camelCase to snake_case.

    Examples:
        >>> to_snake_case("startCommand")
        'start_command'
        >>> to_snake_case("useSudo")
        'use_sudo'
    """
    result = [camel_str[0].lower()]
    for char in camel_str[1:]:
        if char.isupper():
            result.extend(["_", char.lower()])
        else:
            result.append(char)
    return "".join(result)


def _serialize(value: Any) -> Any:
    if isinstance(value, BaseDomainModel):
        return value.to_json()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [_serialize(item) for item in value]
    if isinstance(value, dict):
        return {k: _serialize(v) for k, v in value.items()}
    return value


class BaseDomainModel:
    """
    Mixin for domain dataclasses.

    Not a dataclass itself, so subclasses may be frozen or mutable.
    - to_json() serializes to camelCase
    - Enum values are serialized by value
    - Dates are serialized as ISO 8601 strings
    - Fields declared with ``metadata={"json": False}`` are skipped
    """

    def to_json(self) -> Dict[str, Any]:
        """
        Serialize to camelCase JSON-compatible dict.

        Returns:
            Dictionary with camelCase keys, Enum values, ISO dates
        """
        result: Dict[str, Any] = {}

        for field in fields(self):
            if field.metadata.get("json") is False:
                continue
            result[to_camel_case(field.name)] = _serialize(getattr(self, field.name))

        return result

    @classmethod
    def from_json(cls: Type[T], data: Dict[str, Any]) -> T:
        """
        Deserialize flat camelCase (or snake_case) JSON into the model.

        Nested models are not rebuilt; override in subclasses that need it.

        Raises:
            ValueError: If a required field is missing
        """
        kwargs: Dict[str, Any] = {}

        for field in fields(cls):
            if not field.init:
                continue
            json_key = to_camel_case(field.name)
            if json_key in data:
                value = data[json_key]
            elif field.name in data:
                value = data[field.name]
            else:
                if field.default is not dataclasses.MISSING or field.default_factory is not dataclasses.MISSING:  # type: ignore[attr-defined]
                    continue
                raise ValueError(f"Missing required field: {json_key}")
            kwargs[field.name] = value

        return cls(**kwargs)

    def __str__(self) -> str:
        """String representation for logging."""
        field_strs = [
            f"{field.name}={getattr(self, field.name)!r}"
            for field in fields(self)
            if field.repr
        ]
        return f"{self.__class__.__name__}({', '.join(field_strs)})"
