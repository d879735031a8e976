"""
Core type definitions for docmodel schemas.

This module defines the declarative building blocks of a model:
- FieldType: Closed set of type tags a field can declare
- FieldDef: Individual field definition
- Schema: Ordered mapping of field name to FieldDef

Invariants:
    - Every field declares a type
    - Python types are converted to FieldType tags at definition time
    - ttl implies an index with expiry semantics
    - ref targets are resolved lazily (at populate time), so forward
      references between models are allowed

Example:
    >>> Book = Schema({
    ...     "title": field("string", required=True),
    ...     "tags": {"type": list, "default": list},
    ...     "author": {"type": str, "ref": "Author"},
    ... })
"""

from __future__ import annotations

import datetime
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..errors import SchemaDefinitionError


class FieldType(Enum):
    """Supported field types.

    Containers validate by nominal kind only; elements are not checked.
    """

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    ARRAY = "array"
    OBJECT = "object"

    @classmethod
    def coerce(cls, value: Any) -> FieldType:
        """Convert a tag, tag name or Python type to a FieldType.

        Args:
            value: FieldType, string tag ("string", "array", ...) or a Python
                type (str, int, float, bool, datetime, list, dict)

        Returns:
            Corresponding FieldType

        Raises:
            SchemaDefinitionError: If value names no supported type
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            for kind in cls:
                if kind.value == value:
                    return kind
            valid = [k.value for k in cls]
            raise SchemaDefinitionError(f"Invalid field type '{value}'. Valid types: {valid}")
        if isinstance(value, type) and value in _PYTHON_TYPES:
            return _PYTHON_TYPES[value]
        raise SchemaDefinitionError(f"Unsupported field type: {value!r}")

    def matches(self, value: Any) -> bool:
        """Whether a runtime value has this type's nominal kind."""
        if self is FieldType.NUMBER:
            return isinstance(value, (int, float)) and not isinstance(value, bool)
        return isinstance(value, _RUNTIME_KINDS[self])


_PYTHON_TYPES: dict[type, FieldType] = {
    str: FieldType.STRING,
    int: FieldType.NUMBER,
    float: FieldType.NUMBER,
    bool: FieldType.BOOLEAN,
    datetime.datetime: FieldType.DATE,
    list: FieldType.ARRAY,
    dict: FieldType.OBJECT,
}

_RUNTIME_KINDS: dict[FieldType, type] = {
    FieldType.STRING: str,
    FieldType.BOOLEAN: bool,
    FieldType.DATE: datetime.datetime,
    FieldType.ARRAY: list,
    FieldType.OBJECT: dict,
}

_FIELD_OPTIONS = frozenset({"type", "required", "default", "ref", "unique", "index", "ttl"})


@dataclass(frozen=True)
class FieldDef:
    """Field definition within a schema.

    Attributes:
        type: Declared type tag
        required: Whether the field must be present and non-None
        default: Literal default or zero-argument callable
        ref: Name of the model this field references
        unique: Create a unique index on the field
        index: Create a plain index on the field
        ttl: Expire documents this many seconds after the field's date
    """

    type: FieldType
    required: bool = False
    default: Any = None
    ref: str | None = None
    unique: bool = False
    index: bool = False
    ttl: float | None = None

    def __post_init__(self) -> None:
        """Validate field definition."""
        if not isinstance(self.type, FieldType):
            object.__setattr__(self, "type", FieldType.coerce(self.type))
        if self.ttl is not None:
            if isinstance(self.ttl, bool) or not isinstance(self.ttl, (int, float)) or self.ttl < 0:
                raise SchemaDefinitionError(f"ttl must be a non-negative number, got {self.ttl!r}")

    @property
    def has_default(self) -> bool:
        return self.default is not None

    @property
    def needs_index(self) -> bool:
        """Whether the storage engine must be asked for an index."""
        return self.unique or self.index or self.ttl is not None

    def materialize_default(self) -> Any:
        """Produce the default value; callables are invoked once per call."""
        if callable(self.default):
            return self.default()
        if isinstance(self.default, (list, dict)):
            return self.default.copy()
        return self.default

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        result: dict[str, Any] = {"type": self.type.value}
        if self.required:
            result["required"] = True
        if self.default is not None:
            result["default"] = self.default
        if self.ref is not None:
            result["ref"] = self.ref
        if self.unique:
            result["unique"] = True
        if self.index:
            result["index"] = True
        if self.ttl is not None:
            result["ttl"] = self.ttl
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], name: str | None = None) -> FieldDef:
        """Create from a plain mapping such as ``{"type": str, "required": True}``.

        Raises:
            SchemaDefinitionError: If type is missing or an option is unknown
        """
        unknown = set(data) - _FIELD_OPTIONS
        if unknown:
            raise SchemaDefinitionError(
                f"Unknown option(s) {sorted(unknown)} for field '{name}'", field_name=name
            )
        if data.get("type") is None:
            raise SchemaDefinitionError(f"Field '{name}' must declare a type", field_name=name)
        return cls(
            type=FieldType.coerce(data["type"]),
            required=bool(data.get("required", False)),
            default=data.get("default"),
            ref=data.get("ref"),
            unique=bool(data.get("unique", False)),
            index=bool(data.get("index", False)),
            ttl=data.get("ttl"),
        )


def field(
    type: FieldType | str | type,
    *,
    required: bool = False,
    default: Any = None,
    ref: str | None = None,
    unique: bool = False,
    index: bool = False,
    ttl: float | None = None,
) -> FieldDef:
    """Convenience function to create a FieldDef.

    Example:
        >>> title = field(str, required=True)
        >>> books = field("array", ref="Book", default=list)
    """
    return FieldDef(
        type=FieldType.coerce(type),
        required=required,
        default=default,
        ref=ref,
        unique=unique,
        index=index,
        ttl=ttl,
    )


class Schema:
    """Ordered mapping of field name to FieldDef.

    The schema is non-exclusive: documents may carry keys it does not
    declare, and validation passes them through untouched.
    """

    def __init__(self, definition: Mapping[str, FieldDef | Mapping[str, Any]] | None = None) -> None:
        self._fields: dict[str, FieldDef] = {}
        for name, spec in (definition or {}).items():
            if isinstance(spec, FieldDef):
                self._fields[name] = spec
            elif isinstance(spec, Mapping):
                self._fields[name] = FieldDef.from_dict(spec, name=name)
            else:
                raise SchemaDefinitionError(
                    f"Field '{name}' must be a FieldDef or mapping, got {type(spec).__name__}",
                    field_name=name,
                )

    @property
    def fields(self) -> Mapping[str, FieldDef]:
        return self._fields

    def get_field(self, name: str) -> FieldDef | None:
        return self._fields.get(name)

    def indexed_fields(self) -> Iterator[tuple[str, FieldDef]]:
        """Iterate over fields that need a storage index."""
        for name, fdef in self._fields.items():
            if fdef.needs_index:
                yield name, fdef

    def validate(self, document: Mapping[str, Any]) -> dict[str, Any]:
        """Validate a document against this schema. See validate_document."""
        from .validate import validate_document

        return validate_document(self, document)

    def to_dict(self) -> dict[str, Any]:
        return {name: fdef.to_dict() for name, fdef in self._fields.items()}

    def __contains__(self, name: object) -> bool:
        return name in self._fields

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Schema):
            return NotImplemented
        return self._fields == other._fields

    def __repr__(self) -> str:
        return f"Schema({list(self._fields)})"
