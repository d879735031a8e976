"""
Document validation for docmodel.

This module turns a declarative schema into enforced invariants:
- Defaults are materialized for missing fields
- Required fields are checked after defaults
- Present values are checked against their declared type tag

Invariants:
    - Validation is pure: no I/O, input mapping is never mutated
    - Validation is all-or-nothing: the first failure raises
    - Keys the schema does not declare pass through unchanged
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from ..errors import ValidationError, ValidationErrorKind
from .types import Schema


def validate_document(schema: Schema, document: Mapping[str, Any]) -> dict[str, Any]:
    """Validate a document and apply defaults.

    Args:
        schema: Schema to validate against
        document: Raw input document

    Returns:
        New dict: the input shallow-merged with defaulted/validated values

    Raises:
        ValidationError: RequiredFieldMissing or TypeMismatch
    """
    resolved: dict[str, Any] = {}

    for name, fdef in schema.fields.items():
        value = document.get(name)

        if value is None and fdef.has_default:
            value = fdef.materialize_default()

        if value is None:
            if fdef.required:
                raise ValidationError(
                    f"Field '{name}' is required",
                    kind=ValidationErrorKind.REQUIRED_FIELD_MISSING,
                    field_name=name,
                )
            continue

        if not fdef.type.matches(value):
            raise ValidationError(
                f"Field '{name}' should be of type {fdef.type.value}, got {type(value).__name__}",
                kind=ValidationErrorKind.TYPE_MISMATCH,
                field_name=name,
            )

        resolved[name] = value

    return {**document, **resolved}
