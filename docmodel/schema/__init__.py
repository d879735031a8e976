"""
Schema module for docmodel.

This module provides the declarative field system for models:
- Type tags and field definitions (FieldType, FieldDef, field)
- Schema container
- Document validation with defaults

Invariants:
    - Every field declares a type tag
    - Validation never strips undeclared keys
"""

from .types import FieldDef, FieldType, Schema, field
from .validate import validate_document

__all__ = [
    "FieldDef",
    "FieldType",
    "Schema",
    "field",
    "validate_document",
]
