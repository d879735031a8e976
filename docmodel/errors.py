"""
Error types for docmodel.

This module defines all exception types raised by the library:
- DocModelError: Base exception
- ValidationError: Document failed schema validation
- ConfigurationError: Schema/registry misconfiguration found at populate time
- SchemaDefinitionError: Malformed field definition
- StorageError: Failure surfaced by the storage engine

Invariants:
    - All errors inherit from DocModelError
    - Errors include context for debugging
    - Validation errors are raised before any I/O
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ValidationErrorKind(Enum):
    """Reasons a document can fail validation."""

    REQUIRED_FIELD_MISSING = "RequiredFieldMissing"
    TYPE_MISMATCH = "TypeMismatch"


class ConfigurationErrorKind(Enum):
    """Reasons populate can reject a field."""

    MISSING_REF = "MissingRef"
    UNKNOWN_MODEL = "UnknownModel"


class DocModelError(Exception):
    """Base exception for all docmodel errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "DOCMODEL_ERROR"
        self.details = details or {}


class ValidationError(DocModelError):
    """Document validation failed.

    Raised when:
    - Required field is missing or None after defaults
    - Field value has the wrong kind for its declared type
    """

    def __init__(
        self,
        message: str,
        kind: ValidationErrorKind,
        field_name: str | None = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"kind": kind.value, "field": field_name},
        )
        self.kind = kind
        self.field_name = field_name


class ConfigurationError(DocModelError):
    """Schema or registry misconfiguration detected while populating.

    Raised when:
    - A populated field does not declare a ref
    - The referenced model is not registered
    """

    def __init__(
        self,
        message: str,
        kind: ConfigurationErrorKind,
        field_name: str | None = None,
        model_name: str | None = None,
    ) -> None:
        super().__init__(
            message,
            code="CONFIGURATION_ERROR",
            details={"kind": kind.value, "field": field_name, "model": model_name},
        )
        self.kind = kind
        self.field_name = field_name
        self.model_name = model_name


class SchemaDefinitionError(DocModelError):
    """Field definition is malformed (missing type, unknown option)."""

    def __init__(self, message: str, field_name: str | None = None) -> None:
        super().__init__(
            message,
            code="SCHEMA_DEFINITION_ERROR",
            details={"field": field_name},
        )
        self.field_name = field_name


class StorageError(DocModelError):
    """Failure surfaced by the storage engine.

    Covers I/O errors, unique index conflicts and malformed
    filters or modifiers. Never retried.
    """

    def __init__(self, message: str, operation: str | None = None) -> None:
        super().__init__(
            message,
            code="STORAGE_ERROR",
            details={"operation": operation},
        )
        self.operation = operation
