"""
docmodel - schema-validated models over an embedded document store.

This package provides:
- Field schemas with defaults, required checks and type tags
- Models bound to per-collection SQLite datafiles, with unique, plain
  and TTL indexes
- Chainable queries (sort/skip/limit) with batched reference
  resolution ("populate")

Example:
    >>> from docmodel import model
    >>>
    >>> Book = model("Book", {"title": {"type": str, "required": True}})
    >>> Author = model("Author", {
    ...     "name": {"type": str, "required": True},
    ...     "books": {"type": list, "ref": "Book", "default": list},
    ... })
    >>>
    >>> book = await Book.create({"title": "Die Verwandlung"})
    >>> await Author.create({"name": "Kafka", "books": [book["_id"]]})
    >>> authors = await Author.find({}).populate("books").exec()

Invariants:
    - Validation happens before any I/O
    - populate issues one query per populated field, whatever the
      number of documents
    - Model names are unique per registry
"""

from ._version import __version__
from .config import Settings, get_settings, setup_logging
from .errors import (
    ConfigurationError,
    ConfigurationErrorKind,
    DocModelError,
    SchemaDefinitionError,
    StorageError,
    ValidationError,
    ValidationErrorKind,
)
from .model import Model, ModelOptions, model
from .populate import populate_documents
from .query import Query, QuerySpec, execute
from .registry import DuplicateModelError, ModelRegistry, get_registry, reset_registry
from .schema import FieldDef, FieldType, Schema, field, validate_document
from .storage import Datastore

__all__ = [
    # Version
    "__version__",
    # Models
    "model",
    "Model",
    "ModelOptions",
    # Queries
    "Query",
    "QuerySpec",
    "execute",
    "populate_documents",
    # Schema
    "Schema",
    "FieldDef",
    "FieldType",
    "field",
    "validate_document",
    # Registry
    "ModelRegistry",
    "DuplicateModelError",
    "get_registry",
    "reset_registry",
    # Storage
    "Datastore",
    # Configuration
    "Settings",
    "get_settings",
    "setup_logging",
    # Errors
    "DocModelError",
    "ValidationError",
    "ValidationErrorKind",
    "ConfigurationError",
    "ConfigurationErrorKind",
    "SchemaDefinitionError",
    "StorageError",
]
