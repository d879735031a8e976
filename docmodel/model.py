"""
Models: a named schema bound to a datastore.

A Model validates documents before they reach storage, declares the
indexes its schema asks for, and hands out query builders. Models register
themselves in a ModelRegistry so populate can resolve refs by name.

Invariants:
    - One Model per name per registry; ``model()`` returns the existing
      instance and ignores any new definition or options
    - Indexes are declared once, at construction; a failure there is fatal
      and leaves the model unregistered
    - create() validates before any I/O

Example:
    >>> Book = model("Book", {"title": {"type": str, "required": True}})
    >>> Author = model("Author", {
    ...     "name": {"type": str, "required": True},
    ...     "books": {"type": list, "ref": "Book", "default": list},
    ... })
    >>> dune = await Book.create({"title": "Dune"})
    >>> await Author.create({"name": "Frank Herbert", "books": [dune["_id"]]})
    >>> authors = await Author.find({}).populate("books").exec()
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .config import Settings, get_settings
from .errors import StorageError
from .query import Query
from .registry import DuplicateModelError, ModelRegistry, get_registry
from .schema import FieldDef, Schema
from .storage import Datastore

logger = logging.getLogger(__name__)

SchemaDefinition = Schema | Mapping[str, FieldDef | Mapping[str, Any]]


@dataclass(frozen=True)
class ModelOptions:
    """Storage options for a model.

    Unset values fall back to Settings.

    Attributes:
        filename: Datafile path; defaults to ``<data_dir>/<name>.db``
        in_memory_only: Keep the collection in memory
        autocompaction_interval_ms: Compact the datafile periodically
    """

    filename: str | Path | None = None
    in_memory_only: bool | None = None
    autocompaction_interval_ms: int | None = None

    @classmethod
    def coerce(cls, value: ModelOptions | Mapping[str, Any] | None) -> ModelOptions:
        if value is None:
            return cls()
        if isinstance(value, cls):
            return value
        return cls(**value)


class Model:
    """A named collection with a schema.

    Attributes:
        name: Unique model name
        schema: Field definitions
        datastore: Storage engine handle
        registry: Registry the model is registered in
    """

    def __init__(
        self,
        name: str,
        definition: SchemaDefinition,
        options: ModelOptions | Mapping[str, Any] | None = None,
        *,
        registry: ModelRegistry | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Create the datastore, declare indexes and register the model.

        Raises:
            SchemaDefinitionError: If the definition is malformed
            StorageError: If the datastore cannot be opened or an index
                cannot be created
            DuplicateModelError: If the registry already holds this name
        """
        if not name:
            raise ValueError("Model name cannot be empty")

        settings = settings or get_settings()
        self.name = name
        self.definition = definition
        self.schema = definition if isinstance(definition, Schema) else Schema(definition)
        self.options = ModelOptions.coerce(options)
        self.registry = registry if registry is not None else get_registry()

        in_memory_only = self.options.in_memory_only
        if in_memory_only is None:
            in_memory_only = settings.in_memory_only
        filename = self.options.filename or Path(settings.data_dir) / f"{name}.db"

        self.datastore = Datastore(
            filename,
            in_memory_only=in_memory_only,
            busy_timeout_ms=settings.busy_timeout_ms,
        )

        try:
            self._ensure_indexes()
            self.registry.register(self)
        except (StorageError, DuplicateModelError):
            self.datastore.close()
            raise

        interval = self.options.autocompaction_interval_ms
        if interval is None:
            interval = settings.autocompaction_interval_ms
        if interval:
            self.datastore.persistence.set_autocompaction_interval(interval)

        logger.info(
            "Registered model",
            extra={"model": name, "in_memory_only": self.datastore.in_memory_only},
        )

    def _ensure_indexes(self) -> None:
        for field_name, fdef in self.schema.indexed_fields():
            self.datastore.ensure_index(
                field_name,
                unique=fdef.unique,
                expire_after_seconds=fdef.ttl,
            )

    async def create(self, doc: Mapping[str, Any]) -> dict[str, Any]:
        """Validate and insert a document.

        Returns:
            Stored document including ``_id``

        Raises:
            ValidationError: Before any I/O if the document is invalid
            StorageError: If the insert fails
        """
        validated = self.schema.validate(doc)
        return await self.datastore.insert(validated)

    def find(self, filter: Mapping[str, Any] | None = None) -> Query:
        """Query returning every matching document."""
        return Query(self, filter, single=False)

    def find_one(self, filter: Mapping[str, Any] | None = None) -> Query:
        """Query returning the first matching document or None."""
        return Query(self, filter, single=True)

    async def update(
        self,
        filter: Mapping[str, Any] | None,
        patch: Mapping[str, Any],
        *,
        multi: bool = True,
        upsert: bool = False,
    ) -> int:
        """Merge ``patch`` into matching documents.

        Only the patched fields change; other fields are kept.

        Returns:
            Number of documents modified
        """
        return await self.datastore.update(filter, {"$set": dict(patch)}, multi=multi, upsert=upsert)

    async def delete(self, filter: Mapping[str, Any] | None, *, multi: bool = True) -> int:
        """Remove matching documents.

        Returns:
            Number of documents removed
        """
        return await self.datastore.remove(filter, multi=multi)

    async def count(self, filter: Mapping[str, Any] | None = None) -> int:
        return await self.datastore.count(filter)

    def close(self) -> None:
        self.datastore.close()

    def __repr__(self) -> str:
        return f"<Model {self.name} fields={list(self.schema)}>"


def model(
    name: str,
    definition: SchemaDefinition | None = None,
    options: ModelOptions | Mapping[str, Any] | None = None,
    *,
    registry: ModelRegistry | None = None,
    settings: Settings | None = None,
) -> Model:
    """Get or define a model.

    A second call with a registered name returns the first instance; the new
    definition and options are ignored, not merged.

    Raises:
        KeyError: If the name is unknown and no definition is given
    """
    registry = registry if registry is not None else get_registry()

    existing = registry.get(name)
    if existing is not None:
        if definition is not None and definition != existing.definition:
            logger.warning(
                f"Model '{name}' is already defined; ignoring the new definition",
                extra={"model": name},
            )
        return existing

    if definition is None:
        raise KeyError(f"Model '{name}' is not defined")
    return Model(name, definition, options, registry=registry, settings=settings)
