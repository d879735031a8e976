"""
Model registry for docmodel.

This module maps model names to Model instances so populate can resolve a
field's ``ref`` by name without callers threading model handles through
every query.

Registries are plain objects: tests and applications can create
independent ones and pass them to ``model()``. A process-wide default is
available through ``get_registry()``.

Invariants:
    - Write-once per name: a name maps to one Model for the registry's life
    - Read-only from the populate path

Example:
    >>> registry = ModelRegistry()
    >>> Book = model("Book", {"title": {"type": str}}, registry=registry)
    >>> registry.get("Book") is Book
    True
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from typing import TYPE_CHECKING

from .errors import DocModelError

if TYPE_CHECKING:
    from .model import Model

# Global registry
_global_registry: ModelRegistry | None = None
_registry_lock = threading.Lock()


class DuplicateModelError(DocModelError):
    """A different model is already registered under this name."""

    def __init__(self, message: str, model_name: str | None = None) -> None:
        super().__init__(message, code="DUPLICATE_MODEL", details={"model_name": model_name})
        self.model_name = model_name


class ModelRegistry:
    """Name → Model mapping used to resolve reference targets."""

    def __init__(self) -> None:
        self._models: dict[str, Model] = {}
        self._lock = threading.Lock()

    def register(self, model: Model) -> None:
        """Register a model under its name.

        Raises:
            DuplicateModelError: If another instance already owns the name
        """
        with self._lock:
            existing = self._models.get(model.name)
            if existing is not None and existing is not model:
                raise DuplicateModelError(
                    f"Model '{model.name}' is already registered", model_name=model.name
                )
            self._models[model.name] = model

    def get(self, name: str) -> Model | None:
        return self._models.get(name)

    def names(self) -> list[str]:
        return list(self._models)

    def __contains__(self, name: object) -> bool:
        return name in self._models

    def __iter__(self) -> Iterator[Model]:
        return iter(list(self._models.values()))

    def __len__(self) -> int:
        return len(self._models)

    def close_all(self) -> None:
        """Close every registered model's datastore."""
        for model in self:
            model.close()


def get_registry() -> ModelRegistry:
    """Get the process-wide default registry."""
    global _global_registry
    with _registry_lock:
        if _global_registry is None:
            _global_registry = ModelRegistry()
        return _global_registry


def reset_registry() -> None:
    """Reset the default registry (for testing only)."""
    global _global_registry
    with _registry_lock:
        _global_registry = None
