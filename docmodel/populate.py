"""
Reference resolution ("populate") for docmodel.

Populate replaces foreign identifiers stored in ref fields with the
referenced documents, fetching each referenced collection in one batch:

    1. Collect identifiers for the field across the whole result set
       (list values contribute every element, scalars themselves)
    2. Deduplicate them
    3. Issue one ``{"_id": {"$in": ids}}`` query against the target model
    4. Rewrite each document's field from the fetched id → document map

Invariants:
    - At most one query per (field, execution), whatever the result size
    - Fields are resolved sequentially in request order
    - List relations keep the order of matched ids; unmatched ids are dropped
      (the resolved list may be shorter than the stored one)
    - Scalar relations resolve to the document or None on a miss
    - The referenced collection is never modified
    - Resolved sub-documents are not populated further
"""

from __future__ import annotations

import logging
from collections.abc import Hashable, Iterable, Sequence
from typing import TYPE_CHECKING, Any

from .errors import ConfigurationError, ConfigurationErrorKind
from .registry import ModelRegistry

if TYPE_CHECKING:
    from .model import Model

logger = logging.getLogger(__name__)


def _collect_ids(documents: Sequence[dict[str, Any]], field_name: str) -> list[Any]:
    """Deduplicated identifiers in first-seen order."""
    ids: dict[Any, None] = {}
    for doc in documents:
        value = doc.get(field_name)
        candidates = value if isinstance(value, list) else [value]
        for candidate in candidates:
            if candidate is not None and isinstance(candidate, Hashable):
                ids.setdefault(candidate, None)
    return list(ids)


def _lookup(found: dict[Any, dict[str, Any]], key: Any) -> dict[str, Any] | None:
    if not isinstance(key, Hashable):
        return None
    return found.get(key)


def resolve_target(model: Model, field_name: str, registry: ModelRegistry) -> Model:
    """Find the model a field references.

    Raises:
        ConfigurationError: MissingRef if the field declares no ref,
            UnknownModel if the ref is not registered
    """
    fdef = model.schema.get_field(field_name)
    if fdef is None or not fdef.ref:
        raise ConfigurationError(
            f"Field '{field_name}' of model '{model.name}' must have a ref",
            kind=ConfigurationErrorKind.MISSING_REF,
            field_name=field_name,
            model_name=model.name,
        )

    target = registry.get(fdef.ref)
    if target is None:
        raise ConfigurationError(
            f"Model '{fdef.ref}' referenced by '{model.name}.{field_name}' not found",
            kind=ConfigurationErrorKind.UNKNOWN_MODEL,
            field_name=field_name,
            model_name=fdef.ref,
        )
    return target


async def populate_field(
    documents: Sequence[dict[str, Any]],
    model: Model,
    field_name: str,
    registry: ModelRegistry,
) -> None:
    """Resolve one ref field across documents, in place."""
    target = resolve_target(model, field_name, registry)

    ids = _collect_ids(documents, field_name)
    if not ids:
        return

    fetched = await target.find({"_id": {"$in": ids}}).exec()
    found = {doc["_id"]: doc for doc in fetched}

    for doc in documents:
        value = doc.get(field_name)
        if isinstance(value, list):
            doc[field_name] = [
                match for match in (_lookup(found, item) for item in value) if match is not None
            ]
        elif value is not None:
            doc[field_name] = _lookup(found, value)

    logger.debug(
        "Populated field",
        extra={
            "model": model.name,
            "field": field_name,
            "ref": target.name,
            "requested": len(ids),
            "found": len(found),
        },
    )


async def populate_documents(
    documents: Sequence[dict[str, Any]],
    model: Model,
    fields: Iterable[str],
    registry: ModelRegistry | None = None,
) -> Sequence[dict[str, Any]]:
    """Resolve every requested ref field of documents, in place.

    Args:
        documents: Result set, rewritten in place
        model: Model the documents belong to
        fields: Field names to populate, resolved in order
        registry: Registry for ref lookup; defaults to the model's

    Returns:
        The same documents

    Raises:
        ConfigurationError: On a field without ref or an unknown target
        StorageError: If a batch fetch fails; no partial result is returned
    """
    registry = registry if registry is not None else model.registry
    for field_name in dict.fromkeys(fields):
        await populate_field(documents, model, field_name, registry)
    return documents
