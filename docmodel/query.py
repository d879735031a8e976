"""
Query builder and executor for docmodel.

A Query accumulates a filter, sort, skip, limit and the fields to populate.
``build()`` freezes it into a QuerySpec; ``execute()`` performs the I/O.
A Query is also awaitable, which is shorthand for ``await query.exec()``.

Invariants:
    - No I/O happens until execution
    - Every execution re-fetches; results are never memoized
    - populate() ignores fields already requested
    - A single-mode query with sort or skip runs as a many-mode query
      limited to one document
"""

from __future__ import annotations

from collections.abc import Generator, Mapping
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from .populate import populate_documents

if TYPE_CHECKING:
    from .model import Model


@dataclass(frozen=True)
class QuerySpec:
    """Immutable description of a query.

    Attributes:
        filter: Storage filter
        single: Return one document (or None) instead of a list
        sort: Sort spec ({"field": 1 | -1}), None for natural order
        skip: Documents to skip; sign is not validated
        limit: Maximum documents; sign is not validated
        populate: Ref fields to resolve, in request order
    """

    filter: Mapping[str, Any]
    single: bool = False
    sort: Mapping[str, int] | None = None
    skip: int | None = None
    limit: int | None = None
    populate: tuple[str, ...] = ()


class Query:
    """Chainable query over one model.

    Example:
        >>> authors = await Author.find({}).populate("books").sort({"name": 1}).exec()
        >>> book = await Book.find_one({"title": "Dune"}).populate("author")
    """

    def __init__(self, model: Model, filter: Mapping[str, Any] | None = None, single: bool = False) -> None:
        self._model = model
        self._filter = dict(filter or {})
        self._single = single
        self._populate: list[str] = []
        self._sort: dict[str, int] | None = None
        self._skip: int | None = None
        self._limit: int | None = None

    @property
    def model(self) -> Model:
        return self._model

    def populate(self, field_name: str) -> Query:
        if field_name not in self._populate:
            self._populate.append(field_name)
        return self

    def sort(self, spec: Mapping[str, int]) -> Query:
        self._sort = dict(spec)
        return self

    def skip(self, n: int) -> Query:
        self._skip = n
        return self

    def limit(self, n: int) -> Query:
        self._limit = n
        return self

    def build(self) -> QuerySpec:
        """Snapshot the builder state."""
        return QuerySpec(
            filter=MappingProxyType(dict(self._filter)),
            single=self._single,
            sort=MappingProxyType(dict(self._sort)) if self._sort is not None else None,
            skip=self._skip,
            limit=self._limit,
            populate=tuple(self._populate),
        )

    async def exec(self) -> dict[str, Any] | list[dict[str, Any]] | None:
        """Run the query: a list in many mode, a document or None in single mode."""
        return await execute(self._model, self.build())

    def __await__(self) -> Generator[Any, None, dict[str, Any] | list[dict[str, Any]] | None]:
        return self.exec().__await__()

    def __repr__(self) -> str:
        mode = "single" if self._single else "many"
        return f"<Query {self._model.name} {mode} filter={self._filter!r} populate={self._populate!r}>"


async def execute(model: Model, spec: QuerySpec) -> dict[str, Any] | list[dict[str, Any]] | None:
    """Execute a query spec against a model's datastore, then populate."""
    if spec.single:
        return await _execute_one(model, spec)
    return await _execute_many(model, spec)


async def _execute_many(model: Model, spec: QuerySpec) -> list[dict[str, Any]]:
    cursor = model.datastore.find(dict(spec.filter))
    if spec.sort is not None:
        cursor = cursor.sort(dict(spec.sort))
    if spec.skip is not None:
        cursor = cursor.skip(spec.skip)
    if spec.limit is not None:
        cursor = cursor.limit(spec.limit)

    docs = await cursor.exec()
    await populate_documents(docs, model, spec.populate)
    return docs


async def _execute_one(model: Model, spec: QuerySpec) -> dict[str, Any] | None:
    if spec.sort is not None or spec.skip is not None:
        docs = await _execute_many(model, replace(spec, single=False, limit=1))
        return docs[0] if docs else None

    doc = await model.datastore.find_one(dict(spec.filter))
    if doc is None:
        return None
    await populate_documents([doc], model, spec.populate)
    return doc
