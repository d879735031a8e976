"""
Embedded SQLite document store.

This module provides the storage engine that models delegate to:
- One SQLite file per collection (or an in-memory database)
- Documents stored as JSON, keyed by a store-assigned ``_id``
- Cursor-based find with sort/skip/limit
- Modifier-based update, remove
- Unique and plain indexes, TTL expiry
- Periodic autocompaction through the persistence handle

Invariants:
    - Every stored document has a unique string ``_id``
    - Documents returned are fresh snapshots; mutating them does not
      change stored state
    - Natural order (no sort) is insertion order
    - Expired TTL documents are removed before they can be returned
    - Every SQLite failure surfaces as StorageError

How to change safely:
    - Keep the table layout (id, body) stable; existing files depend on it
    - Use explicit transactions for multi-row writes

Table schema:
    documents:
        - id TEXT PRIMARY KEY
        - body TEXT (JSON, dates encoded as {"$$date": ms})
"""

from __future__ import annotations

import asyncio
import datetime
import logging
import sqlite3
import time
import uuid
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from ..errors import StorageError
from .codec import decode, encode
from .matching import apply_modifier, matches, sort_documents

logger = logging.getLogger(__name__)

# SQLite host parameter budget per IN (...) clause
_ID_CHUNK = 500


def _new_id() -> str:
    return uuid.uuid4().hex


def _json_path(field_name: str) -> str:
    if not field_name or '"' in field_name:
        raise StorageError(f"Invalid index field name: {field_name!r}", operation="ensure_index")
    path = "$" + "".join(f'."{part}"' for part in field_name.split("."))
    return path.replace("'", "''")


def _index_name(field_name: str, unique: bool) -> str:
    safe = "".join(c if c.isalnum() else "_" for c in field_name)
    prefix = "uidx" if unique else "idx"
    return f"{prefix}_{safe}_{uuid.uuid5(uuid.NAMESPACE_OID, field_name).hex[:8]}"


class Cursor:
    """Lazy find: accumulates sort/skip/limit, runs on exec().

    Example:
        >>> docs = await store.find({"age": {"$gte": 18}}).sort({"age": -1}).limit(10).exec()
    """

    def __init__(self, datastore: Datastore, query: Mapping[str, Any] | None = None) -> None:
        self._datastore = datastore
        self._query = query or {}
        self._sort: Mapping[str, int] | None = None
        self._skip: int | None = None
        self._limit: int | None = None

    def sort(self, spec: Mapping[str, int]) -> Cursor:
        self._sort = spec
        return self

    def skip(self, n: int) -> Cursor:
        self._skip = n
        return self

    def limit(self, n: int) -> Cursor:
        self._limit = n
        return self

    async def exec(self) -> list[dict[str, Any]]:
        """Run the query.

        Non-positive skip means no skip; non-positive limit means no limit.

        Returns:
            Matching documents
        """
        docs = self._datastore._find_documents(self._query)
        if self._sort:
            docs = sort_documents(docs, self._sort)
        if self._skip is not None and self._skip > 0:
            docs = docs[self._skip :]
        if self._limit is not None and self._limit > 0:
            docs = docs[: self._limit]
        return docs


class Persistence:
    """Persistence handle of a datastore: compaction and its schedule.

    Compaction removes expired TTL documents and, for file-backed stores,
    rewrites the database file (VACUUM) to reclaim space.
    """

    MIN_AUTOCOMPACTION_INTERVAL_MS = 5000

    def __init__(self, datastore: Datastore) -> None:
        self._datastore = datastore
        self._interval_ms: int | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def autocompaction_interval_ms(self) -> int | None:
        return self._interval_ms

    def set_autocompaction_interval(self, interval_ms: int) -> None:
        """Compact every ``interval_ms`` milliseconds (minimum 5000).

        The loop starts immediately when an event loop is running, otherwise
        on the datastore's first operation.
        """
        self.stop_autocompaction()
        self._interval_ms = max(int(interval_ms), self.MIN_AUTOCOMPACTION_INTERVAL_MS)
        self.ensure_running()

    def stop_autocompaction(self) -> None:
        self._interval_ms = None
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def ensure_running(self) -> None:
        """Start the compaction loop if one is scheduled and not running."""
        if self._interval_ms is None:
            return
        if self._task is not None and not self._task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._task = loop.create_task(self._autocompaction_loop())

    async def _autocompaction_loop(self) -> None:
        interval_ms = self._interval_ms
        logger.info(
            "Starting autocompaction",
            extra={"datafile": str(self._datastore.filename), "interval_ms": interval_ms},
        )
        try:
            while self._interval_ms is not None:
                await asyncio.sleep(self._interval_ms / 1000.0)
                try:
                    await self.compact_datafile()
                except StorageError as e:
                    logger.error(f"Autocompaction failed: {e}", exc_info=True)
        except asyncio.CancelledError:
            logger.info("Autocompaction cancelled")

    async def compact_datafile(self) -> None:
        """Remove expired documents and reclaim file space."""
        datastore = self._datastore
        async with datastore._lock:
            with datastore._translate_errors("compact"):
                expired = datastore._purge_expired(datastore._iter_rows())
                if not datastore.in_memory_only:
                    datastore._conn.execute("VACUUM")
        logger.debug(
            "Compacted datafile",
            extra={"datafile": str(datastore.filename), "expired": expired},
        )


class Datastore:
    """Document collection backed by SQLite.

    Thread safety:
        Intended for a single event loop. SQLite calls run inline in the
        coroutines; multi-row writes serialize on an asyncio.Lock.

    Example:
        >>> store = Datastore("data/books.db")
        >>> store.ensure_index("isbn", unique=True)
        >>> doc = await store.insert({"title": "Dune", "isbn": "0441013597"})
        >>> await store.find_one({"_id": doc["_id"]})
    """

    def __init__(
        self,
        filename: str | Path | None = None,
        in_memory_only: bool = False,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Open (and create if needed) the datastore.

        Args:
            filename: Database file; None implies in-memory
            in_memory_only: Keep data in memory even if filename is given
            busy_timeout_ms: SQLite busy timeout

        Raises:
            StorageError: If the database cannot be opened
        """
        self.in_memory_only = in_memory_only or filename is None
        self.filename = None if self.in_memory_only else Path(filename)
        self.busy_timeout_ms = busy_timeout_ms
        self._ttl_fields: dict[str, float] = {}
        self._lock = asyncio.Lock()
        self._conn = self._open()
        self.persistence = Persistence(self)

    def _open(self) -> sqlite3.Connection:
        with self._translate_errors("open"):
            if self.filename is not None:
                self.filename.parent.mkdir(parents=True, exist_ok=True)
                target = str(self.filename)
            else:
                target = ":memory:"

            conn = sqlite3.connect(
                target,
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,  # Autocommit by default, explicit transactions
                check_same_thread=False,
            )
            conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
            if self.filename is not None:
                conn.execute("PRAGMA journal_mode = WAL")
                conn.execute("PRAGMA synchronous = NORMAL")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    id TEXT PRIMARY KEY,
                    body TEXT NOT NULL
                )
                """
            )
        logger.debug("Opened datastore", extra={"datafile": str(self.filename or ":memory:")})
        return conn

    @contextmanager
    def _translate_errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except sqlite3.IntegrityError as e:
            raise StorageError(f"Constraint violated during {operation}: {e}", operation=operation) from e
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"Storage failure during {operation}: {e}", operation=operation) from e

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._conn
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
            conn.execute("COMMIT")
        except Exception:
            conn.execute("ROLLBACK")
            raise

    # ------------------------------------------------------------------
    # Indexes
    # ------------------------------------------------------------------

    def ensure_index(
        self,
        field_name: str,
        *,
        unique: bool = False,
        expire_after_seconds: float | None = None,
    ) -> None:
        """Create an index on a (possibly dotted) field.

        Missing values never conflict in unique indexes.

        Filters are evaluated in Python over decoded documents, so reads
        never consult these indexes. A unique index enforces its constraint
        on every write; a plain index only adds write cost and is kept so
        datafiles carry the indexes their schema declares. Only ``_id``
        filters narrow the scan, through the primary key.

        Args:
            field_name: Field to index
            unique: Reject documents sharing a value
            expire_after_seconds: Expire documents this long after the date
                held in the field

        Raises:
            StorageError: If existing data violates uniqueness or SQLite fails
        """
        path = _json_path(field_name)
        name = _index_name(field_name, unique)
        kind = "UNIQUE INDEX" if unique else "INDEX"
        with self._translate_errors("ensure_index"):
            self._conn.execute(
                f"CREATE {kind} IF NOT EXISTS {name} ON documents(json_extract(body, '{path}'))"
            )
        if expire_after_seconds is not None:
            self._ttl_fields[field_name] = float(expire_after_seconds)

        logger.info(
            "Ensured index",
            extra={
                "datafile": str(self.filename or ":memory:"),
                "field": field_name,
                "unique": unique,
                "expire_after_seconds": expire_after_seconds,
            },
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _iter_rows(self, ids: list[str] | None = None) -> Iterator[tuple[str, str]]:
        if ids is None:
            yield from self._conn.execute("SELECT id, body FROM documents ORDER BY rowid")
            return
        rows: list[tuple[int, str, str]] = []
        for start in range(0, len(ids), _ID_CHUNK):
            chunk = ids[start : start + _ID_CHUNK]
            placeholders = ",".join("?" for _ in chunk)
            rows.extend(
                self._conn.execute(
                    f"SELECT rowid, id, body FROM documents WHERE id IN ({placeholders})",
                    chunk,
                )
            )
        rows.sort(key=lambda row: row[0])
        for _, doc_id, body in rows:
            yield doc_id, body

    @staticmethod
    def _candidate_ids(query: Mapping[str, Any]) -> list[str] | None:
        """Narrow a scan by primary key when the filter pins ``_id``."""
        cond = query.get("_id")
        if isinstance(cond, str):
            return [cond]
        if isinstance(cond, Mapping) and set(cond) == {"$in"} and isinstance(cond["$in"], (list, tuple, set)):
            return list(dict.fromkeys(v for v in cond["$in"] if isinstance(v, str)))
        return None

    def _is_expired(self, doc: Mapping[str, Any], now: float) -> bool:
        for field_name, ttl in self._ttl_fields.items():
            value = doc.get(field_name)
            if isinstance(value, datetime.datetime) and value.timestamp() + ttl < now:
                return True
        return False

    def _purge_expired(self, rows: Iterator[tuple[str, str]]) -> int:
        if not self._ttl_fields:
            return 0
        now = time.time()
        expired = [doc_id for doc_id, body in rows if self._is_expired(decode(body), now)]
        for start in range(0, len(expired), _ID_CHUNK):
            chunk = expired[start : start + _ID_CHUNK]
            self._conn.execute(
                f"DELETE FROM documents WHERE id IN ({','.join('?' for _ in chunk)})", chunk
            )
        if expired:
            logger.debug("Removed expired documents", extra={"count": len(expired)})
        return len(expired)

    def _candidates(self, query: Mapping[str, Any]) -> list[dict[str, Any]]:
        """Decode candidate documents, dropping (and deleting) expired ones."""
        self.persistence.ensure_running()
        ids = self._candidate_ids(query)
        if ids is not None and not ids:
            return []

        docs: list[dict[str, Any]] = []
        expired: list[str] = []
        now = time.time()
        for doc_id, body in self._iter_rows(ids):
            doc = decode(body)
            if self._ttl_fields and self._is_expired(doc, now):
                expired.append(doc_id)
                continue
            docs.append(doc)

        for doc_id in expired:
            self._conn.execute("DELETE FROM documents WHERE id = ?", (doc_id,))
        if expired:
            logger.debug("Removed expired documents", extra={"count": len(expired)})
        return docs

    def _find_documents(self, query: Mapping[str, Any] | None) -> list[dict[str, Any]]:
        query = query or {}
        with self._translate_errors("find"):
            docs = [doc for doc in self._candidates(query) if matches(doc, query)]
        logger.debug("Find", extra={"datafile": str(self.filename or ":memory:"), "matched": len(docs)})
        return docs

    def find(self, query: Mapping[str, Any] | None = None) -> Cursor:
        """Start a find; nothing runs until Cursor.exec()."""
        return Cursor(self, query)

    async def find_one(self, query: Mapping[str, Any] | None = None) -> dict[str, Any] | None:
        """Return the first matching document in natural order, or None."""
        query = query or {}
        with self._translate_errors("find_one"):
            for doc in self._candidates(query):
                if matches(doc, query):
                    return doc
        return None

    async def count(self, query: Mapping[str, Any] | None = None) -> int:
        return len(self._find_documents(query))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _insert_row(self, conn: sqlite3.Connection, doc: Mapping[str, Any]) -> dict[str, Any]:
        stored = dict(doc)
        if stored.get("_id") is None:
            stored["_id"] = _new_id()
        elif not isinstance(stored["_id"], str):
            raise StorageError("_id must be a string", operation="insert")
        body = encode(stored)
        conn.execute("INSERT INTO documents (id, body) VALUES (?, ?)", (stored["_id"], body))
        return decode(body)

    async def insert(self, doc: Mapping[str, Any]) -> dict[str, Any]:
        """Insert a document.

        Args:
            doc: Document; ``_id`` is assigned when absent

        Returns:
            Stored document including ``_id``

        Raises:
            StorageError: On duplicate ``_id``, unique index conflict or
                unserializable values
        """
        self.persistence.ensure_running()
        async with self._lock:
            with self._translate_errors("insert"):
                try:
                    stored = self._insert_row(self._conn, doc)
                except (TypeError, ValueError) as e:
                    raise StorageError(f"Document is not serializable: {e}", operation="insert") from e

        logger.debug(
            "Inserted document",
            extra={"datafile": str(self.filename or ":memory:"), "_id": stored["_id"]},
        )
        return stored

    async def update(
        self,
        query: Mapping[str, Any] | None,
        modifier: Mapping[str, Any],
        *,
        multi: bool = False,
        upsert: bool = False,
    ) -> int:
        """Update matching documents.

        Args:
            query: Filter
            modifier: Replacement document or $set/$unset/$inc/$push operators
            multi: Update every match instead of the first one
            upsert: Insert a document built from query and modifier when
                nothing matches

        Returns:
            Number of documents modified (or inserted by upsert)
        """
        query = query or {}
        async with self._lock:
            with self._translate_errors("update"):
                targets = [doc for doc in self._candidates(query) if matches(doc, query)]
                if not multi:
                    targets = targets[:1]

                with self._transaction() as conn:
                    if not targets and upsert:
                        self._insert_row(conn, self._upsert_document(query, modifier))
                        affected = 1
                    else:
                        for doc in targets:
                            new_doc = apply_modifier(doc, modifier)
                            conn.execute(
                                "UPDATE documents SET body = ? WHERE id = ?",
                                (encode(new_doc), doc["_id"]),
                            )
                        affected = len(targets)

        logger.debug(
            "Updated documents",
            extra={"datafile": str(self.filename or ":memory:"), "affected": affected},
        )
        return affected

    @staticmethod
    def _upsert_document(query: Mapping[str, Any], modifier: Mapping[str, Any]) -> dict[str, Any]:
        if not any(k.startswith("$") for k in modifier):
            return dict(modifier)
        base = {
            k: v
            for k, v in query.items()
            if not k.startswith("$") and not (isinstance(v, Mapping) and any(str(x).startswith("$") for x in v))
        }
        new_doc = apply_modifier(base, modifier)
        if new_doc.get("_id") is None:
            new_doc.pop("_id", None)
        return new_doc

    async def remove(self, query: Mapping[str, Any] | None, *, multi: bool = False) -> int:
        """Remove matching documents.

        Returns:
            Number of documents removed
        """
        query = query or {}
        async with self._lock:
            with self._translate_errors("remove"):
                targets = [doc["_id"] for doc in self._candidates(query) if matches(doc, query)]
                if not multi:
                    targets = targets[:1]
                with self._transaction() as conn:
                    for doc_id in targets:
                        conn.execute("DELETE FROM documents WHERE id = ?", (doc_id,))

        logger.debug(
            "Removed documents",
            extra={"datafile": str(self.filename or ":memory:"), "removed": len(targets)},
        )
        return len(targets)

    def close(self) -> None:
        """Stop autocompaction and close the connection."""
        self.persistence.stop_autocompaction()
        with self._translate_errors("close"):
            self._conn.close()
