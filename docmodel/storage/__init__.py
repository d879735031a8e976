"""
Storage engine for docmodel.

Models reach storage only through this narrow contract:
- Datastore: insert, find (Cursor), find_one, count, update, remove
- ensure_index with uniqueness and TTL options
- Persistence handle with compaction and autocompaction

Invariants:
    - Every stored document carries a unique string ``_id``
    - All failures surface as StorageError
"""

from .datastore import Cursor, Datastore, Persistence
from .matching import apply_modifier, matches, sort_documents

__all__ = [
    "Cursor",
    "Datastore",
    "Persistence",
    "apply_modifier",
    "matches",
    "sort_documents",
]
