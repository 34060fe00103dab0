"""Document store contract.

The engine only needs per-document read, create and conditional update plus a
simple filtered query. Documents are JSON-safe dicts; the store owns the
``version`` key and bumps it on every successful write.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Optional, Protocol, runtime_checkable

from pydantic import TypeAdapter, ValidationError

Filter = tuple[str, str, Any]   # (dotted field path, operator, value)

OPERATORS = ("==", "!=", "<", "<=", ">", ">=", "in")

_MISSING = object()
_DATETIME = TypeAdapter(datetime)


@runtime_checkable
class DocumentStore(Protocol):

    async def get(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        """Return the document or None."""
        ...

    async def create(self, collection: str, doc_id: str, data: dict[str, Any]) -> int:
        """Insert a new document at version 1. Raises VersionConflict if the id exists."""
        ...

    async def put(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> int:
        """Write *data*, returning the new version.

        When *expected_version* is given the write only succeeds if the stored
        version still equals it; otherwise VersionConflict is raised.
        """
        ...

    async def query(
        self,
        collection: str,
        filters: Iterable[Filter] = (),
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        ...

    async def delete(self, collection: str, doc_id: str) -> bool:
        ...


def field_value(doc: dict[str, Any], path: str) -> Any:
    """Walk a dotted path through nested dicts. Returns a sentinel when absent."""
    current: Any = doc
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _comparable(stored: Any, wanted: Any) -> Any:
    # documents hold datetimes as ISO strings, UTC ones with a "Z" suffix
    if isinstance(wanted, datetime) and isinstance(stored, str):
        try:
            return _DATETIME.validate_python(stored)
        except ValidationError:
            return _MISSING
    return stored


def matches(doc: dict[str, Any], filters: Iterable[Filter]) -> bool:
    """True when *doc* satisfies every filter."""
    for path, op, wanted in filters:
        if op not in OPERATORS:
            raise ValueError(f"Unsupported filter operator: {op!r}")
        stored = _comparable(field_value(doc, path), wanted)
        if stored is _MISSING or stored is None:
            if op == "==" and wanted is None:
                continue
            if op == "!=" and wanted is not None:
                continue
            return False
        try:
            if op == "==" and not stored == wanted:
                return False
            if op == "!=" and not stored != wanted:
                return False
            if op == "<" and not stored < wanted:
                return False
            if op == "<=" and not stored <= wanted:
                return False
            if op == ">" and not stored > wanted:
                return False
            if op == ">=" and not stored >= wanted:
                return False
            if op == "in" and stored not in wanted:
                return False
        except TypeError:
            return False
    return True
