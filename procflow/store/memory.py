"""In-process document store. Used by tests, the CLI and single-worker dev servers."""

from __future__ import annotations

import copy
from typing import Any, Iterable, Optional

from procflow.exceptions import VersionConflict
from procflow.store.base import Filter, matches


class MemoryDocumentStore:
    """Dict-backed DocumentStore.

    Every method body runs without awaiting, so each call is atomic with
    respect to other coroutines on the same loop.
    """

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}

    def _bucket(self, collection: str) -> dict[str, dict[str, Any]]:
        return self._collections.setdefault(collection, {})

    async def get(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        doc = self._bucket(collection).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def create(self, collection: str, doc_id: str, data: dict[str, Any]) -> int:
        bucket = self._bucket(collection)
        if doc_id in bucket:
            raise VersionConflict(
                f"{collection}/{doc_id} already exists", expected=0, actual=bucket[doc_id]["version"]
            )
        bucket[doc_id] = {**copy.deepcopy(data), "id": doc_id, "version": 1}
        return 1

    async def put(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> int:
        bucket = self._bucket(collection)
        current = bucket.get(doc_id)
        actual = current["version"] if current is not None else 0
        if expected_version is not None and expected_version != actual:
            raise VersionConflict(
                f"{collection}/{doc_id} is at version {actual}, expected {expected_version}",
                expected=expected_version,
                actual=actual,
            )
        new_version = actual + 1
        bucket[doc_id] = {**copy.deepcopy(data), "id": doc_id, "version": new_version}
        return new_version

    async def query(
        self,
        collection: str,
        filters: Iterable[Filter] = (),
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        filters = list(filters)
        out = [copy.deepcopy(d) for d in self._bucket(collection).values() if matches(d, filters)]
        return out[:limit] if limit is not None else out

    async def delete(self, collection: str, doc_id: str) -> bool:
        return self._bucket(collection).pop(doc_id, None) is not None
