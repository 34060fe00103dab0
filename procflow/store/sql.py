"""SQLAlchemy-backed DocumentStore.

Opens a fresh session per call so one store instance is safe to share across
requests and long-running loops (scheduler, folder watcher).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from sqlalchemy import select, update, delete
from sqlalchemy.exc import IntegrityError

from procflow.db.models import DocumentModel
from procflow.exceptions import VersionConflict
from procflow.store.base import Filter, matches

# equality filters on these fields are pushed into SQL; the rest run in Python
_INDEXED = {"organization_id", "status"}


def _row_to_doc(row: DocumentModel) -> dict[str, Any]:
    return {**(row.data or {}), "id": row.id, "version": row.version}


def _status_of(data: dict[str, Any]) -> Optional[str]:
    status = data.get("status")
    return str(status) if status is not None else None


def _plain(value: Any) -> str:
    return str(value.value if hasattr(value, "value") else value)


class SqlDocumentStore:
    """DocumentStore over the ``documents`` table."""

    def __init__(self, session_factory) -> None:
        self._sf = session_factory

    async def get(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        async with self._sf() as session:
            row = await session.get(DocumentModel, (collection, doc_id))
            return _row_to_doc(row) if row is not None else None

    async def create(self, collection: str, doc_id: str, data: dict[str, Any]) -> int:
        async with self._sf() as session:
            session.add(DocumentModel(
                collection=collection,
                id=doc_id,
                organization_id=data.get("organization_id"),
                status=_status_of(data),
                data=data,
                version=1,
            ))
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise VersionConflict(f"{collection}/{doc_id} already exists", expected=0) from exc
        return 1

    async def put(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> int:
        async with self._sf() as session:
            row = await session.get(DocumentModel, (collection, doc_id))
            if row is not None:
                return await self._update(session, row, data, expected_version)
        if expected_version not in (None, 0):
            raise VersionConflict(
                f"{collection}/{doc_id} does not exist, expected version {expected_version}",
                expected=expected_version,
                actual=0,
            )
        return await self.create(collection, doc_id, data)

    async def _update(
        self,
        session,
        row: DocumentModel,
        data: dict[str, Any],
        expected_version: Optional[int],
    ) -> int:
        collection, doc_id, actual = row.collection, row.id, row.version
        if expected_version is not None and expected_version != actual:
            raise VersionConflict(
                f"{collection}/{doc_id} is at version {actual}, expected {expected_version}",
                expected=expected_version,
                actual=actual,
            )
        # compare-and-set on the version column guards against writers in other processes
        result = await session.execute(
            update(DocumentModel)
            .where(
                DocumentModel.collection == collection,
                DocumentModel.id == doc_id,
                DocumentModel.version == actual,
            )
            .values(
                data=data,
                organization_id=data.get("organization_id"),
                status=_status_of(data),
                version=actual + 1,
                updated_at=datetime.now(timezone.utc),
            )
        )
        if result.rowcount != 1:
            await session.rollback()
            raise VersionConflict(f"{collection}/{doc_id} changed during write", expected=actual)
        await session.commit()
        return actual + 1

    async def query(
        self,
        collection: str,
        filters: Iterable[Filter] = (),
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        stmt = select(DocumentModel).where(DocumentModel.collection == collection)
        remaining: list[Filter] = []
        for path, op, value in filters:
            if path in _INDEXED and op == "==" and value is not None:
                stmt = stmt.where(getattr(DocumentModel, path) == _plain(value))
            else:
                remaining.append((path, op, value))
        async with self._sf() as session:
            rows = (await session.execute(stmt)).scalars().all()
        docs = [d for d in (_row_to_doc(r) for r in rows) if matches(d, remaining)]
        return docs[:limit] if limit is not None else docs

    async def delete(self, collection: str, doc_id: str) -> bool:
        async with self._sf() as session:
            result = await session.execute(
                delete(DocumentModel).where(
                    DocumentModel.collection == collection, DocumentModel.id == doc_id
                )
            )
            await session.commit()
            return result.rowcount > 0
