"""ORM models. Engine state lives in one JSON document table.

Tables: documents
Columns that the engine filters on most (organization_id, status) are
copied out of the JSON body so they can be indexed.
"""

from sqlalchemy import Column, String, Integer, DateTime, JSON, Index
from sqlalchemy.orm import DeclarativeBase
from datetime import datetime, timezone


class Base(DeclarativeBase):
    pass


class DocumentModel(Base):
    __tablename__ = "documents"
    collection = Column(String, primary_key=True)
    id = Column(String, primary_key=True)
    organization_id = Column(String, nullable=True, index=True)
    status = Column(String, nullable=True)
    data = Column(JSON, nullable=False, default=dict)
    version = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (Index("ix_document_collection_status", "collection", "status"),)
