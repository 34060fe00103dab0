"""Document storage: the store contract, its implementations and the typed repository."""

from procflow.store.base import DocumentStore, Filter
from procflow.store.memory import MemoryDocumentStore
from procflow.store.repository import Repository
from procflow.store.sql import SqlDocumentStore

__all__ = [
    "DocumentStore",
    "Filter",
    "MemoryDocumentStore",
    "Repository",
    "SqlDocumentStore",
]
