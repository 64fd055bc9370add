"""Content-addressed storage: backends, connection and document store."""

from __future__ import annotations

from cidstore.storage.backends import (
    AddResult,
    EmbeddedNode,
    RemoteIPFSBackend,
    StorageBackend,
)
from cidstore.storage.connection import ConnectionManager
from cidstore.storage.document_store import CollectionIndex, DocumentStore

__all__ = [
    "AddResult",
    "CollectionIndex",
    "ConnectionManager",
    "DocumentStore",
    "EmbeddedNode",
    "RemoteIPFSBackend",
    "StorageBackend",
]
