"""cidstore - a content-addressed document store on IPFS.

Records are persisted as JSON to an IPFS node (or an embedded fallback
node), indexed in memory by collection and id, and readable back through
public gateways.
"""

from __future__ import annotations

__version__ = "0.1.0"

from cidstore.gateway.resolver import FetchOptions, GatewayResolver
from cidstore.models import Config, Record, UploadResult
from cidstore.service import ContentService
from cidstore.storage.connection import ConnectionManager
from cidstore.storage.document_store import DocumentStore
from cidstore.utils.exceptions import (
    CidStoreError,
    FetchExhaustedError,
    OperationError,
    StorageConnectionError,
    ValidationError,
)
from cidstore.utils.resilience import RetryExecutor

__all__ = [
    "CidStoreError",
    "Config",
    "ConnectionManager",
    "ContentService",
    "DocumentStore",
    "FetchExhaustedError",
    "FetchOptions",
    "GatewayResolver",
    "OperationError",
    "Record",
    "RetryExecutor",
    "StorageConnectionError",
    "UploadResult",
    "ValidationError",
    "__version__",
]
