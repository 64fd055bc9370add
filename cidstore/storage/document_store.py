"""Document store over content-addressed storage.

Records are serialized to JSON, added to the storage backend and pinned;
every write produces a new immutable version. An in-memory index per
collection answers all existence checks and queries. The index is not
reconciled with the backend automatically: after a restart it starts empty
unless ``rebuild_index`` replays the pinned content.
"""

from __future__ import annotations

import json
import logging
import uuid
import weakref
from asyncio import Lock
from datetime import datetime, timedelta
from typing import Any, Iterator, Mapping

from pydantic import ValidationError as PydanticValidationError
from pydantic_core import PydanticSerializationError

from cidstore.models import Record, StoreConfig, UploadResult
from cidstore.storage.connection import ConnectionManager
from cidstore.utils.cache import TTLCache
from cidstore.utils.exceptions import (
    OperationError,
    StorageConnectionError,
    ValidationError,
)
from cidstore.utils.resilience import RetryExecutor
from cidstore.utils.time import Clock, utc_datetime

logger = logging.getLogger(__name__)

_MISSING = object()


def decode_content(raw: bytes) -> Any:
    """Decode stored bytes: parsed JSON, else UTF-8 text, else the raw bytes."""
    try:
        return json.loads(raw)
    except ValueError:
        pass
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return raw


def _resolve_path(view: Mapping[str, Any], path: str) -> Any:
    current: Any = view
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return _MISSING
        current = current[part]
    return current


def matches(record: Record, filters: Mapping[str, Any]) -> bool:
    """Return True when every filter entry matches ``record``.

    Dotted keys (``data.user_id``) walk into the record; plain keys match a
    top-level field or, failing that, a key of ``data``.
    """
    view = record.model_dump()
    for key, expected in filters.items():
        if "." in key:
            if _resolve_path(view, key) != expected:
                return False
            continue
        if view.get(key, _MISSING) == expected:
            continue
        if record.data.get(key, _MISSING) != expected:
            return False
    return True


class CollectionIndex:
    """Records of one collection keyed by id, in insertion order."""

    def __init__(self, name: str):
        """Initialize an empty index."""
        self.name = name
        self._records: dict[str, Record] = {}

    def get(self, record_id: str) -> Record | None:
        return self._records.get(record_id)

    def put(self, record: Record) -> None:
        """Insert or replace; a replaced record keeps its position."""
        self._records[record.id] = record

    def remove(self, record_id: str) -> bool:
        return self._records.pop(record_id, None) is not None

    def values(self) -> list[Record]:
        return list(self._records.values())

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[Record]:
        return iter(self.values())


class DocumentStore:
    """Create, read, update and delete records persisted to IPFS."""

    def __init__(
        self,
        connection: ConnectionManager,
        config: StoreConfig | None = None,
        retry: RetryExecutor | None = None,
        clock: Clock | None = None,
    ):
        """Initialize document store.

        Args:
            connection: Provides the active storage backend
            config: Store settings
            retry: Retry executor for backend calls
            clock: Clock for timestamps and cache expiry

        """
        self.connection = connection
        self.config = config or StoreConfig()
        self.clock = clock or Clock()
        self.retry = retry or RetryExecutor(clock=self.clock)

        self._collections: dict[str, CollectionIndex] = {}
        self._locks: weakref.WeakValueDictionary[tuple[str, str], Lock] = (
            weakref.WeakValueDictionary()
        )
        self._content_cache: TTLCache[str, Any] = TTLCache(
            max_size=self.config.content_cache_size,
            ttl=self.config.content_cache_ttl,
            clock=self.clock,
        )

    def collection(self, name: str) -> CollectionIndex:
        """Return the index for ``name``, creating it if needed."""
        index = self._collections.get(name)
        if index is None:
            index = CollectionIndex(name)
            self._collections[name] = index
        return index

    def collection_names(self) -> list[str]:
        return list(self._collections)

    def _lock_for(self, collection: str, record_id: str) -> Lock:
        key = (collection, record_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = Lock()
            self._locks[key] = lock
        return lock

    def _require_connection(self) -> None:
        if not self.connection.connected:
            msg = "IPFS is not connected"
            raise StorageConnectionError(msg)

    def _now(self) -> datetime:
        return utc_datetime(self.clock.now())

    async def _persist(self, record: Record) -> Record:
        """Add and pin ``record``; return it as stored, with its new cid."""
        try:
            payload = record.model_dump_json().encode("utf-8")
        except PydanticSerializationError as e:
            msg = f"Record {record.collection}/{record.id} is not JSON serializable"
            raise ValidationError(msg, cause=e) from e

        result = await self.retry.run(
            lambda: self.connection.backend.add(payload),
            f"add {record.collection}/{record.id}",
        )
        await self.retry.run(
            lambda: self.connection.backend.pin(result.cid),
            f"pin {result.cid}",
        )

        stored = Record.model_validate_json(payload)
        stored.cid = result.cid
        self._content_cache.set(result.cid, json.loads(payload))
        return stored

    async def create(self, collection: str, data: Mapping[str, Any]) -> Record:
        """Create a record in ``collection``.

        An ``id`` key in ``data`` becomes the record id; otherwise a UUID is
        assigned.

        Raises:
            StorageConnectionError: No backend is connected
            OperationError: Adding or pinning exhausted its retries

        """
        self._require_connection()

        record_id = str(data.get("id") or uuid.uuid4())
        now = self._now()
        record = Record(
            id=record_id,
            collection=collection,
            data=dict(data),
            created_at=now,
            updated_at=now,
        )

        async with self._lock_for(collection, record_id):
            stored = await self._persist(record)
            self.collection(collection).put(stored)

        logger.info(
            "Created document in collection %s with CID: %s", collection, stored.cid
        )
        return stored.model_copy(deep=True)

    async def find_by_id(self, collection: str, record_id: str) -> Record | None:
        """Look up a record in the index; None when absent."""
        index = self._collections.get(collection)
        record = index.get(record_id) if index is not None else None
        return record.model_copy(deep=True) if record is not None else None

    async def find_many(
        self, collection: str, filters: Mapping[str, Any] | None = None
    ) -> list[Record]:
        """Return records matching every filter entry, in insertion order."""
        index = self._collections.get(collection)
        if index is None:
            return []
        filters = filters or {}
        return [
            record.model_copy(deep=True)
            for record in index.values()
            if matches(record, filters)
        ]

    async def update(
        self, collection: str, record_id: str, data: Mapping[str, Any]
    ) -> Record | None:
        """Shallow-merge ``data`` into a record and persist the new version.

        Returns None when the record does not exist. Concurrent updates to
        the same id are applied one after another.

        Raises:
            StorageConnectionError: No backend is connected
            OperationError: Adding or pinning exhausted its retries

        """
        self._require_connection()

        async with self._lock_for(collection, record_id):
            existing = self.collection(collection).get(record_id)
            if existing is None:
                return None

            updated_at = max(
                self._now(), existing.updated_at + timedelta(microseconds=1)
            )
            candidate = existing.model_copy(
                update={
                    "data": {**existing.data, **data},
                    "updated_at": updated_at,
                    "cid": None,
                }
            )
            stored = await self._persist(candidate)
            self.collection(collection).put(stored)

        logger.info(
            "Updated document in collection %s with CID: %s", collection, stored.cid
        )
        return stored.model_copy(deep=True)

    async def delete(self, collection: str, record_id: str) -> bool:
        """Remove a record from the index.

        The stored content stays pinned; content ids are immutable.
        """
        async with self._lock_for(collection, record_id):
            removed = self.collection(collection).remove(record_id)
        if removed:
            logger.info("Deleted document %s from collection %s", record_id, collection)
        return removed

    async def upload_file(
        self,
        data: bytes,
        file_name: str | None = None,
        mime_type: str | None = None,
    ) -> UploadResult:
        """Add and pin raw file bytes.

        Raises:
            StorageConnectionError: No backend is connected
            OperationError: Adding or pinning exhausted its retries

        """
        self._require_connection()
        name = file_name or f"file-{int(self.clock.now() * 1000)}"

        result = await self.retry.run(
            lambda: self.connection.backend.add(data, file_name=name),
            f"upload {name}",
        )
        await self.retry.run(
            lambda: self.connection.backend.pin(result.cid),
            f"pin {result.cid}",
        )
        logger.info("Uploaded %s (%d bytes) with CID: %s", name, result.size, result.cid)
        return UploadResult(
            cid=result.cid, size=result.size, file_name=name, mime_type=mime_type
        )

    async def get_content(self, cid: str, max_attempts: int | None = None) -> Any:
        """Read content by id from the backend, through a TTL cache.

        ``max_attempts`` overrides the retry policy; callers with another
        source to fall back on pass 1.

        Raises:
            StorageConnectionError: No backend is connected
            OperationError: Reading exhausted its retries

        """
        self._require_connection()

        cached = self._content_cache.get(cid)
        if cached is not None:
            return cached

        raw = await self.retry.run(
            lambda: self.connection.backend.cat(cid),
            f"cat {cid}",
            max_attempts=max_attempts,
        )
        content = decode_content(raw)
        self._content_cache.set(cid, content)
        return content

    async def rebuild_index(self) -> int:
        """Replay pinned content into the index.

        Pinned payloads that parse as records are indexed; for each
        collection/id the version with the newest ``updated_at`` wins.
        Records deleted from the index but still pinned come back.

        Returns:
            Number of records restored

        """
        cids = await self.retry.run(
            lambda: self.connection.backend.pins(), "list pins"
        )

        latest: dict[tuple[str, str], Record] = {}
        for cid in cids:
            try:
                raw = await self.retry.run(
                    lambda c=cid: self.connection.backend.cat(c), f"cat {cid}"
                )
            except OperationError as e:
                logger.warning("Skipping unreadable pin %s: %s", cid, e.cause)
                continue
            try:
                record = Record.model_validate_json(raw)
            except PydanticValidationError:
                continue
            record.cid = cid
            key = (record.collection, record.id)
            current = latest.get(key)
            if current is None or record.updated_at > current.updated_at:
                latest[key] = record

        for record in sorted(latest.values(), key=lambda r: r.created_at):
            self.collection(record.collection).put(record)

        logger.info("Rebuilt index with %d records from %d pins", len(latest), len(cids))
        return len(latest)
