"""Content service: the wired-up storage stack for one process.

``ContentService`` builds the retry executor, connection manager, document
store and gateway resolver from a single ``Config`` and owns their
lifecycle.
"""

from __future__ import annotations

import logging
from typing import Any

from cidstore.gateway.resolver import GatewayResolver
from cidstore.models import Config
from cidstore.storage.connection import ConnectionManager
from cidstore.storage.document_store import DocumentStore
from cidstore.utils.resilience import RetryExecutor
from cidstore.utils.time import Clock

logger = logging.getLogger(__name__)


class ContentService:
    """Owns the connection, document store and gateway resolver."""

    def __init__(
        self,
        config: Config | None = None,
        clock: Clock | None = None,
        connection: ConnectionManager | None = None,
        resolver: GatewayResolver | None = None,
    ):
        """Initialize content service.

        Args:
            config: Full configuration; defaults to ``Config()``
            clock: Clock shared by every component
            connection: Prebuilt connection manager
            resolver: Prebuilt gateway resolver

        """
        self.config = config or Config()
        self.clock = clock or Clock()
        self.retry = RetryExecutor(self.config.retry, clock=self.clock)
        self.connection = connection or ConnectionManager(
            self.config.ipfs, retry=self.retry, clock=self.clock
        )
        self.store = DocumentStore(
            self.connection, self.config.store, retry=self.retry, clock=self.clock
        )
        self.resolver = resolver or GatewayResolver(
            self.config.gateway, store=self.store, clock=self.clock
        )
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Connect storage and open the gateway session.

        Raises:
            StorageConnectionError: No backend could be started
            OperationError: The index rebuild exhausted its retries

        """
        if self._started:
            return
        try:
            await self.connection.start()
            await self.resolver.start()
            if self.config.store.rebuild_index_on_start:
                await self.store.rebuild_index()
        except Exception:
            await self.stop()
            raise
        self._started = True
        logger.info("Content service started (%s)", self.connection.backend.name)

    async def stop(self) -> None:
        """Close the gateway session and disconnect storage."""
        await self.resolver.stop()
        await self.connection.stop()
        self._started = False

    async def health(self) -> dict[str, Any]:
        """Return connection status for display."""
        healthy = await self.connection.health_check()
        info: dict[str, Any] = {
            "state": self.connection.state.value,
            "healthy": healthy,
            "api_url": self.config.ipfs.api_url,
        }
        if healthy:
            info["backend"] = self.connection.backend.name
            info["version"] = await self.connection.backend.version()
        return info

    async def __aenter__(self) -> ContentService:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()
