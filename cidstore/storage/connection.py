"""Connection management for the storage backend.

Owns the single active backend handle of the process: the configured IPFS
daemon when reachable, an embedded node otherwise. A background loop keeps
checking liveness and reconnects after failures.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from cidstore.models import ConnectionState, IPFSConfig
from cidstore.storage.backends import EmbeddedNode, RemoteIPFSBackend, StorageBackend
from cidstore.utils.exceptions import OperationError, StorageConnectionError
from cidstore.utils.logging_config import log_exception
from cidstore.utils.resilience import RetryExecutor
from cidstore.utils.tasks import BackgroundTaskGroup
from cidstore.utils.time import Clock

RemoteFactory = Callable[[IPFSConfig], Awaitable[StorageBackend]]
EmbeddedFactory = Callable[[IPFSConfig], Awaitable[StorageBackend]]

logger = logging.getLogger(__name__)


async def _open_remote(config: IPFSConfig) -> StorageBackend:
    return await RemoteIPFSBackend.open(config.api_url, timeout=config.connection_timeout)


async def _start_embedded(config: IPFSConfig) -> StorageBackend:
    node = EmbeddedNode(config.embedded_repo_path)
    await node.start()
    return node


class ConnectionManager:
    """Maintains the link to the storage backend."""

    def __init__(
        self,
        config: IPFSConfig | None = None,
        retry: RetryExecutor | None = None,
        clock: Clock | None = None,
        remote_factory: RemoteFactory | None = None,
        embedded_factory: EmbeddedFactory | None = None,
    ):
        """Initialize connection manager.

        Args:
            config: IPFS connection settings
            retry: Retry executor used for liveness probes
            clock: Clock driving the health-check interval
            remote_factory: Opens the primary backend
            embedded_factory: Starts the fallback backend

        """
        self.config = config or IPFSConfig()
        self.clock = clock or Clock()
        self.retry = retry or RetryExecutor(clock=self.clock)
        self._remote_factory = remote_factory or _open_remote
        self._embedded_factory = embedded_factory or _start_embedded

        self._backend: StorageBackend | None = None
        self._state = ConnectionState.DISCONNECTED
        self._connect_lock = asyncio.Lock()
        self._tasks = BackgroundTaskGroup()

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def connected(self) -> bool:
        """Whether a healthy backend is available."""
        return self._state == ConnectionState.CONNECTED and self._backend is not None

    @property
    def backend(self) -> StorageBackend:
        """Return the active backend.

        Raises:
            StorageConnectionError: No backend is connected

        """
        if not self.connected:
            msg = "IPFS is not connected"
            raise StorageConnectionError(msg)
        assert self._backend is not None
        return self._backend

    async def connect(self) -> StorageBackend:
        """Connect to the daemon, falling back to an embedded node.

        Raises:
            StorageConnectionError: Neither backend could be started

        """
        async with self._connect_lock:
            self._state = ConnectionState.CONNECTING
            previous = self._backend
            try:
                backend = await self._open_backend()
            except StorageConnectionError:
                self._state = ConnectionState.DISCONNECTED
                raise

            self._backend = backend
            self._state = ConnectionState.CONNECTED

        if previous is not None and previous is not backend:
            await self._close_quietly(previous)
        return backend

    async def _close_quietly(self, backend: StorageBackend) -> None:
        try:
            await backend.close()
        except Exception as e:
            logger.warning("Error closing %s backend: %s", backend.name, e)

    async def _open_backend(self) -> StorageBackend:
        remote: StorageBackend | None = None
        try:
            remote = await self._remote_factory(self.config)
            await self.retry.run(remote.version, "IPFS version probe")
        except Exception as e:
            if remote is not None:
                await self._close_quietly(remote)
            if not self.config.enable_embedded_fallback:
                logger.error("Could not connect to IPFS node at %s", self.config.api_url)
                msg = f"IPFS daemon unavailable at {self.config.api_url}"
                raise StorageConnectionError(msg, cause=e) from e
            logger.warning(
                "Could not connect to external IPFS node at %s, creating embedded node: %s",
                self.config.api_url,
                e,
            )
        else:
            logger.info("Connected to external IPFS node at %s", self.config.api_url)
            return remote

        try:
            backend = await self._embedded_factory(self.config)
        except Exception as e:
            logger.exception("Failed to initialize IPFS")
            msg = "Failed to initialize IPFS storage"
            raise StorageConnectionError(msg, cause=e) from e
        logger.info("Embedded IPFS node created")
        return backend

    async def health_check(self) -> bool:
        """Probe the backend once; mark disconnected on failure."""
        backend = self._backend
        if backend is None:
            self._state = ConnectionState.DISCONNECTED
            return False
        try:
            await self.retry.run_once(backend.version, "IPFS health check")
        except OperationError as e:
            logger.error("IPFS health check failed: %s", e.cause)
            if self._backend is backend:
                self._state = ConnectionState.DISCONNECTED
            return False
        return True

    async def _health_loop_step(self) -> None:
        """Run one reconnect/health-check cycle; never raises."""
        try:
            if not self.connected:
                logger.info("Attempting to reconnect to IPFS")
                await self.connect()
                logger.info("Successfully reconnected to IPFS")
            elif not await self.health_check():
                logger.warning("IPFS connection is unhealthy, attempting to reconnect")
                await self.connect()
        except Exception as e:
            log_exception(logger, e, "Failed to reconnect to IPFS")

    async def _health_loop(self) -> None:
        while True:
            await self.clock.sleep(self.config.health_check_interval)
            await self._health_loop_step()

    async def start(self) -> None:
        """Connect and start the background health-check loop."""
        try:
            await self.connect()
        finally:
            if not self._tasks:
                self._tasks.create(self._health_loop(), name="cidstore-health-check")

    async def stop(self) -> None:
        """Stop the health-check loop and close the backend."""
        await self._tasks.cancel_and_wait(timeout=5.0)
        backend, self._backend = self._backend, None
        self._state = ConnectionState.DISCONNECTED
        if backend is not None:
            await backend.close()
        logger.info("Disconnected from IPFS")
