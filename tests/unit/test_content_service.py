"""Tests for the content service wiring."""

from unittest.mock import AsyncMock

import pytest

pytestmark = [pytest.mark.unit]

from cidstore.models import Config, IPFSConfig, StoreConfig
from cidstore.service import ContentService
from cidstore.storage.connection import ConnectionManager
from cidstore.utils.exceptions import OperationError, StorageConnectionError
from cidstore.utils.time import Clock


def _service(fake_clock, backend=None, **config):
    async def _remote(_config):
        if backend is None:
            raise OSError("connection refused")
        return backend

    cfg = Config(**config)
    # real clock: the health loop must not spin on instant fake sleeps
    connection = ConnectionManager(cfg.ipfs, clock=Clock(), remote_factory=_remote)
    return ContentService(cfg, clock=fake_clock, connection=connection)


@pytest.mark.asyncio
async def test_components_share_config(fake_clock):
    service = ContentService(Config(), clock=fake_clock)

    assert service.store.connection is service.connection
    assert service.resolver.store is service.store
    assert service.store.retry is service.retry
    assert service.resolver.clock is fake_clock


@pytest.mark.asyncio
async def test_context_manager_starts_and_stops(fake_clock, backend):
    service = _service(fake_clock, backend)

    async with service as running:
        assert running.started is True
        assert running.connection.backend is backend
        record = await running.store.create("orgs", {"name": "Acme"})
        assert record.cid

    assert service.started is False
    assert service.connection.connected is False
    assert service.resolver.session is None


@pytest.mark.asyncio
async def test_start_failure_cleans_up(fake_clock):
    service = _service(fake_clock, ipfs=IPFSConfig(enable_embedded_fallback=False))

    with pytest.raises(StorageConnectionError):
        await service.start()

    assert service.started is False
    assert len(service.connection._tasks) == 0


@pytest.mark.asyncio
async def test_start_failure_after_connect_cleans_up(fake_clock, backend):
    """Test a failed index rebuild tears down the connection and session."""
    backend.failures["pins"] = -1
    service = _service(fake_clock, backend, store=StoreConfig(rebuild_index_on_start=True))

    with pytest.raises(OperationError):
        async with service:
            pass

    assert service.started is False
    assert len(service.connection._tasks) == 0
    assert service.connection.connected is False
    assert service.resolver.session is None
    assert backend.closed is True


@pytest.mark.asyncio
async def test_rebuild_index_on_start(fake_clock, backend):
    service = _service(fake_clock, backend, store=StoreConfig(rebuild_index_on_start=True))
    service.store.rebuild_index = AsyncMock(return_value=0)

    await service.start()
    try:
        service.store.rebuild_index.assert_awaited_once()
    finally:
        await service.stop()


@pytest.mark.asyncio
async def test_health_reports_backend(fake_clock, backend):
    service = _service(fake_clock, backend)

    async with service:
        info = await service.health()

    assert info["healthy"] is True
    assert info["backend"] == "flaky"
    assert info["version"]["Version"] == "0.0.0-test"
