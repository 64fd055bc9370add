"""Tests for the storage connection manager."""

import asyncio

import pytest

pytestmark = [pytest.mark.unit, pytest.mark.storage]

from cidstore.models import ConnectionState, IPFSConfig, RetryConfig
from cidstore.storage.backends import EmbeddedNode
from cidstore.storage.connection import ConnectionManager
from cidstore.utils.exceptions import StorageConnectionError
from cidstore.utils.resilience import RetryExecutor
from cidstore.utils.time import Clock


def _manager(fake_clock, remote, embedded=None, **config):
    return ConnectionManager(
        IPFSConfig(**config),
        retry=RetryExecutor(RetryConfig(max_attempts=2), clock=fake_clock),
        clock=fake_clock,
        remote_factory=remote,
        embedded_factory=embedded,
    )


@pytest.mark.asyncio
async def test_connect_to_remote(fake_clock, backend):
    """Test a reachable daemon becomes the active backend."""

    async def remote(_config):
        return backend

    manager = _manager(fake_clock, remote)
    assert manager.state == ConnectionState.DISCONNECTED

    result = await manager.connect()

    assert result is backend
    assert manager.backend is backend
    assert manager.connected is True
    assert manager.state == ConnectionState.CONNECTED


@pytest.mark.asyncio
async def test_backend_requires_connection(fake_clock, backend):
    async def remote(_config):
        return backend

    manager = _manager(fake_clock, remote)

    with pytest.raises(StorageConnectionError):
        _ = manager.backend


@pytest.mark.asyncio
async def test_fallback_to_embedded_when_remote_unreachable(fake_clock):
    """Test the embedded node is used when the daemon cannot be opened."""

    async def remote(_config):
        raise OSError("connection refused")

    manager = _manager(fake_clock, remote)
    result = await manager.connect()

    assert isinstance(result, EmbeddedNode)
    assert manager.connected is True
    assert (await manager.backend.version())["System"] == "embedded"


@pytest.mark.asyncio
async def test_fallback_when_version_probe_fails(fake_clock, backend):
    """Test a daemon that never answers the probe is closed and replaced."""
    backend.failures["version"] = -1

    async def remote(_config):
        return backend

    manager = _manager(fake_clock, remote)
    result = await manager.connect()

    assert isinstance(result, EmbeddedNode)
    assert backend.calls["version"] == 2
    assert backend.closed is True


@pytest.mark.asyncio
async def test_probe_is_retried(fake_clock, backend):
    backend.failures["version"] = 1

    async def remote(_config):
        return backend

    manager = _manager(fake_clock, remote)

    assert await manager.connect() is backend
    assert backend.calls["version"] == 2


@pytest.mark.asyncio
async def test_no_fallback_raises(fake_clock):
    async def remote(_config):
        raise OSError("connection refused")

    manager = _manager(fake_clock, remote, enable_embedded_fallback=False)

    with pytest.raises(StorageConnectionError) as exc_info:
        await manager.connect()

    assert isinstance(exc_info.value.cause, OSError)
    assert manager.state == ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_embedded_failure_raises(fake_clock):
    async def remote(_config):
        raise OSError("connection refused")

    async def embedded(_config):
        raise PermissionError("repo locked")

    manager = _manager(fake_clock, remote, embedded)

    with pytest.raises(StorageConnectionError, match="Failed to initialize IPFS storage"):
        await manager.connect()
    assert manager.connected is False


@pytest.mark.asyncio
async def test_health_check_success(connection, backend):
    assert await connection.health_check() is True
    assert connection.state == ConnectionState.CONNECTED


@pytest.mark.asyncio
async def test_health_check_failure_marks_disconnected(connection, backend):
    """Test a failed probe marks the manager disconnected without raising."""
    backend.failures["version"] = 1
    calls_before = backend.calls["version"]

    assert await connection.health_check() is False
    assert backend.calls["version"] == calls_before + 1
    assert connection.state == ConnectionState.DISCONNECTED
    with pytest.raises(StorageConnectionError):
        _ = connection.backend


@pytest.mark.asyncio
async def test_health_loop_step_reconnects(connection, backend):
    """Test one loop cycle restores a lost connection."""
    backend.failures["version"] = 1
    await connection.health_check()
    assert connection.connected is False

    await connection._health_loop_step()

    assert connection.connected is True
    assert connection.backend is backend


@pytest.mark.asyncio
async def test_health_loop_step_never_raises(fake_clock):
    attempts = 0

    async def remote(_config):
        nonlocal attempts
        attempts += 1
        raise OSError("down")

    manager = _manager(fake_clock, remote, enable_embedded_fallback=False)

    await manager._health_loop_step()

    assert attempts == 1
    assert manager.connected is False


@pytest.mark.asyncio
async def test_start_and_stop(backend):
    """Test start connects and schedules the loop; stop tears both down."""

    async def remote(_config):
        return backend

    manager = ConnectionManager(
        IPFSConfig(health_check_interval=3600),
        retry=RetryExecutor(clock=Clock()),
        remote_factory=remote,
    )

    await manager.start()
    assert manager.connected is True
    assert len(manager._tasks) == 1

    await manager.stop()
    await asyncio.sleep(0)
    assert len(manager._tasks) == 0
    assert manager.state == ConnectionState.DISCONNECTED
    assert backend.closed is True
