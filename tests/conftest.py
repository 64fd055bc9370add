"""Pytest configuration and shared fixtures for cidstore tests."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from typing import Any

import pytest
import pytest_asyncio

from cidstore.models import IPFSConfig, RetryConfig
from cidstore.storage.backends import AddResult, EmbeddedNode, StorageBackend
from cidstore.storage.connection import ConnectionManager
from cidstore.storage.document_store import DocumentStore
from cidstore.utils.resilience import RetryExecutor


def pytest_configure(config):
    """Register all project markers to avoid warnings when ini isn't loaded."""
    markers = [
        ("asyncio", "marks tests as async (deselect with '-m \"not asyncio\"')"),
        ("unit", "marks tests as unit tests"),
        ("integration", "marks tests as integration tests"),
        ("storage", "marks tests as storage tests"),
        ("gateway", "marks tests as gateway tests"),
        ("resilience", "marks tests as resilience pattern tests"),
        ("cli", "marks tests as CLI tests"),
        ("config", "marks tests as configuration tests"),
        ("observability", "marks tests as observability tests"),
    ]
    for name, desc in markers:
        config.addinivalue_line("markers", f"{name}: {desc}")


@pytest.fixture(autouse=True)
def cleanup_logging():
    """Clean up logging handlers after each test to prevent closed file errors."""
    yield
    for logger_name in list(logging.Logger.manager.loggerDict.keys()):
        logger = logging.getLogger(logger_name)
        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)

    # setup_logging detaches the package logger from root; caplog needs it back
    package_logger = logging.getLogger("cidstore")
    package_logger.propagate = True
    package_logger.setLevel(logging.NOTSET)


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch, tmp_path):
    """Keep user config files and CIDSTORE_* variables out of tests."""
    import os

    for name in list(os.environ):
        if name.startswith("CIDSTORE_") or name == "IPFS_API_URL":
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.chdir(tmp_path)


class FakeClock:
    """Deterministic clock; ``sleep`` advances time instantly and records delays."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.t = start
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.t += seconds
        await asyncio.sleep(0)


class FlakyBackend(StorageBackend):
    """Embedded node with injectable failures.

    ``failures[op]`` is the number of upcoming calls of ``op`` that raise
    before calls start succeeding again; ``-1`` fails forever.
    """

    name = "flaky"

    def __init__(self) -> None:
        self.node = EmbeddedNode()
        self.failures: dict[str, int] = {}
        self.calls: Counter[str] = Counter()
        self.closed = False

    def _maybe_fail(self, op: str) -> None:
        self.calls[op] += 1
        remaining = self.failures.get(op, 0)
        if remaining == 0:
            return
        if remaining > 0:
            self.failures[op] = remaining - 1
        raise OSError(f"{op} unavailable")

    async def add(self, data: bytes, file_name: str | None = None) -> AddResult:
        self._maybe_fail("add")
        return await self.node.add(data, file_name)

    async def pin(self, cid: str) -> None:
        self._maybe_fail("pin")
        await self.node.pin(cid)

    async def cat(self, cid: str) -> bytes:
        self._maybe_fail("cat")
        return await self.node.cat(cid)

    async def version(self) -> dict[str, Any]:
        self._maybe_fail("version")
        return {"Version": "0.0.0-test", "System": "flaky"}

    async def pins(self) -> list[str]:
        self._maybe_fail("pins")
        return await self.node.pins()

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def retry(fake_clock) -> RetryExecutor:
    return RetryExecutor(RetryConfig(), clock=fake_clock)


@pytest_asyncio.fixture
async def backend() -> FlakyBackend:
    flaky = FlakyBackend()
    await flaky.node.start()
    return flaky


@pytest_asyncio.fixture
async def connection(backend, retry, fake_clock) -> ConnectionManager:
    """Connection manager already connected to ``backend``."""

    async def _remote(_config: IPFSConfig) -> StorageBackend:
        return backend

    manager = ConnectionManager(
        IPFSConfig(),
        retry=retry,
        clock=fake_clock,
        remote_factory=_remote,
    )
    await manager.connect()
    yield manager
    await manager.stop()


@pytest.fixture
def store(connection, retry, fake_clock) -> DocumentStore:
    return DocumentStore(connection, retry=retry, clock=fake_clock)
