"""Storage backends for content-addressed persistence.

Two implementations share the ``StorageBackend`` contract: a remote IPFS
daemon reached over its HTTP RPC API, and an in-process embedded node used
as a fallback when no daemon is reachable.
"""

from __future__ import annotations

import asyncio
import ipaddress
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import ipfshttpclient
import multiaddr

from cidstore import __version__
from cidstore.utils.cid import compute_cid
from cidstore.utils.exceptions import BackendError, ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class AddResult:
    """Outcome of adding bytes to a backend."""

    cid: str
    size: int


class StorageBackend(ABC):
    """Content-addressed storage backend."""

    name: str = "backend"

    @abstractmethod
    async def add(self, data: bytes, file_name: str | None = None) -> AddResult:
        """Store ``data`` and return its content id."""

    @abstractmethod
    async def pin(self, cid: str) -> None:
        """Mark ``cid`` as must-retain."""

    @abstractmethod
    async def cat(self, cid: str) -> bytes:
        """Return the bytes stored under ``cid``."""

    @abstractmethod
    async def version(self) -> dict[str, Any]:
        """Liveness probe returning backend version information."""

    @abstractmethod
    async def pins(self) -> list[str]:
        """Return every pinned content id."""

    async def close(self) -> None:  # noqa: B027
        """Release backend resources."""


def to_multiaddr(api_url: str) -> str:
    """Normalize an HTTP API URL or multiaddr to a validated multiaddr string.

    Raises:
        ConfigurationError: ``api_url`` cannot be expressed as a multiaddr

    """
    if api_url.startswith("/"):
        addr_str = api_url
    else:
        parsed = urlparse(api_url)
        if parsed.scheme not in {"http", "https"} or not parsed.hostname:
            msg = f"Unsupported IPFS API URL: {api_url}"
            raise ConfigurationError(msg)
        port = parsed.port or (443 if parsed.scheme == "https" else 80)
        try:
            ip = ipaddress.ip_address(parsed.hostname)
            host_proto = "ip4" if ip.version == 4 else "ip6"
        except ValueError:
            host_proto = "dns"
        addr_str = f"/{host_proto}/{parsed.hostname}/tcp/{port}/{parsed.scheme}"

    try:
        return str(multiaddr.Multiaddr(addr_str))
    except Exception as e:
        msg = f"Invalid IPFS API address: {api_url}"
        raise ConfigurationError(msg, cause=e) from e


class RemoteIPFSBackend(StorageBackend):
    """IPFS daemon reached through ``ipfshttpclient``.

    The client is blocking, so each call runs in a worker thread.
    """

    name = "remote"

    def __init__(self, client: Any, address: str):
        """Initialize with an already connected client."""
        self._client = client
        self.address = address

    @classmethod
    async def open(cls, api_url: str, timeout: float = 30) -> RemoteIPFSBackend:
        """Connect to the daemon at ``api_url``."""
        address = to_multiaddr(api_url)
        client = await asyncio.to_thread(ipfshttpclient.connect, address, timeout=timeout)
        return cls(client, address)

    async def add(self, data: bytes, file_name: str | None = None) -> AddResult:
        """Add bytes as a CIDv1 object."""
        result = await asyncio.to_thread(self._client.add_bytes, data, cid_version=1)
        if isinstance(result, dict):
            cid = result.get("Hash", "")
        else:
            cid = str(result)
        if not cid:
            msg = "IPFS daemon returned empty CID"
            raise BackendError(msg, details={"file_name": file_name})
        return AddResult(cid=cid, size=len(data))

    async def pin(self, cid: str) -> None:
        """Pin ``cid`` on the daemon."""
        await asyncio.to_thread(self._client.pin.add, cid)

    async def cat(self, cid: str) -> bytes:
        """Read ``cid`` from the daemon."""
        return await asyncio.to_thread(self._client.cat, cid)

    async def version(self) -> dict[str, Any]:
        """Query the daemon version."""
        return await asyncio.to_thread(self._client.version)

    async def pins(self) -> list[str]:
        """List recursive pins."""
        result = await asyncio.to_thread(self._client.pin.ls, type="recursive")
        return list(result.get("Keys", {}).keys())

    async def close(self) -> None:
        """Close the HTTP session."""
        try:
            await asyncio.wait_for(asyncio.to_thread(self._client.close), timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning("Timeout waiting for IPFS client to close")


class EmbeddedNode(StorageBackend):
    """In-process content-addressed block store.

    Blocks are addressed by CIDv1 (raw codec, sha2-256). With ``repo_path``
    set, blocks and the pin set are written below that directory and
    reloaded on ``start``; otherwise they live only in memory.
    """

    name = "embedded"

    def __init__(self, repo_path: str | Path | None = None):
        """Initialize embedded node."""
        self.repo_path = Path(repo_path) if repo_path else None
        self._blocks: dict[str, bytes] = {}
        self._pins: set[str] = set()
        self._started = False

    @property
    def _blocks_dir(self) -> Path:
        assert self.repo_path is not None
        return self.repo_path / "blocks"

    @property
    def _pins_file(self) -> Path:
        assert self.repo_path is not None
        return self.repo_path / "pins.json"

    async def start(self) -> None:
        """Prepare the repository and load persisted state."""
        if self.repo_path is not None:
            await asyncio.to_thread(self._load_repo)
        self._started = True
        logger.info(
            "Embedded IPFS node started (%s)",
            self.repo_path or "in-memory",
        )

    def _load_repo(self) -> None:
        self._blocks_dir.mkdir(parents=True, exist_ok=True)
        for path in self._blocks_dir.iterdir():
            if path.is_file():
                self._blocks[path.name] = path.read_bytes()
        if self._pins_file.exists():
            self._pins = set(json.loads(self._pins_file.read_text(encoding="utf-8")))

    def _write_block(self, cid: str, data: bytes) -> None:
        (self._blocks_dir / cid).write_bytes(data)

    def _write_pins(self, pins: list[str]) -> None:
        self._pins_file.write_text(json.dumps(pins), encoding="utf-8")

    def _require_started(self) -> None:
        if not self._started:
            msg = "Embedded IPFS node is not running"
            raise BackendError(msg)

    async def add(self, data: bytes, file_name: str | None = None) -> AddResult:
        """Store a block and return its CID."""
        self._require_started()
        cid = compute_cid(data)
        if cid not in self._blocks:
            self._blocks[cid] = data
            if self.repo_path is not None:
                await asyncio.to_thread(self._write_block, cid, data)
        logger.debug("Embedded node stored %s (%d bytes, %s)", cid, len(data), file_name)
        return AddResult(cid=cid, size=len(data))

    async def pin(self, cid: str) -> None:
        """Pin an existing block."""
        self._require_started()
        if cid not in self._blocks:
            msg = f"Block {cid} not found"
            raise BackendError(msg, details={"cid": cid})
        if cid in self._pins:
            return
        self._pins.add(cid)
        if self.repo_path is not None:
            await asyncio.to_thread(self._write_pins, sorted(self._pins))

    async def cat(self, cid: str) -> bytes:
        """Return a stored block."""
        self._require_started()
        try:
            return self._blocks[cid]
        except KeyError:
            msg = f"Block {cid} not found"
            raise BackendError(msg, details={"cid": cid}) from None

    async def version(self) -> dict[str, Any]:
        """Report embedded node version."""
        self._require_started()
        return {"Version": __version__, "System": "embedded"}

    async def pins(self) -> list[str]:
        """Return pinned CIDs in sorted order."""
        self._require_started()
        return sorted(self._pins)

    async def close(self) -> None:
        """Stop the node; persisted blocks remain on disk."""
        self._started = False
