"""Data models for cidstore.

Configuration sections and the record types exchanged with callers, as
pydantic models with validation.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

IPFS_SCHEME = "ipfs://"

DEFAULT_GATEWAYS = [
    "https://ipfs.io/ipfs/",
    "https://gateway.ipfs.io/ipfs/",
    "https://cloudflare-ipfs.com/ipfs/",
    "https://dweb.link/ipfs/",
]


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ConnectionState(str, Enum):
    """Storage connection states."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class RetryConfig(BaseModel):
    """Retry policy for fallible storage operations."""

    max_attempts: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Maximum number of attempts per operation",
    )
    initial_delay: float = Field(
        default=1.0,
        ge=0.0,
        le=60.0,
        description="Delay seed in seconds before the first backoff step",
    )
    max_delay: float = Field(
        default=10.0,
        ge=0.0,
        le=600.0,
        description="Upper bound for a single backoff delay in seconds",
    )
    backoff_factor: float = Field(
        default=2.0,
        ge=1.0,
        le=10.0,
        description="Multiplier applied to the delay after each failure",
    )
    jitter_ratio: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Maximum additive jitter as a fraction of the current delay",
    )


class IPFSConfig(BaseModel):
    """IPFS node connection configuration."""

    api_url: str = Field(
        default="http://127.0.0.1:5001",
        description="IPFS daemon API URL or multiaddr",
    )
    connection_timeout: int = Field(
        default=30,
        ge=1,
        le=300,
        description="Connection timeout in seconds",
    )
    enable_embedded_fallback: bool = Field(
        default=True,
        description="Start an in-process node when the daemon is unreachable",
    )
    embedded_repo_path: str | None = Field(
        default=None,
        description="Directory for embedded node blocks (None keeps them in memory)",
    )
    health_check_interval: float = Field(
        default=60.0,
        ge=0.1,
        le=3600.0,
        description="Interval between health checks in seconds",
    )


class StoreConfig(BaseModel):
    """Document store configuration."""

    content_cache_ttl: float = Field(
        default=600.0,
        ge=1.0,
        le=604800.0,
        description="TTL of content fetched by content id, in seconds",
    )
    content_cache_size: int = Field(
        default=1000,
        ge=1,
        le=1000000,
        description="Maximum number of cached content entries",
    )
    rebuild_index_on_start: bool = Field(
        default=False,
        description="Replay pinned content into the index on startup",
    )


class GatewayConfig(BaseModel):
    """Public gateway resolution configuration."""

    gateways: list[str] = Field(
        default_factory=lambda: list(DEFAULT_GATEWAYS),
        min_length=1,
        description="Gateway URL prefixes, tried in order",
    )
    request_timeout: float = Field(
        default=10.0,
        ge=0.1,
        le=300.0,
        description="Per-request timeout in seconds",
    )
    max_redirects: int = Field(
        default=5,
        ge=0,
        le=50,
        description="Maximum redirects followed per request",
    )
    accept: str = Field(
        default="application/json, text/plain, */*",
        description="Accept header sent to gateways",
    )
    content_cache_ttl: float = Field(
        default=86400.0,
        ge=1.0,
        description="Gateway content cache TTL in seconds",
    )
    content_cache_size: int = Field(
        default=500,
        ge=1,
        description="Gateway content cache capacity",
    )
    resolution_cache_ttl: float = Field(
        default=1800.0,
        ge=1.0,
        description="Resolved URL cache TTL in seconds",
    )
    resolution_cache_size: int = Field(
        default=1000,
        ge=1,
        description="Resolved URL cache capacity",
    )
    rank_window: float = Field(
        default=1800.0,
        ge=1.0,
        description="Age limit in seconds for successes counted by gateway ranking",
    )


class ObservabilityConfig(BaseModel):
    """Observability configuration."""

    log_level: LogLevel = Field(default=LogLevel.INFO, description="Log level")
    log_file: str | None = Field(None, description="Log file path")
    structured_logging: bool = Field(
        default=False, description="Use structured JSON logging"
    )
    log_correlation_id: bool = Field(
        default=True,
        description="Include correlation IDs",
    )
    rich_console: bool = Field(
        default=True, description="Render console logs with rich"
    )


class Config(BaseModel):
    """Main configuration model."""

    ipfs: IPFSConfig = Field(default_factory=IPFSConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


class Record(BaseModel):
    """A document stored in a collection.

    ``data`` is schemaless: any JSON-compatible mapping. ``cid`` is the
    content id of the version last written and is not part of the persisted
    payload.
    """

    id: str
    collection: str
    data: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime
    cid: str | None = Field(default=None, exclude=True)


class UploadResult(BaseModel):
    """Result of storing a raw file."""

    cid: str
    size: int
    file_name: str | None = None
    mime_type: str | None = None

    @property
    def locator(self) -> str:
        """Return the ``ipfs://`` locator for the upload."""
        return f"{IPFS_SCHEME}{self.cid}"
