"""Configuration management for cidstore.

Provides centralized configuration with TOML support, validation and
hierarchical loading from defaults → config file → environment.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

import toml

from cidstore.models import Config
from cidstore.utils.exceptions import ConfigurationError
from cidstore.utils.logging_config import setup_logging

# Global configuration instance
_config_manager: ConfigManager | None = None

CONFIG_FILE_NAME = "cidstore.toml"

_ENV_MAPPINGS: dict[str, str] = {
    # IPFS
    "CIDSTORE_IPFS_API_URL": "ipfs.api_url",
    "CIDSTORE_IPFS_CONNECTION_TIMEOUT": "ipfs.connection_timeout",
    "CIDSTORE_IPFS_ENABLE_EMBEDDED_FALLBACK": "ipfs.enable_embedded_fallback",
    "CIDSTORE_IPFS_EMBEDDED_REPO_PATH": "ipfs.embedded_repo_path",
    "CIDSTORE_IPFS_HEALTH_CHECK_INTERVAL": "ipfs.health_check_interval",
    # Retry
    "CIDSTORE_RETRY_MAX_ATTEMPTS": "retry.max_attempts",
    "CIDSTORE_RETRY_INITIAL_DELAY": "retry.initial_delay",
    "CIDSTORE_RETRY_MAX_DELAY": "retry.max_delay",
    "CIDSTORE_RETRY_BACKOFF_FACTOR": "retry.backoff_factor",
    "CIDSTORE_RETRY_JITTER_RATIO": "retry.jitter_ratio",
    # Store
    "CIDSTORE_STORE_CONTENT_CACHE_TTL": "store.content_cache_ttl",
    "CIDSTORE_STORE_CONTENT_CACHE_SIZE": "store.content_cache_size",
    "CIDSTORE_STORE_REBUILD_INDEX_ON_START": "store.rebuild_index_on_start",
    # Gateway
    "CIDSTORE_GATEWAYS": "gateway.gateways",
    "CIDSTORE_GATEWAY_REQUEST_TIMEOUT": "gateway.request_timeout",
    "CIDSTORE_GATEWAY_MAX_REDIRECTS": "gateway.max_redirects",
    "CIDSTORE_GATEWAY_CONTENT_CACHE_TTL": "gateway.content_cache_ttl",
    "CIDSTORE_GATEWAY_CONTENT_CACHE_SIZE": "gateway.content_cache_size",
    "CIDSTORE_GATEWAY_RESOLUTION_CACHE_TTL": "gateway.resolution_cache_ttl",
    "CIDSTORE_GATEWAY_RESOLUTION_CACHE_SIZE": "gateway.resolution_cache_size",
    "CIDSTORE_GATEWAY_RANK_WINDOW": "gateway.rank_window",
    # Observability
    "CIDSTORE_LOG_LEVEL": "observability.log_level",
    "CIDSTORE_LOG_FILE": "observability.log_file",
    "CIDSTORE_STRUCTURED_LOGGING": "observability.structured_logging",
    "CIDSTORE_LOG_CORRELATION_ID": "observability.log_correlation_id",
    "CIDSTORE_RICH_CONSOLE": "observability.rich_console",
}

# Unprefixed names honoured for compatibility; prefixed names win.
_LEGACY_ENV_MAPPINGS: dict[str, str] = {
    "IPFS_API_URL": "ipfs.api_url",
}

_LIST_PATHS = frozenset({"gateway.gateways"})
_STRING_PATHS = frozenset(
    {
        "ipfs.api_url",
        "ipfs.embedded_repo_path",
        "observability.log_level",
        "observability.log_file",
    }
)


def _parse_env_value(raw: str, path: str) -> bool | int | float | str | list[str]:
    if path in _LIST_PATHS:
        return [item.strip() for item in raw.split(",") if item.strip()]
    if path in _STRING_PATHS:
        return raw.upper() if path == "observability.log_level" else raw

    low = raw.lower()
    if low in {"true", "1", "yes", "on"}:
        return True
    if low in {"false", "0", "no", "off"}:
        return False
    try:
        if "." in raw:
            return float(raw)
        return int(raw)
    except ValueError:
        return raw


def _set_nested(d: dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    cur = d
    for p in parts[:-1]:
        cur = cur.setdefault(p, {})
    cur[parts[-1]] = value


class ConfigManager:
    """Manages configuration loading and validation."""

    def __init__(self, config_file: str | Path | None = None):
        """Initialize configuration manager.

        Args:
            config_file: Path to TOML config file. If None, searches for cidstore.toml

        """
        self.config_file = self._find_config_file(config_file)
        self.config = self._load_config()
        self._setup_logging()

    def _find_config_file(
        self,
        config_file: str | Path | None,
    ) -> Path | None:
        """Find configuration file in standard locations."""
        if config_file:
            return Path(config_file)

        search_paths = [
            Path.cwd() / CONFIG_FILE_NAME,
            Path.home() / ".config" / "cidstore" / CONFIG_FILE_NAME,
            Path.home() / ".cidstore.toml",
        ]

        for path in search_paths:
            if path.exists():
                return path

        return None

    def _load_config(self) -> Config:
        """Load configuration from file and environment."""
        config_data: dict[str, Any] = {}

        if self.config_file and self.config_file.exists():
            try:
                with open(self.config_file, encoding="utf-8") as f:
                    config_data.update(toml.load(f))
            except (OSError, toml.TomlDecodeError) as e:
                logging.warning(
                    "Failed to load config file %s: %s", self.config_file, e
                )

            gateways = config_data.get("gateway", {}).get("gateways")
            if isinstance(gateways, str):
                config_data["gateway"]["gateways"] = _parse_env_value(
                    gateways, "gateway.gateways"
                )

        env_config = self._get_env_config()
        config_data = self._merge_config(config_data, env_config)

        try:
            return Config(**config_data)
        except Exception as e:
            msg = f"Invalid configuration: {e}"
            raise ConfigurationError(msg, cause=e) from e

    def _get_env_config(self) -> dict[str, Any]:
        """Get configuration from environment variables."""
        env_config: dict[str, Any] = {}

        for mappings in (_LEGACY_ENV_MAPPINGS, _ENV_MAPPINGS):
            for env_name, cfg_path in mappings.items():
                raw = os.getenv(env_name)
                if raw is None:
                    continue
                _set_nested(env_config, cfg_path, _parse_env_value(raw, cfg_path))

        return env_config

    def _merge_config(
        self,
        base: dict[str, Any],
        override: dict[str, Any],
    ) -> dict[str, Any]:
        """Merge configuration dictionaries recursively."""
        result = base.copy()

        for key, value in override.items():
            if (
                key in result
                and isinstance(result[key], dict)
                and isinstance(value, dict)
            ):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value

        return result

    def export(self, fmt: str = "toml") -> str:
        """Export current configuration as a string in the given format.

        Args:
            fmt: one of "toml" or "json"

        """
        data = self.config.model_dump(mode="json", exclude_none=True)

        fmt = (fmt or "toml").lower()
        if fmt == "toml":
            return toml.dumps(data)
        if fmt == "json":
            return json.dumps(data, indent=2)
        msg = f"Unsupported export format: {fmt}"
        raise ConfigurationError(msg)

    def _setup_logging(self) -> None:
        """Set up logging configuration."""
        setup_logging(self.config.observability)


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager.config


def init_config(config_file: str | Path | None = None) -> ConfigManager:
    """Initialize the global configuration manager."""
    global _config_manager
    _config_manager = ConfigManager(config_file)
    return _config_manager


def reload_config() -> Config:
    """Reload configuration from file."""
    if _config_manager is None:
        msg = "Configuration not initialized"
        raise ConfigurationError(msg)

    _config_manager.config = _config_manager._load_config()  # noqa: SLF001
    _config_manager._setup_logging()  # noqa: SLF001
    return _config_manager.config


def set_config(new_config: Config) -> None:
    """Replace the global configuration at runtime.

    Reconfigures logging based on the new config. Components built from the
    previous config keep their snapshot.
    """
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager(None)
    _config_manager.config = new_config
    _config_manager._setup_logging()  # noqa: SLF001
