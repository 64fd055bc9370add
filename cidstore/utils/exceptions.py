"""Exception hierarchy for cidstore.

Every error raised to callers derives from ``CidStoreError`` and keeps the
lower-level error that triggered it in ``cause`` for diagnostics.
"""

from __future__ import annotations

from typing import Any


class CidStoreError(Exception):
    """Base exception for all cidstore errors."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ):
        """Initialize cidstore error."""
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message


class StorageConnectionError(CidStoreError):
    """Storage backend unreachable, including the embedded fallback."""


class OperationError(CidStoreError):
    """A retried operation exhausted its attempts."""

    def __init__(
        self,
        message: str,
        attempts: int,
        details: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ):
        """Initialize operation error."""
        super().__init__(message, details, cause)
        self.attempts = attempts


class FetchExhaustedError(CidStoreError):
    """Every gateway failed to deliver a locator."""

    def __init__(
        self,
        message: str,
        locator: str,
        errors: dict[str, BaseException] | None = None,
        cause: BaseException | None = None,
    ):
        """Initialize fetch error."""
        self.errors = errors or {}
        super().__init__(
            message,
            {gateway: str(err) for gateway, err in self.errors.items()},
            cause,
        )
        self.locator = locator


class BackendError(CidStoreError):
    """Storage backend refused an operation."""


class ValidationError(CidStoreError):
    """Data validation errors."""


class ConfigurationError(ValidationError):
    """Configuration validation errors."""


class InvalidCIDError(ValidationError):
    """Malformed content identifier."""
