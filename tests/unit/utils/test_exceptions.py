"""Tests for the cidstore exception hierarchy."""

import pytest

pytestmark = [pytest.mark.unit]

from cidstore.utils.exceptions import (
    BackendError,
    CidStoreError,
    ConfigurationError,
    FetchExhaustedError,
    InvalidCIDError,
    OperationError,
    StorageConnectionError,
    ValidationError,
)


def test_base_error_message_and_details():
    err = CidStoreError("boom", details={"cid": "bafy"})

    assert err.message == "boom"
    assert err.details == {"cid": "bafy"}
    assert str(err) == "boom (Details: {'cid': 'bafy'})"


def test_base_error_without_details():
    assert str(CidStoreError("boom")) == "boom"


def test_cause_is_kept():
    cause = OSError("socket closed")
    err = StorageConnectionError("no daemon", cause=cause)

    assert err.cause is cause


def test_operation_error_attempts():
    err = OperationError("add failed", attempts=3)

    assert err.attempts == 3
    assert isinstance(err, CidStoreError)


def test_fetch_exhausted_error_collects_gateway_errors():
    errors = {"https://a/ipfs/": TimeoutError("slow"), "https://b/ipfs/": OSError("404")}
    err = FetchExhaustedError("all failed", locator="ipfs://x", errors=errors)

    assert err.locator == "ipfs://x"
    assert err.errors == errors
    assert err.details == {"https://a/ipfs/": "slow", "https://b/ipfs/": "404"}


@pytest.mark.parametrize(
    ("exc_type", "parent"),
    [
        (StorageConnectionError, CidStoreError),
        (BackendError, CidStoreError),
        (ValidationError, CidStoreError),
        (ConfigurationError, ValidationError),
        (InvalidCIDError, ValidationError),
    ],
)
def test_hierarchy(exc_type, parent):
    assert issubclass(exc_type, parent)
