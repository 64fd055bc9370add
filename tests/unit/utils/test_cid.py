"""Tests for CID parsing and computation."""

import hashlib

import pytest

pytestmark = [pytest.mark.unit]

from cidstore.utils.cid import (
    CODEC_DAG_PB,
    CODEC_RAW,
    SHA2_256,
    compute_cid,
    is_valid_cid,
    parse_cid,
)
from cidstore.utils.exceptions import InvalidCIDError, ValidationError

CID_V0 = "QmYwAPJzv5CZsnA625s3Xf2nemtYgPpHdWEz79ojWnPbdG"
CID_V1 = "bafybeigdyrzt5sfp7udm7hu76uh7y26nf3efuylqabf3oclgtqy55fbzdi"


def test_parse_cid_v0():
    info = parse_cid(CID_V0)

    assert info.version == 0
    assert info.codec == CODEC_DAG_PB
    assert info.hash_code == SHA2_256
    assert len(info.digest) == 32


def test_parse_cid_v1_base32():
    info = parse_cid(CID_V1)

    assert info.version == 1
    assert info.codec == CODEC_DAG_PB
    assert info.hash_code == SHA2_256
    assert info.digest.hex().startswith("c3c4733ec8affd06")


def test_parse_cid_v1_uppercase_base32():
    assert parse_cid("B" + CID_V1[1:].upper()).version == 1


@pytest.mark.parametrize(
    "value",
    [
        "",
        "   ",
        "not-a-cid",
        "Qm123",
        "QmYwAPJzv5CZsnA625s3Xf2nemtYgPpHdWEz79ojWnPb0G",  # '0' is not base58
        CID_V1[:-4],
        " " + CID_V1,
        "xabc",
    ],
)
def test_invalid_cids_rejected(value):
    assert is_valid_cid(value) is False
    with pytest.raises(InvalidCIDError):
        parse_cid(value)


def test_invalid_cid_error_is_validation_error():
    with pytest.raises(ValidationError):
        parse_cid("nope")


def test_compute_cid_is_raw_cidv1():
    """Test computed ids are base32 CIDv1 with raw codec and sha2-256."""
    data = b"hello world"
    cid = compute_cid(data)

    assert cid.startswith("bafkrei")
    info = parse_cid(cid)
    assert info.version == 1
    assert info.codec == CODEC_RAW
    assert info.digest == hashlib.sha256(data).digest()


def test_compute_cid_is_deterministic():
    assert compute_cid(b"abc") == compute_cid(b"abc")
    assert compute_cid(b"abc") != compute_cid(b"abd")
