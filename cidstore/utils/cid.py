"""Content identifier (CID) parsing, validation and computation.

Supports CIDv0 (base58btc sha2-256 multihash, ``Qm...``) and CIDv1 in the
base32, base58btc and base16 multibase encodings.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
from dataclasses import dataclass

import base58

from cidstore.utils.exceptions import InvalidCIDError

CODEC_RAW = 0x55
CODEC_DAG_PB = 0x70
SHA2_256 = 0x12
SHA2_256_LENGTH = 32

_MAX_VARINT_BYTES = 9


@dataclass(frozen=True)
class CIDInfo:
    """Decoded content identifier."""

    version: int
    codec: int
    hash_code: int
    digest: bytes


def _read_varint(buf: bytes, offset: int) -> tuple[int, int]:
    """Decode an unsigned varint at ``offset``; return (value, next offset)."""
    value = 0
    shift = 0
    for i in range(_MAX_VARINT_BYTES):
        pos = offset + i
        if pos >= len(buf):
            msg = "truncated varint"
            raise InvalidCIDError(msg)
        byte = buf[pos]
        value |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return value, pos + 1
        shift += 7
    msg = "varint too long"
    raise InvalidCIDError(msg)


def _decode_multibase(value: str) -> bytes:
    prefix, body = value[0], value[1:]
    if not body:
        msg = "empty multibase payload"
        raise InvalidCIDError(msg)
    try:
        if prefix in ("b", "B"):
            padded = body.upper() + "=" * (-len(body) % 8)
            return base64.b32decode(padded)
        if prefix == "z":
            return base58.b58decode(body)
        if prefix in ("f", "F"):
            return bytes.fromhex(body)
    except (binascii.Error, ValueError) as e:
        msg = f"invalid multibase payload: {e}"
        raise InvalidCIDError(msg, cause=e) from e
    msg = f"unsupported multibase prefix {prefix!r}"
    raise InvalidCIDError(msg)


def _parse_multihash(buf: bytes, offset: int) -> tuple[int, bytes]:
    hash_code, offset = _read_varint(buf, offset)
    length, offset = _read_varint(buf, offset)
    digest = buf[offset:]
    if len(digest) != length:
        msg = f"multihash length mismatch: declared {length}, got {len(digest)}"
        raise InvalidCIDError(msg)
    if hash_code == SHA2_256 and length != SHA2_256_LENGTH:
        msg = "sha2-256 digest must be 32 bytes"
        raise InvalidCIDError(msg)
    return hash_code, digest


def parse_cid(value: str) -> CIDInfo:
    """Parse a CID string.

    Raises:
        InvalidCIDError: ``value`` is not a well-formed CID

    """
    if not value or not value.strip() or value != value.strip():
        msg = f"invalid CID: {value!r}"
        raise InvalidCIDError(msg)

    if len(value) == 46 and value.startswith("Qm"):
        try:
            raw = base58.b58decode(value)
        except ValueError as e:
            msg = f"invalid CIDv0 {value!r}"
            raise InvalidCIDError(msg, cause=e) from e
        hash_code, digest = _parse_multihash(raw, 0)
        if hash_code != SHA2_256:
            msg = "CIDv0 must use sha2-256"
            raise InvalidCIDError(msg)
        return CIDInfo(version=0, codec=CODEC_DAG_PB, hash_code=hash_code, digest=digest)

    raw = _decode_multibase(value)
    version, offset = _read_varint(raw, 0)
    if version != 1:
        msg = f"unsupported CID version {version}"
        raise InvalidCIDError(msg)
    codec, offset = _read_varint(raw, offset)
    hash_code, digest = _parse_multihash(raw, offset)
    return CIDInfo(version=1, codec=codec, hash_code=hash_code, digest=digest)


def is_valid_cid(value: str) -> bool:
    """Return True when ``value`` parses as a CID."""
    try:
        parse_cid(value)
    except InvalidCIDError:
        return False
    return True


def compute_cid(data: bytes, codec: int = CODEC_RAW) -> str:
    """Return the base32 CIDv1 (sha2-256) of ``data``."""
    digest = hashlib.sha256(data).digest()
    raw = bytes([1, codec, SHA2_256, SHA2_256_LENGTH]) + digest
    return "b" + base64.b32encode(raw).decode("ascii").lower().rstrip("=")
