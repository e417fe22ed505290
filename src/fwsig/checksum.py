"""Truncated SHA-512 checksums for firmware and metadata."""

import hmac

from Crypto.Hash import SHA512


# Width of checksums stored in the manifest
CHECKSUM_LENGTH = 32


def digest(data: bytes) -> bytes:
    """Compute the manifest checksum of ``data``.

    This is the first 32 bytes of the SHA-512 digest. Note this is *not*
    SHA-512/256, which uses different initial values.
    """
    return SHA512.new(data).digest()[:CHECKSUM_LENGTH]


def matches(data: bytes, checksum: bytes) -> bool:
    """Constant-time comparison of ``digest(data)`` against ``checksum``."""
    return hmac.compare_digest(digest(data), bytes(checksum))


def to_hex(checksum: bytes, short: bool = False) -> str:
    """Hex encode a checksum, optionally shortened for display."""
    h = bytes(checksum).hex()
    return f"{h[:16]}..." if short else h
