"""Combined application packages.

Package format:
[app_length bytes] Firmware image
[meta_length bytes] Metadata
[constant length] Manifest

The manifest is always last so it can be located from the end of the
file using only its constant length.
"""

import logging
from typing import NamedTuple

from .errors import (
    PackageLengthMismatch,
    TooShortForManifest,
    TruncatedPackage,
    UnsupportedVersion,
)
from .manifest import MANIFEST_VERSION, Manifest, manifest_length

logger = logging.getLogger(__name__)


class UnpackedPackage(NamedTuple):
    """Components recovered from a package."""

    firmware: bytes
    metadata: bytes
    manifest: Manifest


def pack(firmware: bytes, metadata: bytes, manifest: Manifest) -> bytes:
    """Concatenate firmware, metadata and encoded manifest."""
    return bytes(firmware) + bytes(metadata) + manifest.to_bytes()


def unpack(data: bytes, version: int = MANIFEST_VERSION) -> UnpackedPackage:
    """Split a package into firmware, metadata and manifest.

    Only slicing is performed here, signatures and checksums are checked
    by the verifier.

    Args:
        data: Complete package
        version: Manifest version, which fixes the trailing manifest length

    Returns:
        UnpackedPackage of (firmware, metadata, manifest)

    Raises:
        TooShortForManifest: Package shorter than the manifest
        DecodeError: Trailing manifest is malformed
        TruncatedPackage: Manifest lengths exceed the package size
        PackageLengthMismatch: Unexpected bytes precede the firmware
    """
    data = bytes(data)
    mlen = manifest_length(version)
    if len(data) < mlen:
        raise TooShortForManifest(mlen, len(data))

    manifest = Manifest.from_bytes(data[-mlen:])
    if manifest.version != version:
        # Suffix was decoded with the wrong constant length
        raise UnsupportedVersion(manifest.version)

    expected = manifest.app_length + manifest.meta_length + mlen
    if expected > len(data):
        raise TruncatedPackage(expected, len(data))
    if expected < len(data):
        raise PackageLengthMismatch(expected, len(data))

    meta_end = len(data) - mlen
    meta_start = meta_end - manifest.meta_length
    app_start = meta_start - manifest.app_length

    logger.debug(
        "Unpacked package: app %d bytes, meta %d bytes, manifest %d bytes",
        manifest.app_length,
        manifest.meta_length,
        mlen,
    )

    return UnpackedPackage(
        firmware=data[app_start:meta_start],
        metadata=data[meta_start:meta_end],
        manifest=manifest,
    )
