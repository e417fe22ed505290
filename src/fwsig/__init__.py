"""fwsig firmware signing tool.

This package provides tools for signing and verifying firmware images
with a fixed-length binary manifest, including:
- Truncated SHA-512 checksums of firmware and metadata
- Manifest encoding and decoding
- Ed25519 signing with caller supplied or transient keys
- Packaging of firmware, metadata and manifest into a single file
- Signature, checksum and key trust verification
"""

__version__ = "0.2.1"

from .errors import FwsigError
from .keys import Keypair, PublicKey
from .manifest import (
    MANIFEST_LEN,
    MANIFEST_VERSION,
    Flags,
    Manifest,
    MetadataFormat,
    decode,
    encode,
    manifest_length,
)
from .package import UnpackedPackage, pack, unpack
from .signer import ManifestBuilder, ManifestSigner, sign
from .verify import ManifestVerifier, VerifiedInfo, trusted_keys, verify

__all__ = [
    "FwsigError",
    "Keypair",
    "PublicKey",
    "MANIFEST_LEN",
    "MANIFEST_VERSION",
    "Flags",
    "Manifest",
    "MetadataFormat",
    "decode",
    "encode",
    "manifest_length",
    "UnpackedPackage",
    "pack",
    "unpack",
    "ManifestBuilder",
    "ManifestSigner",
    "sign",
    "ManifestVerifier",
    "VerifiedInfo",
    "trusted_keys",
    "verify",
]
