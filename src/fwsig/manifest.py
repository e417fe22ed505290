"""Firmware manifest binary format.

The manifest is a constant-length, little-endian record appended to the
firmware and metadata it describes. Two layouts exist, selected by the
leading version field:

Version 1 (172 bytes):
[2 bytes] Version (0x0001)
[2 bytes] Flags
[4 bytes] Application length
[32 bytes] Application checksum (SHA-512, first 32 bytes)
[2 bytes] Metadata kind
[2 bytes] Metadata length
[32 bytes] Metadata checksum (SHA-512, first 32 bytes)
[32 bytes] Ed25519 public key
[64 bytes] Ed25519ph signature over all preceding bytes

Version 2 (212 bytes) inserts, directly after the flags:
[16 bytes] Application name (null-padded UTF-8)
[24 bytes] Application version (null-padded UTF-8)
"""

import logging
import struct
from dataclasses import dataclass, replace
from enum import IntEnum, IntFlag
from typing import Any

from .checksum import CHECKSUM_LENGTH, to_hex
from .errors import (
    InvalidField,
    InvalidKey,
    MalformedKeyOrSignature,
    MalformedString,
    TooShort,
    UnsupportedVersion,
)
from .keys import PUBLIC_KEY_LENGTH, SIGNATURE_LENGTH, PublicKey, is_canonical_signature

logger = logging.getLogger(__name__)


MANIFEST_VERSION = 0x0001
MANIFEST_VERSION_NAMED = 0x0002

APP_NAME_LENGTH = 16
APP_VERSION_LENGTH = 24

MAX_APP_LENGTH = 0xFFFF_FFFF
MAX_META_LENGTH = 0xFFFF
MAX_META_KIND = 0xFFFF
MAX_FLAGS = 0xFFFF

# Fields preceding the signature, per version
_BODY_FORMATS = {
    MANIFEST_VERSION: struct.Struct(
        f"<HHI{CHECKSUM_LENGTH}sHH{CHECKSUM_LENGTH}s{PUBLIC_KEY_LENGTH}s"
    ),
    MANIFEST_VERSION_NAMED: struct.Struct(
        f"<HH{APP_NAME_LENGTH}s{APP_VERSION_LENGTH}s"
        f"I{CHECKSUM_LENGTH}sHH{CHECKSUM_LENGTH}s{PUBLIC_KEY_LENGTH}s"
    ),
}

SUPPORTED_VERSIONS = tuple(_BODY_FORMATS)


def manifest_length(version: int = MANIFEST_VERSION) -> int:
    """Constant encoded length of a manifest of ``version``."""
    try:
        return _BODY_FORMATS[version].size + SIGNATURE_LENGTH
    except KeyError:
        raise UnsupportedVersion(version) from None


MANIFEST_LEN = manifest_length(MANIFEST_VERSION)
MANIFEST_LEN_NAMED = manifest_length(MANIFEST_VERSION_NAMED)


class Flags(IntFlag):
    """Manifest information flags."""

    # Signing key is transient and carries no trust of its own
    TRANSIENT_KEY = 1 << 0


_KNOWN_FLAGS = int(Flags.TRANSIENT_KEY)

# Fixed-width fields, checked on construction
_INT_FIELDS = (
    ("flags", MAX_FLAGS),
    ("app_length", MAX_APP_LENGTH),
    ("meta_kind", MAX_META_KIND),
    ("meta_length", MAX_META_LENGTH),
)

_BYTE_FIELDS = (
    ("app_checksum", CHECKSUM_LENGTH),
    ("meta_checksum", CHECKSUM_LENGTH),
    ("signing_key", PUBLIC_KEY_LENGTH),
    ("signature", SIGNATURE_LENGTH),
)


class MetadataFormat(IntEnum):
    """Known metadata encodings.

    The manifest only records the tag, metadata contents are opaque here.
    """

    BINARY = 0x0000
    JSON = 0x0001
    CBOR = 0x0002
    OTHER = 0xFFFF

    @classmethod
    def from_string(cls, value: str) -> "MetadataFormat":
        """Convert string to MetadataFormat."""
        mapping = {
            "bin": cls.BINARY,
            "binary": cls.BINARY,
            "json": cls.JSON,
            "cbor": cls.CBOR,
            "other": cls.OTHER,
        }
        return mapping[value.lower()]

    @classmethod
    def describe(cls, kind: int) -> str:
        try:
            return cls(kind).name.lower()
        except ValueError:
            return f"unknown-{kind:#06x}"


def _encode_string(value: str, length: int) -> bytes:
    return value.encode().ljust(length, b"\x00")


def _check_string(field: str, value: str, length: int) -> None:
    if "\x00" in value:
        raise InvalidField(field, "contains a NUL character")
    if len(value.encode()) > length:
        raise InvalidField(field, f"exceeds {length} encoded bytes")


def _decode_string(data: bytes, field: str) -> str:
    text, _, padding = data.partition(b"\x00")
    if padding.strip(b"\x00"):
        raise MalformedString(f"{field} has data after terminator")
    try:
        return text.decode()
    except UnicodeDecodeError as e:
        raise MalformedString(f"{field} is not valid UTF-8") from e


@dataclass(frozen=True)
class Manifest:
    """Signed manifest linking application and metadata checksums to a key."""

    version: int
    flags: int

    app_length: int
    app_checksum: bytes

    meta_kind: int
    meta_length: int
    meta_checksum: bytes

    signing_key: bytes
    signature: bytes

    # Version 2 only
    app_name: str = ""
    app_version: str = ""

    def __post_init__(self) -> None:
        """Reject values that cannot be encoded exactly.

        Raises:
            UnsupportedVersion: Unknown version
            InvalidField: Integer out of range, byte field of the wrong
                width, or string that does not fit its fixed width
        """
        if self.version not in _BODY_FORMATS:
            raise UnsupportedVersion(self.version)

        for name, limit in _INT_FIELDS:
            value = getattr(self, name)
            if not 0 <= value <= limit:
                raise InvalidField(name, f"{value} outside 0..{limit:#x}")

        for name, length in _BYTE_FIELDS:
            value = getattr(self, name)
            if not isinstance(value, (bytes, bytearray)):
                raise InvalidField(name, f"expected bytes, got {type(value).__name__}")
            if len(value) != length:
                raise InvalidField(name, f"expected {length} bytes, got {len(value)}")

        if self.version == MANIFEST_VERSION_NAMED:
            _check_string("app_name", self.app_name, APP_NAME_LENGTH)
            _check_string("app_version", self.app_version, APP_VERSION_LENGTH)
        elif self.app_name or self.app_version:
            raise InvalidField("app_name", f"version {self.version} manifests carry no name")

    @property
    def transient_key(self) -> bool:
        return bool(self.flags & Flags.TRANSIENT_KEY)

    @property
    def public_key(self) -> PublicKey:
        return PublicKey(self.signing_key)

    @property
    def encoded_length(self) -> int:
        return manifest_length(self.version)

    def signed_bytes(self) -> bytes:
        """Canonical encoding of every field except the signature."""
        fmt = _BODY_FORMATS[self.version]

        if self.version == MANIFEST_VERSION_NAMED:
            head = (
                self.version,
                self.flags,
                _encode_string(self.app_name, APP_NAME_LENGTH),
                _encode_string(self.app_version, APP_VERSION_LENGTH),
            )
        else:
            head = (self.version, self.flags)

        return fmt.pack(
            *head,
            self.app_length,
            self.app_checksum,
            self.meta_kind,
            self.meta_length,
            self.meta_checksum,
            self.signing_key,
        )

    def to_bytes(self) -> bytes:
        """Serialize manifest to its constant-length encoding."""
        return self.signed_bytes() + bytes(self.signature)

    @classmethod
    def from_bytes(cls, data: bytes) -> "Manifest":
        """Deserialize manifest from bytes.

        Only structure is checked here, the signature is not verified.

        Raises:
            TooShort: Fewer bytes than the manifest length
            UnsupportedVersion: Unknown version field
            MalformedKeyOrSignature: Key or signature is not a valid encoding
            MalformedString: Name or version string is malformed
        """
        data = bytes(data)
        if len(data) < 2:
            raise TooShort(MANIFEST_LEN, len(data))

        (version,) = struct.unpack_from("<H", data)
        fmt = _BODY_FORMATS.get(version)
        if fmt is None:
            raise UnsupportedVersion(version)

        length = fmt.size + SIGNATURE_LENGTH
        if len(data) < length:
            raise TooShort(length, len(data))

        fields = fmt.unpack_from(data)
        signature = data[fmt.size:length]

        app_name = app_version = ""
        if version == MANIFEST_VERSION_NAMED:
            _, flags, name_bytes, version_bytes, *rest = fields
            app_name = _decode_string(name_bytes, "app_name")
            app_version = _decode_string(version_bytes, "app_version")
        else:
            _, flags, *rest = fields
        app_length, app_checksum, meta_kind, meta_length, meta_checksum, signing_key = rest

        try:
            PublicKey(signing_key)
        except InvalidKey as e:
            raise MalformedKeyOrSignature("Invalid signing key encoding") from e
        if not is_canonical_signature(signature):
            raise MalformedKeyOrSignature("Invalid signature encoding")

        logger.debug("Decoded manifest version %d (%d bytes)", version, length)

        return cls(
            version=version,
            flags=flags,
            app_length=app_length,
            app_checksum=app_checksum,
            meta_kind=meta_kind,
            meta_length=meta_length,
            meta_checksum=meta_checksum,
            signing_key=signing_key,
            signature=signature,
            app_name=app_name,
            app_version=app_version,
        )

    def with_signature(self, signature: bytes) -> "Manifest":
        return replace(self, signature=bytes(signature))

    def describe(self) -> dict[str, Any]:
        """Summarize fields for display."""
        flag_names = [f.name for f in Flags if self.flags & f]
        reserved = self.flags & ~_KNOWN_FLAGS
        if reserved:
            flag_names.append(f"reserved({reserved:#06x})")

        info = {
            "version": self.version,
            "flags": ", ".join(flag_names) or "none",
            "app_length": self.app_length,
            "app_checksum": to_hex(self.app_checksum),
            "meta_kind": MetadataFormat.describe(self.meta_kind),
            "meta_length": self.meta_length,
            "meta_checksum": to_hex(self.meta_checksum),
            "signing_key": bytes(self.signing_key).hex(),
            "signature": bytes(self.signature).hex(),
        }
        if self.version == MANIFEST_VERSION_NAMED:
            info["app_name"] = self.app_name
            info["app_version"] = self.app_version
        return info


def encode(manifest: Manifest) -> bytes:
    """Encode ``manifest`` to bytes."""
    return manifest.to_bytes()


def decode(data: bytes) -> Manifest:
    """Decode a manifest from the start of ``data``."""
    return Manifest.from_bytes(data)
