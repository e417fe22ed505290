"""Error types for fwsig.

Every concrete error is also a ``ValueError`` so callers that only care
about "bad input" can catch that.
"""

from typing import Optional


class FwsigError(Exception):
    """Base class for all fwsig errors."""


# Decoding


class DecodeError(FwsigError, ValueError):
    """Manifest bytes are not structurally valid."""


class TooShort(DecodeError):
    """Fewer bytes than the constant manifest length."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Manifest data too short: expected {expected} bytes, got {actual}")
        self.expected = expected
        self.actual = actual


class UnsupportedVersion(DecodeError):
    """Manifest version is not one this codec knows."""

    def __init__(self, version: int) -> None:
        super().__init__(f"Unsupported manifest version: {version:#06x}")
        self.version = version


class MalformedKeyOrSignature(DecodeError):
    """Embedded key or signature is not a valid Ed25519 encoding."""


class MalformedString(DecodeError):
    """A fixed-width string field is not zero-padded UTF-8."""


# Signing


class SignError(FwsigError, ValueError):
    """Manifest could not be built or signed."""


class FirmwareTooLarge(SignError):
    def __init__(self, length: int) -> None:
        super().__init__(f"Firmware too large for manifest: {length} bytes")
        self.length = length


class MetadataTooLarge(SignError):
    def __init__(self, length: int) -> None:
        super().__init__(f"Metadata too large for manifest: {length} bytes")
        self.length = length


class StringTooLong(SignError):
    def __init__(self, field: str, limit: int) -> None:
        super().__init__(f"{field} exceeds {limit} encoded bytes")
        self.field = field
        self.limit = limit


class MissingComponent(SignError):
    """Builder was asked to build without the firmware binary."""


class ValueOutOfRange(SignError):
    def __init__(self, field: str, value: int, limit: int) -> None:
        super().__init__(f"{field} out of range: {value} (must be 0..{limit:#x})")
        self.field = field
        self.value = value
        self.limit = limit


# Construction


class InvalidField(FwsigError, ValueError):
    """A manifest field does not fit its fixed-width encoding."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"Invalid {field}: {message}")
        self.field = field


# Verification


class VerifyError(FwsigError, ValueError):
    """Manifest or components failed verification."""


class BadSignature(VerifyError):
    """Signature does not match the manifest contents and embedded key."""


class ChecksumMismatch(VerifyError):
    """Recomputed checksum differs from the manifest.

    ``which`` is ``"app"`` or ``"meta"``.
    """

    def __init__(self, which: str) -> None:
        super().__init__(f"{which} checksum mismatch")
        self.which = which


class LengthMismatch(VerifyError):
    def __init__(self, which: str, expected: int, actual: int) -> None:
        super().__init__(f"{which} length mismatch: manifest says {expected}, got {actual}")
        self.which = which
        self.expected = expected
        self.actual = actual


class UntrustedKey(VerifyError):
    def __init__(self, key_hex: str, transient: bool = False) -> None:
        kind = "transient key" if transient else "key"
        super().__init__(f"Manifest signed by untrusted {kind}: {key_hex}")
        self.key_hex = key_hex
        self.transient = transient


# Packaging


class UnpackError(FwsigError, ValueError):
    """Package bytes cannot be split into components."""


class TooShortForManifest(UnpackError):
    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Package too short for manifest: need {expected} bytes, got {actual}")
        self.expected = expected
        self.actual = actual


class TruncatedPackage(UnpackError):
    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Package truncated: manifest implies {expected} bytes, got {actual}")
        self.expected = expected
        self.actual = actual


class PackageLengthMismatch(UnpackError):
    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(
            f"Package has {actual - expected} unexpected leading bytes "
            f"(expected {expected}, got {actual})"
        )
        self.expected = expected
        self.actual = actual


# Keys


class InvalidKey(FwsigError, ValueError):
    """Key bytes, hex or key file could not be parsed."""

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(f"{message}: {path}" if path else message)
        self.path = path
