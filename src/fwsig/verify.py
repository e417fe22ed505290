"""Manifest and component verification."""

import hmac
import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Union

from .checksum import matches, to_hex
from .errors import (
    BadSignature,
    ChecksumMismatch,
    InvalidKey,
    LengthMismatch,
    UntrustedKey,
)
from .keys import PublicKey
from .manifest import MANIFEST_VERSION, Flags, Manifest
from .package import unpack

logger = logging.getLogger(__name__)

TrustPredicate = Callable[[PublicKey], bool]


@dataclass(frozen=True)
class VerifiedInfo:
    """Fields of a manifest whose signature (and components) verified."""

    version: int
    flags: int
    app_length: int
    app_checksum: bytes
    meta_kind: int
    meta_length: int
    meta_checksum: bytes
    signing_key: PublicKey

    # Result of the caller's trust predicate
    trusted: bool

    # Which components were checked against the manifest
    app_verified: bool = False
    meta_verified: bool = False

    app_name: str = ""
    app_version: str = ""

    @property
    def transient_key(self) -> bool:
        return bool(self.flags & Flags.TRANSIENT_KEY)

    def is_valid(self, allow_transient: bool = False) -> bool:
        """Apply a typical acceptance policy.

        Trusted keys are accepted, transient keys only when
        ``allow_transient`` is set (development builds).
        """
        if self.trusted:
            return True
        return allow_transient and self.transient_key


def trusted_keys(keys: Iterable[Union[PublicKey, bytes, str]]) -> TrustPredicate:
    """Build a trust predicate from a fixed list of keys.

    Keys may be PublicKey objects, raw bytes or hex strings.
    """
    allowed = []
    for k in keys:
        if isinstance(k, str):
            k = PublicKey.from_hex(k)
        allowed.append(bytes(k))

    def is_trusted_key(key: PublicKey) -> bool:
        candidate = bytes(key)
        # Check every entry so timing does not reveal the match position
        found = False
        for k in allowed:
            found |= hmac.compare_digest(k, candidate)
        return found

    return is_trusted_key


def _no_trust(key: PublicKey) -> bool:
    return False


class ManifestVerifier:
    """Verifies manifest signatures and the components they describe."""

    def __init__(
        self,
        is_trusted_key: Optional[TrustPredicate] = None,
        require_trusted: bool = False,
    ) -> None:
        """Initialize verifier.

        Args:
            is_trusted_key: Trust predicate, no key is trusted when None
            require_trusted: Raise UntrustedKey instead of reporting
                ``trusted=False`` in the result
        """
        self.is_trusted_key = is_trusted_key or _no_trust
        self.require_trusted = require_trusted

    def verify(
        self,
        manifest: Union[Manifest, bytes],
        app: Optional[bytes] = None,
        meta: Optional[bytes] = None,
    ) -> VerifiedInfo:
        """Verify a manifest and optionally its firmware and metadata.

        The signature is checked before any other field is used.

        Args:
            manifest: Manifest object or encoded manifest bytes
            app: Firmware bytes to check against the manifest
            meta: Metadata bytes to check against the manifest

        Returns:
            VerifiedInfo for the caller to apply policy to

        Raises:
            DecodeError: If manifest bytes are malformed
            BadSignature: If the signature does not verify
            UntrustedKey: If ``require_trusted`` and the predicate rejects the key
            LengthMismatch: If a component length differs from the manifest
            ChecksumMismatch: If a component checksum differs from the manifest
        """
        if not isinstance(manifest, Manifest):
            manifest = Manifest.from_bytes(manifest)

        try:
            key = manifest.public_key
        except InvalidKey as e:
            raise BadSignature("Invalid signing key") from e

        if not key.verify(manifest.signed_bytes(), manifest.signature):
            logger.warning("Manifest signature verification failed for key %s", key.hex())
            raise BadSignature("Signature verification failed")

        trusted = bool(self.is_trusted_key(key))
        if not trusted:
            if self.require_trusted:
                raise UntrustedKey(key.hex(), transient=manifest.transient_key)
            logger.warning(
                "Manifest signed by untrusted %skey %s",
                "transient " if manifest.transient_key else "",
                key.hex(),
            )

        if app is not None:
            self._check_component("app", app, manifest.app_length, manifest.app_checksum)
        if meta is not None:
            self._check_component("meta", meta, manifest.meta_length, manifest.meta_checksum)

        logger.info(
            "Manifest verified: key %s, trusted=%s, transient=%s",
            key.hex(),
            trusted,
            manifest.transient_key,
        )

        return VerifiedInfo(
            version=manifest.version,
            flags=manifest.flags,
            app_length=manifest.app_length,
            app_checksum=manifest.app_checksum,
            meta_kind=manifest.meta_kind,
            meta_length=manifest.meta_length,
            meta_checksum=manifest.meta_checksum,
            signing_key=key,
            trusted=trusted,
            app_verified=app is not None,
            meta_verified=meta is not None,
            app_name=manifest.app_name,
            app_version=manifest.app_version,
        )

    def verify_detached(
        self, manifest_data: bytes, app: bytes, meta: bytes
    ) -> VerifiedInfo:
        """Verify components against a separately stored manifest."""
        return self.verify(Manifest.from_bytes(manifest_data), app, meta)

    def verify_package(
        self, package_data: bytes, version: int = MANIFEST_VERSION
    ) -> VerifiedInfo:
        """Split a combined package and verify all of its parts."""
        firmware, metadata, manifest = unpack(package_data, version)
        return self.verify(manifest, firmware, metadata)

    @staticmethod
    def _check_component(which: str, data: bytes, length: int, checksum: bytes) -> None:
        if len(data) != length:
            raise LengthMismatch(which, length, len(data))

        if not matches(data, checksum):
            logger.debug("%s checksum mismatch, expected %s", which, to_hex(checksum, short=True))
            raise ChecksumMismatch(which)


def verify(
    manifest: Union[Manifest, bytes],
    is_trusted_key: Optional[TrustPredicate] = None,
    app: Optional[bytes] = None,
    meta: Optional[bytes] = None,
) -> VerifiedInfo:
    """Verify a manifest, reporting (not enforcing) key trust."""
    return ManifestVerifier(is_trusted_key).verify(manifest, app, meta)
