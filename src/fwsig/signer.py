"""Manifest construction and signing."""

import logging
from pathlib import Path
from typing import Optional, Union

from .checksum import digest, to_hex
from .errors import (
    FirmwareTooLarge,
    MetadataTooLarge,
    MissingComponent,
    StringTooLong,
    ValueOutOfRange,
)
from .keys import SIGNATURE_LENGTH, Keypair, RandFunc
from .manifest import (
    APP_NAME_LENGTH,
    APP_VERSION_LENGTH,
    MANIFEST_VERSION,
    MANIFEST_VERSION_NAMED,
    MAX_APP_LENGTH,
    MAX_FLAGS,
    MAX_META_KIND,
    MAX_META_LENGTH,
    Flags,
    Manifest,
    MetadataFormat,
)

logger = logging.getLogger(__name__)


class ManifestBuilder:
    """Builder for signed firmware manifests."""

    def __init__(self) -> None:
        """Initialize manifest builder."""
        self._flags = 0
        self._name: Optional[str] = None
        self._version: Optional[str] = None
        self._app: Optional[tuple[int, bytes]] = None
        self._meta: tuple[int, int, bytes] = (MetadataFormat.BINARY, 0, digest(b""))

    def flags(self, flags: int) -> "ManifestBuilder":
        """Set manifest flags.

        ``TRANSIENT_KEY`` is always overwritten at build time, any other
        bits are carried through unchanged.

        Raises:
            ValueOutOfRange: If the flags do not fit 16 bits
        """
        if not 0 <= flags <= MAX_FLAGS:
            raise ValueOutOfRange("flags", flags, MAX_FLAGS)
        self._flags = int(flags)
        return self

    def name(self, app_name: str) -> "ManifestBuilder":
        """Set application name, selecting the named manifest layout.

        Raises:
            StringTooLong: If the name exceeds 16 UTF-8 bytes
        """
        if len(app_name.encode()) > APP_NAME_LENGTH:
            raise StringTooLong("app_name", APP_NAME_LENGTH)
        self._name = app_name
        return self

    def version(self, app_version: str) -> "ManifestBuilder":
        """Set application version string, selecting the named manifest layout.

        Raises:
            StringTooLong: If the version exceeds 24 UTF-8 bytes
        """
        if len(app_version.encode()) > APP_VERSION_LENGTH:
            raise StringTooLong("app_version", APP_VERSION_LENGTH)
        self._version = app_version
        return self

    def app_bin(self, data: bytes) -> "ManifestBuilder":
        """Add application binary.

        Raises:
            FirmwareTooLarge: If the binary does not fit a 32-bit length
        """
        if len(data) > MAX_APP_LENGTH:
            raise FirmwareTooLarge(len(data))
        self._app = (len(data), digest(data))
        return self

    def app_file(self, path: Union[str, Path]) -> "ManifestBuilder":
        with open(path, "rb") as f:
            return self.app_bin(f.read())

    def meta_bin(self, kind: int, data: bytes) -> "ManifestBuilder":
        """Add metadata binary with its encoding kind.

        Raises:
            MetadataTooLarge: If the metadata does not fit a 16-bit length
            ValueOutOfRange: If the kind tag does not fit 16 bits
        """
        if not 0 <= kind <= MAX_META_KIND:
            raise ValueOutOfRange("meta_kind", kind, MAX_META_KIND)
        if len(data) > MAX_META_LENGTH:
            raise MetadataTooLarge(len(data))
        self._meta = (int(kind), len(data), digest(data))
        return self

    def meta_file(self, kind: int, path: Union[str, Path]) -> "ManifestBuilder":
        with open(path, "rb") as f:
            return self.meta_bin(kind, f.read())

    def build(
        self,
        keypair: Optional[Keypair] = None,
        randfunc: Optional[RandFunc] = None,
    ) -> Manifest:
        """Build and sign the manifest.

        Args:
            keypair: Signing key, a transient key is generated when None
            randfunc: Random source for transient key generation

        Returns:
            Signed manifest

        Raises:
            MissingComponent: If no application binary was added
        """
        if self._app is None:
            raise MissingComponent("Missing application binary")

        # Select between provided and transient keys
        transient = keypair is None
        if keypair is None:
            keypair = Keypair.generate(randfunc)
            logger.info("Using transient signing key %s", keypair.public_key.hex())

        flags = self._flags & ~int(Flags.TRANSIENT_KEY)
        if transient:
            flags |= int(Flags.TRANSIENT_KEY)

        named = self._name is not None or self._version is not None
        app_length, app_checksum = self._app
        meta_kind, meta_length, meta_checksum = self._meta

        unsigned = Manifest(
            version=MANIFEST_VERSION_NAMED if named else MANIFEST_VERSION,
            flags=int(flags),
            app_length=app_length,
            app_checksum=app_checksum,
            meta_kind=meta_kind,
            meta_length=meta_length,
            meta_checksum=meta_checksum,
            signing_key=bytes(keypair.public_key),
            signature=bytes(SIGNATURE_LENGTH),
            app_name=self._name or "",
            app_version=self._version or "",
        )

        manifest = unsigned.with_signature(keypair.sign(unsigned.signed_bytes()))
        logger.debug(
            "Signed manifest: app %d bytes (%s), meta %d bytes (%s)",
            app_length,
            to_hex(app_checksum, short=True),
            meta_length,
            to_hex(meta_checksum, short=True),
        )
        return manifest


class ManifestSigner:
    """Signs firmware and metadata with a fixed (or transient) key."""

    def __init__(
        self,
        keypair: Optional[Keypair] = None,
        randfunc: Optional[RandFunc] = None,
    ) -> None:
        """Initialize firmware signer.

        Args:
            keypair: Key to use for signing, None for a fresh transient
                key per manifest
            randfunc: Random source for transient keys
        """
        self.keypair = keypair
        self.randfunc = randfunc

    def sign(
        self,
        firmware: bytes,
        metadata: bytes = b"",
        meta_kind: int = MetadataFormat.BINARY,
        app_name: Optional[str] = None,
        app_version: Optional[str] = None,
    ) -> Manifest:
        """Create a signed manifest for ``firmware`` and ``metadata``."""
        builder = ManifestBuilder().app_bin(firmware).meta_bin(meta_kind, metadata)
        if app_name is not None:
            builder.name(app_name)
        if app_version is not None:
            builder.version(app_version)
        return builder.build(self.keypair, self.randfunc)


def sign(
    firmware: bytes,
    metadata: bytes,
    meta_kind: int = MetadataFormat.BINARY,
    keypair: Optional[Keypair] = None,
    randfunc: Optional[RandFunc] = None,
) -> Manifest:
    """Sign firmware and metadata, generating a transient key if needed."""
    return ManifestSigner(keypair, randfunc).sign(firmware, metadata, meta_kind)
