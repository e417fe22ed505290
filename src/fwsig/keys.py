"""Ed25519 key material for manifest signing.

Manifests are signed with Ed25519ph (RFC 8032 HashEdDSA, SHA-512 prehash,
empty context) so that embedded verifiers can stream the manifest through
a hash rather than buffer it.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional, Union

from Crypto.Hash import SHA3_256, SHA512
from Crypto.PublicKey import ECC
from Crypto.Random import get_random_bytes
from Crypto.Signature import eddsa

from .errors import InvalidKey

logger = logging.getLogger(__name__)

PUBLIC_KEY_LENGTH = 32
SECRET_KEY_LENGTH = 32
SIGNATURE_LENGTH = 64

KEY_TYPE = "ed25519"

# Ed25519 group order, signature scalars must be below this
GROUP_ORDER = 2**252 + 27742317777372353535851937790883648493

RandFunc = Callable[[int], bytes]


def _parse_hex(value: str, length: int, what: str) -> bytes:
    try:
        data = bytes.fromhex(value.strip())
    except ValueError as e:
        raise InvalidKey(f"Invalid hex for {what}") from e
    if len(data) != length:
        raise InvalidKey(f"Invalid {what} length: expected {length} bytes, got {len(data)}")
    return data


def _key_file(path: Union[str, Path], suffix: str) -> Path:
    """Resolve either an exact key file or a ``{path}{suffix}`` prefix."""
    path = Path(path)
    if path.is_file():
        return path
    return Path(f"{path}{suffix}")


def is_canonical_signature(signature: bytes) -> bool:
    """Check signature structure without verifying it.

    R must decode as a curve point and the scalar S must be reduced.
    """
    if len(signature) != SIGNATURE_LENGTH:
        return False
    if int.from_bytes(signature[32:], "little") >= GROUP_ORDER:
        return False
    try:
        # R shares the point encoding of public keys
        eddsa.import_public_key(bytes(signature[:32]))
    except ValueError:
        return False
    return True


class PublicKey:
    """An Ed25519 public key as carried in a manifest."""

    def __init__(self, key_bytes: bytes) -> None:
        """Create from the 32 byte encoding.

        Raises:
            InvalidKey: If the bytes are not a valid curve point encoding
        """
        key_bytes = bytes(key_bytes)
        if len(key_bytes) != PUBLIC_KEY_LENGTH:
            raise InvalidKey(
                f"Invalid public key length: expected {PUBLIC_KEY_LENGTH} bytes, got {len(key_bytes)}"
            )
        try:
            self._key = eddsa.import_public_key(key_bytes)
        except ValueError as e:
            raise InvalidKey("Invalid public key encoding") from e
        self._bytes = key_bytes

    @classmethod
    def from_hex(cls, value: str) -> "PublicKey":
        return cls(_parse_hex(value, PUBLIC_KEY_LENGTH, "public key"))

    def __bytes__(self) -> bytes:
        return self._bytes

    def __eq__(self, other: object) -> bool:
        if isinstance(other, PublicKey):
            return self._bytes == other._bytes
        if isinstance(other, (bytes, bytearray)):
            return self._bytes == bytes(other)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._bytes)

    def __repr__(self) -> str:
        return f"PublicKey({self.hex()})"

    def __str__(self) -> str:
        return self.hex()

    def hex(self) -> str:
        return self._bytes.hex()

    def fingerprint(self) -> str:
        """SHA3-256 of the key, used for display and key IDs."""
        return SHA3_256.new(self._bytes).hexdigest()

    def verify(self, message: bytes, signature: bytes) -> bool:
        """Verify an Ed25519ph signature over ``message``.

        Returns False rather than raising for any malformed signature.
        """
        verifier = eddsa.new(self._key, "rfc8032")
        try:
            verifier.verify(SHA512.new(message), bytes(signature))
        except (ValueError, TypeError):
            return False
        return True

    def save(self, path: Union[str, Path], key_id: Optional[str] = None) -> None:
        """Write the public key as a JSON key file."""
        data = {
            "key_type": KEY_TYPE,
            "key_id": key_id or self.fingerprint()[:16],
            "public_key": self.hex(),
            "public_key_hash": self.fingerprint(),
        }
        with open(path, "w") as f:
            json.dump(data, f, indent=2)

    @classmethod
    def load(cls, path: Union[str, Path]) -> "PublicKey":
        """Load a public key from a public or private JSON key file.

        ``path`` may name the file directly or be the prefix used by
        :meth:`Keypair.save`.
        """
        path = _key_file(path, "_public.json")
        try:
            with open(path) as f:
                data = json.load(f)
            return cls.from_hex(data["public_key"])
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            raise InvalidKey("Malformed key file", str(path)) from e


class Keypair:
    """An Ed25519 signing keypair."""

    def __init__(self, key: ECC.EccKey, created_at: Optional[datetime] = None) -> None:
        if not key.has_private():
            raise InvalidKey("Keypair requires a private key")
        self._key = key
        self.public_key = PublicKey(key.public_key().export_key(format="raw"))
        self.created_at = created_at or datetime.now(timezone.utc)

    @classmethod
    def generate(cls, randfunc: Optional[RandFunc] = None) -> "Keypair":
        """Generate a fresh keypair.

        Args:
            randfunc: Source of random bytes, defaults to the OS CSPRNG

        Returns:
            New Keypair
        """
        key = ECC.generate(curve="Ed25519", randfunc=randfunc or get_random_bytes)
        return cls(key)

    @classmethod
    def from_seed(cls, seed: bytes) -> "Keypair":
        if len(seed) != SECRET_KEY_LENGTH:
            raise InvalidKey(
                f"Invalid private key length: expected {SECRET_KEY_LENGTH} bytes, got {len(seed)}"
            )
        return cls(eddsa.import_private_key(bytes(seed)))

    @classmethod
    def from_hex(cls, value: str) -> "Keypair":
        return cls.from_seed(_parse_hex(value, SECRET_KEY_LENGTH, "private key"))

    @property
    def seed(self) -> bytes:
        """The 32 byte RFC 8032 private key."""
        return self._key.seed

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Keypair):
            return NotImplemented
        return self.public_key == other.public_key

    def __repr__(self) -> str:
        # Never include the private half
        return f"Keypair(public_key={self.public_key.hex()})"

    def sign(self, message: bytes) -> bytes:
        """Sign ``message`` with Ed25519ph."""
        signer = eddsa.new(self._key, "rfc8032")
        return signer.sign(SHA512.new(message))

    def save(self, path: Union[str, Path], key_id: Optional[str] = None) -> None:
        """Save key to file.

        Creates:
        - {path}_private.json - Full key with secret
        - {path}_public.json - Public key only
        """
        key_id = key_id or self.public_key.fingerprint()[:16]

        private_data = {
            "key_type": KEY_TYPE,
            "key_id": key_id,
            "created_at": self.created_at.isoformat(),
            "public_key": self.public_key.hex(),
            "secret_key": self.seed.hex(),
        }
        private_path = Path(f"{path}_private.json")
        with open(private_path, "w") as f:
            json.dump(private_data, f, indent=2)
        # Set restrictive permissions
        private_path.chmod(0o600)

        self.public_key.save(Path(f"{path}_public.json"), key_id=key_id)
        logger.debug("Saved keypair %s to %s", key_id, path)

    @classmethod
    def load(cls, path: Union[str, Path]) -> "Keypair":
        """Load a keypair saved with :meth:`save`."""
        path = _key_file(path, "_private.json")
        try:
            with open(path) as f:
                data = json.load(f)
            keypair = cls.from_hex(data["secret_key"])
            created_at = data.get("created_at")
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            raise InvalidKey("Malformed key file", str(path)) from e

        if "public_key" in data and data["public_key"] != keypair.public_key.hex():
            raise InvalidKey("Public key does not match private key", str(path))
        if created_at:
            keypair.created_at = datetime.fromisoformat(created_at)
        return keypair


def generate(randfunc: Optional[RandFunc] = None) -> Keypair:
    """Generate a new signing keypair."""
    return Keypair.generate(randfunc)


def sign(keypair: Keypair, message: bytes) -> bytes:
    """Produce a detached signature over ``message``."""
    return keypair.sign(message)


def verify(public_key: Union[PublicKey, bytes], message: bytes, signature: bytes) -> bool:
    """Check a detached signature.

    Accepts raw key bytes, in which case malformed keys simply fail
    verification.
    """
    if not isinstance(public_key, PublicKey):
        try:
            public_key = PublicKey(public_key)
        except InvalidKey:
            return False
    return public_key.verify(message, signature)
