"""Pytest configuration and fixtures for fwsig tests."""

import os
import random
import tempfile
from pathlib import Path
from typing import Callable, Generator

import pytest

from fwsig.keys import Keypair


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test outputs."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_firmware() -> bytes:
    """Sample firmware image for testing."""
    # Vector table followed by simulated code
    header = b"\x00\x00\x02\x20\x09\x01\x00\x08"
    padding = b"\x00" * 56
    code = os.urandom(4096)
    return header + padding + code


@pytest.fixture
def sample_metadata() -> bytes:
    """Sample JSON metadata blob."""
    return b'{"name": "blinky", "version": "1.2.3"}'


@pytest.fixture
def randfunc() -> Callable[[int], bytes]:
    """Deterministic random source for reproducible keys."""
    rng = random.Random(0x5EED)
    return lambda n: bytes(rng.getrandbits(8) for _ in range(n))


@pytest.fixture
def keypair() -> Keypair:
    """Caller held signing key."""
    return Keypair.generate()


@pytest.fixture
def firmware_file(temp_dir: Path, sample_firmware: bytes) -> Path:
    """Create a firmware file on disk."""
    path = temp_dir / "firmware.bin"
    path.write_bytes(sample_firmware)
    return path


@pytest.fixture
def metadata_file(temp_dir: Path, sample_metadata: bytes) -> Path:
    """Create a metadata file on disk."""
    path = temp_dir / "meta.json"
    path.write_bytes(sample_metadata)
    return path
