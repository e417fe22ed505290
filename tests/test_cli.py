"""Tests for the fwsig command-line interface."""

import json
from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner

from fwsig.cli import main
from fwsig.keys import Keypair
from fwsig.manifest import MANIFEST_LEN, MANIFEST_LEN_NAMED, Manifest, MetadataFormat
from fwsig.package import unpack


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def key_prefix(temp_dir: Path, keypair: Keypair) -> Path:
    """Saved keypair, returned as the key file prefix."""
    prefix = temp_dir / "signing"
    keypair.save(prefix, key_id="test-key")
    return prefix


def _sign(runner: CliRunner, *args: str):
    return runner.invoke(main, ["sign", *args], catch_exceptions=False)


class TestKeygen:
    """Tests for keygen command."""

    def test_keygen(self, runner: CliRunner, temp_dir: Path):
        """Test key files are written."""
        prefix = temp_dir / "device"
        result = runner.invoke(main, ["keygen", "-o", str(prefix), "-k", "dev-1"])

        assert result.exit_code == 0
        private = json.loads(Path(f"{prefix}_private.json").read_text())
        public = json.loads(Path(f"{prefix}_public.json").read_text())
        assert private["key_id"] == "dev-1"
        assert private["public_key"] == public["public_key"]
        assert public["public_key"] in result.output
        assert Keypair.load(prefix).public_key.hex() == public["public_key"]


class TestSign:
    """Tests for sign command."""

    def test_sign_attached(
        self,
        runner: CliRunner,
        temp_dir: Path,
        firmware_file: Path,
        metadata_file: Path,
        key_prefix: Path,
        keypair: Keypair,
    ):
        """Test signing writes a combined package."""
        output = temp_dir / "signed.bin"
        result = _sign(
            runner, str(firmware_file), str(metadata_file),
            "--meta-format", "json", "-k", str(key_prefix), "-o", str(output),
        )

        assert result.exit_code == 0
        assert "Package saved" in result.output
        firmware, metadata, manifest = unpack(output.read_bytes())
        assert firmware == firmware_file.read_bytes()
        assert metadata == metadata_file.read_bytes()
        assert manifest.meta_kind == MetadataFormat.JSON
        assert manifest.signing_key == bytes(keypair.public_key)
        assert not manifest.transient_key

    def test_sign_detached(
        self, runner: CliRunner, temp_dir: Path, firmware_file: Path, metadata_file: Path
    ):
        """Test detached signing with a transient key."""
        output = temp_dir / "manifest.bin"
        result = _sign(runner, str(firmware_file), str(metadata_file), "-o", str(output), "--detached")

        assert result.exit_code == 0
        assert "transient key" in result.output
        assert "Manifest saved" in result.output
        data = output.read_bytes()
        assert len(data) == MANIFEST_LEN
        manifest = Manifest.from_bytes(data)
        assert manifest.transient_key
        assert manifest.meta_kind == MetadataFormat.BINARY

    def test_sign_named(
        self, runner: CliRunner, temp_dir: Path, firmware_file: Path, metadata_file: Path
    ):
        """Test name and version select the named layout."""
        output = temp_dir / "manifest.bin"
        result = _sign(
            runner, str(firmware_file), str(metadata_file),
            "--name", "blinky", "--app-version", "1.2.3", "-o", str(output), "--detached",
        )

        assert result.exit_code == 0
        data = output.read_bytes()
        assert len(data) == MANIFEST_LEN_NAMED
        manifest = Manifest.from_bytes(data)
        assert manifest.app_name == "blinky"
        assert manifest.app_version == "1.2.3"

    def test_sign_name_too_long(
        self, runner: CliRunner, temp_dir: Path, firmware_file: Path, metadata_file: Path
    ):
        """Test overlong names are rejected."""
        output = temp_dir / "manifest.bin"
        result = _sign(
            runner, str(firmware_file), str(metadata_file),
            "--name", "x" * 17, "-o", str(output),
        )

        assert result.exit_code == 1
        assert not output.exists()

    def test_sign_hex_key(
        self,
        runner: CliRunner,
        temp_dir: Path,
        firmware_file: Path,
        metadata_file: Path,
        keypair: Keypair,
    ):
        """Test signing with a hex private key."""
        output = temp_dir / "manifest.bin"
        result = _sign(
            runner, str(firmware_file), str(metadata_file),
            "-k", keypair.seed.hex(), "-o", str(output), "--detached",
        )

        assert result.exit_code == 0
        assert Manifest.from_bytes(output.read_bytes()).signing_key == bytes(keypair.public_key)

    def test_sign_verbose(
        self, runner: CliRunner, temp_dir: Path, firmware_file: Path, metadata_file: Path
    ):
        """Test verbose output shows the manifest."""
        output = temp_dir / "signed.bin"
        result = runner.invoke(
            main, ["-v", "sign", str(firmware_file), str(metadata_file), "-o", str(output)]
        )

        assert result.exit_code == 0
        assert "Generated Manifest" in result.output

    def test_sign_config_meta_format(
        self, runner: CliRunner, temp_dir: Path, firmware_file: Path, metadata_file: Path
    ):
        """Test metadata format default from configuration."""
        config = temp_dir / "fwsig.yaml"
        config.write_text(yaml.safe_dump({"signing": {"meta_format": "cbor"}}))
        output = temp_dir / "manifest.bin"

        result = runner.invoke(
            main,
            ["--config", str(config), "sign", str(firmware_file), str(metadata_file),
             "-o", str(output), "--detached"],
        )

        assert result.exit_code == 0
        assert Manifest.from_bytes(output.read_bytes()).meta_kind == MetadataFormat.CBOR


class TestVerify:
    """Tests for verify-attached and verify-detached commands."""

    @pytest.fixture
    def package(
        self,
        runner: CliRunner,
        temp_dir: Path,
        firmware_file: Path,
        metadata_file: Path,
        key_prefix: Path,
    ) -> Path:
        output = temp_dir / "signed.bin"
        _sign(runner, str(firmware_file), str(metadata_file), "-k", str(key_prefix), "-o", str(output))
        return output

    @pytest.fixture
    def transient_package(
        self, runner: CliRunner, temp_dir: Path, firmware_file: Path, metadata_file: Path
    ) -> Path:
        output = temp_dir / "transient.bin"
        _sign(runner, str(firmware_file), str(metadata_file), "-o", str(output))
        return output

    def test_verify_trusted(self, runner: CliRunner, package: Path, key_prefix: Path):
        """Test verification with the signing key trusted."""
        result = runner.invoke(main, ["verify-attached", str(package), "-k", str(key_prefix)])

        assert result.exit_code == 0
        assert "Verification successful" in result.output

    def test_verify_hex_key(self, runner: CliRunner, package: Path, keypair: Keypair):
        """Test trusted key given as hex."""
        result = runner.invoke(
            main, ["verify-attached", str(package), "-k", keypair.public_key.hex()]
        )
        assert result.exit_code == 0

    def test_verify_untrusted(self, runner: CliRunner, package: Path):
        """Test verification without trusted keys fails."""
        result = runner.invoke(main, ["verify-attached", str(package)])

        assert result.exit_code == 1
        assert "not trusted" in result.output

    def test_verify_config_trust(
        self, runner: CliRunner, temp_dir: Path, package: Path, keypair: Keypair
    ):
        """Test trusted keys from configuration."""
        config = temp_dir / "fwsig.json"
        config.write_text(json.dumps({"trust": {"keys": [keypair.public_key.hex()]}}))

        result = runner.invoke(main, ["--config", str(config), "verify-attached", str(package)])
        assert result.exit_code == 0

    def test_verify_transient(self, runner: CliRunner, transient_package: Path):
        """Test transient keys need --allow-transient."""
        result = runner.invoke(main, ["verify-attached", str(transient_package)])
        assert result.exit_code == 1

        result = runner.invoke(main, ["verify-attached", str(transient_package), "--allow-transient"])
        assert result.exit_code == 0
        assert "Transient key" in result.output

    def test_verify_lenient_config(
        self, runner: CliRunner, temp_dir: Path, transient_package: Path
    ):
        """Test require_trusted disabled in configuration."""
        config = temp_dir / "fwsig.yaml"
        config.write_text(yaml.safe_dump({"trust": {"require_trusted": False}}))

        result = runner.invoke(
            main, ["--config", str(config), "verify-attached", str(transient_package)]
        )
        assert result.exit_code == 0

    def test_verify_tampered(
        self, runner: CliRunner, temp_dir: Path, package: Path, key_prefix: Path
    ):
        """Test tampered firmware fails verification."""
        data = bytearray(package.read_bytes())
        data[10] ^= 0xFF
        tampered = temp_dir / "tampered.bin"
        tampered.write_bytes(bytes(data))

        result = runner.invoke(main, ["verify-attached", str(tampered), "-k", str(key_prefix)])

        assert result.exit_code == 1
        assert "checksum mismatch" in result.output

    def test_verify_truncated(self, runner: CliRunner, temp_dir: Path):
        """Test file too short for a manifest."""
        short = temp_dir / "short.bin"
        short.write_bytes(b"\x01\x00" * 10)

        result = runner.invoke(main, ["verify-attached", str(short)])
        assert result.exit_code == 1

    def test_verify_detached(
        self,
        runner: CliRunner,
        temp_dir: Path,
        firmware_file: Path,
        metadata_file: Path,
        key_prefix: Path,
    ):
        """Test detached manifest verification."""
        manifest = temp_dir / "manifest.bin"
        _sign(
            runner, str(firmware_file), str(metadata_file),
            "-k", str(key_prefix), "-o", str(manifest), "--detached",
        )

        result = runner.invoke(
            main,
            ["verify-detached", str(manifest), str(firmware_file), str(metadata_file),
             "-k", f"{key_prefix}_public.json"],
        )
        assert result.exit_code == 0

        result = runner.invoke(
            main,
            ["verify-detached", str(manifest), str(metadata_file), str(metadata_file),
             "-k", str(key_prefix)],
        )
        assert result.exit_code == 1


class TestInspect:
    """Tests for inspect command."""

    def test_inspect_manifest(
        self, runner: CliRunner, temp_dir: Path, firmware_file: Path, metadata_file: Path
    ):
        """Test displaying a detached manifest."""
        manifest = temp_dir / "manifest.bin"
        _sign(runner, str(firmware_file), str(metadata_file), "-o", str(manifest), "--detached")

        result = runner.invoke(main, ["inspect", str(manifest)])

        assert result.exit_code == 0
        assert "TRANSIENT_KEY" in result.output

    def test_inspect_package(
        self, runner: CliRunner, temp_dir: Path, firmware_file: Path, metadata_file: Path
    ):
        """Test displaying the manifest of a package."""
        package = temp_dir / "signed.bin"
        _sign(runner, str(firmware_file), str(metadata_file), "-o", str(package))

        result = runner.invoke(main, ["inspect", str(package), "--attached"])
        assert result.exit_code == 0
        assert str(firmware_file.stat().st_size) in result.output

    def test_inspect_garbage(self, runner: CliRunner, temp_dir: Path):
        """Test non-manifest input."""
        garbage = temp_dir / "garbage.bin"
        garbage.write_bytes(b"\x09\x00" + b"\x00" * 200)

        result = runner.invoke(main, ["inspect", str(garbage)])
        assert result.exit_code == 1
        assert "Unsupported manifest version" in result.output


class TestKeyAndConfigCommands:
    """Tests for export-public and config-init commands."""

    def test_export_public(
        self, runner: CliRunner, temp_dir: Path, key_prefix: Path, keypair: Keypair
    ):
        """Test exporting the public half of a key."""
        output = temp_dir / "exported.json"
        result = runner.invoke(
            main, ["export-public", "-k", f"{key_prefix}_private.json", "-o", str(output)]
        )

        assert result.exit_code == 0
        data = json.loads(output.read_text())
        assert data["public_key"] == keypair.public_key.hex()
        assert "secret_key" not in data

    def test_export_public_missing(self, runner: CliRunner, temp_dir: Path):
        """Test exporting from a missing key file."""
        result = runner.invoke(
            main, ["export-public", "-k", str(temp_dir / "nope"), "-o", str(temp_dir / "out.json")]
        )
        assert result.exit_code == 1

    def test_config_init_yaml(self, runner: CliRunner, temp_dir: Path):
        """Test writing a YAML configuration."""
        output = temp_dir / "fwsig.yaml"
        result = runner.invoke(main, ["config-init", "-o", str(output)])

        assert result.exit_code == 0
        assert yaml.safe_load(output.read_text())["signing"]["meta_format"] == "binary"

    def test_config_init_json(self, runner: CliRunner, temp_dir: Path):
        """Test writing a JSON configuration."""
        output = temp_dir / "fwsig.json"
        result = runner.invoke(main, ["config-init", "-o", str(output)])

        assert result.exit_code == 0
        assert json.loads(output.read_text())["trust"]["require_trusted"] is True

    def test_invalid_config(self, runner: CliRunner, temp_dir: Path):
        """Test invalid configuration values are reported."""
        config = temp_dir / "bad.yaml"
        config.write_text("signing:\n  meta_format: xml\n")

        result = runner.invoke(main, ["--config", str(config), "config-init", "-o", "x.yaml"])
        assert result.exit_code == 1
        assert "Invalid configuration" in result.output

    def test_version(self, runner: CliRunner):
        """Test version option."""
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "fwsig" in result.output
