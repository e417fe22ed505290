"""Command-line interface for the fwsig signing tool."""

import logging
import sys
from pathlib import Path
from typing import NoReturn, Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import FwsigConfig, generate_default_config, load_config
from .errors import FwsigError
from .keys import Keypair, PublicKey
from .manifest import Manifest, MetadataFormat, manifest_length
from .package import pack, unpack
from .signer import ManifestBuilder
from .verify import ManifestVerifier, VerifiedInfo, trusted_keys

console = Console()
logger = logging.getLogger(__name__)

LOG_LEVELS = ["debug", "info", "warning", "error"]


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _fail(message: str) -> NoReturn:
    console.print(f"[bold red]✗[/bold red] {escape(message)}")
    sys.exit(1)


def _load_keypair(value: str) -> Keypair:
    """Load a keypair from a key file (or key file prefix) or a hex seed."""
    path = Path(value)
    if path.is_file() or Path(f"{value}_private.json").is_file():
        return Keypair.load(path)
    return Keypair.from_hex(value)


def _load_public_key(value: str) -> PublicKey:
    path = Path(value)
    if path.is_file() or Path(f"{value}_public.json").is_file():
        return PublicKey.load(path)
    return PublicKey.from_hex(value)


def _manifest_table(manifest: Manifest, title: str) -> Table:
    table = Table(title=title)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    for name, value in manifest.describe().items():
        table.add_row(name, str(value))
    return table


def _apply_policy(ctx: click.Context, info: VerifiedInfo, allow_transient: bool) -> None:
    """Accept or reject a verified manifest according to trust policy."""
    config: FwsigConfig = ctx.obj["config"]
    allow_transient = allow_transient or config.trust.allow_transient

    table = Table(title="Verification Results")
    table.add_column("Check", style="cyan")
    table.add_column("Status", style="green")
    table.add_column("Details")
    table.add_row("Signature", "✓ PASS", f"Ed25519ph by {info.signing_key.hex()[:16]}...")
    if info.app_verified:
        table.add_row("Application", "✓ PASS", f"{info.app_length} bytes")
    if info.meta_verified:
        table.add_row(
            "Metadata",
            "✓ PASS",
            f"{info.meta_length} bytes ({MetadataFormat.describe(info.meta_kind)})",
        )
    if info.trusted:
        table.add_row("Key Trust", "✓ PASS", "Key is trusted")
    elif info.transient_key:
        table.add_row("Key Trust", "⚠ WARN", "Transient key")
    else:
        table.add_row("Key Trust", "⚠ WARN", "Key not in trusted set")
    console.print(table)

    if info.is_valid(allow_transient) or not config.trust.require_trusted:
        if not info.trusted:
            logger.warning("Accepting manifest signed by untrusted key %s", info.signing_key.hex())
        console.print("[bold green]✓[/bold green] Verification successful")
        return

    _fail("Signing key is not trusted")


@click.group()
@click.version_option(version=__version__, prog_name="fwsig")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--config", "config_path", type=click.Path(exists=True), help="Configuration file")
@click.option("--log-level", type=click.Choice(LOG_LEVELS), help="Log level")
@click.pass_context
def main(
    ctx: click.Context,
    verbose: bool,
    config_path: Optional[str],
    log_level: Optional[str],
) -> None:
    """fwsig firmware signing, packaging and verification utility."""
    ctx.ensure_object(dict)
    try:
        config = load_config(Path(config_path)) if config_path else FwsigConfig()
    except ValueError as e:
        _fail(f"Invalid configuration: {e}")

    _setup_logging(log_level or config.log_level)
    ctx.obj["verbose"] = verbose
    ctx.obj["config"] = config


@main.command()
@click.option("--output", "-o", type=click.Path(), required=True, help="Output key file prefix")
@click.option("--key-id", "-k", help="Key identifier")
def keygen(output: str, key_id: Optional[str]) -> None:
    """Generate a new signing key pair."""
    keypair = Keypair.generate()
    keypair.save(Path(output), key_id=key_id)

    console.print(f"[bold green]✓[/bold green] Signing key saved to {output}_private.json")
    console.print(f"Public key: {keypair.public_key.hex()}")


@main.command()
@click.argument("app", type=click.Path(exists=True, dir_okay=False))
@click.argument("meta", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--meta-format",
    type=click.Choice([f.name.lower() for f in MetadataFormat] + ["bin"]),
    help="Metadata format",
)
@click.option("--key", "-k", help="Signing key file or hex private key (transient key if omitted)")
@click.option("--name", help="Application name (named manifest layout)")
@click.option("--app-version", help="Application version (named manifest layout)")
@click.option("--output", "-o", type=click.Path(), required=True, help="Output file")
@click.option("--detached", is_flag=True, help="Write only the manifest to the output file")
@click.pass_context
def sign(
    ctx: click.Context,
    app: str,
    meta: str,
    meta_format: Optional[str],
    key: Optional[str],
    name: Optional[str],
    app_version: Optional[str],
    output: str,
    detached: bool,
) -> None:
    """Sign an application binary and metadata, generating a manifest."""
    config: FwsigConfig = ctx.obj["config"]
    kind = MetadataFormat.from_string(meta_format or config.signing.meta_format)

    console.print(f"[bold blue]Signing {Path(app).name}[/bold blue]")

    try:
        keypair = _load_keypair(key) if key else None

        firmware = Path(app).read_bytes()
        metadata = Path(meta).read_bytes()

        builder = ManifestBuilder().app_bin(firmware).meta_bin(kind, metadata)
        if name is not None:
            builder.name(name)
        if app_version is not None:
            builder.version(app_version)
        manifest = builder.build(keypair)
    except FwsigError as e:
        _fail(str(e))

    if keypair is None:
        console.print("[bold yellow]⚠[/bold yellow] Signed with a transient key")

    if detached:
        Path(output).write_bytes(manifest.to_bytes())
    else:
        Path(output).write_bytes(pack(firmware, metadata, manifest))

    console.print(f"[bold green]✓[/bold green] {'Manifest' if detached else 'Package'} saved to {output}")

    if ctx.obj["verbose"]:
        console.print(_manifest_table(manifest, "Generated Manifest"))


def _build_verifier(ctx: click.Context, keys: tuple[str, ...]) -> ManifestVerifier:
    config: FwsigConfig = ctx.obj["config"]
    allowed = [_load_public_key(k) for k in keys] + [PublicKey.from_hex(k) for k in config.trust.keys]
    return ManifestVerifier(trusted_keys(allowed))


@main.command("verify-attached")
@click.argument("package", type=click.Path(exists=True, dir_okay=False))
@click.option("--key", "-k", "keys", multiple=True, help="Trusted public key file or hex (repeatable)")
@click.option("--allow-transient", is_flag=True, help="Accept transient signing keys")
@click.option("--manifest-version", type=int, help="Manifest layout version")
@click.pass_context
def verify_attached(
    ctx: click.Context,
    package: str,
    keys: tuple[str, ...],
    allow_transient: bool,
    manifest_version: Optional[int],
) -> None:
    """Verify a signed package (binary + metadata + manifest)."""
    config: FwsigConfig = ctx.obj["config"]
    version = manifest_version or config.signing.manifest_version

    console.print(f"[bold blue]Verifying {Path(package).name}[/bold blue]")

    try:
        verifier = _build_verifier(ctx, keys)
        info = verifier.verify_package(Path(package).read_bytes(), version)
    except FwsigError as e:
        _fail(str(e))

    _apply_policy(ctx, info, allow_transient)


@main.command("verify-detached")
@click.argument("manifest", type=click.Path(exists=True, dir_okay=False))
@click.argument("app", type=click.Path(exists=True, dir_okay=False))
@click.argument("meta", type=click.Path(exists=True, dir_okay=False))
@click.option("--key", "-k", "keys", multiple=True, help="Trusted public key file or hex (repeatable)")
@click.option("--allow-transient", is_flag=True, help="Accept transient signing keys")
@click.pass_context
def verify_detached(
    ctx: click.Context,
    manifest: str,
    app: str,
    meta: str,
    keys: tuple[str, ...],
    allow_transient: bool,
) -> None:
    """Verify application components against a signed manifest."""
    console.print(f"[bold blue]Verifying {Path(app).name}[/bold blue]")

    try:
        verifier = _build_verifier(ctx, keys)
        info = verifier.verify_detached(
            Path(manifest).read_bytes(),
            Path(app).read_bytes(),
            Path(meta).read_bytes(),
        )
    except FwsigError as e:
        _fail(str(e))

    _apply_policy(ctx, info, allow_transient)


@main.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--attached", is_flag=True, help="File is a combined package rather than a manifest")
@click.option("--manifest-version", type=int, help="Manifest layout version for packages")
@click.pass_context
def inspect(
    ctx: click.Context,
    file: str,
    attached: bool,
    manifest_version: Optional[int],
) -> None:
    """Display manifest fields without verifying them."""
    config: FwsigConfig = ctx.obj["config"]
    data = Path(file).read_bytes()

    try:
        if attached:
            version = manifest_version or config.signing.manifest_version
            manifest = unpack(data, version).manifest
        else:
            manifest = Manifest.from_bytes(data)
    except FwsigError as e:
        _fail(str(e))

    console.print(_manifest_table(manifest, f"Manifest: {Path(file).name}"))
    if not attached and len(data) != manifest_length(manifest.version):
        console.print(
            f"[bold yellow]⚠[/bold yellow] File is {len(data)} bytes, "
            f"manifest is {manifest_length(manifest.version)} bytes"
        )


@main.command("export-public")
@click.option("--key", "-k", required=True, help="Private key file")
@click.option("--output", "-o", type=click.Path(), required=True, help="Output public key file")
def export_public(key: str, output: str) -> None:
    """Export public key from a private key file."""
    try:
        keypair = Keypair.load(Path(key))
    except (FwsigError, OSError) as e:
        _fail(str(e))

    keypair.public_key.save(Path(output))
    console.print(f"[bold green]✓[/bold green] Public key saved to {output}")


@main.command("config-init")
@click.option("--output", "-o", type=click.Path(), required=True, help="Output configuration file")
def config_init(output: str) -> None:
    """Write a default configuration file."""
    fmt = "json" if Path(output).suffix == ".json" else "yaml"
    Path(output).write_text(generate_default_config(fmt))
    console.print(f"[bold green]✓[/bold green] Configuration saved to {output}")


if __name__ == "__main__":
    main()
