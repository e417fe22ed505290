"""Configuration management for fwsig."""

import json
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator

from .keys import PublicKey
from .manifest import MANIFEST_VERSION, SUPPORTED_VERSIONS, MetadataFormat


class SigningConfig(BaseModel):
    """Signing defaults."""

    meta_format: str = "binary"
    manifest_version: int = MANIFEST_VERSION

    @field_validator("meta_format")
    @classmethod
    def _check_meta_format(cls, value: str) -> str:
        try:
            MetadataFormat.from_string(value)
        except KeyError:
            raise ValueError(f"Unknown metadata format: {value}") from None
        return value.lower()

    @field_validator("manifest_version")
    @classmethod
    def _check_manifest_version(cls, value: int) -> int:
        if value not in SUPPORTED_VERSIONS:
            raise ValueError(f"Unsupported manifest version: {value}")
        return value


class TrustConfig(BaseModel):
    """Key trust policy for verification."""

    # Hex encoded Ed25519 public keys
    keys: list[str] = Field(default_factory=list)
    allow_transient: bool = False
    require_trusted: bool = True

    @field_validator("keys")
    @classmethod
    def _check_keys(cls, value: list[str]) -> list[str]:
        for k in value:
            PublicKey.from_hex(k)
        return [k.strip().lower() for k in value]


class FwsigConfig(BaseModel):
    """Complete fwsig configuration."""

    signing: SigningConfig = SigningConfig()
    trust: TrustConfig = TrustConfig()

    log_level: str = "warning"


_FORMATS = {".yaml": "yaml", ".yml": "yaml", ".json": "json"}


def _config_format(config_path: Path) -> str:
    try:
        return _FORMATS[config_path.suffix]
    except KeyError:
        raise ValueError(f"Unsupported config format: {config_path.suffix}") from None


def _dumps(data: dict, format: str) -> str:
    if format == "yaml":
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
    if format == "json":
        return json.dumps(data, indent=2)
    raise ValueError(f"Unsupported format: {format}")


def load_config(config_path: Path) -> FwsigConfig:
    """Load configuration from a YAML or JSON file.

    An empty file gives the defaults.

    Raises:
        ValueError: Unknown file suffix, a document that is not a
            mapping, or invalid values (pydantic ``ValidationError``)
    """
    config_path = Path(config_path)
    format = _config_format(config_path)
    text = config_path.read_text()
    if format == "yaml":
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {config_path}: {e}") from e
    else:
        data = json.loads(text)

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError(
            f"Configuration must be a mapping, got {type(data).__name__}: {config_path}"
        )
    return FwsigConfig.model_validate(data)


def save_config(config: FwsigConfig, config_path: Path) -> None:
    """Save configuration, choosing YAML or JSON by file suffix."""
    config_path = Path(config_path)
    config_path.write_text(_dumps(config.model_dump(), _config_format(config_path)))


def generate_default_config(format: str = "yaml") -> str:
    """Default configuration file content in ``format`` ("yaml" or "json")."""
    return _dumps(FwsigConfig().model_dump(), format)


# Default configuration templates for different environments
DEVELOPMENT_CONFIG = FwsigConfig(
    trust=TrustConfig(allow_transient=True, require_trusted=False),
    log_level="debug",
)

PRODUCTION_CONFIG = FwsigConfig(
    trust=TrustConfig(allow_transient=False, require_trusted=True),
)
