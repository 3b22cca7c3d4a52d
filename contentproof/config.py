"""
Configuration module for ContentProof.

A ``ProvenanceConfig`` value is built once (from the local config file,
environment overrides and command-line flags) and passed explicitly into the
orchestrator, verifier and binding proxy. Nothing in the core reads ambient
configuration.
"""

import json
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

from .errors import ConfigError

DEFAULT_CONFIG_PATH = Path.home() / ".contentproof.json"

STORAGE_PROVIDERS = ("web3storage", "pinata", "infura", "local")

# JSON key in the config file -> (attribute, environment variable)
_FILE_KEYS = {
    "apiUrl": ("api_url", "CONTENTPROOF_API_URL"),
    "apiKey": ("api_key", "CONTENTPROOF_API_KEY"),
    "privateKey": ("private_key", "CONTENTPROOF_PRIVATE_KEY"),
    "signer": ("signer", "CONTENTPROOF_SIGNER"),
    "kmsKeyId": ("kms_key_id", "CONTENTPROOF_KMS_KEY_ID"),
    "awsRegion": ("aws_region", "AWS_REGION"),
    "rpcUrl": ("rpc_url", "CONTENTPROOF_RPC_URL"),
    "chain": ("chain", "CONTENTPROOF_CHAIN"),
    "registryAddress": ("registry_address", "CONTENTPROOF_REGISTRY_ADDRESS"),
    "registryStartBlock": ("registry_start_block", "CONTENTPROOF_REGISTRY_START_BLOCK"),
    "ipfsProvider": ("ipfs_provider", "CONTENTPROOF_IPFS_PROVIDER"),
    "web3StorageToken": ("web3_storage_token", "WEB3_STORAGE_TOKEN"),
    "pinataJwt": ("pinata_jwt", "PINATA_JWT"),
    "infuraProjectId": ("infura_project_id", "IPFS_PROJECT_ID"),
    "infuraProjectSecret": ("infura_project_secret", "IPFS_PROJECT_SECRET"),
    "ipfsApiUrl": ("ipfs_api_url", "IPFS_API_URL"),
    "ipfsGateway": ("ipfs_gateway", "CONTENTPROOF_IPFS_GATEWAY"),
    "journalPath": ("journal_path", "CONTENTPROOF_JOURNAL_PATH"),
}

_INT_FIELDS = {"registry_start_block"}

# Credential fields each storage provider requires
PROVIDER_CREDENTIALS = {
    "web3storage": ["web3StorageToken"],
    "pinata": ["pinataJwt"],
    "infura": ["infuraProjectId", "infuraProjectSecret"],
    "local": [],
}


@dataclass(frozen=True)
class ProvenanceConfig:
    """Explicit configuration value for one registration/verification context."""
    api_url: Optional[str] = None
    api_key: Optional[str] = None
    private_key: Optional[str] = None
    signer: str = "local"
    kms_key_id: Optional[str] = None
    aws_region: Optional[str] = None
    rpc_url: Optional[str] = None
    chain: Optional[str] = None
    registry_address: Optional[str] = None
    registry_start_block: Optional[int] = None
    ipfs_provider: str = "local"
    web3_storage_token: Optional[str] = None
    pinata_jwt: Optional[str] = None
    infura_project_id: Optional[str] = None
    infura_project_secret: Optional[str] = None
    ipfs_api_url: Optional[str] = None
    ipfs_gateway: str = "https://ipfs.io/ipfs/"
    journal_path: Optional[str] = None

    # Tunables
    network_timeout_seconds: float = 30.0
    tx_timeout_seconds: float = 180.0
    upload_max_attempts: int = 4
    upload_backoff_factor: float = 0.5
    verification_cache_ttl_seconds: int = 300
    binding_rpm: int = 60

    extra: Dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ProvenanceConfig':
        """Build from config-file JSON keys. Unknown keys are kept in ``extra``."""
        values: Dict[str, Any] = {}
        extra: Dict[str, Any] = {}
        for key, value in data.items():
            if key in _FILE_KEYS:
                attr = _FILE_KEYS[key][0]
                values[attr] = _coerce(attr, value)
            else:
                extra[key] = value
        return cls(extra=extra, **values)

    @classmethod
    def load(
        cls,
        path: Optional[str] = None,
        environ: Optional[Dict[str, str]] = None,
    ) -> 'ProvenanceConfig':
        """
        Load configuration from file, then apply environment overrides.

        Args:
            path: Config file path (default: $CONTENTPROOF_CONFIG or ~/.contentproof.json)
            environ: Environment mapping (default: os.environ)
        """
        environ = os.environ if environ is None else environ
        config_path = Path(path or environ.get("CONTENTPROOF_CONFIG") or DEFAULT_CONFIG_PATH)

        data: Dict[str, Any] = {}
        if config_path.exists():
            try:
                with open(config_path, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                raise ConfigError([str(config_path)], f"Cannot read config file {config_path}: {e}") from e
            if not isinstance(data, dict):
                raise ConfigError([str(config_path)], f"Config file {config_path} must hold a JSON object")

        for key, (_, env_name) in _FILE_KEYS.items():
            env_value = environ.get(env_name)
            if env_value:
                data[key] = env_value

        return cls.from_dict(data)

    def with_overrides(self, **overrides: Any) -> 'ProvenanceConfig':
        """Return a copy with non-None overrides applied (CLI flags)."""
        known = {f.name for f in fields(self)}
        applied = {k: _coerce(k, v) for k, v in overrides.items() if v is not None and k in known}
        return replace(self, **applied)

    def to_dict(self) -> Dict[str, Any]:
        """Config-file JSON form (only fields that are set)."""
        data = dict(self.extra)
        for key, (attr, _) in _FILE_KEYS.items():
            value = getattr(self, attr)
            if value is not None:
                data[key] = value
        return data

    def save(self, path: Optional[str] = None) -> Path:
        config_path = Path(path or DEFAULT_CONFIG_PATH)
        config_path.write_text(json.dumps(self.to_dict(), indent=2), encoding="utf-8")
        try:
            os.chmod(config_path, 0o600)
        except OSError:
            pass
        return config_path

    def require(self, *keys: str) -> None:
        """
        Ensure config-file keys are set.

        Raises:
            ConfigError: Naming every missing key
        """
        missing = [key for key in keys if not getattr(self, _FILE_KEYS[key][0])]
        if missing:
            raise ConfigError(missing)

    def require_storage(self) -> None:
        """Ensure a known storage provider and its credentials are configured."""
        if self.ipfs_provider not in STORAGE_PROVIDERS:
            raise ConfigError(
                ["ipfsProvider"],
                f"Unsupported ipfsProvider {self.ipfs_provider!r}; expected one of {', '.join(STORAGE_PROVIDERS)}",
            )
        self.require(*PROVIDER_CREDENTIALS[self.ipfs_provider])

    def require_signer(self) -> None:
        if self.signer == "aws_kms":
            self.require("kmsKeyId")
        else:
            self.require("privateKey")


def _coerce(attr: str, value: Any) -> Any:
    if attr in _INT_FIELDS and value is not None:
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ConfigError([attr], f"{attr} must be an integer")
    return value
