"""
ContentProof: Content Provenance Manifests & Verification

A creator fingerprints content, signs a portable manifest binding that
fingerprint to their address, publishes the manifest to content-addressed
storage and anchors it in an on-chain registry. Anyone can later recompute
the fingerprint and replay the same checks from public data alone.

Verdicts:
    verified | hash_mismatch | signature_invalid | not_registered | creator_mismatch

Usage:
    from contentproof import (
        ProvenanceConfig,
        RegistrationOrchestrator,
        VerificationEngine,
        get_registry,
        get_signer,
        get_storage_provider,
    )

    config = ProvenanceConfig.load()
    signer = get_signer(config.signer, config.private_key)
    storage = get_storage_provider(config)
    registry = get_registry(config)

    # Register (privacy mode: only the manifest is published)
    result = RegistrationOrchestrator(signer, storage, registry).register("sample.bin")

    # Verify
    verdict = VerificationEngine(storage, registry).verify_file("sample.bin")
    if verdict.is_verified:
        print(verdict.registry_entry.tx_hash)
"""

__version__ = "1.0.0"

from .binding import AuthorizationDecision, BindingAuthorizer, BindingRequest, PLATFORM_PROVIDERS
from .cache import VerificationCache
from .canonicalization import canonicalize, canonicalize_str
from .chains import SUPPORTED_CHAINS, ChainConfig, chain_by_id, chain_by_name
from .config import ProvenanceConfig
from .errors import (
    AuthorizationError,
    ChainError,
    ConfigError,
    ProvenanceError,
    RegistrationCancelled,
    SignatureError,
    StorageFetchError,
    StorageUploadError,
    ValidationError,
)
from .hashing import content_hash_bytes32, hash_bytes, hash_file, hash_stream, normalize_content_hash
from .manifest import Manifest, build_manifest, manifest_signing_bytes, parse_manifest
from .orchestrator import (
    KeyedLock,
    RegistrationOrchestrator,
    RegistrationResult,
    RegistrationStage,
    RegistrationState,
)
from .proof import build_proof
from .registry import ChainRegistryClient, RegistryEntry, TxReceipt, Web3ChainRegistry, get_registry
from .signing import (
    AwsKmsSigner,
    LocalKeySigner,
    ManifestSigner,
    SignatureCheck,
    address_of,
    check_manifest_signature,
    get_signer,
    recover_address,
    sign_bytes,
)
from .storage import (
    GatewayFetcher,
    InfuraProvider,
    LocalNodeProvider,
    PinataProvider,
    StorageProvider,
    Web3StorageProvider,
    get_storage_provider,
)
from .verifier import VerdictStatus, VerificationEngine, VerificationVerdict, compute_verdict

__all__ = [
    # Version
    "__version__",

    # Hashing & manifests
    "hash_bytes",
    "hash_stream",
    "hash_file",
    "normalize_content_hash",
    "content_hash_bytes32",
    "canonicalize",
    "canonicalize_str",
    "Manifest",
    "build_manifest",
    "parse_manifest",
    "manifest_signing_bytes",

    # Signing
    "ManifestSigner",
    "LocalKeySigner",
    "AwsKmsSigner",
    "SignatureCheck",
    "sign_bytes",
    "recover_address",
    "address_of",
    "check_manifest_signature",
    "get_signer",

    # Storage
    "StorageProvider",
    "Web3StorageProvider",
    "PinataProvider",
    "InfuraProvider",
    "LocalNodeProvider",
    "GatewayFetcher",
    "get_storage_provider",

    # Chain
    "ChainConfig",
    "SUPPORTED_CHAINS",
    "chain_by_id",
    "chain_by_name",
    "ChainRegistryClient",
    "Web3ChainRegistry",
    "RegistryEntry",
    "TxReceipt",
    "get_registry",

    # Registration & verification
    "RegistrationOrchestrator",
    "RegistrationState",
    "RegistrationStage",
    "RegistrationResult",
    "KeyedLock",
    "VerificationEngine",
    "VerificationVerdict",
    "VerdictStatus",
    "compute_verdict",
    "VerificationCache",
    "build_proof",

    # Bindings
    "BindingAuthorizer",
    "BindingRequest",
    "AuthorizationDecision",
    "PLATFORM_PROVIDERS",

    # Config & errors
    "ProvenanceConfig",
    "ProvenanceError",
    "ValidationError",
    "ConfigError",
    "StorageUploadError",
    "StorageFetchError",
    "SignatureError",
    "ChainError",
    "AuthorizationError",
    "RegistrationCancelled",
]
