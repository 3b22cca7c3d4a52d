"""
ContentProof Verification Engine

Replays the provenance checks from public data alone::

    fetching -> hash_check -> signature_check -> chain_lookup
             -> creator_consistency -> verified | failed(reason)

Negative outcomes are values, not exceptions. ``compute_verdict`` is a pure
function of (recomputed hash, manifest, registry entry); the engine only
gathers those inputs. Only infrastructure failures raise: storage fetch,
chain RPC and malformed manifest documents.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .errors import SignatureError
from .hashing import hash_file, normalize_content_hash
from .logging_config import audit_log
from .manifest import Manifest, parse_manifest
from .registry import ChainRegistryClient, RegistryEntry
from .signing import check_manifest_signature

logger = logging.getLogger(__name__)

URI_PREFIXES = ("ipfs://", "http://", "https://")


class VerdictStatus(str, Enum):
    VERIFIED = "verified"
    HASH_MISMATCH = "hash_mismatch"
    SIGNATURE_INVALID = "signature_invalid"
    NOT_REGISTERED = "not_registered"
    CREATOR_MISMATCH = "creator_mismatch"


@dataclass
class VerificationVerdict:
    """Terminal, reproducible result of a verification."""
    status: VerdictStatus
    recomputed_hash: Optional[str]
    manifest: Optional[Manifest]
    registry_entry: Optional[RegistryEntry] = None
    reasons: List[str] = field(default_factory=list)
    recovered_address: Optional[str] = None
    manifest_uri: Optional[str] = None

    @property
    def is_verified(self) -> bool:
        return self.status == VerdictStatus.VERIFIED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "recomputedHash": self.recomputed_hash,
            "manifest": self.manifest.to_dict() if self.manifest else None,
            "manifestUri": self.manifest_uri,
            "registryEntry": self.registry_entry.to_dict() if self.registry_entry else None,
            "recoveredAddress": self.recovered_address,
            "reasons": list(self.reasons),
        }


def _local_verdict(
    manifest: Manifest,
    recomputed_hash: Optional[str],
    manifest_uri: Optional[str],
):
    """
    Checks that need no registry state.

    Returns:
        Tuple of (terminal verdict or None, recovered signer address or None)
    """
    def fail(status: VerdictStatus, reason: str, recovered: Optional[str] = None):
        return VerificationVerdict(
            status=status,
            recomputed_hash=recomputed_hash,
            manifest=manifest,
            reasons=[reason],
            recovered_address=recovered,
            manifest_uri=manifest_uri,
        ), recovered

    declared_hash = normalize_content_hash(manifest.content_hash)
    if recomputed_hash is not None and normalize_content_hash(recomputed_hash) != declared_hash:
        return fail(
            VerdictStatus.HASH_MISMATCH,
            f"Content hash {recomputed_hash} does not match manifest contentHash {declared_hash}",
        )

    try:
        check = check_manifest_signature(manifest)
    except SignatureError as e:
        return fail(VerdictStatus.SIGNATURE_INVALID, e.message)
    if not check.valid:
        return fail(VerdictStatus.SIGNATURE_INVALID, check.reason, check.recovered_address)

    return None, check.recovered_address


def compute_verdict(
    manifest: Manifest,
    registry_entry: Optional[RegistryEntry],
    recomputed_hash: Optional[str] = None,
    manifest_uri: Optional[str] = None,
) -> VerificationVerdict:
    """
    Decide the verdict from already-gathered inputs.

    Args:
        manifest: Parsed manifest
        registry_entry: Registry entry for ``manifest.contentHash`` (None if absent)
        recomputed_hash: Hash of the raw content, when content is available
        manifest_uri: Locator the manifest was fetched from; when given it
            must equal the registry entry's ``manifestUri``
    """
    verdict, recovered = _local_verdict(manifest, recomputed_hash, manifest_uri)
    if verdict is not None:
        return verdict

    declared_hash = normalize_content_hash(manifest.content_hash)
    if registry_entry is None:
        return VerificationVerdict(
            status=VerdictStatus.NOT_REGISTERED,
            recomputed_hash=recomputed_hash,
            manifest=manifest,
            reasons=[f"No registry entry for {declared_hash}"],
            recovered_address=recovered,
            manifest_uri=manifest_uri,
        )

    if registry_entry.creator_address.lower() != recovered.lower():
        return VerificationVerdict(
            status=VerdictStatus.CREATOR_MISMATCH,
            recomputed_hash=recomputed_hash,
            manifest=manifest,
            registry_entry=registry_entry,
            reasons=[
                f"Registered by {registry_entry.creator_address}, manifest signed by {recovered}"
            ],
            recovered_address=recovered,
            manifest_uri=manifest_uri,
        )

    if manifest_uri is not None and registry_entry.manifest_uri != manifest_uri:
        return VerificationVerdict(
            status=VerdictStatus.NOT_REGISTERED,
            recomputed_hash=recomputed_hash,
            manifest=manifest,
            registry_entry=registry_entry,
            reasons=[
                f"Manifest {manifest_uri} is not the anchored one; registry holds {registry_entry.manifest_uri}"
            ],
            recovered_address=recovered,
            manifest_uri=manifest_uri,
        )

    return VerificationVerdict(
        status=VerdictStatus.VERIFIED,
        recomputed_hash=recomputed_hash,
        manifest=manifest,
        registry_entry=registry_entry,
        recovered_address=recovered,
        manifest_uri=manifest_uri,
    )


class VerificationEngine:
    """
    Gathers verification inputs and delegates to ``compute_verdict``.

    Args:
        fetcher: Anything with ``fetch(uri) -> bytes`` (a ``StorageProvider``
            or a ``GatewayFetcher``)
        registry: Chain registry capability (read-only use)
    """

    def __init__(self, fetcher, registry: ChainRegistryClient):
        self.fetcher = fetcher
        self.registry = registry

    def verify(self, target: str, manifest_uri: Optional[str] = None) -> VerificationVerdict:
        """Verify a manifest locator, or a local file (optionally against a given manifest)."""
        if target.startswith(URI_PREFIXES):
            return self.verify_manifest_uri(target)
        return self.verify_file(target, manifest_uri)

    def verify_file(self, path: Union[str, Path], manifest_uri: Optional[str] = None) -> VerificationVerdict:
        """
        Verify local content.

        Without ``manifest_uri`` the manifest is located through the registry
        entry for the content's hash.
        """
        recomputed = hash_file(path)
        entry = None
        if manifest_uri is None:
            entry = self.registry.resolve(recomputed)
            if entry is None:
                return self._emit(VerificationVerdict(
                    status=VerdictStatus.NOT_REGISTERED,
                    recomputed_hash=recomputed,
                    manifest=None,
                    reasons=[f"No registry entry for {recomputed}"],
                ))
            manifest_uri = entry.manifest_uri

        manifest = parse_manifest(self.fetcher.fetch(manifest_uri))
        return self._finish(manifest, recomputed, manifest_uri, entry)

    def verify_manifest_uri(self, manifest_uri: str) -> VerificationVerdict:
        """Verify a manifest alone (no raw content available)."""
        manifest = parse_manifest(self.fetcher.fetch(manifest_uri))
        return self._finish(manifest, None, manifest_uri, None)

    def verify_manifest(self, manifest: Manifest, content_hash: Optional[str] = None) -> VerificationVerdict:
        """Verify an already-parsed manifest (e.g. from a local file)."""
        return self._finish(manifest, content_hash, None, None)

    def _finish(
        self,
        manifest: Manifest,
        recomputed: Optional[str],
        manifest_uri: Optional[str],
        entry: Optional[RegistryEntry],
    ) -> VerificationVerdict:
        verdict, _ = _local_verdict(manifest, recomputed, manifest_uri)
        if verdict is None:
            if entry is None:
                entry = self.registry.resolve(manifest.content_hash)
            verdict = compute_verdict(manifest, entry, recomputed, manifest_uri)
        return self._emit(verdict)

    @staticmethod
    def _emit(verdict: VerificationVerdict) -> VerificationVerdict:
        content_hash = verdict.recomputed_hash or (verdict.manifest.content_hash if verdict.manifest else None)
        audit_log.verification_verdict(verdict.status.value, content_hash, verdict.reasons)
        return verdict
