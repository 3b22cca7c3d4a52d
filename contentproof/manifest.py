"""
ContentProof Manifest

A manifest binds a content hash to a creator address and, optionally, to the
location of the content itself. The signature covers the canonical encoding
of every other declared field. Manifests are immutable: any edit yields a
different document and therefore a different storage address.

JSON document::

    {
      "version": "1.0",
      "contentHash": "0x...",
      "contentUri": "ipfs://...",      # content-upload mode only
      "creatorAddress": "0x...",
      "signature": "0x...",
      "createdAt": "2026-01-01T00:00:00Z"
    }
"""

import json
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from eth_utils import is_address, to_checksum_address

from .canonicalization import canonicalize
from .errors import ValidationError
from .hashing import normalize_content_hash
from .util import utc_rfc3339

MANIFEST_VERSION = "1.0"

SIGNED_FIELDS = ("version", "contentHash", "contentUri", "creatorAddress", "createdAt")


@dataclass(frozen=True)
class Manifest:
    """Signed, portable provenance record."""
    content_hash: str
    creator_address: str
    created_at: str
    content_uri: Optional[str] = None
    signature: Optional[str] = None
    version: str = MANIFEST_VERSION

    def signing_body(self) -> Dict[str, Any]:
        """Declared fields covered by the signature (``contentUri`` only when present)."""
        body = {
            "version": self.version,
            "contentHash": self.content_hash,
            "creatorAddress": self.creator_address,
            "createdAt": self.created_at,
        }
        if self.content_uri is not None:
            body["contentUri"] = self.content_uri
        return body

    def signing_bytes(self) -> bytes:
        """Canonical bytes that are signed and re-derived during verification."""
        return canonicalize(self.signing_body())

    def with_signature(self, signature: str) -> 'Manifest':
        return replace(self, signature=signature)

    @property
    def is_signed(self) -> bool:
        return bool(self.signature)

    def to_dict(self) -> Dict[str, Any]:
        doc = self.signing_body()
        doc["signature"] = self.signature
        return doc

    def to_json(self) -> bytes:
        """Document bytes as published to storage."""
        return canonicalize(self.to_dict())


def normalize_address(value: Any, field: str = "creatorAddress") -> str:
    """Validate an EVM address and return its EIP-55 checksummed form."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(field, "cannot be empty")
    if not is_address(value.strip()):
        raise ValidationError(field, "must be a valid EVM address")
    return to_checksum_address(value.strip())


def _format_timestamp(timestamp: Union[int, datetime, str]) -> str:
    if isinstance(timestamp, bool):
        raise ValidationError("createdAt", "must be an epoch, datetime or RFC3339 string")
    if isinstance(timestamp, int):
        return utc_rfc3339(timestamp)
    if isinstance(timestamp, datetime):
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return timestamp.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')
    if isinstance(timestamp, str) and timestamp.strip():
        return timestamp.strip()
    raise ValidationError("createdAt", "must be an epoch, datetime or RFC3339 string")


def build_manifest(
    content_hash: str,
    content_uri: Optional[str],
    creator_address: str,
    timestamp: Union[int, datetime, str],
) -> Manifest:
    """
    Assemble an unsigned manifest.

    Every field is validated before anything is returned; there is no
    partially-built manifest.

    Args:
        content_hash: Content digest (``0x`` + 64 hex)
        content_uri: Location of the content, or None in privacy mode
        creator_address: EVM address of the signer
        timestamp: Creation time (epoch seconds, datetime or RFC3339 string)

    Raises:
        ValidationError: On an empty hash, malformed address or empty URI
    """
    normalized_hash = normalize_content_hash(content_hash)
    address = normalize_address(creator_address)
    if content_uri is not None:
        if not isinstance(content_uri, str) or not content_uri.strip():
            raise ValidationError("contentUri", "cannot be empty when provided")
        content_uri = content_uri.strip()
    return Manifest(
        content_hash=normalized_hash,
        creator_address=address,
        created_at=_format_timestamp(timestamp),
        content_uri=content_uri,
    )


def manifest_signing_bytes(manifest: Manifest) -> bytes:
    return manifest.signing_bytes()


def parse_manifest(document: Union[bytes, str, Dict[str, Any]]) -> Manifest:
    """
    Parse a manifest document received from storage or a file.

    Only declared fields are read; unknown fields are ignored and never take
    part in signature verification.

    Raises:
        ValidationError: If the document is not a well-formed manifest
    """
    if isinstance(document, (bytes, bytearray)):
        try:
            document = document.decode("utf-8")
        except UnicodeDecodeError:
            raise ValidationError("manifest", "must be UTF-8 JSON")
    if isinstance(document, str):
        try:
            document = json.loads(document)
        except json.JSONDecodeError as e:
            raise ValidationError("manifest", f"invalid JSON: {e.msg}")
    if not isinstance(document, dict):
        raise ValidationError("manifest", "must be an object")

    for field in ("version", "contentHash", "creatorAddress", "signature", "createdAt"):
        if field not in document:
            raise ValidationError(f"manifest.{field}", "is required")

    version = document["version"]
    if not isinstance(version, str) or not version:
        raise ValidationError("manifest.version", "must be a non-empty string")

    signature = document["signature"]
    if not isinstance(signature, str) or not signature:
        raise ValidationError("manifest.signature", "must be a non-empty string")

    created_at = document["createdAt"]
    if not isinstance(created_at, str) or not created_at:
        raise ValidationError("manifest.createdAt", "must be a non-empty string")

    content_uri = document.get("contentUri")
    if content_uri is not None and (not isinstance(content_uri, str) or not content_uri):
        raise ValidationError("manifest.contentUri", "must be a non-empty string when present")

    # Validate, but keep the declared spelling: it is what the signer signed.
    normalize_content_hash(document["contentHash"], "manifest.contentHash")
    normalize_address(document["creatorAddress"], "manifest.creatorAddress")

    return Manifest(
        version=version,
        content_hash=document["contentHash"],
        creator_address=document["creatorAddress"],
        created_at=created_at,
        content_uri=content_uri,
        signature=signature,
    )
