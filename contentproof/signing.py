"""
ContentProof Manifest Signing

Manifests are signed with the creator's secp256k1 key using EIP-191
``personal_sign`` over the canonical manifest bytes. The signer's address is
recovered from the signature itself, so a verifier needs no key registry.

Signing is local and offline. Two signer variants are provided:

- ``LocalKeySigner``: a hex private key held in configuration
- ``AwsKmsSigner``: an ``ECC_SECG_P256K1`` key held in AWS KMS
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Tuple

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_keys import KeyAPI
from eth_keys.exceptions import BadSignature, ValidationError as KeyValidationError
from eth_utils import keccak, to_checksum_address

from .errors import ConfigError, SignatureError
from .manifest import Manifest
from .util import is_hex, strip_0x

SIGNATURE_BYTES = 65
SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

_keys = KeyAPI()


def eip191_digest(data: bytes) -> bytes:
    """Keccak-256 of the ``personal_sign`` envelope around ``data``."""
    prefix = b"\x19Ethereum Signed Message:\n" + str(len(data)).encode("ascii")
    return keccak(prefix + data)


def address_of(private_key: str) -> str:
    """Return the checksummed address controlled by a hex private key."""
    try:
        return Account.from_key(private_key).address
    except (ValueError, TypeError, KeyValidationError) as e:
        raise ConfigError(["privateKey"], f"Invalid private key: {e}") from e


def sign_bytes(data: bytes, private_key: str) -> str:
    """
    Sign bytes with ``personal_sign``.

    Returns:
        ``0x``-prefixed 65-byte signature (r || s || v, v in {27, 28})
    """
    signed = Account.sign_message(encode_defunct(primitive=data), private_key=private_key)
    return "0x" + bytes(signed.signature).hex()


def _decode_signature(signature: str) -> bytes:
    if not isinstance(signature, str):
        raise SignatureError("Signature must be a hex string")
    raw = strip_0x(signature.strip())
    if not raw or not is_hex(raw) or len(raw) % 2:
        raise SignatureError("Signature is not valid hex")
    sig = bytes.fromhex(raw)
    if len(sig) != SIGNATURE_BYTES:
        raise SignatureError(f"Signature must be {SIGNATURE_BYTES} bytes, got {len(sig)}")
    if sig[-1] not in (0, 1, 27, 28):
        raise SignatureError(f"Signature recovery id {sig[-1]} is out of range")
    return sig


def recover_address(data: bytes, signature: str) -> str:
    """
    Recover the checksummed address that produced ``signature`` over ``data``.

    Raises:
        SignatureError: If the signature is structurally invalid
    """
    sig = _decode_signature(signature)
    try:
        return Account.recover_message(encode_defunct(primitive=data), signature=sig)
    except (BadSignature, KeyValidationError, ValueError, TypeError) as e:
        raise SignatureError(f"Signature cannot be recovered: {e}") from e


@dataclass
class SignatureCheck:
    """
    Outcome of checking a manifest signature.

    ``valid`` is False when the signature is well-formed but recovers to an
    address other than the declared creator; ``recovered_address`` then holds
    the actual signer.
    """
    valid: bool
    recovered_address: Optional[str]
    reason: Optional[str] = None


def check_manifest_signature(manifest: Manifest) -> SignatureCheck:
    """
    Verify that a manifest's signature recovers to its declared creator.

    The signed bytes are recomputed from the manifest's declared fields, not
    taken from the document as received.

    Raises:
        SignatureError: If the signature is missing or structurally invalid
    """
    if not manifest.signature:
        raise SignatureError("Manifest is not signed")
    recovered = recover_address(manifest.signing_bytes(), manifest.signature)
    if recovered.lower() != manifest.creator_address.lower():
        return SignatureCheck(
            valid=False,
            recovered_address=recovered,
            reason=f"Signature recovers to {recovered}, manifest declares {manifest.creator_address}",
        )
    return SignatureCheck(valid=True, recovered_address=recovered)


class ManifestSigner(ABC):
    """Abstract interface for creator-key signing."""

    @abstractmethod
    def sign(self, payload: bytes) -> str:
        """
        Sign canonical manifest bytes.

        Returns:
            ``0x``-prefixed 65-byte recoverable signature
        """

    @property
    @abstractmethod
    def address(self) -> str:
        """Checksummed creator address."""

    def sign_manifest(self, manifest: Manifest) -> Manifest:
        """Return a copy of ``manifest`` carrying this signer's signature."""
        if manifest.creator_address.lower() != self.address.lower():
            raise SignatureError(
                f"Signer {self.address} cannot sign for creator {manifest.creator_address}"
            )
        return manifest.with_signature(self.sign(manifest.signing_bytes()))


class LocalKeySigner(ManifestSigner):
    """Signer backed by a hex private key."""

    def __init__(self, private_key: str):
        self._address = address_of(private_key)
        self._private_key = private_key

    @property
    def address(self) -> str:
        return self._address

    def sign(self, payload: bytes) -> str:
        return sign_bytes(payload, self._private_key)

    @property
    def private_key(self) -> str:
        return self._private_key


class AwsKmsSigner(ManifestSigner):
    """
    AWS KMS signer using an ``ECC_SECG_P256K1`` key.

    KMS returns a DER-encoded ECDSA signature without a recovery id. The
    signature is normalized to low-s and the recovery id is found by trial
    recovery against the key's address.

    Docs: https://docs.aws.amazon.com/kms/latest/APIReference/API_Sign.html
    """

    def __init__(self, kms_key_id: str, region: Optional[str] = None, client=None):
        self._kms_key_id = kms_key_id
        self._region = region
        self._client = client
        self._address: Optional[str] = None
        self._lock = threading.RLock()

    def _get_client(self):
        """Lazy-load boto3 client."""
        if self._client is None:
            import boto3
            self._client = boto3.client("kms", region_name=self._region)
        return self._client

    @property
    def address(self) -> str:
        with self._lock:
            if self._address is None:
                resp = self._get_client().get_public_key(KeyId=self._kms_key_id)
                public_key = serialization.load_der_public_key(resp["PublicKey"])
                if not isinstance(public_key, ec.EllipticCurvePublicKey) or \
                        not isinstance(public_key.curve, ec.SECP256K1):
                    raise ConfigError(["kmsKeyId"], "KMS key is not an ECC_SECG_P256K1 key")
                numbers = public_key.public_numbers()
                raw = numbers.x.to_bytes(32, "big") + numbers.y.to_bytes(32, "big")
                self._address = to_checksum_address(keccak(raw)[-20:])
            return self._address

    def sign(self, payload: bytes) -> str:
        digest = eip191_digest(payload)
        resp = self._get_client().sign(
            KeyId=self._kms_key_id,
            Message=digest,
            MessageType="DIGEST",
            SigningAlgorithm="ECDSA_SHA_256",
        )
        r, s = decode_dss_signature(resp["Signature"])
        if s > SECP256K1_N // 2:
            s = SECP256K1_N - s
        v = self._recovery_id(digest, r, s)
        sig = r.to_bytes(32, "big") + s.to_bytes(32, "big") + bytes([v + 27])
        return "0x" + sig.hex()

    def _recovery_id(self, digest: bytes, r: int, s: int) -> int:
        for v in (0, 1):
            candidate = _keys.Signature(vrs=(v, r, s))
            try:
                recovered = candidate.recover_public_key_from_msg_hash(digest).to_checksum_address()
            except BadSignature:
                continue
            if recovered == self.address:
                return v
        raise SignatureError("KMS signature does not recover to the key address")


def generate_key() -> Tuple[str, str]:
    """
    Generate a fresh secp256k1 key.

    Returns:
        Tuple of (private_key_hex, address)
    """
    acct = Account.create()
    return "0x" + bytes(acct.key).hex(), acct.address


def get_signer(
    signer_type: str = "local",
    private_key: Optional[str] = None,
    kms_key_id: Optional[str] = None,
    kms_region: Optional[str] = None,
) -> ManifestSigner:
    """
    Factory function to create the configured signer.

    Args:
        signer_type: "local" or "aws_kms"
        private_key: Hex private key (local signer)
        kms_key_id: AWS KMS key id (KMS signer)
        kms_region: AWS region (KMS signer)
    """
    if signer_type == "aws_kms":
        if not kms_key_id:
            raise ConfigError(["kmsKeyId"])
        return AwsKmsSigner(kms_key_id=kms_key_id, region=kms_region)
    if not private_key:
        raise ConfigError(["privateKey"])
    return LocalKeySigner(private_key)
