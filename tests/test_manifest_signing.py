"""
Manifest construction, parsing and signatures.
"""

import json
import unittest
from dataclasses import replace
from datetime import datetime, timezone
from unittest.mock import MagicMock

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import Prehashed
from eth_account import Account

from contentproof.errors import ConfigError, SignatureError, ValidationError
from contentproof.hashing import hash_bytes
from contentproof.manifest import build_manifest, parse_manifest
from contentproof.signing import (
    AwsKmsSigner,
    LocalKeySigner,
    address_of,
    check_manifest_signature,
    eip191_digest,
    get_signer,
    recover_address,
    sign_bytes,
)

from conftest import CREATOR_KEY, FIXED_EPOCH, OTHER_KEY

CONTENT_HASH = hash_bytes(b"sample")


class TestManifestBuilder(unittest.TestCase):

    def setUp(self):
        self.address = address_of(CREATOR_KEY)

    def test_privacy_mode_omits_content_uri(self):
        m = build_manifest(CONTENT_HASH, None, self.address, FIXED_EPOCH)
        self.assertNotIn("contentUri", m.to_dict())
        self.assertNotIn(b"contentUri", m.signing_bytes())

    def test_content_mode_includes_uri(self):
        m = build_manifest(CONTENT_HASH, "ipfs://bafycontent", self.address, FIXED_EPOCH)
        self.assertEqual(m.to_dict()["contentUri"], "ipfs://bafycontent")

    def test_fields_normalized(self):
        m = build_manifest(CONTENT_HASH.upper().replace("0X", "0x"), None, self.address.lower(), FIXED_EPOCH)
        self.assertEqual(m.content_hash, CONTENT_HASH)
        self.assertEqual(m.creator_address, self.address)
        self.assertEqual(m.created_at, "2026-01-01T00:00:00Z")
        self.assertEqual(m.version, "1.0")

    def test_timestamp_forms(self):
        dt = datetime(2026, 1, 1, tzinfo=timezone.utc)
        for ts in (FIXED_EPOCH, dt, "2026-01-01T00:00:00Z"):
            m = build_manifest(CONTENT_HASH, None, self.address, ts)
            self.assertEqual(m.created_at, "2026-01-01T00:00:00Z")

    def test_rejects_empty_hash(self):
        with self.assertRaises(ValidationError):
            build_manifest("", None, self.address, FIXED_EPOCH)

    def test_rejects_malformed_address(self):
        for bad in ("", "0x1234", "not-an-address"):
            with self.assertRaises(ValidationError) as ctx:
                build_manifest(CONTENT_HASH, None, bad, FIXED_EPOCH)
            self.assertEqual(ctx.exception.field, "creatorAddress")

    def test_rejects_empty_uri(self):
        with self.assertRaises(ValidationError):
            build_manifest(CONTENT_HASH, "  ", self.address, FIXED_EPOCH)

    def test_canonical_bytes_are_byte_exact(self):
        m = build_manifest(CONTENT_HASH, None, self.address, FIXED_EPOCH)
        expected = (
            '{"contentHash":"%s","createdAt":"2026-01-01T00:00:00Z",'
            '"creatorAddress":"%s","version":"1.0"}' % (CONTENT_HASH, self.address)
        ).encode("utf-8")
        self.assertEqual(m.signing_bytes(), expected)


class TestManifestParsing(unittest.TestCase):

    def setUp(self):
        self.signer = LocalKeySigner(CREATOR_KEY)
        self.manifest = self.signer.sign_manifest(
            build_manifest(CONTENT_HASH, None, self.signer.address, FIXED_EPOCH)
        )

    def test_roundtrip_document(self):
        parsed = parse_manifest(self.manifest.to_json())
        self.assertEqual(parsed, self.manifest)

    def test_reordered_and_extra_fields_do_not_change_signed_bytes(self):
        doc = self.manifest.to_dict()
        shuffled = dict(reversed(list(doc.items())))
        shuffled["comment"] = "injected"
        parsed = parse_manifest(json.dumps(shuffled, indent=4))
        self.assertEqual(parsed.signing_bytes(), self.manifest.signing_bytes())
        self.assertTrue(check_manifest_signature(parsed).valid)

    def test_missing_field(self):
        doc = self.manifest.to_dict()
        del doc["signature"]
        with self.assertRaises(ValidationError):
            parse_manifest(doc)

    def test_invalid_json(self):
        with self.assertRaises(ValidationError):
            parse_manifest(b"{not json")

    def test_not_an_object(self):
        with self.assertRaises(ValidationError):
            parse_manifest("[1, 2]")


class TestSignatures(unittest.TestCase):

    def setUp(self):
        self.signer = LocalKeySigner(CREATOR_KEY)
        self.manifest = self.signer.sign_manifest(
            build_manifest(CONTENT_HASH, "ipfs://bafycontent", self.signer.address, FIXED_EPOCH)
        )

    def test_recover_matches_key_address(self):
        data = b"canonical manifest bytes"
        sig = sign_bytes(data, CREATOR_KEY)
        self.assertEqual(len(sig), 2 + 130)
        self.assertEqual(recover_address(data, sig), address_of(CREATOR_KEY))

    def test_signed_manifest_checks(self):
        check = check_manifest_signature(self.manifest)
        self.assertTrue(check.valid)
        self.assertEqual(check.recovered_address, self.signer.address)

    def test_flipping_any_field_invalidates(self):
        other = address_of(OTHER_KEY)
        tampered = [
            replace(self.manifest, content_hash=hash_bytes(b"other")),
            replace(self.manifest, content_uri="ipfs://bafyother"),
            replace(self.manifest, content_uri=None),
            replace(self.manifest, created_at="2026-01-01T00:00:01Z"),
            replace(self.manifest, version="1.1"),
            replace(self.manifest, creator_address=other),
        ]
        for m in tampered:
            check = check_manifest_signature(m)
            self.assertFalse(check.valid, m)

    def test_wrong_signer_is_negative_result_not_error(self):
        forged = self.manifest.with_signature(sign_bytes(self.manifest.signing_bytes(), OTHER_KEY))
        check = check_manifest_signature(forged)
        self.assertFalse(check.valid)
        self.assertEqual(check.recovered_address, address_of(OTHER_KEY))

    def test_structurally_invalid_signatures(self):
        good = self.manifest.signature
        bad_v = good[:-2] + "05"
        for bad in ("", "0x1234", "0x" + "zz" * 65, good + "00", bad_v):
            with self.assertRaises(SignatureError):
                check_manifest_signature(self.manifest.with_signature(bad))

    def test_cannot_sign_for_another_creator(self):
        other = LocalKeySigner(OTHER_KEY)
        with self.assertRaises(SignatureError):
            other.sign_manifest(build_manifest(CONTENT_HASH, None, self.signer.address, FIXED_EPOCH))

    def test_get_signer_requires_credentials(self):
        with self.assertRaises(ConfigError) as ctx:
            get_signer("local", private_key=None)
        self.assertEqual(ctx.exception.missing, ["privateKey"])
        with self.assertRaises(ConfigError) as ctx:
            get_signer("aws_kms")
        self.assertEqual(ctx.exception.missing, ["kmsKeyId"])

    def test_invalid_private_key(self):
        with self.assertRaises(ConfigError):
            LocalKeySigner("0x1234")


class TestAwsKmsSigner(unittest.TestCase):
    """KMS signer against a stub client backed by a local secp256k1 key."""

    def setUp(self):
        self.key = ec.generate_private_key(ec.SECP256K1())
        der_public = self.key.public_key().public_bytes(
            serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
        )
        self.client = MagicMock()
        self.client.get_public_key.return_value = {"PublicKey": der_public}
        self.client.sign.side_effect = lambda **kw: {
            "Signature": self.key.sign(kw["Message"], ec.ECDSA(Prehashed(hashes.SHA256())))
        }
        private_hex = "0x" + self.key.private_numbers().private_value.to_bytes(32, "big").hex()
        self.expected_address = Account.from_key(private_hex).address

    def test_address_from_public_key(self):
        signer = AwsKmsSigner("alias/creator", client=self.client)
        self.assertEqual(signer.address, self.expected_address)

    def test_signatures_recover_to_key_address(self):
        signer = AwsKmsSigner("alias/creator", client=self.client)
        for i in range(5):
            payload = f"manifest {i}".encode()
            sig = signer.sign(payload)
            self.assertEqual(recover_address(payload, sig), self.expected_address)

    def test_signs_eip191_digest(self):
        signer = AwsKmsSigner("alias/creator", client=self.client)
        signer.sign(b"payload")
        kwargs = self.client.sign.call_args.kwargs
        self.assertEqual(kwargs["Message"], eip191_digest(b"payload"))
        self.assertEqual(kwargs["MessageType"], "DIGEST")

    def test_rejects_non_secp256k1_key(self):
        p256 = ec.generate_private_key(ec.SECP256R1()).public_key().public_bytes(
            serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
        )
        self.client.get_public_key.return_value = {"PublicKey": p256}
        with self.assertRaises(ConfigError):
            AwsKmsSigner("alias/other", client=self.client).address


if __name__ == "__main__":
    unittest.main()
