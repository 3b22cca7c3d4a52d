"""
Shared fixtures and in-memory collaborators.

No test touches the network: storage and the chain registry are replaced
with in-memory implementations of the same capabilities.
"""

import hashlib
import threading
import time
from typing import Dict, List, Optional, Tuple

import pytest
import requests

from contentproof.errors import ChainError, StorageFetchError
from contentproof.orchestrator import KeyedLock, RegistrationOrchestrator
from contentproof.registry import ChainRegistryClient, RegistryEntry, TxReceipt
from contentproof.signing import LocalKeySigner
from contentproof.storage import StorageProvider

# Well-known throwaway development keys; never funded
CREATOR_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
OTHER_KEY = "0x8da4ef21b864d2cc526dbdb2a120bd2874c36c9d0a1fb7f8c63d7f7a8b41de8f"

FIXED_EPOCH = 1767225600  # 2026-01-01T00:00:00Z
SAMPLE_BYTES = b"sample content \x00\x01\x02 for provenance\n" * 64


class InMemoryStorageProvider(StorageProvider):
    """
    Content-addressed store in a dict.

    ``fail_uploads`` makes the next N uploads fail with a connection error.
    Every upload is recorded in ``uploads`` as (name, bytes).
    """

    name = "memory"

    def __init__(self, fail_uploads: int = 0):
        super().__init__()
        self.blobs: Dict[str, bytes] = {}
        self.uploads: List[Tuple[str, bytes]] = []
        self.fetches: List[str] = []
        self.fail_uploads = fail_uploads

    def _upload(self, data, filename: str) -> str:
        if self.fail_uploads > 0:
            self.fail_uploads -= 1
            raise requests.exceptions.ConnectionError("connection refused")
        raw = data.read() if hasattr(data, "read") else bytes(data)
        cid = "bafk" + hashlib.sha256(raw).hexdigest()[:52]
        self.blobs[cid] = raw
        self.uploads.append((filename, raw))
        return cid

    def fetch(self, uri: str) -> bytes:
        self.fetches.append(uri)
        cid = uri[len("ipfs://"):]
        if cid not in self.blobs:
            raise StorageFetchError(uri, "404 Not Found")
        return self.blobs[cid]


class InMemoryChainRegistry(ChainRegistryClient):
    """
    Registry contract semantics in memory.

    ``register`` reverts when the hash is already present, like the contract.
    ``register_delay`` widens the resolve/register window for race tests.
    """

    def __init__(
        self,
        sender: Optional[str] = None,
        chain_id: int = 31337,
        register_delay: float = 0.0,
        fail_register: Optional[str] = None,
    ):
        self.sender = sender
        self._chain_id = chain_id
        self.register_delay = register_delay
        self.fail_register = fail_register
        self.entries: Dict[str, RegistryEntry] = {}
        self.register_calls = 0
        self.resolve_calls = 0
        self._lock = threading.Lock()

    @property
    def chain_id(self) -> int:
        return self._chain_id

    @property
    def sender_address(self) -> Optional[str]:
        return self.sender

    def register(self, content_hash: str, manifest_uri: str) -> TxReceipt:
        with self._lock:
            self.register_calls += 1
        if self.fail_register:
            raise ChainError(self.fail_register, f"registration failed: {self.fail_register}")
        time.sleep(self.register_delay)
        with self._lock:
            if content_hash in self.entries:
                raise ChainError(ChainError.REVERTED, "registration reverted: already registered")
            tx_hash = "0x" + hashlib.sha256(f"{content_hash}:{manifest_uri}".encode()).hexdigest()
            self.entries[content_hash] = RegistryEntry(
                content_hash=content_hash,
                manifest_uri=manifest_uri,
                creator_address=self.sender,
                chain_id=self._chain_id,
                registered_at=FIXED_EPOCH,
                tx_hash=tx_hash,
            )
        return TxReceipt(
            tx_hash=tx_hash,
            block_number=len(self.entries),
            chain_id=self._chain_id,
            creator_address=self.sender,
            registered_at=FIXED_EPOCH,
        )

    def resolve(self, content_hash: str) -> Optional[RegistryEntry]:
        with self._lock:
            self.resolve_calls += 1
            return self.entries.get(content_hash)

    def seed(self, content_hash: str, manifest_uri: str, creator: str) -> RegistryEntry:
        """Insert an entry as if someone else had registered it."""
        entry = RegistryEntry(
            content_hash=content_hash,
            manifest_uri=manifest_uri,
            creator_address=creator,
            chain_id=self._chain_id,
            registered_at=FIXED_EPOCH,
            tx_hash="0x" + "ab" * 32,
        )
        self.entries[content_hash] = entry
        return entry


@pytest.fixture
def signer():
    return LocalKeySigner(CREATOR_KEY)


@pytest.fixture
def other_signer():
    return LocalKeySigner(OTHER_KEY)


@pytest.fixture
def storage():
    return InMemoryStorageProvider()


@pytest.fixture
def registry(signer):
    return InMemoryChainRegistry(sender=signer.address)


@pytest.fixture
def orchestrator(signer, storage, registry):
    return RegistrationOrchestrator(
        signer, storage, registry, clock=lambda: FIXED_EPOCH, locks=KeyedLock()
    )


@pytest.fixture
def sample_file(tmp_path):
    path = tmp_path / "sample.bin"
    path.write_bytes(SAMPLE_BYTES)
    return path
