"""
ContentProof Registration Orchestrator

Drives one registration as a short sequential pipeline::

    hashing -> [content_upload] -> manifest_building -> signing
            -> manifest_upload -> chain_lookup -> [chain_register] -> done

Properties:
- Privacy mode (default) never hands content bytes to storage; only the
  signed manifest is uploaded.
- Content-upload mode uploads content first so ``contentUri`` is final
  before the manifest is signed.
- Registration is idempotent: the registry is resolved first and an existing
  entry is returned unchanged. Lookup-then-register runs under a per-hash
  lock so concurrent runs cannot double-submit.
- Every step's output is recorded in ``RegistrationState``; a failure at step
  N carries the state so a retry resumes at N.
- Cancellation is honored before each network step; a cancelled run has at
  most performed the read-only ``resolve``.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

from .errors import (
    ChainError,
    ConfigError,
    RegistrationCancelled,
    StorageUploadError,
)
from .hashing import hash_file
from .logging_config import audit_log
from .manifest import Manifest, build_manifest
from .registry import ChainRegistryClient, RegistryEntry
from .signing import ManifestSigner
from .storage import StorageProvider
from .util import now_epoch

logger = logging.getLogger(__name__)


class RegistrationStage(str, Enum):
    """Next step a registration has to perform."""
    HASHING = "hashing"
    CONTENT_UPLOAD = "content_upload"
    MANIFEST_BUILDING = "manifest_building"
    SIGNING = "signing"
    MANIFEST_UPLOAD = "manifest_upload"
    CHAIN_LOOKUP = "chain_lookup"
    CHAIN_REGISTER = "chain_register"
    DONE = "done"


@dataclass
class RegistrationState:
    """
    Outputs of every completed step.

    The current stage is derived from which outputs are present, so a state
    restored from the journal or from an error resumes at the right step.
    """
    file_name: Optional[str] = None
    upload_content: bool = False
    content_hash: Optional[str] = None
    content_uri: Optional[str] = None
    manifest: Optional[Manifest] = None
    manifest_uri: Optional[str] = None
    registry_entry: Optional[RegistryEntry] = None
    skipped_existing: bool = False

    @property
    def stage(self) -> RegistrationStage:
        if self.content_hash is None:
            return RegistrationStage.HASHING
        if self.upload_content and self.content_uri is None:
            return RegistrationStage.CONTENT_UPLOAD
        if self.manifest is None:
            return RegistrationStage.MANIFEST_BUILDING
        if not self.manifest.is_signed:
            return RegistrationStage.SIGNING
        if self.manifest_uri is None:
            return RegistrationStage.MANIFEST_UPLOAD
        if self.registry_entry is None:
            return RegistrationStage.CHAIN_LOOKUP
        return RegistrationStage.DONE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage.value,
            "fileName": self.file_name,
            "uploadContent": self.upload_content,
            "contentHash": self.content_hash,
            "contentUri": self.content_uri,
            "manifest": self.manifest.to_dict() if self.manifest else None,
            "manifestUri": self.manifest_uri,
            "registryEntry": self.registry_entry.to_dict() if self.registry_entry else None,
            "skippedExisting": self.skipped_existing,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RegistrationState':
        manifest = None
        if data.get("manifest"):
            m = data["manifest"]
            manifest = Manifest(
                version=m["version"],
                content_hash=m["contentHash"],
                creator_address=m["creatorAddress"],
                created_at=m["createdAt"],
                content_uri=m.get("contentUri"),
                signature=m.get("signature"),
            )
        entry = data.get("registryEntry")
        return cls(
            file_name=data.get("fileName"),
            upload_content=bool(data.get("uploadContent")),
            content_hash=data.get("contentHash"),
            content_uri=data.get("contentUri"),
            manifest=manifest,
            manifest_uri=data.get("manifestUri"),
            registry_entry=RegistryEntry.from_dict(entry) if entry else None,
            skipped_existing=bool(data.get("skippedExisting")),
        )


@dataclass
class RegistrationResult:
    """
    Completed registration (new or pre-existing).

    For a pre-existing entry ``manifest_uri`` is the anchored locator and
    ``manifest`` is None; fetch the anchored document to inspect it.
    """
    content_hash: str
    manifest: Optional[Manifest]
    manifest_uri: str
    registry_entry: RegistryEntry
    skipped_existing: bool
    content_uri: Optional[str] = None

    @property
    def tx_hash(self) -> Optional[str]:
        return self.registry_entry.tx_hash

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contentHash": self.content_hash,
            "contentUri": self.content_uri,
            "manifest": self.manifest.to_dict() if self.manifest else None,
            "manifestUri": self.manifest_uri,
            "registryEntry": self.registry_entry.to_dict(),
            "txHash": self.tx_hash,
            "skippedExisting": self.skipped_existing,
        }


class KeyedLock:
    """Process-local mutual exclusion per key; idle keys are released."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, list] = {}

    @contextmanager
    def hold(self, key: str):
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


_registration_locks = KeyedLock()


class RegistrationOrchestrator:
    """
    Runs registrations against injected signer, storage and registry.

    Args:
        signer: Creator-key signer
        storage: Content-addressed storage capability
        registry: Chain registry capability
        journal: Optional checkpoint store (``RegistrationJournal``)
        clock: Epoch-seconds source for ``createdAt``
        locks: Per-hash lock table (shared process-wide by default)
    """

    def __init__(
        self,
        signer: ManifestSigner,
        storage: StorageProvider,
        registry: ChainRegistryClient,
        journal=None,
        clock: Callable[[], int] = now_epoch,
        locks: Optional[KeyedLock] = None,
    ):
        self.signer = signer
        self.storage = storage
        self.registry = registry
        self.journal = journal
        self.clock = clock
        self.locks = locks or _registration_locks

    def register(
        self,
        path: Union[str, Path],
        upload_content: bool = False,
        cancel: Optional[threading.Event] = None,
    ) -> RegistrationResult:
        """
        Register a local file.

        If the journal holds an unfinished run for the same content and mode,
        it is resumed instead of starting over.
        """
        path = Path(path)
        state = RegistrationState(file_name=path.name, upload_content=upload_content)
        self._hash(state, path)
        if self.journal is not None:
            prior = self.journal.load(state.content_hash, upload_content)
            if prior is not None:
                logger.info("Resuming registration of %s at %s", prior.content_hash, prior.stage.value)
                state = prior
        return self.resume(state, path, cancel)

    def resume(
        self,
        state: RegistrationState,
        path: Optional[Union[str, Path]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> RegistrationResult:
        """
        Continue a registration from the first step whose output is missing.

        ``path`` is only needed while hashing or content upload is pending.
        """
        sender = self.registry.sender_address
        if sender is None:
            raise ConfigError(["privateKey"], "A private key is required to send registry transactions")
        if sender.lower() != self.signer.address.lower():
            raise ConfigError(
                ["privateKey"],
                f"Registry sender {sender} differs from manifest signer {self.signer.address}",
            )

        while True:
            stage = state.stage
            if stage == RegistrationStage.HASHING:
                self._require_path(path, stage)
                self._hash(state, Path(path))
            elif stage == RegistrationStage.CONTENT_UPLOAD:
                self._require_path(path, stage)
                self._check_cancelled(cancel, stage, state)
                self._upload_content(state, Path(path))
            elif stage == RegistrationStage.MANIFEST_BUILDING:
                state.manifest = build_manifest(
                    state.content_hash,
                    state.content_uri if state.upload_content else None,
                    self.signer.address,
                    self.clock(),
                )
            elif stage == RegistrationStage.SIGNING:
                state.manifest = self.signer.sign_manifest(state.manifest)
            elif stage == RegistrationStage.MANIFEST_UPLOAD:
                self._check_cancelled(cancel, stage, state)
                self._upload_manifest(state)
            elif stage == RegistrationStage.CHAIN_LOOKUP:
                self._check_cancelled(cancel, stage, state)
                self._anchor(state, cancel)
            else:
                break
            audit_log.registration_step(state.content_hash, stage.value)
            self._checkpoint(state)

        if self.journal is not None:
            self.journal.delete(state.content_hash, state.upload_content)
        audit_log.registration_complete(state.content_hash, state.manifest_uri, state.registry_entry.tx_hash)
        # The manifest built by this run is only reported when it is the anchored one
        return RegistrationResult(
            content_hash=state.content_hash,
            manifest=None if state.skipped_existing else state.manifest,
            manifest_uri=state.manifest_uri,
            registry_entry=state.registry_entry,
            skipped_existing=state.skipped_existing,
            content_uri=state.content_uri,
        )

    def _hash(self, state: RegistrationState, path: Path) -> None:
        state.content_hash = hash_file(path)

    def _upload_content(self, state: RegistrationState, path: Path) -> None:
        try:
            with open(path, "rb") as f:
                state.content_uri = self.storage.upload(f, path.name)
        except StorageUploadError as e:
            e.state = state
            raise

    def _upload_manifest(self, state: RegistrationState) -> None:
        try:
            state.manifest_uri = self.storage.upload(state.manifest.to_json(), "manifest.json")
        except StorageUploadError as e:
            e.state = state
            raise

    def _anchor(self, state: RegistrationState, cancel: Optional[threading.Event]) -> None:
        """Resolve, then register only if absent, under the per-hash lock."""
        with self.locks.hold(state.content_hash):
            try:
                existing = self.registry.resolve(state.content_hash)
                if existing is not None:
                    if existing.manifest_uri != state.manifest_uri:
                        logger.info("Manifest %s not anchored; registry holds %s",
                                    state.manifest_uri, existing.manifest_uri)
                    state.manifest_uri = existing.manifest_uri
                    state.registry_entry = existing
                    state.skipped_existing = True
                    audit_log.registration_skipped_existing(
                        state.content_hash, existing.chain_id, existing.tx_hash
                    )
                    return

                self._check_cancelled(cancel, RegistrationStage.CHAIN_REGISTER, state)
                receipt = self.registry.register(state.content_hash, state.manifest_uri)
            except ChainError as e:
                e.state = state
                raise

        state.registry_entry = RegistryEntry(
            content_hash=state.content_hash,
            manifest_uri=state.manifest_uri,
            creator_address=receipt.creator_address,
            chain_id=receipt.chain_id,
            registered_at=receipt.registered_at,
            tx_hash=receipt.tx_hash,
        )
        audit_log.registration_step(state.content_hash, RegistrationStage.CHAIN_REGISTER.value,
                                    tx_hash=receipt.tx_hash)

    def _check_cancelled(
        self,
        cancel: Optional[threading.Event],
        stage: RegistrationStage,
        state: RegistrationState,
    ) -> None:
        if cancel is not None and cancel.is_set():
            self._checkpoint(state)
            raise RegistrationCancelled(stage.value, state)

    def _checkpoint(self, state: RegistrationState) -> None:
        if self.journal is not None and state.content_hash is not None \
                and state.stage != RegistrationStage.DONE:
            self.journal.save(state)

    @staticmethod
    def _require_path(path, stage: RegistrationStage) -> None:
        if path is None:
            raise ValueError(f"A content path is required to resume at {stage.value}")
