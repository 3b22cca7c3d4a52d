"""
ContentProof Error Taxonomy

Every failure the engine can raise carries a stable ``kind`` string so that
callers (the CLI, the binding proxy, batch verifiers) can render it without
parsing messages.

Negative verification outcomes are NOT errors; see ``verifier.VerdictStatus``.
"""

from typing import Any, Dict, List, Optional


class ProvenanceError(Exception):
    """Base exception for all ContentProof errors."""

    kind = "provenance"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a structured error payload."""
        payload = {"kind": self.kind, "message": self.message}
        payload.update(self.details)
        return payload


class ValidationError(ProvenanceError):
    """Raised when an input is malformed (address, hash, manifest document)."""

    kind = "validation"

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}", {"field": field})
        self.field = field


class ConfigError(ProvenanceError):
    """Raised when a required credential or setting is missing."""

    kind = "config"

    def __init__(self, missing: List[str], message: Optional[str] = None):
        missing = list(missing)
        super().__init__(
            message or f"Missing required configuration: {', '.join(missing)}",
            {"missing": missing},
        )
        self.missing = missing


class _StatefulError(ProvenanceError):
    """
    Error carrying the registration state reached before the failure.

    The state is attached by the orchestrator so that a retry can resume
    from the failed step.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, state: Any = None):
        super().__init__(message, details)
        self.state = state

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        if self.state is not None:
            payload["state"] = self.state.to_dict()
        return payload


class StorageUploadError(_StatefulError):
    """Upload to a storage provider failed after all retries."""

    kind = "storage_upload"

    def __init__(self, provider: str, cause: str, state: Any = None):
        super().__init__(
            f"Upload via {provider} failed: {cause}",
            {"provider": provider, "cause": cause},
            state,
        )
        self.provider = provider
        self.cause = cause


class StorageFetchError(ProvenanceError):
    """Fetching bytes by URI failed. Distinct from an absent registry entry."""

    kind = "storage_fetch"

    def __init__(self, uri: str, cause: str):
        super().__init__(f"Fetch of {uri} failed: {cause}", {"uri": uri, "cause": cause})
        self.uri = uri
        self.cause = cause


class SignatureError(ProvenanceError):
    """Signature is structurally invalid (wrong length, encoding or range)."""

    kind = "signature"

    def __init__(self, message: str):
        super().__init__(message)


class ChainError(_StatefulError):
    """RPC unreachable, reverted transaction, insufficient funds or timeout."""

    kind = "chain"

    RPC_UNREACHABLE = "rpc_unreachable"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    REVERTED = "reverted"
    TIMEOUT = "timeout"
    RPC_ERROR = "rpc_error"

    def __init__(self, reason: str, message: str, state: Any = None):
        super().__init__(message, {"reason": reason}, state)
        self.reason = reason


class AuthorizationError(ProvenanceError):
    """A platform binding was denied because an identity provider is not linked."""

    kind = "authorization"

    def __init__(self, missing_provider: str, platform: Optional[str] = None):
        target = f" before binding {platform}" if platform else " before binding"
        super().__init__(
            f"Link your {missing_provider} account{target}.",
            {"missingProvider": missing_provider},
        )
        self.missing_provider = missing_provider
        self.platform = platform


class RegistrationCancelled(_StatefulError):
    """Registration was cancelled at a network step; nothing was submitted on-chain."""

    kind = "cancelled"

    def __init__(self, stage: str, state: Any = None):
        super().__init__(f"Registration cancelled before {stage}", {"stage": stage}, state)
        self.stage = stage
