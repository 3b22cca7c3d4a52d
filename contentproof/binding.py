"""
ContentProof Platform Binding Authorization

A platform binding associates a third-party platform identifier (a video id,
a repository, a profile) with a registered content hash. Creating one
requires that the caller has previously linked the identity provider that
owns the platform. Identity verification itself happens elsewhere; the
authorizer consumes a yes/no lookup.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from .errors import AuthorizationError, ValidationError
from .logging_config import audit_log


# Bindable platform -> identity provider whose link proves control
PLATFORM_PROVIDERS: Dict[str, str] = {
    "youtube": "google",
    "google": "google",
    "x": "twitter",
    "twitter": "twitter",
    "github": "github",
}

LinkedProviderLookup = Callable[[str, str], bool]


@dataclass(frozen=True)
class BindingRequest:
    platform: str
    platform_id: str
    content_hash: Optional[str] = None

    @classmethod
    def from_value(cls, value: Union['BindingRequest', Mapping[str, Any]]) -> 'BindingRequest':
        if isinstance(value, BindingRequest):
            return value
        return cls(
            platform=value.get("platform", ""),
            platform_id=value.get("platformId", value.get("platform_id", "")),
            content_hash=value.get("contentHash", value.get("content_hash")),
        )


@dataclass(frozen=True)
class AuthorizationDecision:
    allowed: bool
    missing_provider: Optional[str] = None
    platform: Optional[str] = None

    @classmethod
    def allow(cls) -> 'AuthorizationDecision':
        return cls(allowed=True)

    @classmethod
    def deny(cls, missing_provider: str, platform: Optional[str] = None) -> 'AuthorizationDecision':
        return cls(allowed=False, missing_provider=missing_provider, platform=platform)

    def to_error(self) -> AuthorizationError:
        return AuthorizationError(self.missing_provider, self.platform)


class BindingAuthorizer:
    """
    Gate platform bindings on previously linked identity providers.

    Args:
        has_linked_provider: ``(caller_identity, provider) -> bool``
        platform_providers: Override of the platform -> provider mapping
    """

    def __init__(
        self,
        has_linked_provider: LinkedProviderLookup,
        platform_providers: Optional[Mapping[str, str]] = None,
    ):
        self._has_linked_provider = has_linked_provider
        self._providers = dict(PLATFORM_PROVIDERS if platform_providers is None else platform_providers)

    def required_provider(self, platform: str) -> Optional[str]:
        """Provider that must be linked for ``platform``; None if no proof is required."""
        return self._providers.get(platform.strip().lower())

    def authorize(self, caller: str, platform: str, platform_id: str) -> AuthorizationDecision:
        return self.authorize_many(caller, [BindingRequest(platform, platform_id)])

    def authorize_many(
        self,
        caller: str,
        bindings: Iterable[Union[BindingRequest, Mapping[str, Any]]],
    ) -> AuthorizationDecision:
        """
        Authorize a batch of bindings all-or-nothing.

        The full set of required providers is computed before any lookup, so
        one denial denies the whole batch.

        Raises:
            ValidationError: If a binding lacks a platform or platform id
        """
        batch = [BindingRequest.from_value(b) for b in bindings]
        if not caller:
            raise ValidationError("caller", "cannot be empty")
        for req in batch:
            if not isinstance(req.platform, str) or not req.platform.strip():
                raise ValidationError("platform", "cannot be empty")
            if not isinstance(req.platform_id, str) or not req.platform_id.strip():
                raise ValidationError("platformId", "cannot be empty")

        # provider -> first platform that needs it
        required: Dict[str, str] = {}
        for req in batch:
            provider = self.required_provider(req.platform)
            if provider and provider not in required:
                required[provider] = req.platform

        platforms: List[str] = [req.platform for req in batch]
        for provider, platform in required.items():
            if not self._has_linked_provider(caller, provider):
                audit_log.binding_decision(caller, platforms, False, provider)
                return AuthorizationDecision.deny(provider, platform)

        audit_log.binding_decision(caller, platforms, True)
        return AuthorizationDecision.allow()

    def require(
        self,
        caller: str,
        bindings: Iterable[Union[BindingRequest, Mapping[str, Any]]],
    ) -> None:
        """
        Raises:
            AuthorizationError: Naming the first missing provider
        """
        decision = self.authorize_many(caller, bindings)
        if not decision.allowed:
            raise decision.to_error()
