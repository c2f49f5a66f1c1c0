"""
auth/adapter.py -- Contract every identity-provider adapter must satisfy.

TokenHandler depends only on this interface. Each provider (a JOSE/OIDC
issuer, a hosted auth service, a test double) implements the six operations
independently; nothing provider-specific leaks past the adapter.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, Generic

from auth.models import ClaimsT, CustomClaimsConfig, NormalizedToken, TokenVerificationError


class TokenAdapter(ABC, Generic[ClaimsT]):
    """Per-provider translation layer: verify, identify, normalize, sync, revoke, map."""

    #: Short provider tag used in logs and as the default NormalizedToken.issuer.
    provider_name: str = "custom"

    @abstractmethod
    def verify_token(self, raw_token: str) -> Mapping[str, Any]:
        """Cryptographically verify raw_token and return the decoded claims.

        Raises a provider-specific exception on any failure. The handler passes
        that exception to map_provider_error(); it is never shown to callers.
        """

    @abstractmethod
    def get_token_identifier(self, raw_token: str) -> str:
        """Return a deterministic blacklist key for raw_token.

        Must not depend on the token verifying -- an expired or otherwise
        rejected token still has to produce the same key.
        """

    @abstractmethod
    def normalize_token(
        self,
        decoded: Mapping[str, Any],
        claims_config: CustomClaimsConfig[ClaimsT],
    ) -> NormalizedToken[ClaimsT]:
        """Convert decoded provider claims to a NormalizedToken. Never raises on bad app claims."""

    @abstractmethod
    def sync_custom_claims(self, auth_identifier: str, claims: ClaimsT) -> None:
        """Push application claims to the provider so future tokens carry them."""

    @abstractmethod
    def revoke_user_tokens(self, auth_identifier: str) -> bool:
        """Revoke the user's sessions at the provider. False when unsupported or failed."""

    @abstractmethod
    def map_provider_error(self, error: BaseException) -> TokenVerificationError:
        """Map any exception raised by verify_token() into the closed taxonomy."""


# ---------------------------------------------------------------------------
# Provider errors
#
# Adapters may raise these (or any library exception) from verify_token();
# map_provider_error() owns the translation into TokenVerificationError.
# ---------------------------------------------------------------------------


class ProviderError(Exception):
    """Base class for adapter-raised provider failures."""


class ProviderKeyError(ProviderError):
    """No verification key is available for the token (unknown kid, no key source)."""


class ProviderRevokedError(ProviderError):
    """The provider itself reports the token as revoked."""


class ProviderAdminError(ProviderError):
    """A call to the provider's admin API failed."""


class ClaimsSyncError(ProviderAdminError):
    """Custom claims could not be written to the provider."""


def extract_auth_identifier(decoded: Mapping[str, Any]) -> str:
    """Return the token owner's provider identifier: uid, then sub, then user_id.

    Returns "" when none is present. Callers must treat "" as "no identity";
    it is never a valid key for revocation lookups.
    """
    for claim in ("uid", "sub", "user_id"):
        value = decoded.get(claim)
        if value:
            return str(value)
    return ""
