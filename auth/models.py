"""
auth/models.py -- Domain dataclasses for token verification and revocation.

Pattern: Data class (pure data container, near-zero logic). The adapter,
blacklist manager and store do the work; these types only carry shape.

NormalizedToken is what the rest of an application works with after a bearer
token has been verified, regardless of which identity provider issued it.
raw_claims is kept for diagnostics only -- business logic must read the typed
fields or custom_claims, never raw_claims.

Layer rule: no imports from api/. core/ is allowed only in from_settings().
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Generic, Optional, TypeVar

if TYPE_CHECKING:
    from core.config import Settings

ClaimsT = TypeVar("ClaimsT")


class TokenVerificationError(str, Enum):
    """Closed rejection taxonomy. Provider errors never leave the adapter unmapped."""

    EXPIRED = "EXPIRED"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    BLACKLISTED = "BLACKLISTED"
    MALFORMED = "MALFORMED"
    ISSUER_MISMATCH = "ISSUER_MISMATCH"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class NormalizedToken(Generic[ClaimsT]):
    """Provider-agnostic view of a verified identity assertion.

    auth_identifier is the provider's stable subject (never empty for a valid
    token). application_user_id is None for a first-time user who has not yet
    been linked to an application account.
    """

    auth_identifier: str
    issued_at: datetime
    expires_at: datetime
    issuer: str
    custom_claims: ClaimsT
    application_user_id: Optional[str] = None
    email: Optional[str] = None
    email_verified: bool = False
    phone_number: Optional[str] = None
    raw_claims: Mapping[str, Any] = field(default_factory=dict, repr=False)


@dataclass(frozen=True)
class VerificationResult(Generic[ClaimsT]):
    """Outcome of TokenHandler.verify_and_unpack().

    Exactly one of token / error is set. is_blacklisted is True only when the
    rejection came from an individual entry or a global revocation.
    """

    is_valid: bool
    is_blacklisted: bool = False
    token: Optional[NormalizedToken[ClaimsT]] = None
    error: Optional[TokenVerificationError] = None

    @classmethod
    def accepted(cls, token: NormalizedToken[ClaimsT]) -> VerificationResult[ClaimsT]:
        return cls(is_valid=True, token=token)

    @classmethod
    def rejected(cls, error: TokenVerificationError, blacklisted: bool = False) -> VerificationResult[ClaimsT]:
        return cls(is_valid=False, is_blacklisted=blacklisted, error=error)


@dataclass(frozen=True)
class BlacklistEntry:
    """One specific token marked invalid before its natural expiry.

    token_identifier is the adapter-derived key (e.g. SHA-256 of the raw
    token), never the token itself. blacklisted_by_user_id is None when the
    owner revoked their own token (plain logout). expires_at is when the token
    would have expired anyway; cleanup deletes the entry after that.
    """

    entry_id: str
    token_identifier: str
    owner_auth_identifier: str
    blacklisted_at: datetime
    reason: str
    expires_at: datetime
    blacklisted_by_user_id: Optional[str] = None


@dataclass(frozen=True)
class GlobalRevocation:
    """Per-user cut-off: every token issued strictly before revoked_at is invalid.

    Only one revocation is active per user; a later one replaces the earlier.
    """

    owner_auth_identifier: str
    revoked_at: datetime
    reason: str
    expires_at: datetime
    revoked_by_user_id: Optional[str] = None


@dataclass(frozen=True)
class CustomClaimsConfig(Generic[ClaimsT]):
    """How a deployment pulls its own claims out of a provider token.

    extract:  decoded provider token -> application claims. May raise.
    validate: optional structural check on the extracted claims.
    defaults: claims used when extract raises or validate returns False.
              Authentication degrades to these rather than failing.
    """

    extract: Callable[[Mapping[str, Any]], ClaimsT]
    defaults: ClaimsT
    validate: Optional[Callable[[ClaimsT], bool]] = None


@dataclass(frozen=True)
class BlacklistConfig:
    """Immutable per-process blacklist policy."""

    reasons: frozenset[str]
    cleanup_retention_days: int = 30
    global_revocation_retention_days: int = 30
    storage_location: str = "token_blacklist"

    @classmethod
    def from_settings(cls, settings: Settings) -> BlacklistConfig:
        return cls(
            reasons=frozenset(settings.blacklist_reasons),
            cleanup_retention_days=settings.blacklist_cleanup_retention_days,
            global_revocation_retention_days=settings.global_revocation_retention_days,
            storage_location=settings.blacklist_table,
        )
