"""
auth/handler.py -- Verify-and-unpack orchestration over a provider adapter.

verify_and_unpack() walks a fixed sequence for every bearer token:

  1. adapter.verify_token            -> provider rejection: mapped error, not blacklisted
  2. adapter.get_token_identifier    -> works even for tokens the provider rejected
  3. individual blacklist lookup     -> hit: BLACKLISTED (before any normalization)
  4. auth identifier: uid > sub > user_id; empty -> MALFORMED (no identity to check)
  5. global revocation lookup        -> iat strictly before cut-off: BLACKLISTED
  6. adapter.normalize_token         -> bad app claims fall back to defaults;
                                        unrepresentable claims: MALFORMED
  7. accepted result

Fail closed: a storage fault in steps 3-5 is logged and turned into an
UNKNOWN rejection. Nothing in this module retries; the storage layer owns
retry policy.

The handler keeps no per-request state, so one instance serves any number of
concurrent verifications. Construct it once at process start (see
build_token_handler) and pass it to consumers.

Layer rule: no imports from api/. core/ is referenced for typing only.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Generic, Optional

from auth.adapter import TokenAdapter, extract_auth_identifier
from auth.blacklist import BlacklistManager
from auth.claims import APP_CLAIMS_CONFIG
from auth.jose_adapter import build_jose_adapter
from auth.models import (
    BlacklistConfig,
    BlacklistEntry,
    ClaimsT,
    CustomClaimsConfig,
    GlobalRevocation,
    TokenVerificationError,
    VerificationResult,
)

if TYPE_CHECKING:
    from auth.store import TokenStore
    from core.config import Settings

logger = logging.getLogger("tokenguard.handler")


def _issued_at(decoded: Mapping[str, Any]) -> Optional[datetime]:
    value = decoded.get("iat", decoded.get("issued_at"))
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


class TokenHandler(Generic[ClaimsT]):
    """Composes a TokenAdapter and a BlacklistManager into one verification entry point.

    Also re-exposes the provider and blacklist operations so consumers
    (auth dependencies, account-lifecycle services, the ops CLI) need only
    this one object.
    """

    def __init__(
        self,
        adapter: TokenAdapter[ClaimsT],
        blacklist: BlacklistManager,
        claims_config: CustomClaimsConfig[ClaimsT],
    ) -> None:
        self._adapter = adapter
        self._blacklist = blacklist
        self._claims_config = claims_config

    @property
    def adapter(self) -> TokenAdapter[ClaimsT]:
        return self._adapter

    @property
    def blacklist(self) -> BlacklistManager:
        return self._blacklist

    @property
    def claims_config(self) -> CustomClaimsConfig[ClaimsT]:
        return self._claims_config

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify_and_unpack(self, raw_token: str) -> VerificationResult[ClaimsT]:
        """Verify raw_token and return a VerificationResult. Never raises."""
        logger.debug("Starting token verification")

        try:
            decoded = self._adapter.verify_token(raw_token)
        except Exception as e:  # noqa: BLE001 -- every provider failure is mapped, never raised
            error = self._map_error(e)
            logger.warning("Provider rejected token: %s", error.value)
            return VerificationResult.rejected(error)

        try:
            token_identifier = self._adapter.get_token_identifier(raw_token)

            if self._blacklist.is_blacklisted(token_identifier):
                logger.warning("Rejected individually blacklisted token for %s", extract_auth_identifier(decoded))
                return VerificationResult.rejected(TokenVerificationError.BLACKLISTED, blacklisted=True)

            auth_identifier = extract_auth_identifier(decoded)
            if not auth_identifier:
                logger.warning("Rejected verified token with no uid/sub/user_id claim")
                return VerificationResult.rejected(TokenVerificationError.MALFORMED)

            revoked_at = self._blacklist.get_user_token_revocation_time(auth_identifier)
            if revoked_at is not None:
                issued_at = _issued_at(decoded)
                if issued_at is None or issued_at < revoked_at:
                    logger.warning("Rejected token for %s issued before global revocation", auth_identifier)
                    return VerificationResult.rejected(TokenVerificationError.BLACKLISTED, blacklisted=True)
        except Exception:  # noqa: BLE001 -- storage or adapter fault: fail closed
            logger.warning("Blacklist/revocation check failed; rejecting token", exc_info=True)
            return VerificationResult.rejected(TokenVerificationError.UNKNOWN)

        try:
            token = self._adapter.normalize_token(decoded, self._claims_config)
        except Exception:  # noqa: BLE001 -- claims the adapter cannot represent
            logger.warning("Normalization failed for %s; rejecting token", auth_identifier, exc_info=True)
            return VerificationResult.rejected(TokenVerificationError.MALFORMED)

        logger.debug(
            "Token verified and normalized for %s (app user %s, issuer %s)",
            token.auth_identifier,
            token.application_user_id,
            token.issuer,
        )
        return VerificationResult.accepted(token)

    def _map_error(self, error: Exception) -> TokenVerificationError:
        try:
            return self._adapter.map_provider_error(error)
        except Exception:  # noqa: BLE001
            logger.exception("Adapter error mapping failed")
            return TokenVerificationError.UNKNOWN

    def get_token_identifier(self, raw_token: str) -> str:
        return self._adapter.get_token_identifier(raw_token)

    # ------------------------------------------------------------------
    # Provider passthroughs
    # ------------------------------------------------------------------

    def sync_custom_claims(self, auth_identifier: str, claims: ClaimsT) -> None:
        logger.debug("Syncing custom claims for %s (provider=%s)", auth_identifier, self._adapter.provider_name)
        self._adapter.sync_custom_claims(auth_identifier, claims)

    def revoke_user_tokens(self, auth_identifier: str) -> bool:
        """Revoke at the provider. False means the provider could not; use blacklist_all_user_tokens()."""
        logger.info("Revoking tokens at provider for %s (provider=%s)", auth_identifier, self._adapter.provider_name)
        return self._adapter.revoke_user_tokens(auth_identifier)

    # ------------------------------------------------------------------
    # Blacklist passthroughs
    # ------------------------------------------------------------------

    def blacklist_token(
        self,
        token_identifier: str,
        owner_auth_identifier: str,
        reason: str,
        token_expires_at: datetime,
        blacklisted_by_user_id: Optional[str] = None,
    ) -> BlacklistEntry:
        return self._blacklist.blacklist_token(
            token_identifier, owner_auth_identifier, reason, token_expires_at, blacklisted_by_user_id
        )

    def blacklist_all_user_tokens(
        self,
        owner_auth_identifier: str,
        reason: str,
        revoked_by_user_id: Optional[str] = None,
    ) -> GlobalRevocation:
        return self._blacklist.blacklist_all_user_tokens(owner_auth_identifier, reason, revoked_by_user_id)

    def is_token_blacklisted(self, token_identifier: str) -> bool:
        return self._blacklist.is_blacklisted(token_identifier)

    def get_user_token_revocation_time(self, owner_auth_identifier: str) -> Optional[datetime]:
        return self._blacklist.get_user_token_revocation_time(owner_auth_identifier)

    def cleanup_expired_entries(self) -> int:
        return self._blacklist.cleanup_expired_entries()


def build_token_handler(
    settings: Settings,
    store: TokenStore,
    claims_config: Optional[CustomClaimsConfig] = None,
) -> TokenHandler:
    """Assemble the process-wide handler from Settings. Call once at startup."""
    adapter = build_jose_adapter(settings)
    manager = BlacklistManager(store, BlacklistConfig.from_settings(settings))
    logger.info(
        "Token handler built (provider=%s, reasons=%d, storage=%s)",
        settings.token_provider,
        len(settings.blacklist_reasons),
        settings.blacklist_table,
    )
    return TokenHandler(adapter, manager, claims_config or APP_CLAIMS_CONFIG)
