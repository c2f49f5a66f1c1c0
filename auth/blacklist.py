"""
auth/blacklist.py -- Reason-validated blacklisting and per-user global revocation.

Two mechanisms, both backed by the TokenDatabase port:

  Individual entries: one token (by adapter-derived identifier) is dead until
      its natural expiry. Used for single-session logout.

  Global revocation: one timestamp per user; every token issued strictly
      before it is dead. Used for logout-everywhere, password change, account
      deletion and admin action. A token issued after the revocation is valid.

Reason validation is a hard gate checked before any I/O: an unknown reason
raises InvalidBlacklistReason and nothing is written, so audit data only ever
contains reasons from the configured vocabulary.

Revocation timestamps keep full clock precision. Token iat claims are whole
seconds, so a token issued earlier in the same second as the revocation
compares as "before" it and is rejected. A login in that same second is
rejected too; the client retries once the second has passed.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Optional

from auth.models import BlacklistConfig, BlacklistEntry, GlobalRevocation
from auth.store import TokenDatabase

logger = logging.getLogger("tokenguard.blacklist")

_MASK_PREFIX_LEN = 10


class InvalidBlacklistReason(ValueError):
    """Raised when a blacklist reason is not in the configured set."""


def mask_identifier(identifier: str, visible: int = _MASK_PREFIX_LEN) -> str:
    """Return the first `visible` characters of identifier followed by '...'.

    Short identifiers are returned as-is; they carry too little material to be
    worth hiding and masking them would make logs unreadable.
    """
    if len(identifier) <= visible:
        return identifier
    return identifier[:visible] + "..."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class BlacklistManager:
    """Validates reasons, stamps records and delegates persistence to a TokenDatabase.

    Usage:
        manager = BlacklistManager(store, BlacklistConfig.from_settings(get_settings()))
        manager.blacklist_token(token_id, "auth0|42", "LOGOUT", token_expires_at)
        manager.blacklist_all_user_tokens("auth0|42", "PASSWORD_CHANGE")

    Storage failures surface as TokenStorageError (raised by StoreResult.unwrap).
    The verification path in TokenHandler catches them; write paths let them
    propagate so the caller knows the revocation did not happen.
    """

    def __init__(
        self,
        database: TokenDatabase,
        config: BlacklistConfig,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._database = database
        self._config = config
        self._clock = clock

    @property
    def config(self) -> BlacklistConfig:
        return self._config

    # ------------------------------------------------------------------
    # Individual entries
    # ------------------------------------------------------------------

    def blacklist_token(
        self,
        token_identifier: str,
        owner_auth_identifier: str,
        reason: str,
        token_expires_at: datetime,
        blacklisted_by_user_id: Optional[str] = None,
    ) -> BlacklistEntry:
        """Blacklist one token until it would have expired anyway.

        Args:
            token_identifier:       Adapter-derived key (never the raw token).
            owner_auth_identifier:  Provider subject of the token's owner.
            reason:                 Must be one of config.reasons.
            token_expires_at:       Natural expiry; the entry is cleaned up after it.
            blacklisted_by_user_id: Acting user for admin action, None for self-logout.

        Raises:
            InvalidBlacklistReason: before any write, for an unconfigured reason.
            TokenStorageError:      if the entry could not be persisted.
        """
        self._validate_reason(reason)

        entry = BlacklistEntry(
            entry_id=uuid.uuid4().hex,
            token_identifier=token_identifier,
            owner_auth_identifier=owner_auth_identifier,
            blacklisted_at=self._clock(),
            blacklisted_by_user_id=blacklisted_by_user_id,
            reason=reason,
            expires_at=_as_utc(token_expires_at),
        )
        logger.debug(
            "Blacklisting token %s for %s (reason=%s, storage=%s)",
            mask_identifier(token_identifier),
            owner_auth_identifier,
            reason,
            self._config.storage_location,
        )
        self._database.add_blacklist_entry(entry).unwrap()
        logger.info("Token blacklisted entry=%s owner=%s reason=%s", entry.entry_id, owner_auth_identifier, reason)
        return entry

    def is_blacklisted(self, token_identifier: str) -> bool:
        """Return True if an active entry exists for token_identifier."""
        masked = mask_identifier(token_identifier)
        logger.debug("Checking blacklist for token %s", masked)
        blacklisted = bool(self._database.is_token_blacklisted(token_identifier).unwrap())
        logger.debug("Blacklist check for token %s: %s", masked, blacklisted)
        return blacklisted

    # ------------------------------------------------------------------
    # Global revocation
    # ------------------------------------------------------------------

    def blacklist_all_user_tokens(
        self,
        owner_auth_identifier: str,
        reason: str,
        revoked_by_user_id: Optional[str] = None,
    ) -> GlobalRevocation:
        """Invalidate every token the user holds that was issued before now.

        Replaces any earlier revocation for the same user. The record is kept
        for global_revocation_retention_days, which should be at least the
        provider's maximum token lifetime.

        Raises:
            InvalidBlacklistReason: before any write, for an unconfigured reason.
            ValueError:             before any write, for an empty owner.
            TokenStorageError:      if the revocation could not be persisted.
        """
        self._validate_reason(reason)
        if not owner_auth_identifier:
            raise ValueError("owner_auth_identifier must not be empty.")

        now = self._clock()
        revocation = GlobalRevocation(
            owner_auth_identifier=owner_auth_identifier,
            revoked_at=now,
            reason=reason,
            revoked_by_user_id=revoked_by_user_id,
            expires_at=now + timedelta(days=self._config.global_revocation_retention_days),
        )
        logger.info("Revoking all tokens for %s (reason=%s)", owner_auth_identifier, reason)
        self._database.add_user_revocation(revocation).unwrap()
        logger.info(
            "All tokens revoked for %s (reason=%s, record expires %s)",
            owner_auth_identifier,
            reason,
            revocation.expires_at.isoformat(),
        )
        return revocation

    def get_user_token_revocation_time(self, owner_auth_identifier: str) -> Optional[datetime]:
        """Return the user's active revocation instant, or None.

        An empty identifier never has a revocation; it is answered here
        without a storage round trip so it cannot match a stray record.
        """
        if not owner_auth_identifier:
            logger.debug("Revocation lookup skipped for empty auth identifier")
            return None
        revoked_at = self._database.get_user_revocation_time(owner_auth_identifier).unwrap()
        logger.debug("Revocation check for %s: has_revocation=%s", owner_auth_identifier, revoked_at is not None)
        return revoked_at

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def cleanup_expired_entries(self) -> int:
        """Delete entries and revocations expired for longer than the cleanup retention window.

        Intended for a scheduler (lifespan loop or cron), never the request path.
        Returns the number of records removed.
        """
        cutoff = self._clock() - timedelta(days=self._config.cleanup_retention_days)
        logger.info("Starting blacklist cleanup (storage=%s)", self._config.storage_location)
        removed = self._database.cleanup_expired_entries(cutoff).unwrap() or 0
        logger.info("Blacklist cleanup removed %d record(s) (storage=%s)", removed, self._config.storage_location)
        return removed

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _validate_reason(self, reason: str) -> None:
        if reason not in self._config.reasons:
            allowed = ", ".join(sorted(self._config.reasons))
            logger.error("Invalid blacklist reason %r (allowed: %s)", reason, allowed)
            raise InvalidBlacklistReason(f"Invalid blacklist reason: {reason}. Allowed reasons: {allowed}")
