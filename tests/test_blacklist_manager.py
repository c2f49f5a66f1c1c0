"""
tests/test_blacklist_manager.py -- Unit tests for BlacklistManager.

Coverage:
  - Reason gate: an unconfigured reason raises InvalidBlacklistReason and
    performs zero storage writes (both entry and global revocation paths)
  - Entry construction: fresh entry ids, actor recorded, expiry preserved
  - Global revocation: full-precision revoked_at, retention window, supersede
  - Empty auth identifier: no revocation, no storage round trip
  - Storage failures raise TokenStorageError on write and read paths
  - Cleanup: cutoff honours cleanup_retention_days, idempotent, never
    removes unexpired records
  - mask_identifier
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from auth.blacklist import BlacklistManager, InvalidBlacklistReason, mask_identifier
from auth.models import BlacklistConfig
from auth.store import StoreResult, TokenStorageError, TokenStore

FIXED_NOW = datetime(2026, 3, 1, 12, 0, 30, 987654, tzinfo=timezone.utc)


def _fixed_clock() -> datetime:
    return FIXED_NOW


class TestReasonValidation:
    def test_invalid_reason_on_blacklist_token_writes_nothing(self, mock_db: MagicMock, blacklist_config) -> None:
        manager = BlacklistManager(mock_db, blacklist_config)
        with pytest.raises(InvalidBlacklistReason, match="Allowed reasons"):
            manager.blacklist_token("tok", "user-1", "bogus_reason", FIXED_NOW)
        mock_db.add_blacklist_entry.assert_not_called()

    def test_invalid_reason_on_global_revocation_writes_nothing(self, mock_db: MagicMock, blacklist_config) -> None:
        manager = BlacklistManager(mock_db, blacklist_config)
        with pytest.raises(InvalidBlacklistReason):
            manager.blacklist_all_user_tokens("user-1", "bogus_reason")
        mock_db.add_user_revocation.assert_not_called()

    def test_invalid_reason_is_a_value_error(self) -> None:
        assert issubclass(InvalidBlacklistReason, ValueError)

    def test_reason_is_case_sensitive(self, mock_db: MagicMock, blacklist_config) -> None:
        manager = BlacklistManager(mock_db, blacklist_config)
        with pytest.raises(InvalidBlacklistReason):
            manager.blacklist_token("tok", "user-1", "USER_LOGOUT", FIXED_NOW)


class TestBlacklistToken:
    def test_entry_fields(self, mock_db: MagicMock, blacklist_config) -> None:
        manager = BlacklistManager(mock_db, blacklist_config, clock=_fixed_clock)
        expires = FIXED_NOW + timedelta(hours=1)

        entry = manager.blacklist_token("tok-1", "user-1", "user_logout", expires, "admin-9")

        assert entry.token_identifier == "tok-1"
        assert entry.owner_auth_identifier == "user-1"
        assert entry.reason == "user_logout"
        assert entry.blacklisted_at == FIXED_NOW
        assert entry.expires_at == expires
        assert entry.blacklisted_by_user_id == "admin-9"
        mock_db.add_blacklist_entry.assert_called_once_with(entry)

    def test_self_logout_has_no_actor(self, mock_db: MagicMock, blacklist_config) -> None:
        manager = BlacklistManager(mock_db, blacklist_config)
        entry = manager.blacklist_token("tok-1", "user-1", "user_logout", FIXED_NOW)
        assert entry.blacklisted_by_user_id is None

    def test_entry_ids_are_unique(self, mock_db: MagicMock, blacklist_config) -> None:
        manager = BlacklistManager(mock_db, blacklist_config)
        a = manager.blacklist_token("tok-1", "user-1", "user_logout", FIXED_NOW)
        b = manager.blacklist_token("tok-1", "user-1", "user_logout", FIXED_NOW)
        assert a.entry_id != b.entry_id

    def test_naive_expiry_is_treated_as_utc(self, mock_db: MagicMock, blacklist_config) -> None:
        manager = BlacklistManager(mock_db, blacklist_config)
        entry = manager.blacklist_token("tok-1", "user-1", "user_logout", datetime(2026, 3, 1, 13, 0))
        assert entry.expires_at == datetime(2026, 3, 1, 13, 0, tzinfo=timezone.utc)

    def test_storage_failure_raises(self, mock_db: MagicMock, blacklist_config) -> None:
        mock_db.add_blacklist_entry.return_value = StoreResult.failure("down")
        manager = BlacklistManager(mock_db, blacklist_config)
        with pytest.raises(TokenStorageError):
            manager.blacklist_token("tok-1", "user-1", "user_logout", FIXED_NOW)

    def test_is_blacklisted_round_trip(self, manager: BlacklistManager) -> None:
        manager.blacklist_token("tok-1", "user-1", "user_logout", datetime.now(timezone.utc) + timedelta(hours=1))
        assert manager.is_blacklisted("tok-1") is True
        assert manager.is_blacklisted("tok-2") is False

    def test_is_blacklisted_storage_failure_raises(self, mock_db: MagicMock, blacklist_config) -> None:
        mock_db.is_token_blacklisted.return_value = StoreResult.failure("down")
        manager = BlacklistManager(mock_db, blacklist_config)
        with pytest.raises(TokenStorageError):
            manager.is_blacklisted("tok-1")


class TestGlobalRevocation:
    def test_revoked_at_keeps_sub_second_precision(self, mock_db: MagicMock, blacklist_config) -> None:
        manager = BlacklistManager(mock_db, blacklist_config, clock=_fixed_clock)
        rev = manager.blacklist_all_user_tokens("user-1", "password_changed")
        assert rev.revoked_at == FIXED_NOW
        assert rev.revoked_at.microsecond == 987654

    def test_record_expires_after_retention_window(self, mock_db: MagicMock, blacklist_config) -> None:
        manager = BlacklistManager(mock_db, blacklist_config, clock=_fixed_clock)
        rev = manager.blacklist_all_user_tokens("user-1", "password_changed", "admin-2")
        assert rev.expires_at == rev.revoked_at + timedelta(days=90)
        assert rev.revoked_by_user_id == "admin-2"
        mock_db.add_user_revocation.assert_called_once_with(rev)

    def test_empty_owner_rejected_before_write(self, mock_db: MagicMock, blacklist_config) -> None:
        manager = BlacklistManager(mock_db, blacklist_config)
        with pytest.raises(ValueError):
            manager.blacklist_all_user_tokens("", "user_logout")
        mock_db.add_user_revocation.assert_not_called()

    def test_later_revocation_supersedes(self, store: TokenStore, blacklist_config) -> None:
        now = datetime.now(timezone.utc)
        times = iter([now - timedelta(hours=1), now])
        manager = BlacklistManager(store, blacklist_config, clock=lambda: next(times))
        manager.blacklist_all_user_tokens("user-1", "user_logout")
        manager.blacklist_all_user_tokens("user-1", "password_changed")
        assert manager.get_user_token_revocation_time("user-1") == now

    def test_no_revocation_returns_none(self, manager: BlacklistManager) -> None:
        assert manager.get_user_token_revocation_time("user-1") is None

    def test_empty_identifier_skips_storage(self, mock_db: MagicMock, blacklist_config) -> None:
        manager = BlacklistManager(mock_db, blacklist_config)
        assert manager.get_user_token_revocation_time("") is None
        mock_db.get_user_revocation_time.assert_not_called()

    def test_revocation_lookup_failure_raises(self, mock_db: MagicMock, blacklist_config) -> None:
        mock_db.get_user_revocation_time.return_value = StoreResult.failure("timeout")
        manager = BlacklistManager(mock_db, blacklist_config)
        with pytest.raises(TokenStorageError):
            manager.get_user_token_revocation_time("user-1")


class TestCleanup:
    def test_cutoff_subtracts_retention_days(self, mock_db: MagicMock) -> None:
        config = BlacklistConfig(reasons=frozenset({"user_logout"}), cleanup_retention_days=7)
        mock_db.cleanup_expired_entries.return_value = StoreResult.success(4)
        manager = BlacklistManager(mock_db, config, clock=_fixed_clock)

        assert manager.cleanup_expired_entries() == 4
        mock_db.cleanup_expired_entries.assert_called_once_with(FIXED_NOW - timedelta(days=7))

    def test_cleanup_against_store_is_idempotent(self, manager: BlacklistManager) -> None:
        now = datetime.now(timezone.utc)
        manager.blacklist_token("expired", "user-1", "user_logout", now - timedelta(hours=1))
        manager.blacklist_token("live", "user-1", "user_logout", now + timedelta(hours=1))

        assert manager.cleanup_expired_entries() == 1
        assert manager.cleanup_expired_entries() == 0
        assert manager.is_blacklisted("live") is True

    def test_cleanup_storage_failure_raises(self, mock_db: MagicMock, blacklist_config) -> None:
        mock_db.cleanup_expired_entries.return_value = StoreResult.failure("down")
        manager = BlacklistManager(mock_db, blacklist_config)
        with pytest.raises(TokenStorageError):
            manager.cleanup_expired_entries()


class TestMaskIdentifier:
    def test_long_identifier_is_masked(self) -> None:
        assert mask_identifier("abcdefghijklmnop") == "abcdefghij..."

    def test_short_identifier_unchanged(self) -> None:
        assert mask_identifier("abc") == "abc"

    def test_identifier_never_logged_in_full(self, mock_db: MagicMock, blacklist_config, caplog) -> None:
        caplog.set_level("DEBUG", logger="tokenguard.blacklist")
        identifier = "f" * 64
        BlacklistManager(mock_db, blacklist_config).is_blacklisted(identifier)
        assert identifier not in caplog.text
        assert "ffffffffff..." in caplog.text
