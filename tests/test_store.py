"""Unit tests for auth/store.py -- the SQLAlchemy Core repository.

Covers:
- email uniqueness and case-insensitive lookup
- update_user() field whitelist
- email OTP replace / consume-once / purge
- atomic failure counter with window restart
- OperationalError surfaces as InfrastructureError
"""

from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from auth.models import EmailOTPRecord, User
from auth.store import UserStore
from core.errors import InfrastructureError


def _otp(user_id: str, code: str, expires_at: float = 2_000.0, generated_at: float = 1_000.0) -> EmailOTPRecord:
    return EmailOTPRecord(user_id=user_id, code=code, expires_at=expires_at, generated_at=generated_at)


class TestUsers:
    def test_email_stored_lowercase_and_found_case_insensitively(self, store, make_user):
        user = make_user("  Bob@Example.COM ")
        assert user.email == "bob@example.com"
        assert store.get_by_email("BOB@example.com").id == user.id

    def test_duplicate_email_raises_integrity_error(self, make_user):
        make_user("dup@example.com")
        with pytest.raises(IntegrityError):
            make_user("DUP@example.com")

    def test_ids_are_uuid_strings(self, make_user):
        user = make_user("ids@example.com")
        assert isinstance(user.id, str)
        assert len(user.id) == 36

    def test_get_missing_user_returns_none(self, store):
        assert store.get_by_email("nobody@example.com") is None
        assert store.get_by_id("no-such-id") is None

    def test_update_user_rejects_unknown_fields(self, store, make_user):
        user = make_user("upd@example.com")
        with pytest.raises(ValueError):
            store.update_user(user.id, is_superuser=True)

    def test_update_user_changes_fields_and_timestamp(self, store, make_user):
        user = make_user("role@example.com")
        assert store.update_user(user.id, role="admin") is True
        updated = store.get_by_id(user.id)
        assert updated.role == "admin"
        assert updated.updated_at >= user.updated_at

    def test_update_missing_user_returns_false(self, store):
        assert store.update_user("missing", role="admin") is False

    def test_delete_user_removes_codes(self, store, make_user):
        user = make_user("del@example.com")
        store.replace_email_otp(_otp(user.id, "123456"))
        assert store.delete_user(user.id) is True
        assert store.get_by_id(user.id) is None
        assert store.get_email_otps(user.id) == []


class TestEmailOTPRecords:
    def test_replace_keeps_exactly_one_record(self, store, make_user):
        user = make_user()
        store.replace_email_otp(_otp(user.id, "111111"))
        store.replace_email_otp(_otp(user.id, "222222", generated_at=1_001.0))
        records = store.get_email_otps(user.id)
        assert [r.code for r in records] == ["222222"]

    def test_consume_succeeds_once(self, store, make_user):
        user = make_user()
        store.replace_email_otp(_otp(user.id, "123456"))
        assert store.consume_email_otp(user.id, "123456", now=1_500.0) is True
        assert store.consume_email_otp(user.id, "123456", now=1_500.0) is False

    def test_consume_rejects_expired_and_wrong_code(self, store, make_user):
        user = make_user()
        store.replace_email_otp(_otp(user.id, "123456", expires_at=2_000.0))
        assert store.consume_email_otp(user.id, "654321", now=1_500.0) is False
        assert store.consume_email_otp(user.id, "123456", now=2_000.0) is False
        # Failed attempts leave the record in place.
        assert len(store.get_email_otps(user.id)) == 1

    def test_consume_is_scoped_to_user(self, store, make_user):
        alice = make_user("alice@example.com")
        bob = make_user("bob@example.com")
        store.replace_email_otp(_otp(alice.id, "123456"))
        assert store.consume_email_otp(bob.id, "123456", now=1_500.0) is False

    def test_purge_expired(self, store, make_user):
        alice = make_user("alice@example.com")
        bob = make_user("bob@example.com")
        store.replace_email_otp(_otp(alice.id, "111111", expires_at=1_100.0))
        store.replace_email_otp(_otp(bob.id, "222222", expires_at=3_000.0))
        assert store.purge_expired_email_otps(now=2_000.0) == 1
        assert store.get_email_otps(alice.id) == []
        assert len(store.get_email_otps(bob.id)) == 1

    def test_transaction_rolls_back_on_error(self, store, make_user):
        user = make_user()
        with pytest.raises(RuntimeError):
            with store.transaction() as conn:
                store.replace_email_otp(_otp(user.id, "123456"), conn=conn)
                raise RuntimeError("boom")
        assert store.get_email_otps(user.id) == []


class TestAttemptCounters:
    def test_increment_counts_up(self, store):
        assert store.increment_failures("a@x.com", now=100.0, window_seconds=60) == 1
        assert store.increment_failures("a@x.com", now=110.0, window_seconds=60) == 2
        assert store.get_failures("a@x.com", now=120.0, window_seconds=60) == (2, 100.0)

    def test_increment_restarts_after_window(self, store):
        store.increment_failures("a@x.com", now=100.0, window_seconds=60)
        store.increment_failures("a@x.com", now=110.0, window_seconds=60)
        assert store.increment_failures("a@x.com", now=161.0, window_seconds=60) == 1
        assert store.get_failures("a@x.com", now=161.0, window_seconds=60) == (1, 161.0)

    def test_get_failures_ignores_lapsed_window(self, store):
        store.increment_failures("a@x.com", now=100.0, window_seconds=60)
        assert store.get_failures("a@x.com", now=160.0, window_seconds=60) == (0, None)

    def test_release_takes_back_one_and_drops_empty_counter(self, store):
        store.increment_failures("a@x.com", now=100.0, window_seconds=60)
        store.increment_failures("a@x.com", now=110.0, window_seconds=60)
        store.release_failure("a@x.com")
        assert store.get_failures("a@x.com", now=120.0, window_seconds=60) == (1, 100.0)
        store.release_failure("a@x.com")
        assert store.get_failures("a@x.com", now=120.0, window_seconds=60) == (0, None)
        # The next failure opens a fresh window.
        store.increment_failures("a@x.com", now=130.0, window_seconds=60)
        assert store.get_failures("a@x.com", now=130.0, window_seconds=60) == (1, 130.0)

    def test_reset_and_purge(self, store):
        store.increment_failures("a@x.com", now=100.0, window_seconds=60)
        store.increment_failures("b@x.com", now=150.0, window_seconds=60)
        store.reset_failures("a@x.com")
        assert store.get_failures("a@x.com", now=150.0, window_seconds=60) == (0, None)
        assert store.purge_expired_attempts(now=300.0, window_seconds=60) == 1


class TestAvailability:
    def test_ping(self, store):
        assert store.ping() is True

    def test_unreachable_database_raises_infrastructure_error(self, tmp_path):
        missing_dir = tmp_path / "does-not-exist" / "auth.db"
        with pytest.raises(InfrastructureError):
            UserStore(f"sqlite:///{missing_dir}")

    def test_operational_error_during_query(self, store, monkeypatch):
        broken = MagicMock()
        broken.begin.side_effect = OperationalError("SELECT 1", {}, Exception("database is locked"))
        monkeypatch.setattr(store, "engine", broken)
        with pytest.raises(InfrastructureError):
            store.get_by_email("a@x.com")

    def test_users_created_with_defaults(self, store):
        user_id = store.create_user(User(email="defaults@example.com", hashed_password="x"))
        user = store.get_by_id(user_id)
        assert user.role == "member"
        assert user.second_factor_enabled is False
        assert user.second_factor_method == "none"
        assert user.totp_secret is None
