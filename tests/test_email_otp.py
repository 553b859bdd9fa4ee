"""Unit tests for auth/email_otp.py -- emailed one-time codes.

Covers:
- issue() replaces any prior code (at most one live record per user)
- codes are single-use and expire
- a failed send commits nothing and leaves the previous code valid
- the email goes out before anything is written
- save() joins a caller transaction and rolls back with it
"""

from __future__ import annotations

import pytest

from auth.email_otp import EmailOTPManager
from core.errors import EmailDeliveryError


@pytest.fixture
def manager(store, sender, clock, logger) -> EmailOTPManager:
    return EmailOTPManager(store, sender, code_length=6, expire_seconds=600, logger=logger, clock=clock)


def _fixed_codes(monkeypatch, manager: EmailOTPManager, *codes: str) -> None:
    it = iter(codes)
    monkeypatch.setattr(manager, "generate_code", lambda: next(it))


class TestGenerate:
    def test_code_is_fixed_width_numeric(self, manager):
        for _ in range(20):
            code = manager.generate_code()
            assert len(code) == 6
            assert code.isdigit()

    def test_leading_zeros_kept(self, manager, monkeypatch):
        monkeypatch.setattr("auth.email_otp.secrets.randbelow", lambda n: 42)
        assert manager.generate_code() == "000042"


class TestIssue:
    def test_issue_stores_and_sends(self, manager, store, sender, make_user, clock):
        user = make_user()
        record = manager.issue(user)
        assert record.expires_at == clock.now + 600
        assert [r.code for r in store.get_email_otps(user.id)] == [record.code]
        assert len(sender.outbox) == 1
        assert sender.outbox[0].to_address == user.email
        assert record.code in sender.outbox[0].body
        assert "10 minutes" in sender.outbox[0].body

    def test_reissue_invalidates_prior_code(self, manager, store, make_user, monkeypatch):
        user = make_user()
        _fixed_codes(monkeypatch, manager, "111111", "222222")
        manager.issue(user)
        manager.issue(user)
        assert [r.code for r in store.get_email_otps(user.id)] == ["222222"]
        assert manager.verify(user.id, "111111") is False
        assert manager.verify(user.id, "222222") is True

    def test_purpose_selects_subject(self, manager, sender, make_user):
        user = make_user()
        manager.issue(user, purpose="setup")
        manager.issue(user, purpose="disable")
        assert "setup" in sender.outbox[0].subject
        assert "turn off" in sender.outbox[1].subject

    def test_failed_send_commits_nothing(self, manager, store, sender, make_user, monkeypatch):
        user = make_user()
        _fixed_codes(monkeypatch, manager, "111111", "222222")
        manager.issue(user)
        sender.fail = True
        with pytest.raises(EmailDeliveryError):
            manager.issue(user)
        # Previous code survives untouched.
        assert [r.code for r in store.get_email_otps(user.id)] == ["111111"]
        assert manager.verify(user.id, "111111") is True

    def test_failed_send_first_issue_leaves_no_record(self, manager, store, sender, make_user):
        user = make_user()
        sender.fail = True
        with pytest.raises(EmailDeliveryError):
            manager.issue(user)
        assert store.get_email_otps(user.id) == []

    def test_email_sent_before_code_is_stored(self, manager, store, sender, make_user, monkeypatch):
        user = make_user()
        seen = []
        deliver = sender.send

        def _send(to_address, subject, body):
            seen.append(store.get_email_otps(user.id))
            deliver(to_address, subject, body)

        monkeypatch.setattr(sender, "send", _send)
        record = manager.issue(user)
        assert seen == [[]]
        assert [r.code for r in store.get_email_otps(user.id)] == [record.code]

    def test_save_joins_caller_transaction(self, manager, store, make_user):
        user = make_user()
        record = manager.send(user)
        with pytest.raises(RuntimeError):
            with store.transaction() as conn:
                manager.save(record, conn=conn)
                raise RuntimeError("later write failed")
        assert store.get_email_otps(user.id) == []


class TestVerify:
    def test_single_use(self, manager, make_user, monkeypatch):
        user = make_user()
        _fixed_codes(monkeypatch, manager, "123456")
        manager.issue(user)
        assert manager.verify(user.id, "123456") is True
        assert manager.verify(user.id, "123456") is False

    def test_expired_code_rejected(self, manager, make_user, clock, monkeypatch):
        user = make_user()
        _fixed_codes(monkeypatch, manager, "123456")
        manager.issue(user)
        clock.advance(601)
        assert manager.verify(user.id, "123456") is False

    def test_code_valid_until_expiry(self, manager, make_user, clock, monkeypatch):
        user = make_user()
        _fixed_codes(monkeypatch, manager, "123456")
        manager.issue(user)
        clock.advance(599)
        assert manager.verify(user.id, "123456") is True

    def test_whitespace_trimmed_but_no_other_normalization(self, manager, make_user, monkeypatch):
        user = make_user()
        _fixed_codes(monkeypatch, manager, "012345")
        manager.issue(user)
        assert manager.verify(user.id, "12345") is False
        assert manager.verify(user.id, " 012345 ") is True

    @pytest.mark.parametrize("empty", [None, "", "   "])
    def test_empty_code_rejected(self, manager, make_user, empty):
        user = make_user()
        manager.issue(user)
        assert manager.verify(user.id, empty) is False

    def test_wrong_code_leaves_record(self, manager, store, make_user, monkeypatch):
        user = make_user()
        _fixed_codes(monkeypatch, manager, "123456")
        manager.issue(user)
        assert manager.verify(user.id, "654321") is False
        assert len(store.get_email_otps(user.id)) == 1


class TestRevokeAndPurge:
    def test_revoke_removes_outstanding_codes(self, manager, store, make_user):
        user = make_user()
        manager.issue(user)
        assert manager.revoke(user.id) == 1
        assert store.get_email_otps(user.id) == []

    def test_purge_expired(self, manager, make_user, clock):
        alice = make_user("alice@example.com")
        bob = make_user("bob@example.com")
        manager.issue(alice)
        clock.advance(300)
        manager.issue(bob)
        clock.advance(301)
        assert manager.purge_expired() == 1
