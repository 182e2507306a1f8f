"""
tests/test_otp.py -- Unit tests for auth/otp.py.

Covers:
  - issue stores a bcrypt hash (never the code) with a 5-minute expiry
  - a second issue replaces the first code
  - verify is single use; expiry clears state
  - delivery failure rolls back the stored code
"""

from __future__ import annotations

import smtplib
from datetime import timedelta

import pytest

from auth.errors import NotConfiguredError, NotificationError
from auth.otp import OtpFailure, issue_login_otp, verify_login_otp
from auth.store import AccountStore, utcnow
from conftest import RecordingNotifier, create_admin


@pytest.fixture()
def admin(account_store: AccountStore):
    uid = create_admin(account_store)
    return account_store, account_store.get_by_id(uid)


class TestIssue:
    def test_stores_hash_and_delivers_code(self, admin, notifier: RecordingNotifier) -> None:
        store, account = admin
        code = issue_login_otp(store, notifier, account)
        stored = store.get_by_id(account.id)
        assert notifier.otps == [(account.username, code)]
        assert stored.login_otp_hash and stored.login_otp_hash != code
        assert timedelta(minutes=4) < stored.login_otp_expires_at - utcnow() <= timedelta(minutes=5)

    def test_second_issue_invalidates_first(self, admin, notifier: RecordingNotifier) -> None:
        store, account = admin
        first = issue_login_otp(store, notifier, account)
        second = issue_login_otp(store, notifier, account)
        if first == second:
            pytest.skip("two identical random codes in a row")
        assert verify_login_otp(store, account.id, first).reason is OtpFailure.MISMATCH
        assert verify_login_otp(store, account.id, second).ok

    def test_unconfigured_notifier_rolls_back(self, admin) -> None:
        store, account = admin
        notifier = RecordingNotifier()
        notifier.fail = NotConfiguredError("Email service is not configured.")
        with pytest.raises(NotConfiguredError):
            issue_login_otp(store, notifier, account)
        stored = store.get_by_id(account.id)
        assert stored.login_otp_hash is None
        assert stored.login_otp_expires_at is None

    def test_transport_failure_rolls_back_and_wraps(self, admin) -> None:
        store, account = admin
        notifier = RecordingNotifier()
        notifier.fail = smtplib.SMTPServerDisconnected("gone")
        with pytest.raises(NotificationError, match="Failed to send OTP"):
            issue_login_otp(store, notifier, account)
        assert store.get_by_id(account.id).login_otp_hash is None


class TestVerify:
    def test_no_pending_code(self, admin) -> None:
        store, account = admin
        result = verify_login_otp(store, account.id, "123456")
        assert not result.ok
        assert result.reason is OtpFailure.NO_PENDING

    def test_success_is_single_use(self, admin, notifier: RecordingNotifier) -> None:
        store, account = admin
        code = issue_login_otp(store, notifier, account)
        assert verify_login_otp(store, account.id, code).ok
        again = verify_login_otp(store, account.id, code)
        assert not again.ok
        assert again.reason is OtpFailure.NO_PENDING

    def test_mismatch_keeps_code_pending(self, admin, notifier: RecordingNotifier) -> None:
        store, account = admin
        code = issue_login_otp(store, notifier, account)
        wrong = "000000" if code != "000000" else "111111"
        assert verify_login_otp(store, account.id, wrong).reason is OtpFailure.MISMATCH
        assert verify_login_otp(store, account.id, code).ok

    def test_expired_code_rejected_and_cleared(self, admin, notifier: RecordingNotifier) -> None:
        store, account = admin
        code = issue_login_otp(store, notifier, account)
        store.update_account(account.id, login_otp_expires_at=utcnow() - timedelta(seconds=1))
        result = verify_login_otp(store, account.id, code)
        assert result.reason is OtpFailure.EXPIRED
        assert store.get_by_id(account.id).login_otp_hash is None
        assert verify_login_otp(store, account.id, code).reason is OtpFailure.NO_PENDING

    def test_unknown_account(self, account_store: AccountStore) -> None:
        assert verify_login_otp(account_store, 999, "123456").reason is OtpFailure.NO_PENDING
