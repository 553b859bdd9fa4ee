"""
auth/second_factor.py -- Turning a second factor on and off.

User states:
    none     -- method=none, enabled=False
    pending  -- method=totp|email, enabled=False   (after enable())
    enabled  -- method=totp|email, enabled=True    (after verify_setup())

enable() never sets enabled=True. Only verify_setup(), with a code produced by
the configured factor, completes the transition, so a user cannot lock
themselves out with a secret they never scanned.

disable() re-verification:
    With second_factor_disable_requires_code (default), removing a factor
    needs a valid code for that factor on top of the authenticated session.
    A hijacked session alone therefore cannot strip 2FA. Email users get that
    code from send_code().

Code guesses:
    Setup and disable codes go through the same AttemptLimiter as login, keyed
    by the account email. Wrong codes count as failures, and a locked account
    cannot confirm or remove a factor until the window lapses.
"""

from __future__ import annotations

import logging

from auth.email_otp import EmailOTPManager
from auth.limiter import AttemptDecision, AttemptLimiter
from auth.models import SecondFactorMethod, SecondFactorSetup, User
from auth.store import UserStore
from auth.totp import TOTPVerifier
from core.errors import (
    AccountLockedError,
    InvalidSecondFactorCodeError,
    SecondFactorAlreadyConfiguredError,
    SecondFactorNotConfiguredError,
    SecondFactorRequiredError,
    UserNotFoundError,
)

_METHODS = (SecondFactorMethod.totp.value, SecondFactorMethod.email.value)


class SecondFactorManager:
    def __init__(
        self,
        store: UserStore,
        totp: TOTPVerifier,
        email_otp: EmailOTPManager,
        limiter: AttemptLimiter,
        logger: logging.Logger,
        disable_requires_code: bool = True,
    ) -> None:
        self.store = store
        self.totp = totp
        self.email_otp = email_otp
        self.limiter = limiter
        self.disable_requires_code = disable_requires_code
        self._log = logger

    def _get_user(self, user_id: str) -> User:
        user = self.store.get_by_id(user_id)
        if user is None:
            raise UserNotFoundError()
        return user

    def enable(self, user_id: str, method: str) -> SecondFactorSetup:
        """Start configuring a factor. The user stays in the pending state."""
        method = _coerce_method(method)
        user = self._get_user(user_id)
        if user.second_factor_enabled:
            raise SecondFactorAlreadyConfiguredError()

        if method == SecondFactorMethod.totp.value:
            enrollment = self.totp.generate_secret(user.email)
            with self.store.transaction() as conn:
                self.store.update_user(user.id, conn=conn, second_factor_method=method, totp_secret=enrollment.secret)
                # A stale email code from an abandoned email setup must not linger.
                self.email_otp.revoke(user.id, conn=conn)
            self._log.info("TOTP setup started for user %s", user.id)
            return SecondFactorSetup(
                method=method,
                secret=enrollment.secret,
                provisioning_uri=enrollment.provisioning_uri,
            )

        # email: the code is sent first; method change and code then commit together.
        record = self.email_otp.send(user, purpose="setup")
        with self.store.transaction() as conn:
            self.store.update_user(user.id, conn=conn, second_factor_method=method, totp_secret=None)
            self.email_otp.save(record, conn=conn)
        self._log.info("Email 2FA setup started for user %s", user.id)
        return SecondFactorSetup(method=method, email_sent=True)

    def verify_setup(self, user_id: str, code: str, method: str) -> None:
        """Confirm a pending factor with a code from it; on success enable it."""
        method = _coerce_method(method)
        user = self._get_user(user_id)
        if user.second_factor_method != method:
            raise SecondFactorNotConfiguredError()
        if user.second_factor_enabled:
            raise SecondFactorAlreadyConfiguredError()
        if method == SecondFactorMethod.totp.value and not user.totp_secret:
            raise SecondFactorNotConfiguredError()

        if not self._check_code(user, code):
            self._log.info("2FA setup verification failed for user %s", user.id)
            raise InvalidSecondFactorCodeError()

        self.store.update_user(user.id, second_factor_enabled=True)
        self._log.info("2FA (%s) enabled for user %s", method, user.id)

    def send_code(self, user_id: str) -> None:
        """Email a fresh code to a user whose configured method is email."""
        user = self._get_user(user_id)
        if user.second_factor_method != SecondFactorMethod.email.value:
            raise SecondFactorNotConfiguredError()
        purpose = "disable" if user.second_factor_enabled else "setup"
        self.email_otp.issue(user, purpose=purpose)

    def disable(self, user_id: str, code: str | None = None) -> None:
        """Remove the user's factor and every credential tied to it."""
        user = self._get_user(user_id)
        if not user.second_factor_enabled:
            raise SecondFactorNotConfiguredError("Two-factor authentication is not enabled.")

        if self.disable_requires_code:
            if code is None or not code.strip():
                raise SecondFactorRequiredError()
            if not self._check_code(user, code):
                raise InvalidSecondFactorCodeError()

        with self.store.transaction() as conn:
            self.store.update_user(
                user.id,
                conn=conn,
                second_factor_enabled=False,
                second_factor_method=SecondFactorMethod.none.value,
                totp_secret=None,
            )
            self.email_otp.revoke(user.id, conn=conn)
        self._log.info("2FA disabled for user %s", user.id)

    def _check_code(self, user: User, code: str) -> bool:
        """Verify code, then let the limiter admit or refuse the attempt."""
        valid = self._verify(user, code)
        if self.limiter.record_and_check(user.email, success=valid) is AttemptDecision.LOCKOUT:
            raise AccountLockedError(retry_after=self.limiter.retry_after(user.email))
        return valid

    def _verify(self, user: User, code: str) -> bool:
        if user.second_factor_method == SecondFactorMethod.totp.value:
            return self.totp.verify(user.totp_secret, code)
        if user.second_factor_method == SecondFactorMethod.email.value:
            return self.email_otp.verify(user.id, code)
        return False


def _coerce_method(method: str | SecondFactorMethod) -> str:
    value = method.value if isinstance(method, SecondFactorMethod) else str(method)
    if value not in _METHODS:
        raise ValueError(f"Unsupported second-factor method: {value!r}")
    return value
