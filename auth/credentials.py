"""
auth/credentials.py -- Email + password check with timing equalization [C1].

Always runs bcrypt whether or not the email exists:
  - unknown email:  bcrypt against DUMMY_HASH (same cost as a real check)
  - wrong password: bcrypt against the stored hash (same cost)
so response time does not reveal which accounts exist.

Every check is reported to the AttemptLimiter. A LOCKOUT decision raises
AccountLockedError even when the password was right.
"""

from __future__ import annotations

import logging

from auth.limiter import AttemptDecision, AttemptLimiter
from auth.models import User
from auth.passwords import DUMMY_HASH, verify_password
from auth.store import UserStore, normalize_email
from core.errors import AccountLockedError, InvalidCredentialsError


class CredentialValidator:
    def __init__(self, store: UserStore, limiter: AttemptLimiter, logger: logging.Logger) -> None:
        self.store = store
        self.limiter = limiter
        self._log = logger

    def check(self, email: str, password: str) -> User | None:
        """Return the User if email/password match, else None. No side effects."""
        user = self.store.get_by_email(email)
        if user is None:
            # Equalize timing -- do NOT return before running bcrypt [C1]
            verify_password(password, DUMMY_HASH)
            return None
        if not verify_password(password, user.hashed_password):
            return None
        return user

    def validate(self, email: str, password: str) -> User:
        """Check credentials and report the attempt.

        Raises AccountLockedError when the identity is locked (checked after
        the hash comparison so a locked account costs the same time as any
        other), InvalidCredentialsError on mismatch.
        """
        identity = normalize_email(email)
        user = self.check(identity, password)
        decision = self.limiter.record_and_check(identity, success=user is not None)
        if decision is AttemptDecision.LOCKOUT:
            raise AccountLockedError(retry_after=self.limiter.retry_after(identity))
        if user is None:
            self._log.info("Credential check failed")
            raise InvalidCredentialsError()
        return user
