"""
auth/email_otp.py -- Emailed one-time codes: issue, verify (single use), revoke.

issue() ordering:
  1. generate the code and send the email (no database work yet)
  2. in one short transaction, delete the user's prior codes and insert the new one
  If step 1 raises, nothing is written: the previous code (if any) stays valid
  and the caller receives EmailDeliveryError. No database lock is held while
  the mail server is talking, so a slow relay delays only its own request.

Callers that must commit other writes together with the code (enable() sets
method=email) call send() themselves and then save() inside their transaction.

verify() is one conditional DELETE, so a code can be consumed exactly once
even under concurrent submissions.
"""

from __future__ import annotations

import logging
import secrets
import time
from collections.abc import Callable

from sqlalchemy.engine import Connection

from auth.models import EmailOTPRecord, User
from auth.store import UserStore
from mail.sender import EmailSender, mask_email

_SUBJECTS = {
    "login": "Your login verification code",
    "setup": "Your two-factor setup code",
    "disable": "Your code to turn off two-factor authentication",
}


class EmailOTPManager:
    def __init__(
        self,
        store: UserStore,
        sender: EmailSender,
        code_length: int,
        expire_seconds: int,
        logger: logging.Logger,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.sender = sender
        self.code_length = code_length
        self.expire_seconds = expire_seconds
        self._log = logger
        self._clock = clock

    def generate_code(self) -> str:
        """Fixed-width numeric code; leading zeros are kept."""
        return f"{secrets.randbelow(10**self.code_length):0{self.code_length}d}"

    def send(self, user: User, purpose: str = "login") -> EmailOTPRecord:
        """Email a fresh code and return its record, not yet stored.

        Raises EmailDeliveryError if the send fails.
        """
        now = self._clock()
        record = EmailOTPRecord(
            user_id=user.id,
            code=self.generate_code(),
            expires_at=now + self.expire_seconds,
            generated_at=now,
        )
        minutes = max(1, self.expire_seconds // 60)
        body = f"Your verification code is: {record.code}\n\nIt will expire in {minutes} minutes."
        self.sender.send(user.email, _SUBJECTS.get(purpose, _SUBJECTS["login"]), body)
        return record

    def save(self, record: EmailOTPRecord, conn: Connection | None = None) -> EmailOTPRecord:
        """Store a sent code, replacing whatever the user had outstanding."""
        return self.store.replace_email_otp(record, conn=conn)

    def issue(self, user: User, purpose: str = "login") -> EmailOTPRecord:
        """Email a new code, then make it the user's only outstanding code.

        Raises EmailDeliveryError if the send fails; nothing is written.
        """
        stored = self.save(self.send(user, purpose))
        self._log.info("Issued %s code for user %s to %s", purpose, user.id, mask_email(user.email))
        return stored

    def verify(self, user_id: str, code: str | None) -> bool:
        """Consume a matching unexpired code. False leaves everything untouched."""
        if not code:
            return False
        candidate = code.strip()
        if not candidate:
            return False
        consumed = self.store.consume_email_otp(user_id, candidate, now=self._clock())
        if consumed:
            self._log.info("Email code consumed for user %s", user_id)
        return consumed

    def revoke(self, user_id: str, conn: Connection | None = None) -> int:
        """Delete every outstanding code for user_id. Returns rows removed."""
        return self.store.delete_email_otps(user_id, conn=conn)

    def purge_expired(self) -> int:
        return self.store.purge_expired_email_otps(now=self._clock())
