"""
auth/limiter.py -- Per-identity failed-login counter with temporary lockout.

This is account-level brute-force protection, keyed by normalized email. It is
separate from api/limiter.py, which throttles raw request volume per client IP.

Counting rule:
  Only failures increment. The window starts at the first failure and lasts
  window_seconds; when it lapses the count starts over. Once `threshold`
  failures sit inside the live window, every call answers LOCKOUT -- including
  calls reporting a *correct* password -- until the window lapses.

  The orchestrator calls reset() only when a session is actually granted, so a
  correct password followed by wrong second-factor codes keeps counting.

Concurrency:
  Every attempt first claims a slot with the store's atomic upsert and is
  judged on the count that statement returns, never on an earlier read. The
  n-th simultaneous attempt therefore sees n, and at most `threshold` attempts
  per window get ALLOW no matter how many arrive together. Slots claimed by a
  success or by a rejected attempt are handed back with release_failure(), so
  only allowed failures stay on the counter and a lockout never grows it.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from enum import Enum

from auth.store import UserStore, normalize_email
from mail.sender import mask_email


class AttemptDecision(str, Enum):
    ALLOW = "allow"
    LOCKOUT = "lockout"


class AttemptLimiter:
    def __init__(
        self,
        store: UserStore,
        threshold: int,
        window_seconds: int,
        logger: logging.Logger,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.threshold = threshold
        self.window_seconds = window_seconds
        self._log = logger
        self._clock = clock

    def record_and_check(self, identity: str, success: bool) -> AttemptDecision:
        """Report one attempt for identity and say whether it may proceed."""
        key = normalize_email(identity)
        now = self._clock()
        count = self.store.increment_failures(key, now, self.window_seconds)
        if count > self.threshold:
            self.store.release_failure(key)
            self._log.warning("Attempt for %s rejected: locked (%d failures in window)", mask_email(key), count - 1)
            return AttemptDecision.LOCKOUT
        if success:
            self.store.release_failure(key)
        elif count == self.threshold:
            self._log.warning("Identity %s reached %d failures; locking", mask_email(key), count)
        return AttemptDecision.ALLOW

    def retry_after(self, identity: str) -> int | None:
        """Seconds until a locked identity's window lapses, or None if not locked."""
        key = normalize_email(identity)
        now = self._clock()
        failures, window_start = self.store.get_failures(key, now, self.window_seconds)
        if failures < self.threshold or window_start is None:
            return None
        return max(1, math.ceil(window_start + self.window_seconds - now))

    def failures(self, identity: str) -> int:
        count, _ = self.store.get_failures(normalize_email(identity), self._clock(), self.window_seconds)
        return count

    def reset(self, identity: str) -> None:
        self.store.reset_failures(normalize_email(identity))

    def purge_expired(self) -> int:
        return self.store.purge_expired_attempts(self._clock(), self.window_seconds)

