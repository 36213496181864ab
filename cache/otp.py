"""
cache/otp.py -- In-process, time-bounded, single-use store for pending OTPs.

One entry per email: (code, issued_at). Issuing overwrites, a successful
verify deletes, and entries older than the expiry window are evicted either
on the verify that finds them stale or by sweep().

Usage:
    otp_cache = OTPCache(length=6, expire_seconds=600)
    code = otp_cache.issue("alice@example.com")
    otp_cache.verify("alice@example.com", code)   # raises on failure
    otp_cache.sweep()                              # call periodically to trim old entries

The cache is shared mutable state across concurrent requests. A single lock
makes every check-then-delete and check-then-overwrite atomic; nothing inside
the lock does I/O, so holding it is always short.

Codes are drawn with secrets.randbelow over the full 10**length range and
zero-padded, so every digit combination (including leading zeros) is equally
likely.

Layer rule: no imports from api/, auth/, or notify/.
"""

from __future__ import annotations

import hmac
import secrets
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from core.errors import NotFound, OtpExpired, OtpMismatch

_DEFAULT_LENGTH = 6
_DEFAULT_EXPIRE = 10 * 60  # 10 minutes in seconds


@dataclass(frozen=True)
class PendingOtp:
    code: str
    issued_at: float


class OTPCache:
    def __init__(
        self,
        length: int = _DEFAULT_LENGTH,
        expire_seconds: float = _DEFAULT_EXPIRE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if length < 1:
            raise ValueError("OTP length must be positive.")
        self.length = length
        self.expire_seconds = expire_seconds
        self._clock = clock
        self._entries: dict[str, PendingOtp] = {}
        self._lock = threading.Lock()

    def _generate(self) -> str:
        return str(secrets.randbelow(10**self.length)).zfill(self.length)

    def _is_expired(self, entry: PendingOtp, now: float) -> bool:
        return now - entry.issued_at > self.expire_seconds

    def issue(self, email: str) -> str:
        """Generate a fresh code for email, replacing any pending one."""
        code = self._generate()
        with self._lock:
            self._entries[email] = PendingOtp(code=code, issued_at=self._clock())
        return code

    def verify(self, email: str, supplied_code: str) -> None:
        """Consume the pending code for email.

        Raises NotFound if nothing is pending, OtpExpired (and evicts) if the
        entry is past the window, OtpMismatch if the code differs. A mismatch
        leaves the entry in place for a later correct attempt.
        """
        supplied = str(supplied_code).strip()
        with self._lock:
            entry = self._entries.get(email)
            if entry is None:
                raise NotFound("OTP not generated or expired.")
            if self._is_expired(entry, self._clock()):
                del self._entries[email]
                raise OtpExpired()
            if not hmac.compare_digest(entry.code.encode(), supplied.encode()):
                raise OtpMismatch()
            del self._entries[email]

    def sweep(self) -> int:
        """Evict every entry past the expiry window. Returns number of entries removed."""
        with self._lock:
            now = self._clock()
            stale = [email for email, entry in self._entries.items() if self._is_expired(entry, now)]
            for email in stale:
                del self._entries[email]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
