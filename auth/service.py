"""
auth/service.py -- Credential lifecycle: register, verify OTP, login, resend.

Per-account state machine:

    Unregistered --register--> Registered (is_verified=False) --verify_otp--> Verified

Verified is terminal here. verify_otp is the only path that sets
is_verified=True.

Concurrency rules:
  - Every operation is a coroutine. Store calls and bcrypt run in worker
    threads (asyncio.to_thread) under asyncio.wait_for(store_timeout), so a
    slow database or a CPU-bound hash never stalls other requests.
  - No lock is held across an await. Per-email atomicity of pending codes is
    owned by OTPCache; per-email uniqueness of accounts is owned by the
    store's UNIQUE constraint (a racing insert surfaces as AlreadyExists).
  - While the ConnectionSupervisor reports the store disconnected, every
    operation fails fast with Unavailable instead of queueing.

Notification policy:
  OTP emails are dispatched as background tasks bounded by notify_timeout.
  A failed or timed-out send is logged and swallowed: the account and the
  pending code are already in place, and the user can ask for a resend.
  Transient store errors are never retried here -- retries belong to the
  supervisor. A request either succeeds or raises one CredentialError.

Layer rule: no imports from api/. cache/, core/, and notify/ are allowed.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from jose.exceptions import JOSEError
from sqlalchemy.exc import IntegrityError, OperationalError

from auth.models import Account, normalize_email
from auth.tokens import TokenIssuer, hash_password, verify_password
from cache.otp import OTPCache
from core.errors import (
    AlreadyExists,
    Internal,
    InvalidCredentials,
    NotFound,
    NotVerified,
    TokenError,
    Unavailable,
)
from notify.templates import OTP_RESEND_SUBJECT, OTP_SUBJECT, otp_email_html

if TYPE_CHECKING:
    from auth.store import AccountStore
    from core.supervisor import ConnectionSupervisor
    from notify.mailer import Notifier

logger = logging.getLogger("credgate.auth")


@dataclass
class AuthResult:
    """Successful verify_otp / login: a fresh session token plus the account."""

    token: str
    account: Account


class CredentialService:
    """Orchestrates the account store, the OTP cache, the token issuer and the notifier."""

    def __init__(
        self,
        store: AccountStore,
        otp_cache: OTPCache,
        tokens: TokenIssuer,
        notifier: Notifier,
        supervisor: ConnectionSupervisor | None = None,
        bcrypt_rounds: int = 10,
        store_timeout: float = 5.0,
        notify_timeout: float = 10.0,
    ) -> None:
        self._store = store
        self._otp = otp_cache
        self._tokens = tokens
        self._notifier = notifier
        self._supervisor = supervisor
        self.bcrypt_rounds = bcrypt_rounds
        self.store_timeout = store_timeout
        self.notify_timeout = notify_timeout
        self._pending: set[asyncio.Task] = set()
        # Unknown-email logins still pay for one bcrypt check against this hash,
        # so response time does not reveal whether the email is registered.
        self._dummy_hash = hash_password("credgate_timing_dummy", bcrypt_rounds)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def register(self, name: str, email: str, password: str) -> Account:
        """Create an unverified account and send its first OTP."""
        self._ensure_available()
        email = normalize_email(email)

        if await self._call_store(self._store.find_by_email, email) is not None:
            raise AlreadyExists()

        hashed = await self._hash(password)
        try:
            account = await self._call_store(
                self._store.create,
                Account(name=name.strip(), email=email, hashed_password=hashed),
            )
        except IntegrityError as exc:
            raise AlreadyExists() from exc

        code = self._otp.issue(email)
        self._dispatch_otp(account, code, OTP_SUBJECT)
        logger.info("Registered account id=%s email=%s", account.id, email)
        return account

    async def verify_otp(self, email: str, code: str) -> AuthResult:
        """Consume the pending OTP, mark the account verified, and issue a token.

        OTP failures (NotFound, OtpExpired, OtpMismatch) propagate unchanged
        and leave the account untouched.
        """
        self._ensure_available()
        email = normalize_email(email)

        self._otp.verify(email, code)

        account = await self._call_store(self._store.update_verified, email, True)
        if account is None:
            raise NotFound()
        logger.info("Verified account id=%s", account.id)
        return AuthResult(token=self._issue_token(account.id), account=account)

    async def login(self, email: str, password: str) -> AuthResult:
        """Check the password and issue a token for a verified account.

        Unknown email and wrong password raise the same InvalidCredentials.
        NotVerified is only reported once the password has matched.
        """
        self._ensure_available()
        email = normalize_email(email)

        account = await self._call_store(self._store.find_by_email, email)
        if account is None:
            await asyncio.to_thread(verify_password, password, self._dummy_hash)
            raise InvalidCredentials()
        if not await asyncio.to_thread(verify_password, password, account.hashed_password):
            raise InvalidCredentials()
        if not account.is_verified:
            raise NotVerified()

        logger.info("Login account id=%s", account.id)
        return AuthResult(token=self._issue_token(account.id), account=account)

    def logout(self) -> str:
        """Sessions are stateless -- the transport discards the client-held token."""
        return "Logout successful."

    async def resend_otp(self, email: str) -> None:
        """Issue a fresh OTP (replacing any pending one) and send it.

        Verification status is not checked: resending for a verified account
        is allowed and simply replaces the pending code.
        """
        self._ensure_available()
        email = normalize_email(email)

        account = await self._call_store(self._store.find_by_email, email)
        if account is None:
            raise NotFound()

        code = self._otp.issue(email)
        self._dispatch_otp(account, code, OTP_RESEND_SUBJECT)
        logger.info("Re-issued OTP for account id=%s", account.id)

    async def authenticate(self, token: str) -> Account:
        """Resolve a session token to its account. Raises TokenError subclasses."""
        account_id = self._tokens.verify(token)
        self._ensure_available()
        account = await self._call_store(self._store.get_by_id, account_id)
        if account is None:
            raise TokenError("Token subject no longer exists.")
        return account

    async def drain(self) -> None:
        """Wait for in-flight notifications. Called on shutdown and by tests."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _ensure_available(self) -> None:
        if self._supervisor is not None and not self._supervisor.connected:
            raise Unavailable()

    async def _call_store(self, fn: Callable[..., Any], *args: Any) -> Any:
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout=self.store_timeout)
        except asyncio.TimeoutError as exc:
            logger.error("Credential store call %s timed out after %.1fs", fn.__name__, self.store_timeout)
            raise Unavailable() from exc
        except OperationalError as exc:
            logger.error("Credential store call %s failed: %s", fn.__name__, exc)
            raise Unavailable() from exc

    async def _hash(self, password: str) -> str:
        try:
            return await asyncio.to_thread(hash_password, password, self.bcrypt_rounds)
        except ValueError as exc:
            logger.exception("Password hashing failed")
            raise Internal("Password could not be processed.") from exc

    def _issue_token(self, account_id: int) -> str:
        try:
            return self._tokens.issue(account_id)
        except JOSEError as exc:
            logger.exception("Token signing failed for account id=%s", account_id)
            raise Internal("Session token could not be issued.") from exc

    def _dispatch_otp(self, account: Account, code: str, subject: str) -> None:
        body = otp_email_html(account.name, code, int(self._otp.expire_seconds))
        task = asyncio.create_task(self._deliver(account.email, subject, body))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, recipient: str, subject: str, body_html: str) -> None:
        try:
            await asyncio.wait_for(self._notifier.send(recipient, subject, body_html), timeout=self.notify_timeout)
        except asyncio.TimeoutError:
            logger.warning("Email '%s' to %s timed out after %.0fs", subject, recipient, self.notify_timeout)
        except Exception as exc:
            logger.warning("Email '%s' to %s failed: %s", subject, recipient, exc)
