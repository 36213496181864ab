"""
auth/tokens.py -- Session tokens and password hashing.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry the account id (as `sub` and as
       the integer `account_id` claim), `iat` and `exp`. TokenIssuer.verify()
       classifies every failure so the caller can tell a garbled token from a
       forged one from an old one:
         TokenMalformed         -- header/claims cannot be decoded
         TokenInvalidSignature  -- decodes, but the HMAC does not match
         TokenExpired           -- signature good, `exp` in the past
       Signature is checked before expiry, so a tampered expired token is
       reported as a bad signature.

  Passwords: bcrypt directly (no passlib wrapper). The cost factor is
       configurable (BCRYPT_ROUNDS, default 10) so a verify takes tens of
       milliseconds. Callers run these functions in a worker thread -- bcrypt
       is CPU-bound and would otherwise stall the event loop.

  SECRET_KEY: passed in explicitly from core.config.Settings at startup.
       There is no module-level default and no fallback secret.

Layer rule: no imports from api/, cache/, or notify/. Import from core/
is allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt
from jose.exceptions import JWTClaimsError

from core.config import MIN_SECRET_LENGTH
from core.errors import TokenExpired, TokenInvalidSignature, TokenMalformed

logger = logging.getLogger("credgate.auth")

_ALGORITHM = "HS256"
_DEFAULT_EXPIRE = 24 * 60 * 60  # 1 day in seconds

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str, rounds: int = 10) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    Passwords longer than 72 bytes are silently truncated by bcrypt (this is
    a known bcrypt limitation). The API layer caps passwords at 72 characters.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash -- treat as a non-match, never as a crash.
        return False


# ---------------------------------------------------------------------------
# JWT issue / verify
# ---------------------------------------------------------------------------


class TokenIssuer:
    """Create and validate session tokens bound to an account id.

    Usage:
        issuer = TokenIssuer(settings.secret_key, settings.token_expire_seconds)
        token = issuer.issue(account.id)
        account_id = issuer.verify(token)   # raises TokenError subclasses
    """

    def __init__(self, secret_key: str, expire_seconds: int = _DEFAULT_EXPIRE) -> None:
        if len(secret_key) < MIN_SECRET_LENGTH:
            raise ValueError(f"Token signing secret must be at least {MIN_SECRET_LENGTH} characters.")
        self._secret_key = secret_key
        self.expire_seconds = expire_seconds

    def issue(self, account_id: int, now: datetime | None = None) -> str:
        """Encode a signed JWT for account_id, valid for expire_seconds from now."""
        issued_at = now or datetime.now(timezone.utc)
        payload = {
            "sub": str(account_id),
            "account_id": account_id,
            "iat": issued_at,
            "exp": issued_at + timedelta(seconds=self.expire_seconds),
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def verify(self, token: str) -> int:
        """Decode and verify a JWT. Returns the embedded account id unchanged."""
        try:
            jwt.get_unverified_header(token)
            unverified = jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise TokenMalformed() from exc
        if not isinstance(unverified.get("account_id"), int):
            raise TokenMalformed("Token does not carry an account id.")

        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM])
        except ExpiredSignatureError as exc:
            raise TokenExpired() from exc
        except JWTClaimsError as exc:
            raise TokenMalformed(str(exc)) from exc
        except JWTError as exc:
            logger.info("Rejected token with invalid signature: %s", exc)
            raise TokenInvalidSignature() from exc
        return payload["account_id"]
