"""
core/errors.py -- Classified failures for the credential lifecycle.

Every failure the engine can return is a CredentialError subclass carrying a
stable machine-readable `kind`, the HTTP status the transport maps it to, and
a human-readable message. api/main.py registers one exception handler for the
base class, so route handlers never build error payloads themselves.

InvalidCredentials deliberately has a single message for "unknown email" and
"wrong password" -- the distinction would enable account enumeration.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, cache/, or notify/.
"""

from __future__ import annotations


class CredentialError(Exception):
    """Base class for all classified credential failures."""

    kind: str = "internal"
    status_code: int = 500
    default_message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"code": self.kind, "message": self.message}


class ValidationFailed(CredentialError):
    kind = "validation_failed"
    status_code = 422
    default_message = "Validation failed."


class AlreadyExists(CredentialError):
    kind = "already_exists"
    status_code = 409
    default_message = "User already exists."


class NotFound(CredentialError):
    kind = "not_found"
    status_code = 404
    default_message = "User not found."


class InvalidCredentials(CredentialError):
    kind = "invalid_credentials"
    status_code = 401
    default_message = "Invalid email or password."


class NotVerified(CredentialError):
    kind = "not_verified"
    status_code = 403
    default_message = "Please verify your account first."


class OtpExpired(CredentialError):
    kind = "otp_expired"
    status_code = 400
    default_message = "OTP has expired. Request a new one."


class OtpMismatch(CredentialError):
    kind = "otp_mismatch"
    status_code = 400
    default_message = "Invalid OTP."


class Unavailable(CredentialError):
    kind = "unavailable"
    status_code = 503
    default_message = "Credential store is unavailable. Try again shortly."


class Internal(CredentialError):
    kind = "internal"
    status_code = 500


# ---------------------------------------------------------------------------
# Session token failures
# ---------------------------------------------------------------------------


class TokenError(CredentialError):
    kind = "token_invalid"
    status_code = 401
    default_message = "Invalid or expired token."


class TokenMalformed(TokenError):
    kind = "token_malformed"
    default_message = "Token could not be decoded."


class TokenInvalidSignature(TokenError):
    kind = "token_invalid_signature"
    default_message = "Token signature is invalid."


class TokenExpired(TokenError):
    kind = "token_expired"
    default_message = "Token has expired."
