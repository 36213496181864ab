"""
API request and response models for credgate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Input validation (shape, length, email format) happens here, before anything
reaches the credential service.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import Account, normalize_email

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Pragmatic address check: one @, no whitespace, a dot in the domain part.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
OTP_PATTERN = r"^\d{4,10}$"

# bcrypt only looks at the first 72 bytes of a password.
_BCRYPT_MAX_BYTES = 72


def _check_password_bytes(value: str) -> str:
    if len(value.encode("utf-8")) > _BCRYPT_MAX_BYTES:
        raise ValueError(f"Password must be at most {_BCRYPT_MAX_BYTES} bytes.")
    return value


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class _EmailBody(BaseModel):
    # No model-wide str_strip_whitespace: passwords keep their whitespace.

    email: str = Field(min_length=3, max_length=255, pattern=EMAIL_PATTERN)

    @field_validator("email", mode="before")
    @classmethod
    def normalize(cls, value):
        """Trim and lowercase before the pattern check runs."""
        return normalize_email(value) if isinstance(value, str) else value


class SignupRequest(_EmailBody):
    """Request body for POST /api/v1/auth/signup."""

    name: str = Field(min_length=2, max_length=100)
    password: str = Field(min_length=6, max_length=_BCRYPT_MAX_BYTES)

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


class LoginRequest(_EmailBody):
    """Request body for POST /api/v1/auth/login."""

    password: str = Field(min_length=6, max_length=_BCRYPT_MAX_BYTES)


class VerifyOtpRequest(_EmailBody):
    """Request body for POST /api/v1/auth/verify-otp."""

    otp: str = Field(pattern=OTP_PATTERN)


class ResendOtpRequest(_EmailBody):
    """Request body for POST /api/v1/auth/resend-otp."""


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    """Public projection of an account: id, name, email."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    email: str

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        return cls(**account.projection())


class SignupResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    user_id: int


class AuthResponse(BaseModel):
    """Response for verify-otp and login: token plus account projection."""

    model_config = ConfigDict(frozen=True)

    message: str
    token: str
    user: AccountResponse


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Error envelope
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable code plus human-readable message."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
