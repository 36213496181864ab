"""
api/routes/v1/auth.py -- Registration, OTP verification, and session endpoints.

Routes:
  POST /api/v1/auth/signup       -- create unverified account; emails an OTP
  POST /api/v1/auth/verify-otp   -- consume OTP; marks account verified; sets JWT cookie
  POST /api/v1/auth/resend-otp   -- replace the pending OTP and email it again
  POST /api/v1/auth/login        -- password login for verified accounts; sets JWT cookie
  POST /api/v1/auth/logout       -- clears cookie; 200
  GET  /api/v1/auth/me           -- current account projection (requires auth)

Handlers are thin: they unpack the validated body, call CredentialService,
and shape the response. Every failure is a CredentialError rendered by the
exception handler in api/main.py.

Security:
  POST /login and /resend-otp are rate-limited per IP (LOGIN_RATE_LIMIT).
  @limiter.limit sits BELOW @router.post so FastAPI registers the limited
  wrapper; the other order registers the bare function and never limits.
  Cache-Control: no-store on every response that carries a token.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_rate_limit
from api.models import (
    AccountResponse,
    AuthResponse,
    LoginRequest,
    MessageResponse,
    ResendOtpRequest,
    SignupRequest,
    SignupResponse,
    VerifyOtpRequest,
)
from auth.dependencies import ACCESS_COOKIE, get_current_account
from auth.models import Account
from auth.service import AuthResult, CredentialService
from core.config import get_settings

# Auth policy:
# - POST /api/v1/auth/signup, verify-otp, resend-otp, login: public -- they establish identity
# - POST /api/v1/auth/logout: public -- clearing a cookie needs no prior auth
# - GET  /api/v1/auth/me: requires auth (get_current_account)
router = APIRouter()


def _service(request: Request) -> CredentialService:
    return request.app.state.service


def _token_response(message: str, result: AuthResult) -> JSONResponse:
    """Return token + projection and write the token as an httpOnly cookie.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="strict": never sent on cross-site requests.
    max_age matches the JWT expiry so both expire together.
    """
    settings = get_settings()
    resp = JSONResponse(
        status_code=200,
        content=AuthResponse(
            message=message,
            token=result.token,
            user=AccountResponse.from_account(result.account),
        ).model_dump(),
    )
    resp.set_cookie(
        ACCESS_COOKIE,
        value=result.token,
        httponly=True,
        samesite="strict",
        secure=settings.secure_cookies,
        max_age=settings.token_expire_seconds,
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/signup", response_model=SignupResponse, status_code=201)
async def signup(request: Request, body: SignupRequest) -> SignupResponse:
    """Register a new account and email its first OTP.

    Email delivery happens in the background; a delivery failure does not
    fail the signup (the caller can use /resend-otp).
    """
    account = await _service(request).register(body.name, body.email, body.password)
    return SignupResponse(
        message="User registered successfully. Please check your email for the OTP.",
        user_id=account.id,
    )


@router.post("/auth/verify-otp", response_model=AuthResponse)
async def verify_otp(request: Request, body: VerifyOtpRequest) -> JSONResponse:
    """Verify the emailed OTP; on success the account is verified and logged in."""
    result = await _service(request).verify_otp(body.email, body.otp)
    return _token_response("Account verified successfully.", result)


@router.post("/auth/resend-otp", response_model=MessageResponse)
@limiter.limit(login_rate_limit)
async def resend_otp(request: Request, body: ResendOtpRequest) -> MessageResponse:
    """Replace the pending OTP for an existing account and email it."""
    await _service(request).resend_otp(body.email)
    return MessageResponse(message="New OTP sent successfully.")


@router.post("/auth/login", response_model=AuthResponse)
@limiter.limit(login_rate_limit)
async def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set JWT cookie.

    Unknown email and wrong password return the same invalid_credentials
    error. An unverified account gets not_verified only after the password
    has matched.
    """
    result = await _service(request).login(body.email, body.password)
    return _token_response("Login successful.", result)


@router.post("/auth/logout", response_model=MessageResponse)
async def logout(request: Request) -> JSONResponse:
    """Clear the JWT cookie and end the session."""
    message = _service(request).logout()
    resp = JSONResponse(content=MessageResponse(message=message).model_dump())
    resp.delete_cookie(ACCESS_COOKIE, httponly=True, samesite="strict", secure=get_settings().secure_cookies)
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=AccountResponse)
async def me(current_account: Account = Depends(get_current_account)) -> AccountResponse:
    """Return the projection of the currently authenticated account."""
    return AccountResponse.from_account(current_account)
