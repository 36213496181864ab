"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two token sources are checked in priority order:
  1. JWT cookie ("access_token") -- set by verify-otp and login.
  2. Authorization: Bearer <token> header -- API clients.

get_current_account() raises HTTP 401 when no token is present. Any other
failure (malformed, forged, expired token; store unavailable) propagates as a
CredentialError and is rendered by the handler in api/main.py.

Layer rule: auth/dependencies.py may import from fastapi because this module
is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import Account
from auth.service import CredentialService

ACCESS_COOKIE = "access_token"


def extract_token(request: Request) -> str | None:
    """Return the session token from the cookie or Bearer header, if any."""
    token: str | None = request.cookies.get(ACCESS_COOKIE)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:].strip()
    return token or None


async def get_current_account(request: Request) -> Account:
    """Require authentication. Raises HTTP 401 if the request carries no token.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(account: Account = Depends(get_current_account)): ...
    """
    token = extract_token(request)
    if token is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "No token provided."},
        )
    service: CredentialService = request.app.state.service
    return await service.authenticate(token)
