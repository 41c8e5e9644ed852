"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Access tokens arrive as "Authorization: Bearer <token>". There is no cookie
path and no API-key path: every client holds the JWT pair it was issued.

get_current_principal() raises TokenInvalidOrExpired (401) when the header is
missing or the token does not verify. require_admin() additionally raises
HTTP 403 for any role other than admin.

The principal is built from the token claims alone. Accounts deactivated
after the token was issued keep access until it expires (one hour by
default); refresh is refused for them immediately.

Layer rule: this is the only auth/ module that imports fastapi.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request

from auth.errors import TokenInvalidOrExpired
from auth.models import Principal


def bearer_token(request: Request) -> str | None:
    """Return the raw Bearer token from the Authorization header, if any."""
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_current_principal(request: Request) -> Principal:
    """Require a valid access token.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(principal: Principal = Depends(get_current_principal)): ...
    """
    token = bearer_token(request)
    if token is None:
        raise TokenInvalidOrExpired("missing bearer token")
    return request.app.state.token_issuer.verify_access(token)


def require_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    """Require admin role. 401 if unauthenticated, 403 if not admin."""
    if not principal.is_admin:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    return principal
