"""
api/routes/v1/auth.py -- Credential lifecycle REST endpoints.

Routes:
  POST /api/v1/auth/register                    -- self sign-up; returns account + tokens
  POST /api/v1/auth/login-with-otp              -- password check; emails a 2FA code
  POST /api/v1/auth/verify-otp-complete-login   -- code check; returns account + tokens
  POST /api/v1/auth/request-otp                 -- passwordless code by email (generic answer)
  POST /api/v1/auth/forgot-password             -- reset link by email (generic answer)
  POST /api/v1/auth/reset-password              -- spend reset token, set password
  POST /api/v1/auth/refresh                     -- rotate the token pair
  POST /api/v1/auth/change-password             -- requires auth; signs out every device
  POST /api/v1/auth/logout                      -- requires auth; revokes one refresh token
  POST /api/v1/auth/logout-all                  -- requires auth; revokes every refresh token
  GET  /api/v1/auth/me                          -- requires auth; account view

Security:
  [H2] Password and code endpoints are rate-limited per IP (LOGIN_RATE_LIMIT);
       endpoints that send email use OTP_RATE_LIMIT.
  [C1] Failures are raised as AuthError subclasses. The handler in api/main.py
       renders only their public face, so wrong email, wrong password and
       inactive account are indistinguishable.
  [M5] Cache-Control: no-store on every response that carries a token.

Route handlers stay thin: parse, call the orchestrator, map to a response
model. All rules live in auth/lifecycle.py.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import limiter, login_limit, otp_limit
from api.models import (
    AccountResponse,
    ChangePasswordRequest,
    CredentialsRequest,
    EmailRequest,
    LoginResponse,
    MessageResponse,
    OtpChallengeResponse,
    PasswordChangedResponse,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    TokenPairResponse,
    VerifyOtpRequest,
)
from auth.dependencies import get_current_principal
from auth.lifecycle import CredentialLifecycleOrchestrator
from auth.models import Principal

# Auth policy:
# - register, login-with-otp, verify-otp-complete-login, request-otp,
#   forgot-password, reset-password, refresh: public
# - change-password, logout, logout-all, me: requires auth (get_current_principal)
router = APIRouter()


def _lifecycle(request: Request) -> CredentialLifecycleOrchestrator:
    return request.app.state.lifecycle


def _no_store(response: Response) -> None:
    response.headers["Cache-Control"] = "no-store"  # [M5]


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=LoginResponse, status_code=201)
@limiter.limit(otp_limit)  # must be BELOW @router so the registered endpoint is the limited one
async def register(request: Request, response: Response, body: RegisterRequest) -> LoginResponse:
    """Create an account and sign it in. 409 if the email is taken."""
    result = await _lifecycle(request).register(body.email, body.password, body.full_name)
    _no_store(response)
    return LoginResponse.from_result(result)


@router.post("/auth/login-with-otp", response_model=OtpChallengeResponse)
@limiter.limit(login_limit)  # [H2]
async def login_with_otp(request: Request, response: Response, body: CredentialsRequest) -> OtpChallengeResponse:
    """Step 1 of password + code login.

    On success a six-digit code is emailed and the returned session_token must
    be presented with it to /auth/verify-otp-complete-login.
    """
    challenge = await _lifecycle(request).login_with_otp(body.email, body.password)
    _no_store(response)
    return OtpChallengeResponse(
        session_token=challenge.session_token,
        expires_at=challenge.expires_at,
        requires_otp=challenge.requires_otp,
    )


@router.post("/auth/verify-otp-complete-login", response_model=LoginResponse)
@limiter.limit(login_limit)  # [H2]
async def verify_otp_complete_login(request: Request, response: Response, body: VerifyOtpRequest) -> LoginResponse:
    """Step 2: exchange the emailed code (and session token, if any) for tokens."""
    result = await _lifecycle(request).verify_otp_complete_login(body.email, body.otp, body.session_token)
    _no_store(response)
    return LoginResponse.from_result(result)


@router.post("/auth/request-otp", response_model=MessageResponse)
@limiter.limit(otp_limit)
async def request_otp(request: Request, body: EmailRequest) -> MessageResponse:
    """Email a passwordless sign-in code. The answer never reveals whether the account exists."""
    return MessageResponse(message=await _lifecycle(request).request_otp(body.email))


@router.post("/auth/forgot-password", response_model=MessageResponse)
@limiter.limit(otp_limit)
async def forgot_password(request: Request, body: EmailRequest) -> MessageResponse:
    """Email a reset link. The answer never reveals whether the account exists."""
    return MessageResponse(message=await _lifecycle(request).forgot_password(body.email))


@router.post("/auth/reset-password", response_model=MessageResponse)
@limiter.limit(login_limit)
async def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    return MessageResponse(message=await _lifecycle(request).reset_password(body.token, body.new_password))


@router.post("/auth/refresh", response_model=TokenPairResponse)
async def refresh(request: Request, response: Response, body: RefreshRequest) -> TokenPairResponse:
    """Spend a refresh token and return a new pair. Each refresh token works once."""
    pair = await _lifecycle(request).refresh(body.refresh_token)
    _no_store(response)
    return TokenPairResponse.from_pair(pair)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/change-password", response_model=PasswordChangedResponse)
async def change_password(
    request: Request,
    body: ChangePasswordRequest,
    principal: Principal = Depends(get_current_principal),
) -> PasswordChangedResponse:
    """Change the caller's password. Every refresh token is revoked; sign in again."""
    message = await _lifecycle(request).change_password(
        principal, body.current_password, body.new_password, body.confirm_password
    )
    return PasswordChangedResponse(message=message, requires_relogin=True)


@router.post("/auth/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    body: RefreshRequest,
    principal: Principal = Depends(get_current_principal),
) -> MessageResponse:
    """Revoke the presented refresh token. The access token lives until it expires."""
    return MessageResponse(message=await _lifecycle(request).logout(principal, body.refresh_token))


@router.post("/auth/logout-all", response_model=MessageResponse)
async def logout_all(
    request: Request,
    principal: Principal = Depends(get_current_principal),
) -> MessageResponse:
    return MessageResponse(message=await _lifecycle(request).logout_all(principal))


@router.get("/auth/me", response_model=AccountResponse)
async def me(request: Request, principal: Principal = Depends(get_current_principal)) -> AccountResponse:
    """Return the account behind the current access token."""
    return AccountResponse.from_view(await _lifecycle(request).profile(principal))
