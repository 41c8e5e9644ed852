"""
API request and response models for Gatehouse REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from datetime import datetime
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, StringConstraints, field_validator

from auth.models import AccountView, LoginResult, Role, TokenPair
from auth.passwords import MAX_PASSWORD_LENGTH, password_problems

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

OTP_PATTERN = r"^\d{6}$"

_Otp = Annotated[str, Field(pattern=OTP_PATTERN, description="Six-digit one-time code.")]
# Password fields are never stripped. Presented passwords are only
# length-bounded; the strength policy applies to passwords being set, never to
# passwords being checked.
_PresentedPassword = Annotated[str, Field(min_length=1, max_length=MAX_PASSWORD_LENGTH)]
_FullName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]


def _check_strength(value: str) -> str:
    problems = password_problems(value)
    if problems:
        raise ValueError("password must contain " + ", ".join(problems))
    return value


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    email: EmailStr
    password: str = Field(max_length=MAX_PASSWORD_LENGTH)
    full_name: _FullName

    @field_validator("password")
    @classmethod
    def strong_password(cls, v: str) -> str:
        return _check_strength(v)


class CredentialsRequest(BaseModel):
    """Request body for POST /api/v1/auth/login-with-otp."""

    email: EmailStr
    password: _PresentedPassword


class VerifyOtpRequest(BaseModel):
    """Request body for POST /api/v1/auth/verify-otp-complete-login.

    session_token is the value returned by login-with-otp. Omit it to complete
    a passwordless login started with request-otp.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr
    otp: _Otp
    session_token: Optional[str] = Field(default=None, max_length=128)


class EmailRequest(BaseModel):
    """Request body for POST /auth/request-otp and /auth/forgot-password."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str = Field(min_length=1, max_length=128)
    new_password: str = Field(max_length=MAX_PASSWORD_LENGTH)

    @field_validator("new_password")
    @classmethod
    def strong_password(cls, v: str) -> str:
        return _check_strength(v)


class ChangePasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/change-password.

    Whitespace is significant in passwords, so no stripping here.
    """

    current_password: _PresentedPassword
    new_password: str = Field(max_length=MAX_PASSWORD_LENGTH)
    confirm_password: _PresentedPassword

    @field_validator("new_password")
    @classmethod
    def strong_password(cls, v: str) -> str:
        return _check_strength(v)


class RefreshRequest(BaseModel):
    """Request body for POST /auth/refresh and /auth/logout."""

    refresh_token: str = Field(min_length=1, max_length=4096)


class AccountCreate(BaseModel):
    """Request body for POST /api/v1/users (admin only).

    Leave password out to have Gatehouse generate a temporary one, email it to
    the new user and require a change at first login.
    """

    email: EmailStr
    full_name: _FullName
    role: Role = Role.user
    password: Optional[str] = Field(default=None, max_length=MAX_PASSWORD_LENGTH)

    @field_validator("password")
    @classmethod
    def strong_password(cls, v: Optional[str]) -> Optional[str]:
        return v if v is None else _check_strength(v)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    """Public account view. Never carries a password hash."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    full_name: str
    role: str
    is_active: bool
    must_change_password: bool
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_view(cls, view: AccountView) -> "AccountResponse":
        return cls(
            id=view.id,
            email=view.email,
            full_name=view.full_name,
            role=view.role,
            is_active=view.is_active,
            must_change_password=view.must_change_password,
            last_login=view.last_login,
            created_at=view.created_at,
        )


class TokenPairResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str
    expires_in: int

    @classmethod
    def from_pair(cls, pair: TokenPair) -> "TokenPairResponse":
        return cls(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            token_type=pair.token_type,
            expires_in=pair.expires_in,
        )


class LoginResponse(TokenPairResponse):
    """Response for a completed login or a registration."""

    account: AccountResponse
    must_change_password: bool

    @classmethod
    def from_result(cls, result: LoginResult) -> "LoginResponse":
        return cls(
            account=AccountResponse.from_view(result.account),
            access_token=result.tokens.access_token,
            refresh_token=result.tokens.refresh_token,
            token_type=result.tokens.token_type,
            expires_in=result.tokens.expires_in,
            must_change_password=result.must_change_password,
        )


class OtpChallengeResponse(BaseModel):
    """Response for POST /api/v1/auth/login-with-otp."""

    model_config = ConfigDict(frozen=True)

    session_token: str
    expires_at: datetime
    requires_otp: bool = True


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class PasswordChangedResponse(MessageResponse):
    requires_relogin: bool = True


class AccountCreatedResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    account: AccountResponse
    temporary_password_sent: bool


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    database: str = "ok"
