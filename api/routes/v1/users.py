"""
api/routes/v1/users.py -- Account administration endpoints.

Routes:
  POST /api/v1/users   -- create an account on someone's behalf (admin only)

Without a password in the body, a temporary password is generated and
emailed, and the account must change it at first login. If that email cannot
be sent the request fails with 503.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import AccountCreate, AccountCreatedResponse, AccountResponse
from auth.dependencies import require_admin
from auth.lifecycle import CredentialLifecycleOrchestrator
from auth.models import Principal

router = APIRouter()


@router.post("/users", response_model=AccountCreatedResponse, status_code=201)
async def create_account(
    request: Request,
    body: AccountCreate,
    admin: Principal = Depends(require_admin),
) -> AccountCreatedResponse:
    """Create an account. Admin only. 409 if the email is taken."""
    lifecycle: CredentialLifecycleOrchestrator = request.app.state.lifecycle
    created = await lifecycle.admin_create_account(
        admin,
        email=body.email,
        full_name=body.full_name,
        role=body.role.value,
        password=body.password,
    )
    return AccountCreatedResponse(
        account=AccountResponse.from_view(created.account),
        temporary_password_sent=created.temporary_password_sent,
    )
