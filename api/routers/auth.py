"""Authentication router - register, login, me, password reset."""

import logging

from fastapi import APIRouter, Depends

from api.deps import get_credentials, get_current_user, get_identity
from api.services.credentials import CredentialService
from database.models import User
from database.schemas import (
    ForgotPasswordRequest,
    LoginRequest,
    RegisterRequest,
    ResetPasswordRequest,
)
from processor.identity import IdentityService, serialize_user

logger = logging.getLogger("pubmarket.auth")

router = APIRouter(prefix="/api/auth", tags=["auth"])

_RESET_MESSAGE = "If the email is registered, a password reset link has been sent."


def _token_response(user: User, credentials: CredentialService) -> dict:
    return {
        "access_token": credentials.issue_token(user.id, user.role),
        "token_type": "bearer",
        "expires_in": credentials.expire_hours * 3600,
        "user": serialize_user(user),
    }


@router.post("/register", status_code=201)
async def register(
    body: RegisterRequest,
    identity: IdentityService = Depends(get_identity),
    credentials: CredentialService = Depends(get_credentials),
):
    """Create an account (role user or advertiser) and log it in."""
    user = await identity.create_user(body.full_name, body.email, body.password, role=body.role)
    return _token_response(user, credentials)


@router.post("/login")
async def login(
    body: LoginRequest,
    identity: IdentityService = Depends(get_identity),
    credentials: CredentialService = Depends(get_credentials),
):
    """Authenticate with email + password and return JWT."""
    user = await identity.authenticate(body.email, body.password)
    logger.info("User %s logged in", user.id)
    return _token_response(user, credentials)


@router.get("/me")
async def me(user: User = Depends(get_current_user)):
    return serialize_user(user)


@router.post("/logout")
async def logout(user: User = Depends(get_current_user)):
    """Tokens are stateless; the client discards its copy."""
    return {"status": "ok"}


@router.post("/forgot-password")
async def forgot_password(
    body: ForgotPasswordRequest,
    identity: IdentityService = Depends(get_identity),
):
    """Send a reset link. The response never reveals whether the email exists."""
    await identity.request_password_reset(body.email or "")
    return {"status": "ok", "message": _RESET_MESSAGE, "expires_in_minutes": 60}


@router.post("/reset-password")
async def reset_password(
    body: ResetPasswordRequest,
    identity: IdentityService = Depends(get_identity),
    credentials: CredentialService = Depends(get_credentials),
):
    """Reset password using a valid reset token; logs the user in."""
    user = await identity.reset_password(body.token or "", body.password)
    return _token_response(user, credentials)
