"""Auth routes, proxied to the hosted auth service.

Route overview:
  POST /login           email + password login
  POST /register        create the account once email and phone are verified
  POST /refresh         exchange a refresh token for a new session
  POST /logout          revoke the current session
  POST /reset-password  email a password reset link
  GET  /me              current user profile and settings
  PUT  /me/settings     replace the current user's settings
"""

import logging

from fastapi import APIRouter, Depends, Response, status

from printerp.auth.deps import get_current_user, oauth2_scheme
from printerp.auth.provider import AuthProvider
from printerp.auth.verification import VerificationService
from printerp.config import settings
from printerp.dependencies import get_auth_provider, get_verification_service
from printerp.middleware.exceptions import AuthProviderError, BusinessLogicError
from printerp.schemas.auth import (
    LoginRequest,
    PasswordResetRequest,
    RefreshRequest,
    RegisterOut,
    RegisterRequest,
    SessionOut,
    UserProfile,
    UserSettings,
)
from printerp.schemas.verification import VerificationPurpose

logger = logging.getLogger("printerp.auth")

router = APIRouter()


@router.post("/login", response_model=SessionOut)
async def login(body: LoginRequest, provider: AuthProvider = Depends(get_auth_provider)):
    session = await provider.sign_in_with_password(body.email, body.password)
    return SessionOut.from_session(session)


@router.post("/register", response_model=RegisterOut, status_code=201)
async def register(
    body: RegisterRequest,
    provider: AuthProvider = Depends(get_auth_provider),
    verification: VerificationService = Depends(get_verification_service),
):
    """Last step of the signup wizard.

    Both the email and the phone must have been verified recently through
    /api/verification/verify with the signup purposes.
    """
    if not await verification.is_verified(body.email, VerificationPurpose.SIGNUP_EMAIL):
        raise BusinessLogicError("Verify your email address first", "EMAIL_NOT_VERIFIED")
    if not await verification.is_verified(body.phone, VerificationPurpose.SIGNUP_PHONE):
        raise BusinessLogicError("Verify your phone number first", "PHONE_NOT_VERIFIED")

    session = await provider.sign_up(body.email, body.password, body.metadata())
    if session is None:
        return RegisterOut(message="Account created. Check your email to confirm it.")
    return RegisterOut(message="Account created", session=SessionOut.from_session(session))


@router.post("/refresh", response_model=SessionOut)
async def refresh(body: RefreshRequest, provider: AuthProvider = Depends(get_auth_provider)):
    session = await provider.refresh_session(body.refresh_token)
    return SessionOut.from_session(session)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    token: str = Depends(oauth2_scheme),
    provider: AuthProvider = Depends(get_auth_provider),
):
    await provider.sign_out(token)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/reset-password")
async def reset_password(
    body: PasswordResetRequest,
    provider: AuthProvider = Depends(get_auth_provider),
):
    """Always answers the same way so the endpoint never reveals which accounts exist."""
    try:
        await provider.reset_password_for_email(body.email, settings.password_reset_redirect_url)
    except AuthProviderError as e:
        if e.status_code != status.HTTP_401_UNAUTHORIZED:
            raise
        logger.info(f"Password reset refused by auth service: {e.message}")
    return {"message": "If that address has an account, a reset link is on its way."}


@router.get("/me", response_model=UserProfile)
async def me(user: UserProfile = Depends(get_current_user)):
    return user


@router.put("/me/settings", response_model=UserProfile)
async def update_settings(
    body: UserSettings,
    token: str = Depends(oauth2_scheme),
    provider: AuthProvider = Depends(get_auth_provider),
    _user: UserProfile = Depends(get_current_user),
):
    user = await provider.update_user({"settings": body.model_dump()}, token)
    return UserProfile.from_provider_user(user)
