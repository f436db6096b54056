from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from vetconnect.api.deps import (
    get_bearer_token,
    get_current_user,
    get_db,
    get_optional_principal,
    get_revocation_store,
    get_token_codec,
    rate_limited,
)
from vetconnect.core.config import settings
from vetconnect.core.exceptions import ValidationError
from vetconnect.core.rate_limit import RateLimitKind, limiter
from vetconnect.core.sanitization import sanitize_email, sanitize_name, validate_email
from vetconnect.core.security import TokenCodec
from vetconnect.core.session import Principal
from vetconnect.core.token_blacklist import RevocationStore
from vetconnect.models import User
from vetconnect.schemas.auth import (
    AuthResponse,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    ForgotPasswordResponse,
    LoginRequest,
    MessageResponse,
    RefreshTokenRequest,
    RegisterRequest,
    ResetPasswordRequest,
    TokenValidationResponse,
    UserResponse,
)
from vetconnect.services.auth_service import AuthService

router = APIRouter(prefix="/auth", tags=["Authentication"])

PASSWORD_RESET_MESSAGE = "If an account exists for that email, a password reset link has been sent."


@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limited(RateLimitKind.REGISTER))],
)
def register(
    data: RegisterRequest,
    db: Session = Depends(get_db),
    codec: TokenCodec = Depends(get_token_codec),
):
    """
    Create a new account and sign it in.
    Returns an access/refresh token pair and the user.
    """
    data.email = sanitize_email(data.email)
    data.first_name = sanitize_name(data.first_name)
    data.last_name = sanitize_name(data.last_name)

    if not validate_email(data.email):
        raise ValidationError("Invalid email format")
    if not data.first_name or not data.last_name:
        raise ValidationError("First and last name are required")

    try:
        user = AuthService.register(db, data)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )

    return AuthService.token_response(codec, user)


@router.post(
    "/login",
    response_model=AuthResponse,
    dependencies=[Depends(rate_limited(RateLimitKind.LOGIN))],
)
def login(
    data: LoginRequest,
    db: Session = Depends(get_db),
    codec: TokenCodec = Depends(get_token_codec),
):
    """Authenticate with email and password."""
    email = sanitize_email(data.email)
    user = AuthService.login(db, email, data.password)
    return AuthService.token_response(codec, user)


@router.post("/refresh", response_model=AuthResponse)
@limiter.limit("30/minute")
def refresh_access_token(
    request: Request,
    data: RefreshTokenRequest,
    db: Session = Depends(get_db),
    codec: TokenCodec = Depends(get_token_codec),
    store: RevocationStore = Depends(get_revocation_store),
):
    """
    Exchange a refresh token for a new token pair.
    Implements token rotation: the presented refresh token stops working.
    """
    user, access_token, refresh_token = AuthService.refresh_tokens(
        db, codec, store, data.refresh_token
    )
    return AuthResponse(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_in=int(codec.access_ttl.total_seconds()),
        user=UserResponse.model_validate(user),
    )


@router.post("/logout", response_model=MessageResponse)
def logout(
    token: Optional[str] = Depends(get_bearer_token),
    codec: TokenCodec = Depends(get_token_codec),
    store: RevocationStore = Depends(get_revocation_store),
):
    """
    Blacklist the presented access token.
    Always succeeds, even without a usable token.
    """
    AuthService.logout(codec, store, token)
    return MessageResponse(message="Logged out successfully")


@router.get("/validate", response_model=TokenValidationResponse)
def validate_token(
    principal: Optional[Principal] = Depends(get_optional_principal),
):
    """Report whether the bearer token currently grants a session."""
    if principal is None:
        return TokenValidationResponse(valid=False)
    return TokenValidationResponse(
        valid=True,
        user_id=principal.id,
        email=principal.email,
        role=principal.role,
    )


@router.get("/me", response_model=UserResponse)
def get_current_user_info(
    current_user: User = Depends(get_current_user),
):
    return UserResponse.model_validate(current_user)


@router.post("/change-password", response_model=MessageResponse)
def change_password(
    data: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Change the current user's password.
    Requires current password verification. All existing sessions, this one
    included, are signed out.
    """
    try:
        AuthService.change_password(db, current_user, data.current_password, data.new_password)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )

    return MessageResponse(message="Password updated successfully. Please sign in again.")


@router.post(
    "/forgot-password",
    response_model=ForgotPasswordResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(rate_limited(RateLimitKind.PASSWORD_RESET))],
)
def forgot_password(
    data: ForgotPasswordRequest,
    db: Session = Depends(get_db),
    codec: TokenCodec = Depends(get_token_codec),
):
    """
    Start the password reset flow.
    In production the response is identical whether or not the account exists.
    """
    token = AuthService.request_password_reset(db, codec, sanitize_email(data.email))
    if settings.is_production:
        return ForgotPasswordResponse(message=PASSWORD_RESET_MESSAGE)
    return ForgotPasswordResponse(message=PASSWORD_RESET_MESSAGE, reset_token=token)


@router.post(
    "/reset-password",
    response_model=MessageResponse,
    dependencies=[Depends(rate_limited(RateLimitKind.PASSWORD_RESET))],
)
def reset_password(
    data: ResetPasswordRequest,
    db: Session = Depends(get_db),
    codec: TokenCodec = Depends(get_token_codec),
):
    """Set a new password using a reset token."""
    try:
        AuthService.reset_password(db, codec, data.token, data.new_password)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )

    return MessageResponse(message="Password has been reset. Please sign in with your new password.")
