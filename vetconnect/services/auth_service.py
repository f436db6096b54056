import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from vetconnect.core.exceptions import (
    AccountSuspendedError,
    AlreadyExistsError,
    InvalidCredentialsError,
    InvalidTokenError,
    SessionExpiredError,
)
from vetconnect.core.security import (
    TOKEN_TYPE_ACCESS,
    TOKEN_TYPE_PASSWORD_RESET,
    TOKEN_TYPE_REFRESH,
    TokenCodec,
    get_password_hash,
    verify_password,
)
from vetconnect.core.token_blacklist import RevocationStore
from vetconnect.models import ROLE_USER, User
from vetconnect.schemas.auth import AuthResponse, RegisterRequest, UserResponse
from vetconnect.services.token_version import TokenVersionStore
from vetconnect.services.user_service import UserService

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


def validate_password_strength(password: str) -> None:
    """Validate password meets minimum requirements. Raises ValueError if weak."""
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if not any(c.isupper() for c in password):
        raise ValueError("Password must contain at least one uppercase letter")
    if not any(c.islower() for c in password):
        raise ValueError("Password must contain at least one lowercase letter")
    if not any(c.isdigit() for c in password):
        raise ValueError("Password must contain at least one number")


class AuthService:
    """Registration, sign-in and the token lifecycle."""

    @staticmethod
    def issue_token_pair(codec: TokenCodec, user: User) -> tuple[str, str]:
        """Access and refresh token bound to the user's current token version."""
        access_token = codec.issue_access_token(user.id, user.email, user.token_version)
        refresh_token = codec.issue_refresh_token(user.id, user.email, user.token_version)
        return access_token, refresh_token

    @staticmethod
    def token_response(codec: TokenCodec, user: User) -> AuthResponse:
        access_token, refresh_token = AuthService.issue_token_pair(codec, user)
        return AuthResponse(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=int(codec.access_ttl.total_seconds()),
            user=UserResponse.model_validate(user),
        )

    @staticmethod
    def register(db: Session, data: RegisterRequest) -> User:
        """
        Create a USER account. The email must already be sanitized.
        Raises ValueError for a weak password, AlreadyExistsError for a taken email.
        """
        validate_password_strength(data.password)

        if UserService.exists_by_email(db, data.email):
            raise AlreadyExistsError("User", detail="Email already registered")

        user = User(
            email=data.email.lower(),
            password_hash=get_password_hash(data.password),
            first_name=data.first_name,
            last_name=data.last_name,
            role=ROLE_USER,
            token_version=1,
            is_active=True,
            is_deleted=False,
        )
        user = UserService.save(db, user)
        logger.info(f"New user registered: {user.id}")
        return user

    @staticmethod
    def authenticate_user(db: Session, email: str, password: str) -> Optional[User]:
        """Return the user when the password matches. Soft-deleted accounts never match."""
        user = UserService.get_user_by_email(db, email)
        if not user:
            return None
        if not verify_password(password, user.password_hash):
            return None
        return user

    @staticmethod
    def login(db: Session, email: str, password: str) -> User:
        """
        Check credentials and record the sign-in.
        Raises InvalidCredentialsError or AccountSuspendedError.
        """
        user = AuthService.authenticate_user(db, email, password)
        if not user:
            logger.info("Failed login attempt")
            raise InvalidCredentialsError()

        if not user.is_active:
            logger.warning(f"Login attempt on suspended account: {user.id}")
            raise AccountSuspendedError()

        user.last_login_at = datetime.utcnow()
        db.commit()
        db.refresh(user)

        logger.info(f"User logged in: {user.id}")
        return user

    @staticmethod
    def refresh_tokens(
        db: Session,
        codec: TokenCodec,
        store: RevocationStore,
        refresh_token: str,
    ) -> tuple[User, str, str]:
        """
        Exchange a refresh token for a new pair. The presented refresh token is
        claimed before anything else happens, so each one can be used once even
        when two requests race with it.

        Raises InvalidTokenError for bad, expired, non-refresh or blacklisted
        tokens and SessionExpiredError when the session was invalidated.
        """
        if not codec.validate(refresh_token, expected_type=TOKEN_TYPE_REFRESH):
            raise InvalidTokenError("Invalid or expired refresh token")
        claims = codec.decode(refresh_token, expected_type=TOKEN_TYPE_REFRESH)

        if not store.claim_token(refresh_token, codec.time_until_expiry(refresh_token)):
            logger.warning(f"Reused refresh token presented for user: {claims.subject}")
            raise InvalidTokenError("Token has been revoked")

        if store.is_all_revoked_for_account(claims.subject, issued_at=claims.issued_at):
            raise SessionExpiredError()

        user = UserService.get_user_by_subject(db, claims.subject)
        if user is None or user.is_deleted or not user.is_active:
            raise SessionExpiredError()

        if claims.token_version != user.token_version:
            logger.warning(
                f"Refresh token version mismatch for user: {user.id}. "
                f"Token version: {claims.token_version}, Current version: {user.token_version}"
            )
            raise SessionExpiredError()

        access_token, new_refresh_token = AuthService.issue_token_pair(codec, user)

        logger.info(f"Tokens refreshed for user: {user.id}")
        return user, access_token, new_refresh_token

    @staticmethod
    def logout(codec: TokenCodec, store: RevocationStore, token: Optional[str]) -> None:
        """
        Blacklist the access token for the rest of its natural lifetime.
        Best effort: a missing, malformed or expired token is simply ignored.
        """
        if not token:
            return
        try:
            claims = codec.decode(token, expected_type=TOKEN_TYPE_ACCESS)
        except InvalidTokenError:
            logger.debug("Logout with unusable token, nothing to blacklist")
            return

        if not codec.is_expired(token):
            store.revoke_token(token, codec.time_until_expiry(token))
        logger.info(f"User logged out: {claims.subject}")

    @staticmethod
    def change_password(
        db: Session,
        user: User,
        current_password: str,
        new_password: str,
    ) -> User:
        """
        Change the password after verifying the current one.
        Every session issued before the change stops working.
        """
        if not verify_password(current_password, user.password_hash):
            raise ValueError("Current password is incorrect")
        if current_password == new_password:
            raise ValueError("New password must be different from the current password")
        validate_password_strength(new_password)

        user.password_hash = get_password_hash(new_password)
        TokenVersionStore(db).bump(user.id)
        db.commit()
        db.refresh(user)

        logger.info(f"Password changed for user: {user.id}")
        return user

    @staticmethod
    def request_password_reset(db: Session, codec: TokenCodec, email: str) -> Optional[str]:
        """
        Issue a password-reset token for an active account, or None.
        Callers must answer identically either way.
        """
        user = UserService.get_user_by_email(db, email)
        if not user or not user.is_active:
            logger.info("Password reset requested for unknown or inactive account")
            return None

        token = codec.issue_password_reset_token(user.id, user.email, user.token_version)
        logger.info(f"Password reset token issued for user: {user.id}")
        return token

    @staticmethod
    def reset_password(db: Session, codec: TokenCodec, token: str, new_password: str) -> User:
        """
        Set a new password from a reset token. Bumping the version makes the
        reset token itself, and every existing session, unusable.
        """
        if not codec.validate(token, expected_type=TOKEN_TYPE_PASSWORD_RESET):
            raise InvalidTokenError("Invalid or expired reset token")
        claims = codec.decode(token, expected_type=TOKEN_TYPE_PASSWORD_RESET)

        user = UserService.get_user_by_subject(db, claims.subject)
        if user is None or user.is_deleted or not user.is_active:
            raise InvalidTokenError("Invalid or expired reset token")
        if claims.token_version != user.token_version:
            raise InvalidTokenError("Reset token has already been used")

        validate_password_strength(new_password)

        user.password_hash = get_password_hash(new_password)
        TokenVersionStore(db).bump(user.id)
        db.commit()
        db.refresh(user)

        logger.info(f"Password reset completed for user: {user.id}")
        return user
