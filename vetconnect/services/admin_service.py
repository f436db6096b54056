import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session

from vetconnect.core.exceptions import NotFoundError
from vetconnect.core.rate_limit import RateLimiter
from vetconnect.core.sanitization import sanitize_reason
from vetconnect.core.security import TokenCodec
from vetconnect.core.token_blacklist import RevocationStore
from vetconnect.models import User
from vetconnect.services.token_version import TokenVersionStore
from vetconnect.services.user_service import UserService

logger = logging.getLogger(__name__)


class AdminService:
    """
    Account moderation. Every action that locks a user out both bumps the
    token version and writes an account-wide revocation record, so existing
    sessions die even when one of the two mechanisms is unavailable.
    """

    @staticmethod
    def _get_user_or_404(db: Session, user_id: UUID) -> User:
        user = UserService.get_user_by_id(db, user_id)
        if not user:
            raise NotFoundError("User", detail=f"User not found with ID: {user_id}")
        return user

    @staticmethod
    def _end_sessions(db: Session, codec: TokenCodec, store: RevocationStore, user: User) -> None:
        TokenVersionStore(db).bump(user.id)
        store.revoke_all_for_account(user.id, codec.max_token_lifetime)

    @staticmethod
    def get_user_details(db: Session, user_id: UUID) -> User:
        logger.debug(f"Admin fetching user details: {user_id}")
        return AdminService._get_user_or_404(db, user_id)

    @staticmethod
    def suspend_user(
        db: Session,
        codec: TokenCodec,
        store: RevocationStore,
        user_id: UUID,
        reason: str,
        actor_id: UUID,
    ) -> User:
        logger.info(f"Admin {actor_id} suspending user: {user_id}")
        user = AdminService._get_user_or_404(db, user_id)
        if user.id == actor_id:
            raise ValueError("You cannot suspend your own account")
        if user.is_deleted:
            raise ValueError("Cannot suspend a deleted user")

        sanitized_reason = sanitize_reason(reason)
        user.is_active = False
        user.suspended_at = datetime.utcnow()
        user.suspended_reason = sanitized_reason
        AdminService._end_sessions(db, codec, store, user)
        db.commit()
        db.refresh(user)

        logger.info(f"User {user_id} suspended. Reason: {sanitized_reason}")
        return user

    @staticmethod
    def activate_user(db: Session, user_id: UUID) -> User:
        """Lift a suspension. Old tokens stay dead; the user signs in again."""
        logger.info(f"Admin activating user: {user_id}")
        user = AdminService._get_user_or_404(db, user_id)
        if user.is_deleted:
            raise ValueError("Cannot activate a deleted user")

        user.is_active = True
        user.suspended_at = None
        user.suspended_reason = None
        db.commit()
        db.refresh(user)

        logger.info(f"User activated successfully: {user_id}")
        return user

    @staticmethod
    def soft_delete_user(
        db: Session,
        codec: TokenCodec,
        store: RevocationStore,
        user_id: UUID,
        actor_id: UUID,
    ) -> User:
        logger.warning(f"Admin {actor_id} soft deleting user: {user_id}")
        user = AdminService._get_user_or_404(db, user_id)
        if user.is_admin:
            raise ValueError("Cannot delete admin users")
        if user.is_deleted:
            raise ValueError("User is already deleted")

        user.is_deleted = True
        user.deleted_at = datetime.utcnow()
        AdminService._end_sessions(db, codec, store, user)
        db.commit()
        db.refresh(user)

        logger.warning(f"User soft deleted: {user_id}")
        return user

    @staticmethod
    def hard_delete_user(
        db: Session,
        codec: TokenCodec,
        store: RevocationStore,
        user_id: UUID,
        actor_id: UUID,
    ) -> None:
        """Remove the row for good. Irreversible."""
        logger.warning(f"Admin {actor_id} permanently deleting user: {user_id}")
        user = AdminService._get_user_or_404(db, user_id)
        if user.is_admin:
            raise ValueError("Cannot delete admin users")

        # The version disappears with the row; the blacklist record outlives it
        store.revoke_all_for_account(user.id, codec.max_token_lifetime)
        db.delete(user)
        db.commit()

        logger.warning(f"User permanently deleted: {user_id}")

    @staticmethod
    def revoke_sessions(
        db: Session,
        codec: TokenCodec,
        store: RevocationStore,
        user_id: UUID,
        actor_id: UUID,
    ) -> User:
        """Security-incident response: sign the user out everywhere."""
        logger.warning(f"Admin {actor_id} revoking all sessions for user: {user_id}")
        user = AdminService._get_user_or_404(db, user_id)

        AdminService._end_sessions(db, codec, store, user)
        db.commit()
        db.refresh(user)

        logger.warning(f"All sessions revoked for user: {user_id}")
        return user

    @staticmethod
    def clear_rate_limits(rate_limiter: RateLimiter, ip: str) -> None:
        logger.info(f"Admin clearing rate limits for IP: {ip}")
        rate_limiter.clear(ip)
