from typing import Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from vetconnect.models import User


class UserService:
    """Account lookups shared by authentication, session validation and admin."""

    @staticmethod
    def get_user_by_id(db: Session, user_id: UUID) -> Optional[User]:
        """Get a user by ID, including soft-deleted accounts."""
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def get_user_by_subject(db: Session, subject: str) -> Optional[User]:
        """Resolve a token subject (stringified UUID) to a user."""
        try:
            user_id = UUID(subject)
        except (TypeError, ValueError):
            return None
        return UserService.get_user_by_id(db, user_id)

    @staticmethod
    def get_user_by_email(db: Session, email: str) -> Optional[User]:
        """Case-insensitive lookup. Soft-deleted accounts are not returned."""
        return db.query(User).filter(
            func.lower(User.email) == email.strip().lower(),
            User.is_deleted.is_(False),
        ).first()

    @staticmethod
    def exists_by_email(db: Session, email: str) -> bool:
        """
        Whether the address is taken. Soft-deleted accounts still hold their
        address because the unique constraint covers them.
        """
        return db.query(User.id).filter(
            func.lower(User.email) == email.strip().lower()
        ).first() is not None

    @staticmethod
    def save(db: Session, user: User) -> User:
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
