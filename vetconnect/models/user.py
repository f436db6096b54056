import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, Text, Uuid

from vetconnect.core.database import Base


ROLE_USER = "USER"
ROLE_ADMIN = "ADMIN"


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), nullable=False, unique=True)  # Stored lower-case
    password_hash = Column(String(255), nullable=False)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    role = Column(String(20), nullable=False, default=ROLE_USER)  # "USER" or "ADMIN"

    # Bumped to invalidate every token issued before; never decreases
    token_version = Column(Integer, nullable=False, default=1)

    # Suspension
    is_active = Column(Boolean, nullable=False, default=True)
    suspended_at = Column(DateTime, nullable=True)
    suspended_reason = Column(Text, nullable=True)

    # Soft delete
    is_deleted = Column(Boolean, nullable=False, default=False)
    deleted_at = Column(DateTime, nullable=True)

    last_login_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_users_role", "role"),
        Index("ix_users_is_deleted", "is_deleted"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def __repr__(self):
        return f"<User {self.email}>"
