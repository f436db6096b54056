from vetconnect.models.user import User, ROLE_USER, ROLE_ADMIN

__all__ = [
    "User",
    "ROLE_USER",
    "ROLE_ADMIN",
]
