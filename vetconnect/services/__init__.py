from vetconnect.services.admin_service import AdminService
from vetconnect.services.auth_service import AuthService
from vetconnect.services.token_version import TokenVersionStore
from vetconnect.services.user_service import UserService

__all__ = [
    "AdminService",
    "AuthService",
    "TokenVersionStore",
    "UserService",
]
