from vetconnect.api.routes.auth import router as auth_router
from vetconnect.api.routes.admin import router as admin_router

__all__ = ["auth_router", "admin_router"]
