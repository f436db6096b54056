from functools import lru_cache
from typing import Callable, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from vetconnect.core.config import settings
from vetconnect.core.database import get_db
from vetconnect.core.exceptions import ForbiddenError, NotAuthenticatedError, RateLimitExceededError
from vetconnect.core.rate_limit import RateLimiter, RateLimitKind, get_client_ip
from vetconnect.core.security import TokenCodec
from vetconnect.core.session import Principal, SessionValidator
from vetconnect.core.token_blacklist import RevocationStore
from vetconnect.models import User
from vetconnect.services.token_version import TokenVersionStore
from vetconnect.services.user_service import UserService


# HTTP Bearer token scheme; a missing header is not an error here
security = HTTPBearer(auto_error=False)


@lru_cache
def get_token_codec() -> TokenCodec:
    return TokenCodec.from_settings(settings)


def get_revocation_store(request: Request) -> RevocationStore:
    return request.app.state.revocation_store


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[str]:
    return credentials.credentials if credentials else None


def get_session_validator(
    db: Session = Depends(get_db),
    codec: TokenCodec = Depends(get_token_codec),
    store: RevocationStore = Depends(get_revocation_store),
) -> SessionValidator:
    return SessionValidator(
        codec=codec,
        revocations=store,
        load_account=lambda subject: UserService.get_user_by_subject(db, subject),
        versions=TokenVersionStore(db),
    )


def get_optional_principal(
    request: Request,
    token: Optional[str] = Depends(get_bearer_token),
    validator: SessionValidator = Depends(get_session_validator),
) -> Optional[Principal]:
    """
    Run the session validator for this request and attach the result to
    ``request.state.principal``. Never raises: an unusable token simply
    leaves the request anonymous.
    """
    principal = validator.authenticate(token)
    request.state.principal = principal
    return principal


def get_current_principal(
    principal: Optional[Principal] = Depends(get_optional_principal),
) -> Principal:
    if principal is None:
        raise NotAuthenticatedError()
    return principal


def get_current_user(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
) -> User:
    """
    Dependency to get the current authenticated user.
    Raises NotAuthenticatedError if the request carries no valid session.
    """
    user = UserService.get_user_by_id(db, principal.id)
    if user is None:
        raise NotAuthenticatedError()
    return user


def require_admin(
    principal: Principal = Depends(get_current_principal),
) -> Principal:
    """
    Dependency to require the ADMIN role.
    Raises ForbiddenError for authenticated non-admins.
    """
    if not principal.is_admin:
        raise ForbiddenError("Admin access required")
    return principal


def rate_limited(kind: RateLimitKind) -> Callable:
    """
    Build a dependency that counts one attempt of ``kind`` for the client IP
    and rejects the request with 429 once the window's limit is used up.
    """

    def check_rate_limit(
        request: Request,
        rate_limiter: RateLimiter = Depends(get_rate_limiter),
    ) -> None:
        client_ip = get_client_ip(request)
        if not rate_limiter.allow(kind, client_ip):
            retry_after = rate_limiter.retry_after(kind, client_ip)
            raise RateLimitExceededError(
                detail=f"Too many {kind.value.replace('_', ' ')} attempts. Please try again later.",
                retry_after=retry_after or rate_limiter.rules[kind].window_seconds,
            )

    return check_rate_limit
