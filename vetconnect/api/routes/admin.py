from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from vetconnect.api.deps import (
    get_db,
    get_rate_limiter,
    get_revocation_store,
    get_token_codec,
    require_admin,
)
from vetconnect.core.exceptions import ValidationError
from vetconnect.core.rate_limit import RateLimiter, is_valid_ip, limiter
from vetconnect.core.security import TokenCodec
from vetconnect.core.session import Principal
from vetconnect.core.token_blacklist import RevocationStore
from vetconnect.schemas.admin import AdminUserDetailResponse, SuspendUserRequest
from vetconnect.schemas.auth import MessageResponse
from vetconnect.services.admin_service import AdminService

router = APIRouter(prefix="/admin", tags=["admin"])


def _bad_request(e: ValueError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("/users/{user_id}", response_model=AdminUserDetailResponse)
def get_user_details(
    user_id: UUID,
    admin: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return AdminService.get_user_details(db, user_id)


@router.post("/users/{user_id}/suspend", response_model=AdminUserDetailResponse)
@limiter.limit("30/minute")
def suspend_user(
    request: Request,
    user_id: UUID,
    data: SuspendUserRequest,
    admin: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
    codec: TokenCodec = Depends(get_token_codec),
    store: RevocationStore = Depends(get_revocation_store),
):
    """Suspend an account and sign it out everywhere."""
    try:
        return AdminService.suspend_user(db, codec, store, user_id, data.reason, admin.id)
    except ValueError as e:
        raise _bad_request(e)


@router.post("/users/{user_id}/activate", response_model=AdminUserDetailResponse)
def activate_user(
    user_id: UUID,
    admin: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
):
    try:
        return AdminService.activate_user(db, user_id)
    except ValueError as e:
        raise _bad_request(e)


@router.delete("/users/{user_id}", response_model=AdminUserDetailResponse)
def soft_delete_user(
    user_id: UUID,
    admin: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
    codec: TokenCodec = Depends(get_token_codec),
    store: RevocationStore = Depends(get_revocation_store),
):
    """Flag an account as deleted. The row is kept."""
    try:
        return AdminService.soft_delete_user(db, codec, store, user_id, admin.id)
    except ValueError as e:
        raise _bad_request(e)


@router.delete("/users/{user_id}/permanent", response_model=MessageResponse)
def hard_delete_user(
    user_id: UUID,
    admin: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
    codec: TokenCodec = Depends(get_token_codec),
    store: RevocationStore = Depends(get_revocation_store),
):
    """Permanently delete an account. Admin accounts cannot be deleted."""
    try:
        AdminService.hard_delete_user(db, codec, store, user_id, admin.id)
    except ValueError as e:
        raise _bad_request(e)
    return MessageResponse(message="User permanently deleted")


@router.post("/users/{user_id}/revoke-sessions", response_model=AdminUserDetailResponse)
def revoke_sessions(
    user_id: UUID,
    admin: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
    codec: TokenCodec = Depends(get_token_codec),
    store: RevocationStore = Depends(get_revocation_store),
):
    """Invalidate every access and refresh token the user holds."""
    return AdminService.revoke_sessions(db, codec, store, user_id, admin.id)


@router.delete("/rate-limits/{ip}", response_model=MessageResponse)
def clear_rate_limits(
    ip: str,
    admin: Principal = Depends(require_admin),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
):
    """Reset every auth rate-limit counter for a client address."""
    if not is_valid_ip(ip):
        raise ValidationError("Invalid IP address")
    AdminService.clear_rate_limits(rate_limiter, ip)
    return MessageResponse(message=f"Rate limits cleared for {ip}")
