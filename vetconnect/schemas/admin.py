from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class SuspendUserRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class AdminUserDetailResponse(BaseModel):
    id: UUID
    email: str
    first_name: str
    last_name: str
    full_name: str
    role: str

    # Account status
    is_active: bool
    suspended_at: Optional[datetime] = None
    suspended_reason: Optional[str] = None
    is_deleted: bool
    deleted_at: Optional[datetime] = None
    token_version: int

    created_at: datetime
    updated_at: datetime
    last_login_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
