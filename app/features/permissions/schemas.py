"""
Pydantic schemas for permission management.

Request and response models for grants, permission checks and access logs.
"""
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field, ConfigDict, ValidationInfo, field_validator
from pydantic_core import to_jsonable_python

from app.features.permissions.enums import PermissionType, Unidade, UserRole
from app.features.permissions.models import (
    ACTION_MAX_LENGTH,
    IP_ADDRESS_MAX_LENGTH,
    RESOURCE_ID_MAX_LENGTH,
    RESOURCE_MAX_LENGTH,
    USER_AGENT_MAX_LENGTH,
)
from app.features.users.schemas import UserSummary

_COLUMN_WIDTHS = {
    "action": ACTION_MAX_LENGTH,
    "resource": RESOURCE_MAX_LENGTH,
    "resource_id": RESOURCE_ID_MAX_LENGTH,
    "ip_address": IP_ADDRESS_MAX_LENGTH,
    "user_agent": USER_AGENT_MAX_LENGTH,
}


# ============================================================================
# Grant Schemas
# ============================================================================

class UserPermissionChange(BaseModel):
    """Body of grant/revoke requests."""
    permission: PermissionType = Field(..., description="Permission to grant or revoke")
    unidade: Unidade = Field(..., description="Unidade the change applies to")


class UserPermissionChangeResponse(BaseModel):
    success: bool = True
    message: str
    user_id: str
    permission: PermissionType
    unidade: Unidade


class RoleSetupResponse(BaseModel):
    success: bool = True
    message: str
    role: UserRole
    unidade: Unidade
    permissions: List[PermissionType] = []


# ============================================================================
# Permission Listing Schemas
# ============================================================================

class UserPermissionsResponse(BaseModel):
    """All permissions a user holds in a unidade."""
    success: bool = True
    user: Optional[UserSummary] = None
    unidade: Unidade
    permissions: List[PermissionType] = []
    total_permissions: int = 0


class RolePermissionsResponse(BaseModel):
    """Active role grants in a unidade."""
    success: bool = True
    role: UserRole
    unidade: Unidade
    permissions: List[PermissionType] = []
    total_permissions: int = 0


class PermissionCheckResponse(BaseModel):
    success: bool = True
    user_id: str
    permission: PermissionType
    unidade: Unidade
    has_permission: bool
    resource_id: Optional[str] = None


# ============================================================================
# Access Log Schemas
# ============================================================================

class AccessLogCreate(BaseModel):
    """
    One access log entry as produced by the gate or a business operation.

    timestamp is captured at construction so queued entries keep the time of
    the decision. Strings are clipped to their column widths and details are
    reduced to JSON-compatible values, so an entry that validates can always
    be stored.
    """
    user_id: str
    action: str = Field(..., min_length=1, max_length=ACTION_MAX_LENGTH)
    resource: str = Field(..., min_length=1, max_length=RESOURCE_MAX_LENGTH)
    resource_id: Optional[str] = None
    unidade: Unidade
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    success: bool = True
    details: Optional[Dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator('action', 'resource', 'resource_id', 'ip_address', 'user_agent', mode='before')
    @classmethod
    def clip_to_column(cls, v: Any, info: ValidationInfo) -> Any:
        if isinstance(v, str):
            return v[:_COLUMN_WIDTHS[info.field_name]]
        return v

    @field_validator('details')
    @classmethod
    def json_compatible(cls, v: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        """Datetimes, enums, sets and the like become their JSON form; unknown objects become str()."""
        if v is None:
            return None
        return to_jsonable_python(v, fallback=str)


class AccessLogRequest(BaseModel):
    """Body for POST /audit/logs; identity and unidade come from the caller."""
    action: str = Field(..., min_length=1, max_length=ACTION_MAX_LENGTH)
    resource: str = Field(..., min_length=1, max_length=RESOURCE_MAX_LENGTH)
    resource_id: Optional[str] = Field(None, max_length=RESOURCE_ID_MAX_LENGTH)
    success: bool = True
    details: Optional[Dict[str, Any]] = None


class AccessLogFilter(BaseModel):
    """Query filters; unidade is mandatory and applied first."""
    unidade: Unidade
    user_id: Optional[str] = None
    resource: Optional[str] = None
    resource_id: Optional[str] = None
    action: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    # resource is matched as a case-insensitive substring unless this is set
    exact_resource: bool = False


class AccessLogResponse(BaseModel):
    id: str
    user_id: str
    action: str
    resource: str
    resource_id: Optional[str]
    unidade: Unidade
    ip_address: Optional[str]
    user_agent: Optional[str]
    success: bool
    details: Optional[Dict[str, Any]]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AccessLogListResponse(BaseModel):
    """Schema for paginated access log list."""
    items: List[AccessLogResponse]
    total: int
    page: int
    page_size: int
    pages: int


class CountByKey(BaseModel):
    key: str
    count: int


class AccessLogStatistics(BaseModel):
    unidade: Unidade
    start_date: datetime
    end_date: datetime
    total_logs: int
    unique_users: int
    failed_attempts: int
    success_rate: float
    top_actions: List[CountByKey] = []
    top_resources: List[CountByKey] = []
