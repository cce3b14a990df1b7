"""
Permission management API routes.

Provides endpoints for checking and listing permissions, managing user
overrides and role defaults, and reading the access log.
"""
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.engine import get_db
from app.core.errors import AppError
from app.core.limiter import limiter
from app.features.permissions.access_log import (
    create_access_log,
    query_access_logs,
    access_log_statistics,
    page_count,
)
from app.features.permissions.dependencies import (
    AccessTarget,
    AuditedOperation,
    AuditedRoute,
    audit_operation,
    check_permission,
    require_permission,
)
from app.features.permissions.enums import PermissionType, UserRole
from app.features.permissions.schemas import (
    AccessLogCreate,
    AccessLogFilter,
    AccessLogListResponse,
    AccessLogRequest,
    AccessLogResponse,
    AccessLogStatistics,
    PermissionCheckResponse,
    RolePermissionsResponse,
    RoleSetupResponse,
    UserPermissionChange,
    UserPermissionChangeResponse,
    UserPermissionsResponse,
)
from app.features.permissions.service import (
    get_user,
    get_user_permissions,
    grant_user_permission,
    list_role_permissions,
    revoke_user_permission,
    setup_default_role_permissions,
)
from app.features.users.dependencies import get_auth_context
from app.features.users.schemas import AuthContext, UserSummary
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter(route_class=AuditedRoute)


def _ordered(permissions: set[PermissionType]) -> list[PermissionType]:
    return [p for p in PermissionType if p in permissions]


async def _permissions_response(db: AsyncSession, user_id: str, context: AuthContext) -> UserPermissionsResponse:
    user = await get_user(db, user_id)
    if user is None:
        raise AppError("User not found", 404, "USER_NOT_FOUND")

    permissions = _ordered(await get_user_permissions(db, user_id, context.unidade))
    return UserPermissionsResponse(
        user=UserSummary.model_validate(user),
        unidade=context.unidade,
        permissions=permissions,
        total_permissions=len(permissions),
    )


# ============================================================================
# Self-service Routes
# ============================================================================

@router.get("/me", response_model=UserPermissionsResponse)
async def get_my_permissions(
    db: AsyncSession = Depends(get_db),
    context: AuthContext = Depends(get_auth_context)
):
    """Permissions of the caller in the unidade they are acting in."""
    return await _permissions_response(db, context.user_id, context)


@router.get("/check/{permission}", response_model=PermissionCheckResponse)
@limiter.limit(config.CHECK_RATE_LIMIT)
async def check_my_permission(
    request: Request,
    permission: PermissionType,
    resource_id: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    context: AuthContext = Depends(get_auth_context)
):
    """Check whether the caller holds a permission in their current unidade."""
    allowed = await check_permission(db, context, permission, resource_id)
    return PermissionCheckResponse(
        user_id=context.user_id,
        permission=permission,
        unidade=context.unidade,
        has_permission=allowed,
        resource_id=resource_id,
    )


# ============================================================================
# User Override Routes
# ============================================================================

@router.get("/user/{user_id}", response_model=UserPermissionsResponse)
async def get_permissions_of_user(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    context: AuthContext = Depends(require_permission(PermissionType.USUARIOS_VISUALIZAR))
):
    """Permissions of any user in the caller's unidade."""
    return await _permissions_response(db, user_id, context)


@router.post("/user/{user_id}/grant", response_model=UserPermissionChangeResponse)
async def grant_permission_to_user(
    user_id: str,
    change: UserPermissionChange,
    db: AsyncSession = Depends(get_db),
    context: AuthContext = Depends(require_permission(PermissionType.USUARIOS_EDITAR)),
    audit: AuditedOperation = Depends(audit_operation("GRANT_PERMISSION", "user_permissions"))
):
    """Grant a permission override to a user."""
    audit.details.update(
        permission=change.permission.value,
        target_user_id=user_id,
        granted_unidade=change.unidade.value,
    )
    if await get_user(db, user_id) is None:
        raise AppError("User not found", 404, "USER_NOT_FOUND")

    await grant_user_permission(db, user_id, change.permission, change.unidade)

    return UserPermissionChangeResponse(
        message="Permission granted",
        user_id=user_id,
        permission=change.permission,
        unidade=change.unidade,
    )


@router.post("/user/{user_id}/revoke", response_model=UserPermissionChangeResponse)
async def revoke_permission_from_user(
    user_id: str,
    change: UserPermissionChange,
    db: AsyncSession = Depends(get_db),
    context: AuthContext = Depends(require_permission(PermissionType.USUARIOS_EDITAR)),
    audit: AuditedOperation = Depends(audit_operation("REVOKE_PERMISSION", "user_permissions"))
):
    """Revoke a permission override from a user. Role grants are unaffected."""
    audit.details.update(
        permission=change.permission.value,
        target_user_id=user_id,
        revoked_unidade=change.unidade.value,
    )
    await revoke_user_permission(db, user_id, change.permission, change.unidade)

    return UserPermissionChangeResponse(
        message="Permission revoked",
        user_id=user_id,
        permission=change.permission,
        unidade=change.unidade,
    )


# ============================================================================
# Role Routes
# ============================================================================

@router.get("/role/{role}", response_model=RolePermissionsResponse)
async def get_role_permissions(
    role: UserRole,
    db: AsyncSession = Depends(get_db),
    context: AuthContext = Depends(require_permission(PermissionType.SISTEMA_CONFIGURAR))
):
    """Active grants of a role in the caller's unidade."""
    permissions = await list_role_permissions(db, role, context.unidade)
    return RolePermissionsResponse(
        role=role,
        unidade=context.unidade,
        permissions=permissions,
        total_permissions=len(permissions),
    )


@router.post("/role/{role}/setup", response_model=RoleSetupResponse)
async def setup_role_permissions(
    role: UserRole,
    db: AsyncSession = Depends(get_db),
    context: AuthContext = Depends(require_permission(PermissionType.SISTEMA_CONFIGURAR)),
    audit: AuditedOperation = Depends(audit_operation("SETUP_ROLE_PERMISSIONS", "role_permissions"))
):
    """Seed the default policy for a role in the caller's unidade."""
    audit.resource_id = role.value
    audit.details.update(role=role.value, unidade=context.unidade.value)
    permissions = await setup_default_role_permissions(db, role, context.unidade)

    return RoleSetupResponse(
        message="Default permissions configured",
        role=role,
        unidade=context.unidade,
        permissions=permissions,
    )


# ============================================================================
# Audit Routes
# ============================================================================

async def _access_log_page(
    db: AsyncSession,
    filters: AccessLogFilter,
    page: int,
    limit: int
) -> AccessLogListResponse:
    items, total = await query_access_logs(db, filters, page, limit)
    return AccessLogListResponse(
        items=[AccessLogResponse.model_validate(item) for item in items],
        total=total,
        page=page,
        page_size=limit,
        pages=page_count(total, limit),
    )


@router.get("/audit/logs", response_model=AccessLogListResponse)
async def list_access_logs(
    user_id: Optional[str] = None,
    resource: Optional[str] = None,
    resource_id: Optional[str] = None,
    action: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    context: AuthContext = Depends(require_permission(PermissionType.SISTEMA_AUDITORIA))
):
    """List access logs of the caller's unidade, newest first."""
    filters = AccessLogFilter(
        unidade=context.unidade,
        user_id=user_id,
        resource=resource,
        resource_id=resource_id,
        action=action,
        start_date=start_date,
        end_date=end_date,
    )
    return await _access_log_page(db, filters, page, limit)


@router.get("/audit/resources/{resource}/logs", response_model=AccessLogListResponse)
async def list_resource_access_logs(
    resource: str,
    resource_id: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    context: AuthContext = Depends(require_permission(PermissionType.SISTEMA_AUDITORIA))
):
    """History of one resource (optionally one record of it) in the caller's unidade."""
    filters = AccessLogFilter(
        unidade=context.unidade,
        resource=resource,
        resource_id=resource_id,
        exact_resource=True,
    )
    return await _access_log_page(db, filters, page, limit)


@router.get("/audit/statistics", response_model=AccessLogStatistics)
async def get_access_log_statistics(
    start_date: datetime,
    end_date: datetime,
    db: AsyncSession = Depends(get_db),
    context: AuthContext = Depends(require_permission(PermissionType.SISTEMA_AUDITORIA))
):
    """Totals, success rate and top actions/resources for a period."""
    if start_date > end_date:
        raise AppError("start_date must not be after end_date", 400, "INVALID_PERIOD")
    return await access_log_statistics(db, context.unidade, start_date, end_date)


@router.post("/audit/logs", response_model=AccessLogResponse, status_code=status.HTTP_201_CREATED)
async def create_access_log_entry(
    payload: AccessLogRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    context: AuthContext = Depends(get_auth_context)
):
    """Record an access log entry on behalf of a business operation."""
    target = AccessTarget.from_request(request)
    entry = AccessLogCreate(
        user_id=context.user_id,
        action=payload.action,
        resource=payload.resource,
        resource_id=payload.resource_id,
        unidade=context.unidade,
        ip_address=target.ip_address,
        user_agent=target.user_agent,
        success=payload.success,
        details=payload.details,
    )
    access_log = await create_access_log(db, entry)
    if access_log is None:
        raise AppError("Access log could not be stored", 503, "ACCESS_LOG_UNAVAILABLE")
    return AccessLogResponse.model_validate(access_log)
