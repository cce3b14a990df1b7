"""
Authorization gate and FastAPI dependencies for route protection.

Implements:
- AuthorizationGate: single / ANY / ALL permission checks with an access log
  entry for every decision
- FastAPI dependency factories wrapping the gate
- Direct check helper for handlers
- audit_operation: outcome logging for business operations
"""
import asyncio
from typing import Annotated, Any, Callable, Coroutine, Optional, Sequence
from fastapi import Depends, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.routing import APIRoute
from starlette.exceptions import HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.database.engine import get_session_factory
from app.core.errors import AppError
from app.features.permissions.access_log import AccessLogWriter
from app.features.permissions.enums import PermissionType, Unidade
from app.features.permissions.models import (
    ACTION_MAX_LENGTH,
    IP_ADDRESS_MAX_LENGTH,
    RESOURCE_ID_MAX_LENGTH,
    RESOURCE_MAX_LENGTH,
    USER_AGENT_MAX_LENGTH,
)
from app.features.permissions.service import has_permission
from app.features.users.dependencies import get_optional_auth_context
from app.features.users.schemas import AuthContext
from app.utils import get_logger


log = get_logger(__name__)


class AccessTarget(BaseModel):
    """What the caller is trying to reach, for the access log."""
    action: str
    resource: str
    resource_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def from_request(cls, request: Request, resource: Optional[str] = None) -> "AccessTarget":
        """
        Derive the target from a Starlette request.

        action is "METHOD path", resource defaults to the first path segment,
        resource_id is the `id` or `user_id` path parameter, and the IP is the
        first X-Forwarded-For hop or the client host.
        """
        path = request.url.path
        client_host = request.client.host if request.client else None
        forwarded = request.headers.get("X-Forwarded-For")
        ip_address = (forwarded.split(",")[0].strip() if forwarded else None) or client_host
        segments = [s for s in path.split("/") if s]
        resource_id = request.path_params.get("id") or request.path_params.get("user_id")
        return cls(
            action=f"{request.method} {path}"[:ACTION_MAX_LENGTH],
            resource=(resource or (segments[0] if segments else "root"))[:RESOURCE_MAX_LENGTH],
            resource_id=str(resource_id)[:RESOURCE_ID_MAX_LENGTH] if resource_id is not None else None,
            ip_address=ip_address[:IP_ADDRESS_MAX_LENGTH] if ip_address else None,
            user_agent=(request.headers.get("User-Agent") or "")[:USER_AGENT_MAX_LENGTH] or None,
        )


class AuthorizationGate:
    """
    Evaluates permission requirements for an explicit AuthContext.

    Each check runs in its own session so ANY/ALL checks can run concurrently.
    The access log entry is queued before the decision is returned or raised.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], access_log: AccessLogWriter):
        self._session_factory = session_factory
        self._access_log = access_log

    async def _check(self, context: AuthContext, permission: PermissionType, resource_id: Optional[str]) -> bool:
        async with self._session_factory() as db:
            return await has_permission(db, context.user_id, permission, context.unidade, resource_id)

    async def _check_many(
        self,
        context: AuthContext,
        permissions: Sequence[PermissionType],
        resource_id: Optional[str]
    ) -> list[bool]:
        return list(await asyncio.gather(*(self._check(context, p, resource_id) for p in permissions)))

    def _log(self, context: AuthContext, target: AccessTarget, success: bool, details: dict) -> None:
        self._access_log.log_access(
            user_id=context.user_id,
            action=target.action,
            resource=target.resource,
            resource_id=target.resource_id,
            unidade=context.unidade,
            ip_address=target.ip_address,
            user_agent=target.user_agent,
            success=success,
            details=details,
        )

    @staticmethod
    def _require_context(context: Optional[AuthContext]) -> AuthContext:
        if context is None:
            raise AppError("User not authenticated", 401, "UNAUTHORIZED")
        return context

    async def authorize(
        self,
        context: Optional[AuthContext],
        permission: PermissionType,
        target: AccessTarget,
        allow_same_user: bool = False
    ) -> AuthContext:
        """
        Require a single permission.

        Raises:
            AppError: 401 UNAUTHORIZED without identity, 403 PERMISSION_DENIED on denial
        """
        context = self._require_context(context)

        if allow_same_user and target.resource_id is not None and target.resource_id == context.user_id:
            self._log(context, target, True, {"permission": permission.value, "reason": "SAME_USER"})
            return context

        if not await self._check(context, permission, target.resource_id):
            self._log(context, target, False, {"permission": permission.value, "reason": "PERMISSION_DENIED"})
            raise AppError("Access denied: insufficient permission", 403, "PERMISSION_DENIED")

        self._log(context, target, True, {"permission": permission.value})
        return context

    async def authorize_any(
        self,
        context: Optional[AuthContext],
        permissions: Sequence[PermissionType],
        target: AccessTarget
    ) -> AuthContext:
        """
        Require at least one of the permissions.

        Raises:
            AppError: 401 UNAUTHORIZED without identity, 403 INSUFFICIENT_PERMISSIONS on denial
        """
        context = self._require_context(context)
        names = [p.value for p in permissions]

        results = await self._check_many(context, permissions, target.resource_id)
        if not any(results):
            self._log(context, target, False, {"permissions": names, "reason": "INSUFFICIENT_PERMISSIONS"})
            raise AppError("Access denied: insufficient permissions", 403, "INSUFFICIENT_PERMISSIONS")

        granted = [name for name, ok in zip(names, results) if ok]
        self._log(context, target, True, {"permissions": names, "granted": granted})
        return context

    async def authorize_all(
        self,
        context: Optional[AuthContext],
        permissions: Sequence[PermissionType],
        target: AccessTarget
    ) -> AuthContext:
        """
        Require every one of the permissions.

        Raises:
            AppError: 401 UNAUTHORIZED without identity, 403 MISSING_REQUIRED_PERMISSIONS on denial
        """
        context = self._require_context(context)
        names = [p.value for p in permissions]

        results = await self._check_many(context, permissions, target.resource_id)
        if not all(results):
            missing = [name for name, ok in zip(names, results) if not ok]
            self._log(
                context, target, False,
                {"permissions": names, "missing": missing, "reason": "MISSING_REQUIRED_PERMISSIONS"},
            )
            raise AppError(
                "Access denied: not all required permissions were found", 403, "MISSING_REQUIRED_PERMISSIONS"
            )

        self._log(context, target, True, {"permissions": names})
        return context


# ============================================================================
# FastAPI Dependencies
# ============================================================================

def get_access_log_writer(request: Request) -> AccessLogWriter:
    """The application-wide writer created on startup."""
    return request.app.state.access_log_writer


def get_authorization_gate(
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
    access_log: Annotated[AccessLogWriter, Depends(get_access_log_writer)],
) -> AuthorizationGate:
    return AuthorizationGate(session_factory, access_log)


def require_permission(
    permission: PermissionType,
    resource: Optional[str] = None,
    allow_same_user: bool = False
):
    """
    FastAPI dependency to require a specific permission.

    Usage:
        @router.post("/appointments")
        async def create_appointment(
            context: AuthContext = Depends(require_permission(PermissionType.AGENDAMENTOS_CRIAR))
        ):
            # Caller may create appointments in context.unidade
            pass

    Args:
        permission: Permission required
        resource: Resource name for the access log (defaults to the first path segment)
        allow_same_user: Allow when the `id`/`user_id` path parameter is the caller's own id

    Returns:
        Dependency function that returns the caller's AuthContext
    """
    async def permission_dependency(
        request: Request,
        gate: Annotated[AuthorizationGate, Depends(get_authorization_gate)],
        context: Annotated[Optional[AuthContext], Depends(get_optional_auth_context)],
    ) -> AuthContext:
        target = AccessTarget.from_request(request, resource)
        return await gate.authorize(context, permission, target, allow_same_user)

    return permission_dependency


def require_any_permission(permissions: Sequence[PermissionType], resource: Optional[str] = None):
    """
    FastAPI dependency to require ANY of the specified permissions.

    Usage:
        @router.get("/reports")
        async def get_reports(
            context: AuthContext = Depends(require_any_permission(
                [PermissionType.RELATORIOS_GERAL, PermissionType.RELATORIOS_FINANCEIRO]
            ))
        ):
            pass
    """
    permissions = list(permissions)

    async def permission_dependency(
        request: Request,
        gate: Annotated[AuthorizationGate, Depends(get_authorization_gate)],
        context: Annotated[Optional[AuthContext], Depends(get_optional_auth_context)],
    ) -> AuthContext:
        target = AccessTarget.from_request(request, resource)
        return await gate.authorize_any(context, permissions, target)

    return permission_dependency


def require_all_permissions(permissions: Sequence[PermissionType], resource: Optional[str] = None):
    """FastAPI dependency to require ALL of the specified permissions."""
    permissions = list(permissions)

    async def permission_dependency(
        request: Request,
        gate: Annotated[AuthorizationGate, Depends(get_authorization_gate)],
        context: Annotated[Optional[AuthContext], Depends(get_optional_auth_context)],
    ) -> AuthContext:
        target = AccessTarget.from_request(request, resource)
        return await gate.authorize_all(context, permissions, target)

    return permission_dependency


async def check_permission(
    db: AsyncSession,
    context: Optional[AuthContext],
    permission: PermissionType,
    resource_id: Optional[str] = None
) -> bool:
    """
    Check a permission from inside a handler without raising or logging.

    Returns False when there is no caller identity.
    """
    if context is None:
        return False
    return await has_permission(db, context.user_id, permission, context.unidade, resource_id)


# ============================================================================
# Business operation auditing
# ============================================================================

class AuditedOperation(BaseModel):
    """
    The access log entry an audited route will produce.

    Handlers may set resource_id or add to details; the entry is queued by
    AuditedRoute once the response status is known.
    """
    user_id: str
    unidade: Unidade
    action: str
    resource: str
    resource_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)


def audit_operation(action: str, resource: str):
    """
    FastAPI dependency marking a route's outcome for the access log.

    Only takes effect on routers built with route_class=AuditedRoute. The
    entry records method, URL and status code in details; 2xx counts as
    success. Requests without an identity are not logged. Declare it after
    any permission dependency so a denied request is only logged once, by
    the gate.

    Usage:
        @router.post("/appointments", status_code=201)
        async def create_appointment(
            context: AuthContext = Depends(require_permission(PermissionType.AGENDAMENTOS_CRIAR)),
            audit: AuditedOperation = Depends(audit_operation("CREATE_APPOINTMENT", "appointments")),
        ):
            ...
            audit.resource_id = appointment.id
    """
    async def audit_dependency(
        request: Request,
        context: Annotated[Optional[AuthContext], Depends(get_optional_auth_context)],
    ) -> Optional[AuditedOperation]:
        if context is None:
            return None
        target = AccessTarget.from_request(request, resource)
        operation = AuditedOperation(
            user_id=context.user_id,
            unidade=context.unidade,
            action=action,
            resource=resource,
            resource_id=target.resource_id,
            ip_address=target.ip_address,
            user_agent=target.user_agent,
        )
        request.state.audited_operation = operation
        return operation

    return audit_dependency


class AuditedRoute(APIRoute):
    """
    Route class that logs the outcome of requests marked by audit_operation.

    Usage:
        router = APIRouter(route_class=AuditedRoute)
    """

    def get_route_handler(self) -> Callable[[Request], Coroutine[Any, Any, Response]]:
        original_route_handler = super().get_route_handler()

        async def audited_route_handler(request: Request) -> Response:
            status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
            try:
                response = await original_route_handler(request)
                status_code = response.status_code
                return response
            except HTTPException as e:
                status_code = e.status_code
                raise
            except RequestValidationError:
                status_code = status.HTTP_400_BAD_REQUEST
                raise
            finally:
                operation: Optional[AuditedOperation] = getattr(request.state, "audited_operation", None)
                if operation is not None:
                    get_access_log_writer(request).log_access(
                        user_id=operation.user_id,
                        action=operation.action,
                        resource=operation.resource,
                        resource_id=operation.resource_id,
                        unidade=operation.unidade,
                        ip_address=operation.ip_address,
                        user_agent=operation.user_agent,
                        success=200 <= status_code < 300,
                        details={
                            **operation.details,
                            "method": request.method,
                            "url": str(request.url),
                            "status_code": status_code,
                        },
                    )

        return audited_route_handler
