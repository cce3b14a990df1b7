"""
Role grants, user overrides and the access log for unidade-scoped RBAC.

This module implements the persistence side of the permission engine:
- Default grants per (role, unidade)
- Per-user override grants per (user, unidade), which can only add access
- Append-only access log written for every authorization decision
"""
from datetime import datetime, timezone
from typing import Any, Dict
from sqlalchemy import String, ForeignKey, Boolean, JSON, DateTime, UniqueConstraint, Index, Enum as SAEnum, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin
from app.features.permissions.enums import PermissionType, Unidade, UserRole
from app.features.users.models import generate_ulid


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RolePermission(Base, TimestampMixin):
    """
    Default grant of a permission to a role within one unidade.

    Seeded by setup_default_role_permissions(); rows are toggled through
    is_active and never deleted.
    """
    __tablename__ = "role_permissions"
    __table_args__ = (
        UniqueConstraint("role", "permission", "unidade", name="uq_role_permission_unidade"),
    )

    # Primary key using ULID
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    role: Mapped[UserRole] = mapped_column(SAEnum(UserRole, name="user_role"), nullable=False)
    permission: Mapped[PermissionType] = mapped_column(
        SAEnum(PermissionType, name="permission_type"), nullable=False
    )
    unidade: Mapped[Unidade] = mapped_column(SAEnum(Unidade, name="unidade"), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<RolePermission(role={self.role}, permission={self.permission}, unidade={self.unidade}, active={self.is_active})>"


class UserPermission(Base, TimestampMixin):
    """
    Explicit grant of a permission to a user within one unidade.

    Layered on top of role grants. There is no deny override: revoking sets
    is_active=False, which falls back to whatever the role grants.
    """
    __tablename__ = "user_permissions"
    __table_args__ = (
        UniqueConstraint("user_id", "permission", "unidade", name="uq_user_permission_unidade"),
    )

    # Primary key using ULID
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    user_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    permission: Mapped[PermissionType] = mapped_column(
        SAEnum(PermissionType, name="permission_type"), nullable=False
    )
    unidade: Mapped[Unidade] = mapped_column(SAEnum(Unidade, name="unidade"), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<UserPermission(user_id={self.user_id}, permission={self.permission}, unidade={self.unidade}, active={self.is_active})>"


# Column widths of access_logs; longer values are clipped before they are queued
ACTION_MAX_LENGTH = 255
RESOURCE_MAX_LENGTH = 100
RESOURCE_ID_MAX_LENGTH = 64
IP_ADDRESS_MAX_LENGTH = 45
USER_AGENT_MAX_LENGTH = 255


class AccessLog(Base):
    """
    Audit record of an access decision or business operation.

    Write-once: nothing in the application updates or deletes these rows.
    created_at is set when the entry is produced, not when it is flushed.
    """
    __tablename__ = "access_logs"
    __table_args__ = (
        Index("ix_access_logs_unidade_created_at", "unidade", "created_at"),
    )

    # Primary key using ULID
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # Actor. No foreign key: log rows outlive the users they mention.
    user_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)

    # Action details
    action: Mapped[str] = mapped_column(String(ACTION_MAX_LENGTH), nullable=False, index=True)
    resource: Mapped[str] = mapped_column(String(RESOURCE_MAX_LENGTH), nullable=False, index=True)
    resource_id: Mapped[str | None] = mapped_column(String(RESOURCE_ID_MAX_LENGTH), nullable=True)

    # Context
    unidade: Mapped[Unidade] = mapped_column(SAEnum(Unidade, name="unidade"), nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(IP_ADDRESS_MAX_LENGTH), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(USER_AGENT_MAX_LENGTH), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    details: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<AccessLog(id={self.id}, user_id={self.user_id}, action={self.action!r}, success={self.success})>"
