"""
Permission evaluation engine.

Implements:
- has_permission: admin bypass, unidade membership, user override, role grant
- get_user_permissions: the same rules, expanded to a set
- Idempotent seeding of default role grants and user grant/revoke

Every read path fails closed: an exception while resolving the user or the
grants is logged and answered with "no permission".
"""
import enum
from typing import Iterable, Optional

from sqlalchemy import select, update, func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.permissions.enums import PermissionType, Unidade, UserRole
from app.features.permissions.models import RolePermission, UserPermission
from app.features.permissions.policy import default_permissions_for
from app.features.users.models import User, generate_ulid
from app.utils import get_logger


log = get_logger(__name__)


class OverrideDecision(enum.Enum):
    """
    Outcome of the user-override layer.

    Overrides can only add access, so there is no DENY member: INHERIT means
    the role grants decide.
    """
    ALLOW = "ALLOW"
    INHERIT = "INHERIT"


# ============================================================================
# Lookups
# ============================================================================

async def get_user(db: AsyncSession, user_id: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_override_decision(
    db: AsyncSession,
    user_id: str,
    permission: PermissionType,
    unidade: Unidade
) -> OverrideDecision:
    stmt = select(UserPermission.id).where(
        UserPermission.user_id == user_id,
        UserPermission.permission == permission,
        UserPermission.unidade == unidade,
        UserPermission.is_active.is_(True),
    )
    result = await db.execute(stmt.limit(1))
    return OverrideDecision.ALLOW if result.first() is not None else OverrideDecision.INHERIT


async def role_has_permission(
    db: AsyncSession,
    role: UserRole,
    permission: PermissionType,
    unidade: Unidade
) -> bool:
    stmt = select(RolePermission.id).where(
        RolePermission.role == role,
        RolePermission.permission == permission,
        RolePermission.unidade == unidade,
        RolePermission.is_active.is_(True),
    )
    result = await db.execute(stmt.limit(1))
    return result.first() is not None


async def list_role_permissions(
    db: AsyncSession,
    role: UserRole,
    unidade: Unidade
) -> list[PermissionType]:
    """Active role grants in a unidade, in enumeration order."""
    stmt = select(RolePermission.permission).where(
        RolePermission.role == role,
        RolePermission.unidade == unidade,
        RolePermission.is_active.is_(True),
    )
    result = await db.execute(stmt)
    granted = set(result.scalars().all())
    return [p for p in PermissionType if p in granted]


# ============================================================================
# Evaluation
# ============================================================================

async def has_permission(
    db: AsyncSession,
    user_id: str,
    permission: PermissionType,
    unidade: Unidade,
    resource_id: Optional[str] = None
) -> bool:
    """
    Check whether a user holds a permission in a unidade.

    Evaluated in order, first match wins:
    1. unknown or inactive user -> False
    2. ADMIN -> True, in any unidade
    3. unidade is neither the home unidade nor in unidades_acesso -> False
    4. active user override -> True
    5. active role grant -> True, otherwise False

    Args:
        db: Database session
        user_id: User being checked
        permission: Permission tag
        unidade: Unidade the action happens in
        resource_id: Target resource; carried for audit context only

    Returns:
        True if the user holds the permission, False otherwise (including on errors)
    """
    try:
        permission = PermissionType(permission)
        unidade = Unidade(unidade)

        user = await get_user(db, user_id)
        if user is None or not user.is_active:
            log.debug("User %s missing or inactive - denied %s", user_id, permission.value)
            return False

        if user.role == UserRole.ADMIN:
            return True

        if not user.can_access(unidade):
            log.debug("User %s has no access to unidade %s", user_id, unidade.value)
            return False

        if await get_override_decision(db, user_id, permission, unidade) is OverrideDecision.ALLOW:
            log.debug("User %s granted %s in %s via override", user_id, permission.value, unidade.value)
            return True

        granted = await role_has_permission(db, user.role, permission, unidade)
        log.debug(
            "User %s %s %s in %s via role %s (resource=%s)",
            user_id, "granted" if granted else "denied", permission.value,
            unidade.value, user.role.value, resource_id,
        )
        return granted
    except Exception:
        log.exception("Error checking permission %s for user %s in %s", permission, user_id, unidade)
        return False


async def get_user_permissions(
    db: AsyncSession,
    user_id: str,
    unidade: Unidade
) -> set[PermissionType]:
    """
    Get every permission a user holds in a unidade.

    Includes:
    1. Permissions granted to the user's role in the unidade
    2. Active user overrides in the unidade

    Admins receive the whole enumeration. Errors yield an empty set.
    """
    try:
        unidade = Unidade(unidade)

        user = await get_user(db, user_id)
        if user is None or not user.is_active:
            return set()

        if user.role == UserRole.ADMIN:
            return set(PermissionType)

        if not user.can_access(unidade):
            return set()

        role_stmt = select(RolePermission.permission).where(
            RolePermission.role == user.role,
            RolePermission.unidade == unidade,
            RolePermission.is_active.is_(True),
        )
        override_stmt = select(UserPermission.permission).where(
            UserPermission.user_id == user_id,
            UserPermission.unidade == unidade,
            UserPermission.is_active.is_(True),
        )
        role_permissions = (await db.execute(role_stmt)).scalars().all()
        override_permissions = (await db.execute(override_stmt)).scalars().all()

        return set(role_permissions) | set(override_permissions)
    except Exception:
        log.exception("Error listing permissions for user %s in %s", user_id, unidade)
        return set()


# ============================================================================
# Grants
# ============================================================================

def _dialect_insert(db: AsyncSession):
    """insert() construct supporting ON CONFLICT for the session's backend."""
    if db.get_bind().dialect.name == "postgresql":
        return postgresql.insert
    return sqlite.insert


async def upsert_role_permissions(
    db: AsyncSession,
    role: UserRole,
    permissions: Iterable[PermissionType],
    unidade: Unidade
) -> None:
    """Mark each (role, permission, unidade) active, inserting missing rows."""
    rows = [
        {
            "id": generate_ulid(),
            "role": role,
            "permission": permission,
            "unidade": unidade,
            "is_active": True,
        }
        for permission in dict.fromkeys(permissions)
    ]
    if not rows:
        return

    insert = _dialect_insert(db)
    stmt = insert(RolePermission).values(rows)
    stmt = stmt.on_conflict_do_update(
        index_elements=["role", "permission", "unidade"],
        set_={"is_active": True, "updated_at": func.now()},
    )
    await db.execute(stmt)
    await db.commit()


async def setup_default_role_permissions(
    db: AsyncSession,
    role: UserRole,
    unidade: Unidade
) -> list[PermissionType]:
    """
    Seed the default policy for a role in a unidade.

    Additive and idempotent: grants outside the default policy are left as
    they are.

    Returns:
        The permissions that were upserted
    """
    permissions = list(default_permissions_for(role))
    await upsert_role_permissions(db, role, permissions, unidade)
    log.info("Default permissions set up for %s in %s (%d permissions)", role.value, unidade.value, len(permissions))
    return permissions


async def grant_user_permission(
    db: AsyncSession,
    user_id: str,
    permission: PermissionType,
    unidade: Unidade
) -> None:
    """Upsert an active override for (user, permission, unidade)."""
    insert = _dialect_insert(db)
    stmt = insert(UserPermission).values(
        id=generate_ulid(),
        user_id=user_id,
        permission=permission,
        unidade=unidade,
        is_active=True,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_id", "permission", "unidade"],
        set_={"is_active": True, "updated_at": func.now()},
    )
    await db.execute(stmt)
    await db.commit()
    log.info("Granted %s to user %s in %s", permission.value, user_id, unidade.value)


async def revoke_user_permission(
    db: AsyncSession,
    user_id: str,
    permission: PermissionType,
    unidade: Unidade
) -> None:
    """Deactivate the override for (user, permission, unidade); no-op when absent."""
    stmt = (
        update(UserPermission)
        .where(
            UserPermission.user_id == user_id,
            UserPermission.permission == permission,
            UserPermission.unidade == unidade,
        )
        .values(is_active=False, updated_at=func.now())
    )
    await db.execute(stmt)
    await db.commit()
    log.info("Revoked %s from user %s in %s", permission.value, user_id, unidade.value)
