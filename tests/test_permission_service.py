"""Tests for the permission engine: evaluation order, overrides and seeding."""

from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select

from app.features.permissions.enums import PermissionType, Unidade, UserRole
from app.features.permissions.models import RolePermission, UserPermission
from app.features.permissions.policy import DEFAULT_ROLE_PERMISSIONS
from app.features.permissions.service import (
    OverrideDecision,
    get_override_decision,
    get_user_permissions,
    grant_user_permission,
    has_permission,
    list_role_permissions,
    revoke_user_permission,
    setup_default_role_permissions,
    upsert_role_permissions,
)


async def _seed_all(db, unidade: Unidade = Unidade.BARRA) -> None:
    for role in UserRole:
        await setup_default_role_permissions(db, role, unidade)


async def test_unknown_user_has_no_permissions(db) -> None:
    await _seed_all(db)
    assert await has_permission(db, "01HZZZZZZZZZZZZZZZZZZZZZZZ", PermissionType.PACIENTES_VISUALIZAR, Unidade.BARRA) is False
    assert await get_user_permissions(db, "01HZZZZZZZZZZZZZZZZZZZZZZZ", Unidade.BARRA) == set()


@pytest.mark.parametrize("role", [UserRole.ADMIN, UserRole.RECEPCIONISTA, UserRole.FINANCEIRO])
async def test_inactive_user_is_denied_everything(db, make_user, role) -> None:
    await _seed_all(db)
    user = await make_user(role=role, is_active=False)
    await grant_user_permission(db, user.id, PermissionType.FINANCEIRO_EDITAR, Unidade.BARRA)

    for unidade in Unidade:
        for permission in PermissionType:
            assert await has_permission(db, user.id, permission, unidade) is False
    assert await get_user_permissions(db, user.id, Unidade.BARRA) == set()


async def test_admin_is_granted_everything_in_every_unidade(db, make_user) -> None:
    # Nothing seeded and no access to TIJUCA: admins bypass both
    admin = await make_user(role=UserRole.ADMIN, unidade=Unidade.BARRA, unidades_acesso=[Unidade.BARRA])

    for unidade in Unidade:
        for permission in PermissionType:
            assert await has_permission(db, admin.id, permission, unidade) is True
    assert await get_user_permissions(db, admin.id, Unidade.TIJUCA) == set(PermissionType)


async def test_override_cannot_bypass_unidade_gate(db, make_user) -> None:
    await _seed_all(db, Unidade.TIJUCA)
    user = await make_user(role=UserRole.RECEPCIONISTA, unidade=Unidade.BARRA, unidades_acesso=[Unidade.BARRA])
    await grant_user_permission(db, user.id, PermissionType.FINANCEIRO_EDITAR, Unidade.TIJUCA)

    assert await has_permission(db, user.id, PermissionType.FINANCEIRO_EDITAR, Unidade.TIJUCA) is False
    assert await has_permission(db, user.id, PermissionType.AGENDAMENTOS_CRIAR, Unidade.TIJUCA) is False
    assert await get_user_permissions(db, user.id, Unidade.TIJUCA) == set()


async def test_unidades_acesso_opens_other_unidade(db, make_user) -> None:
    await _seed_all(db, Unidade.TIJUCA)
    user = await make_user(
        role=UserRole.MEDICO, unidade=Unidade.BARRA, unidades_acesso=[Unidade.BARRA, Unidade.TIJUCA]
    )
    assert await has_permission(db, user.id, PermissionType.AGENDAMENTOS_CRIAR, Unidade.TIJUCA) is True


async def test_home_unidade_counts_even_when_missing_from_access_list(db, make_user) -> None:
    await _seed_all(db)
    user = await make_user(role=UserRole.MEDICO, unidade=Unidade.BARRA, unidades_acesso=[])
    assert await has_permission(db, user.id, PermissionType.PACIENTES_VISUALIZAR, Unidade.BARRA) is True


async def test_role_grants_are_scoped_by_unidade(db, make_user) -> None:
    await setup_default_role_permissions(db, UserRole.RECEPCIONISTA, Unidade.BARRA)
    user = await make_user(unidades_acesso=[Unidade.BARRA, Unidade.TIJUCA])

    assert await has_permission(db, user.id, PermissionType.AGENDAMENTOS_CRIAR, Unidade.BARRA) is True
    assert await has_permission(db, user.id, PermissionType.AGENDAMENTOS_CRIAR, Unidade.TIJUCA) is False


async def test_grant_then_revoke_restores_role_decision(db, make_user) -> None:
    await _seed_all(db)
    user = await make_user(role=UserRole.RECEPCIONISTA)
    permission = PermissionType.FINANCEIRO_EDITAR

    assert await has_permission(db, user.id, permission, Unidade.BARRA) is False
    assert await get_override_decision(db, user.id, permission, Unidade.BARRA) is OverrideDecision.INHERIT

    await grant_user_permission(db, user.id, permission, Unidade.BARRA)
    assert await has_permission(db, user.id, permission, Unidade.BARRA) is True
    assert await get_override_decision(db, user.id, permission, Unidade.BARRA) is OverrideDecision.ALLOW

    await revoke_user_permission(db, user.id, permission, Unidade.BARRA)
    assert await has_permission(db, user.id, permission, Unidade.BARRA) is False


async def test_revoking_override_keeps_role_grant(db, make_user) -> None:
    await _seed_all(db)
    user = await make_user(role=UserRole.RECEPCIONISTA)
    permission = PermissionType.AGENDAMENTOS_CRIAR

    await grant_user_permission(db, user.id, permission, Unidade.BARRA)
    await revoke_user_permission(db, user.id, permission, Unidade.BARRA)

    assert await has_permission(db, user.id, permission, Unidade.BARRA) is True


async def test_grant_and_revoke_are_idempotent(db, make_user) -> None:
    user = await make_user()
    permission = PermissionType.ESTOQUE_EDITAR

    await grant_user_permission(db, user.id, permission, Unidade.BARRA)
    await grant_user_permission(db, user.id, permission, Unidade.BARRA)

    rows = (await db.execute(select(UserPermission).where(UserPermission.user_id == user.id))).scalars().all()
    assert len(rows) == 1
    assert rows[0].is_active is True

    await revoke_user_permission(db, user.id, permission, Unidade.BARRA)
    await revoke_user_permission(db, user.id, permission, Unidade.BARRA)
    db.expire_all()

    rows = (await db.execute(select(UserPermission).where(UserPermission.user_id == user.id))).scalars().all()
    assert len(rows) == 1
    assert rows[0].is_active is False


async def test_revoke_without_override_is_a_noop(db, make_user) -> None:
    user = await make_user()
    await revoke_user_permission(db, user.id, PermissionType.SISTEMA_BACKUP, Unidade.BARRA)

    count = (await db.execute(select(func.count(UserPermission.id)))).scalar_one()
    assert count == 0


async def test_setup_default_role_permissions_is_idempotent(db) -> None:
    first = await setup_default_role_permissions(db, UserRole.FINANCEIRO, Unidade.BARRA)
    after_first = await list_role_permissions(db, UserRole.FINANCEIRO, Unidade.BARRA)
    await setup_default_role_permissions(db, UserRole.FINANCEIRO, Unidade.BARRA)
    after_second = await list_role_permissions(db, UserRole.FINANCEIRO, Unidade.BARRA)

    assert after_first == after_second
    assert set(after_second) == set(first) == set(DEFAULT_ROLE_PERMISSIONS[UserRole.FINANCEIRO])

    count = (await db.execute(select(func.count(RolePermission.id)))).scalar_one()
    assert count == len(DEFAULT_ROLE_PERMISSIONS[UserRole.FINANCEIRO])


async def test_setup_is_additive_and_reactivates_defaults(db) -> None:
    await setup_default_role_permissions(db, UserRole.MEDICO, Unidade.BARRA)
    await upsert_role_permissions(db, UserRole.MEDICO, [PermissionType.ESTOQUE_VISUALIZAR], Unidade.BARRA)

    row = (
        await db.execute(
            select(RolePermission).where(
                RolePermission.role == UserRole.MEDICO,
                RolePermission.permission == PermissionType.PACIENTES_VISUALIZAR,
            )
        )
    ).scalar_one()
    row.is_active = False
    await db.commit()

    await setup_default_role_permissions(db, UserRole.MEDICO, Unidade.BARRA)
    permissions = await list_role_permissions(db, UserRole.MEDICO, Unidade.BARRA)

    assert PermissionType.ESTOQUE_VISUALIZAR in permissions
    assert PermissionType.PACIENTES_VISUALIZAR in permissions


async def test_user_permissions_match_has_permission(db, make_user) -> None:
    await _seed_all(db)
    user = await make_user(role=UserRole.TECNICO_ENFERMAGEM)
    await grant_user_permission(db, user.id, PermissionType.AGENDAMENTOS_VISUALIZAR, Unidade.BARRA)
    await grant_user_permission(db, user.id, PermissionType.ESTOQUE_VISUALIZAR, Unidade.BARRA)
    await revoke_user_permission(db, user.id, PermissionType.ESTOQUE_VISUALIZAR, Unidade.BARRA)

    permissions = await get_user_permissions(db, user.id, Unidade.BARRA)
    assert permissions == {
        PermissionType.PACIENTES_VISUALIZAR,
        PermissionType.PACIENTES_PRONTUARIO_VISUALIZAR,
        PermissionType.AGENDAMENTOS_VISUALIZAR,
    }
    for permission in PermissionType:
        assert await has_permission(db, user.id, permission, Unidade.BARRA) is (permission in permissions)


async def test_override_duplicating_role_grant_collapses(db, make_user) -> None:
    await _seed_all(db)
    user = await make_user(role=UserRole.TECNICO_ENFERMAGEM)
    await grant_user_permission(db, user.id, PermissionType.PACIENTES_VISUALIZAR, Unidade.BARRA)

    permissions = await get_user_permissions(db, user.id, Unidade.BARRA)
    assert len(permissions) == len(DEFAULT_ROLE_PERMISSIONS[UserRole.TECNICO_ENFERMAGEM])


async def test_lookup_errors_fail_closed(caplog) -> None:
    broken = AsyncMock()
    broken.execute.side_effect = RuntimeError("connection reset")

    assert await has_permission(broken, "user-1", PermissionType.PACIENTES_VISUALIZAR, Unidade.BARRA) is False
    assert await get_user_permissions(broken, "user-1", Unidade.BARRA) == set()
    assert "Error checking permission" in caplog.text
    assert "Error listing permissions" in caplog.text


async def test_unknown_permission_tag_is_denied(db, make_user) -> None:
    user = await make_user()
    assert await has_permission(db, user.id, "PACIENTES_TELEPORTAR", Unidade.BARRA) is False
