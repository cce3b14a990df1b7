"""
Default role -> permission policy.

This table is domain policy, not configuration: it is read by
setup_default_role_permissions() when seeding a unidade and is not editable at
runtime. Per-unidade deviations are made through role_permissions rows or
user overrides, never by editing this table on a live system.
"""
from app.features.permissions.enums import PermissionType as P, UserRole


_CLINICIAN = (
    P.PACIENTES_VISUALIZAR,
    P.PACIENTES_PRONTUARIO_VISUALIZAR,
    P.PACIENTES_PRONTUARIO_EDITAR,
    P.AGENDAMENTOS_VISUALIZAR,
    P.AGENDAMENTOS_CRIAR,
    P.AGENDAMENTOS_EDITAR,
)

_FRONT_DESK = (
    P.PACIENTES_VISUALIZAR,
    P.PACIENTES_CRIAR,
    P.PACIENTES_EDITAR_BASICO,
    P.PACIENTES_PRONTUARIO_VISUALIZAR,  # prescriptions only
    P.AGENDAMENTOS_VISUALIZAR,
    P.AGENDAMENTOS_CRIAR,
    P.AGENDAMENTOS_EDITAR,
    P.AGENDAMENTOS_REAGENDAR,
    P.FINANCEIRO_VISUALIZAR,
    P.ESTOQUE_MOVIMENTAR,  # products used by a patient during a visit
)


DEFAULT_ROLE_PERMISSIONS: dict[UserRole, tuple[P, ...]] = {
    UserRole.ADMIN: tuple(P),
    # Doctors do not edit basic patient data, book for other doctors,
    # see finance or touch inventory.
    UserRole.MEDICO: _CLINICIAN,
    UserRole.RECEPCIONISTA: _FRONT_DESK,
    UserRole.RECEPCAO: _FRONT_DESK,
    # Nursing technicians annotate visits but never schedule.
    UserRole.TECNICO_ENFERMAGEM: (
        P.PACIENTES_VISUALIZAR,
        P.PACIENTES_PRONTUARIO_VISUALIZAR,
    ),
    UserRole.FINANCEIRO: (
        P.FINANCEIRO_VISUALIZAR,
        P.FINANCEIRO_CRIAR,
        P.FINANCEIRO_EDITAR,
        P.FINANCEIRO_RELATORIOS,
        P.RELATORIOS_FINANCEIRO,
    ),
    UserRole.NUTRICIONISTA: _CLINICIAN,
    UserRole.BIOMEDICO: _CLINICIAN,
    UserRole.ESTETICA: _CLINICIAN,
    UserRole.ADMINISTRATIVO: (
        P.USUARIOS_VISUALIZAR,
        P.USUARIOS_CRIAR,
        P.USUARIOS_EDITAR,
        P.RELATORIOS_GERAL,
        P.SISTEMA_CONFIGURAR,
    ),
}


def default_permissions_for(role: UserRole) -> tuple[P, ...]:
    """Default grants for a role; unknown roles get nothing."""
    return DEFAULT_ROLE_PERMISSIONS.get(role, ())
