"""
Closed enumerations shared by the permission engine.

Members are str-valued with value == name so they serialize as the plain tag
in JSON, JWT payloads and database columns.
"""
import enum


class Unidade(str, enum.Enum):
    """Clinic unit: the tenant boundary for every grant and log entry."""
    BARRA = "BARRA"
    TIJUCA = "TIJUCA"


class UserRole(str, enum.Enum):
    ADMIN = "ADMIN"
    MEDICO = "MEDICO"
    RECEPCIONISTA = "RECEPCIONISTA"
    RECEPCAO = "RECEPCAO"
    TECNICO_ENFERMAGEM = "TECNICO_ENFERMAGEM"
    FINANCEIRO = "FINANCEIRO"
    NUTRICIONISTA = "NUTRICIONISTA"
    BIOMEDICO = "BIOMEDICO"
    ESTETICA = "ESTETICA"
    ADMINISTRATIVO = "ADMINISTRATIVO"


class PermissionType(str, enum.Enum):
    # Patients
    PACIENTES_VISUALIZAR = "PACIENTES_VISUALIZAR"
    PACIENTES_CRIAR = "PACIENTES_CRIAR"
    PACIENTES_EDITAR_BASICO = "PACIENTES_EDITAR_BASICO"
    PACIENTES_EDITAR_COMPLETO = "PACIENTES_EDITAR_COMPLETO"
    PACIENTES_EXCLUIR = "PACIENTES_EXCLUIR"
    PACIENTES_PRONTUARIO_VISUALIZAR = "PACIENTES_PRONTUARIO_VISUALIZAR"
    PACIENTES_PRONTUARIO_EDITAR = "PACIENTES_PRONTUARIO_EDITAR"

    # Appointments
    AGENDAMENTOS_VISUALIZAR = "AGENDAMENTOS_VISUALIZAR"
    AGENDAMENTOS_CRIAR = "AGENDAMENTOS_CRIAR"
    AGENDAMENTOS_EDITAR = "AGENDAMENTOS_EDITAR"
    AGENDAMENTOS_CANCELAR = "AGENDAMENTOS_CANCELAR"
    AGENDAMENTOS_REAGENDAR = "AGENDAMENTOS_REAGENDAR"
    AGENDAMENTOS_OUTROS_MEDICOS = "AGENDAMENTOS_OUTROS_MEDICOS"

    # Finance
    FINANCEIRO_VISUALIZAR = "FINANCEIRO_VISUALIZAR"
    FINANCEIRO_CRIAR = "FINANCEIRO_CRIAR"
    FINANCEIRO_EDITAR = "FINANCEIRO_EDITAR"
    FINANCEIRO_RELATORIOS = "FINANCEIRO_RELATORIOS"
    FINANCEIRO_EXCLUIR = "FINANCEIRO_EXCLUIR"

    # Inventory
    ESTOQUE_VISUALIZAR = "ESTOQUE_VISUALIZAR"
    ESTOQUE_CRIAR = "ESTOQUE_CRIAR"
    ESTOQUE_EDITAR = "ESTOQUE_EDITAR"
    ESTOQUE_MOVIMENTAR = "ESTOQUE_MOVIMENTAR"
    ESTOQUE_RELATORIOS = "ESTOQUE_RELATORIOS"

    # Users
    USUARIOS_VISUALIZAR = "USUARIOS_VISUALIZAR"
    USUARIOS_CRIAR = "USUARIOS_CRIAR"
    USUARIOS_EDITAR = "USUARIOS_EDITAR"
    USUARIOS_EXCLUIR = "USUARIOS_EXCLUIR"

    # Reports
    RELATORIOS_GERAL = "RELATORIOS_GERAL"
    RELATORIOS_FINANCEIRO = "RELATORIOS_FINANCEIRO"
    RELATORIOS_ESTOQUE = "RELATORIOS_ESTOQUE"
    RELATORIOS_PRODUTIVIDADE = "RELATORIOS_PRODUTIVIDADE"

    # System
    SISTEMA_CONFIGURAR = "SISTEMA_CONFIGURAR"
    SISTEMA_AUDITORIA = "SISTEMA_AUDITORIA"
    SISTEMA_BACKUP = "SISTEMA_BACKUP"
