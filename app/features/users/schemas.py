"""
Pydantic schemas for user-related responses and the request auth context.
"""
from pydantic import BaseModel, ConfigDict

from app.features.permissions.enums import Unidade, UserRole


class AuthContext(BaseModel):
    """
    Identity of the caller, resolved once per request and passed explicitly
    to the authorization gate.
    """
    user_id: str
    role: UserRole
    unidade: Unidade

    model_config = ConfigDict(frozen=True)


class UserSummary(BaseModel):
    """User fields exposed alongside permission listings."""
    id: str
    name: str
    email: str
    role: UserRole
    unidade: Unidade
    unidades_acesso: list[Unidade] = []
    is_active: bool

    model_config = ConfigDict(from_attributes=True)
