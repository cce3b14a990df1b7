"""
User model with ULID primary keys.

The permission engine only reads users; account lifecycle belongs to the
clinic's user management.
"""
from sqlalchemy import String, Boolean, JSON, Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column
import ulid

from app.core.database.base import Base, TimestampMixin
from app.features.permissions.enums import Unidade, UserRole


def generate_ulid() -> str:
    """Generate a new ULID string."""
    return ulid.new().str


class User(Base, TimestampMixin):
    """
    User model representing clinic staff.

    Uses ULID instead of auto-incrementing integers for better distributed systems support.
    """
    __tablename__ = "users"

    # Primary key using ULID (Universally Unique Lexicographically Sortable Identifier)
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # User information
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    role: Mapped[UserRole] = mapped_column(SAEnum(UserRole, name="user_role"), nullable=False, index=True)

    # Home unidade plus the extra unidades the user may act in
    unidade: Mapped[Unidade] = mapped_column(SAEnum(Unidade, name="unidade"), nullable=False)
    unidades_acesso: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)

    # Status flags
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def can_access(self, unidade: Unidade) -> bool:
        """Tenant membership: home unidade or one of the granted unidades."""
        return unidade == self.unidade or unidade.value in (self.unidades_acesso or [])

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email!r}, role={self.role})>"
