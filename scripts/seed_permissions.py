"""
Seed script to populate default role permissions for every unidade.

Run this script after database initialization to:
- Upsert the default policy for every role in every unidade
- Give users without extra unidades access to their home unidade

Safe to run repeatedly; existing grants are never removed.

Usage:
    python -m scripts.seed_permissions
"""
import asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db, init_db
from app.features.permissions.enums import Unidade, UserRole
from app.features.permissions.service import setup_default_role_permissions
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


async def seed_role_permissions(db: AsyncSession) -> dict[UserRole, int]:
    """
    Upsert the default policy for each (role, unidade).

    Returns:
        Dictionary mapping role to the number of permissions seeded per unidade
    """
    log.info("Setting up default role permissions...")
    summary: dict[UserRole, int] = {}

    for role in UserRole:
        for unidade in Unidade:
            log.debug(f"Configuring {role.value} in {unidade.value}")
            permissions = await setup_default_role_permissions(db, role, unidade)
            summary[role] = len(permissions)

    return summary


async def backfill_unidades_acesso(db: AsyncSession) -> int:
    """
    Make sure every user lists their home unidade in unidades_acesso.

    Returns:
        Number of users updated
    """
    result = await db.execute(select(User))
    updated = 0

    for user in result.scalars().all():
        if not user.unidades_acesso:
            user.unidades_acesso = [user.unidade.value]
            updated += 1
            log.info(f"Gave {user.email} access to home unidade {user.unidade.value}")

    await db.commit()
    return updated


async def main():
    """Main function to seed role permissions."""
    log.info("Starting permission seeding...")

    # Initialize database tables first
    log.info("Initializing database tables...")
    await init_db()

    # Get database session
    async for db in get_db():
        try:
            summary = await seed_role_permissions(db)
            updated = await backfill_unidades_acesso(db)

            log.info("Permission seeding completed successfully!")
            log.info("")
            log.info("Default permissions per unidade:")
            for role, count in summary.items():
                log.info(f"  - {role.value}: {count}")
            log.info(f"Users updated with home unidade access: {updated}")

        except Exception as e:
            log.error(f"Error seeding permissions: {e}", exc_info=True)
            await db.rollback()
            raise

        break  # Only use first session


if __name__ == "__main__":
    asyncio.run(main())
