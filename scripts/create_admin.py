"""
Create (or reactivate) an ADMIN user and print an access token for it.

Usage:
    python -m scripts.create_admin admin@clinica.com "Admin" BARRA
"""
import argparse
import asyncio
from sqlalchemy import select

from app.core.database.engine import AsyncSessionLocal, init_db
from app.features.permissions.enums import Unidade, UserRole
from app.features.users.auth import create_access_token
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


async def create_admin(email: str, name: str, unidade: Unidade) -> str:
    await init_db()

    async with AsyncSessionLocal() as db:
        result = await db.execute(select(User).where(User.email == email))
        user = result.scalar_one_or_none()

        if user is None:
            user = User(
                email=email,
                name=name,
                role=UserRole.ADMIN,
                unidade=unidade,
                unidades_acesso=[u.value for u in Unidade],
            )
            db.add(user)
            log.info(f"Created admin {email}")
        else:
            user.role = UserRole.ADMIN
            user.is_active = True
            log.info(f"Promoted existing user {email} to admin")

        await db.commit()
        await db.refresh(user)
        return create_access_token(user)


def main():
    parser = argparse.ArgumentParser(description="Create an admin user")
    parser.add_argument("email")
    parser.add_argument("name")
    parser.add_argument("unidade", choices=[u.value for u in Unidade])
    args = parser.parse_args()

    token = asyncio.run(create_admin(args.email, args.name, Unidade(args.unidade)))
    print(token)


if __name__ == "__main__":
    main()
