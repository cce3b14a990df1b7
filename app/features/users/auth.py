"""
JWT utilities for clinic access tokens.

Tokens are HS256-signed with the shared JWT_SECRET and carry the user id,
role and home unidade.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from pydantic import ValidationError

from app.core import config
from app.core.errors import AppError
from app.features.users.schemas import AuthContext
from app.utils import get_logger


log = get_logger(__name__)


def create_access_token(user, expires_minutes: Optional[int] = None) -> str:
    """
    Issue a token for a user.

    Used by scripts/create_admin.py and by tests; production tokens come from
    the clinic login service, which signs with the same secret.
    """
    minutes = expires_minutes if expires_minutes is not None else config.JWT_EXPIRES_MINUTES
    now = datetime.now(timezone.utc)
    payload = {
        "id": user.id,
        "role": user.role.value,
        "unidade": user.unidade.value,
        "iat": now,
        "exp": now + timedelta(minutes=minutes),
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def verify_jwt_token(token: str) -> AuthContext:
    """
    Verify a token and return the auth context it describes.

    Raises:
        AppError: 401 UNAUTHORIZED if the token is invalid, expired or malformed
    """
    try:
        payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AppError("Token has expired", 401, "UNAUTHORIZED")
    except jwt.InvalidTokenError as e:
        log.info("Rejected token: %s", e)
        raise AppError("Invalid token", 401, "UNAUTHORIZED")

    try:
        return AuthContext(
            user_id=payload.get("id"),
            role=payload.get("role"),
            unidade=payload.get("unidade"),
        )
    except ValidationError:
        raise AppError("Invalid token payload", 401, "UNAUTHORIZED")
