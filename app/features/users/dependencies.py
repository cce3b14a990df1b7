"""
FastAPI dependencies for authentication.

The resolved AuthContext is returned to callers instead of being stored on the
request, so the authorization gate always receives it as an argument.
"""
from typing import Annotated, Optional
from fastapi import Depends, Header, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.core.errors import AppError
from app.features.permissions.enums import Unidade
from app.features.users.auth import verify_jwt_token
from app.features.users.schemas import AuthContext


security = HTTPBearer(auto_error=False)


async def get_optional_auth_context(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    x_unidade: Annotated[Optional[str], Header()] = None,
) -> Optional[AuthContext]:
    """
    Resolve the caller's identity, or None when no bearer token was sent.

    The `x-unidade` header selects the unidade the caller acts in; without it
    the home unidade from the token is used.

    Raises:
        AppError: 401 for an invalid token, 400 INVALID_UNIDADE for an unknown unidade header
    """
    if credentials is None or not credentials.credentials:
        return None

    context = verify_jwt_token(credentials.credentials)

    if x_unidade:
        try:
            unidade = Unidade(x_unidade)
        except ValueError:
            valid = ", ".join(u.value for u in Unidade)
            raise AppError(f"Invalid unidade. Use one of: {valid}", 400, "INVALID_UNIDADE")
        context = context.model_copy(update={"unidade": unidade})

    return context


async def get_auth_context(
    context: Annotated[Optional[AuthContext], Depends(get_optional_auth_context)]
) -> AuthContext:
    """
    Require an authenticated caller.

    Usage:
        @router.get("/me")
        async def my_permissions(context: AuthContext = Depends(get_auth_context)):
            ...
    """
    if context is None:
        raise AppError("User not authenticated", 401, "UNAUTHORIZED")
    return context


def get_authorization_header(request: Request) -> str:
    """
    Extract authorization header for rate limiting.
    Used with slowapi Limiter.
    """
    auth = request.headers.get("Authorization", "")
    return auth or "anonymous"
