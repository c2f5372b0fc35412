from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from .permissions import PermissionService, Permissions
from .settings import settings

# Tokens are issued by the auth service; this API only verifies them
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token", auto_error=False)


@dataclass(frozen=True)
class Actor:
    """Authenticated caller: who is acting and in which tenant."""
    user_id: int
    company_id: int
    role: str | None = None


def decode_actor(token: str) -> Actor | None:
    """Validate a JWT and extract the actor; None when invalid."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
        user_id = payload.get("sub")
        company_id = payload.get("company_id")
        if user_id is None or company_id is None:
            return None
        return Actor(user_id=int(user_id), company_id=int(company_id), role=payload.get("role"))
    except (JWTError, ValueError, TypeError):
        return None


async def get_token_from_cookie(
    request: Request,
    token: Annotated[str | None, Depends(oauth2_scheme)]
) -> str:
    """
    Get token from cookie (primary) or Authorization header (fallback).
    """
    cookie_token = request.cookies.get("access_token")
    if cookie_token:
        return cookie_token

    if token:
        return token

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authenticated",
    )


async def get_current_actor(
    token: Annotated[str, Depends(get_token_from_cookie)],
) -> Actor:
    actor = decode_actor(token)
    if actor is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )
    return actor


class PermissionChecker:
    """Dependency that requires the caller's role to grant a permission."""

    def __init__(self, required_permission: Permissions):
        self.required_permission = required_permission

    def __call__(self, actor: Annotated[Actor, Depends(get_current_actor)]) -> Actor:
        if not PermissionService.has_permission(actor.role, self.required_permission.value):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized")
        return actor
