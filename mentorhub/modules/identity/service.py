"""Resolve the signed bearer token into an explicit caller context."""

from __future__ import annotations

from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials

from mentorhub.core.enums import RoleEnum
from mentorhub.core.security import bearer_scheme, decode_token
from mentorhub.modules.identity.schemas import Principal
from mentorhub.shared.exceptions import UnauthorizedException


def principal_from_claims(claims: dict) -> Principal:
    """Build principal from decoded token claims."""
    if claims.get("type") != "access":
        raise UnauthorizedException("Invalid access token")

    subject = claims.get("sub")
    if not subject:
        raise UnauthorizedException("Token subject is missing")
    try:
        user_id = UUID(str(subject))
    except ValueError as exc:
        raise UnauthorizedException("Token subject is not a valid user id") from exc

    try:
        role = RoleEnum(str(claims.get("role", "")).lower())
    except ValueError as exc:
        raise UnauthorizedException("Token role is not recognized") from exc

    name = claims.get("name")
    return Principal(user_id=user_id, role=role, display_name=str(name) if name else None)


async def get_current_principal(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> Principal:
    """Resolve currently authenticated caller from bearer token."""
    return principal_from_claims(decode_token(credentials.credentials))


def require_roles(*roles: RoleEnum):
    """Dependency factory for role-based access."""

    async def _checker(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Operation not permitted for your role",
            )
        return principal

    return _checker
