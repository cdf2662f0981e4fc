"""Identity schemas."""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from pydantic import BaseModel

from mentorhub.core.enums import RoleEnum


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated caller as asserted by the identity service."""

    user_id: UUID
    role: RoleEnum
    display_name: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == RoleEnum.ADMIN


class PrincipalRead(BaseModel):
    """Principal response schema."""

    user_id: UUID
    role: RoleEnum
    display_name: str | None
