"""Authenticated principal handed to every core operation."""

from dataclasses import dataclass
from enum import Enum

from telemed_settlement.errors import Forbidden


class Role(Enum):
    PATIENT = "patient"
    DOCTOR = "doctor"
    ADMIN = "admin"


@dataclass(frozen=True)
class Principal:
    """Who is calling. How the role was established is the auth layer's business."""
    id: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


def require_role(principal: Principal, *roles: Role) -> None:
    """Raise Forbidden unless the principal holds one of the roles."""
    if principal.role not in roles:
        allowed = ", ".join(r.value for r in roles)
        raise Forbidden(
            f"Role '{principal.role.value}' cannot perform this action (requires {allowed})",
            principal_id=principal.id,
        )
