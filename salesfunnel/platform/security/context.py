from __future__ import annotations

from dataclasses import dataclass

from salesfunnel.core.rbac import ROLE_ADMIN


@dataclass(slots=True)
class Actor:
    """Authenticated caller as handed to funnel operations."""

    user_id: str
    role: str
    correlation_id: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def has_role(self, *roles: str) -> bool:
        return self.role in roles

    def owns_or_admin(self, owner_user_id: str | None) -> bool:
        return self.is_admin or (owner_user_id is not None and owner_user_id == self.user_id)


SYSTEM_ACTOR = Actor(user_id="system", role=ROLE_ADMIN)
