from collections.abc import Callable

from fastapi import Depends, HTTPException, status

from salesfunnel.core.auth import AuthUser, get_current_user
from salesfunnel.business.errors import ForbiddenError


ROLE_ADMIN = "admin"
ROLE_SALES_MANAGER = "sales_manager"
ROLE_FINANCE = "finance"
ROLE_SALES_REP = "sales_rep"

ALL_ROLES = (ROLE_ADMIN, ROLE_SALES_MANAGER, ROLE_FINANCE, ROLE_SALES_REP)


def primary_role(roles: list[str]) -> str:
    normalized = {str(role).lower() for role in roles}
    for role in ALL_ROLES:
        if role in normalized:
            return role
    return ROLE_SALES_REP


def ensure_role(role: str, allowed: set[str] | frozenset[str], action: str) -> None:
    if role not in allowed:
        raise ForbiddenError(f"role {role} may not {action}", details={"role": role, "allowed": sorted(allowed)})


def require_roles(*roles: str) -> Callable[[AuthUser], AuthUser]:
    async def checker(user: AuthUser = Depends(get_current_user)) -> AuthUser:
        if primary_role(user.roles) not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing role: {' or '.join(roles)}",
            )
        return user

    return checker
