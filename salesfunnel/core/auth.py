from dataclasses import dataclass

from jose import JWTError, jwt
from starlette.requests import Request

from salesfunnel.core.config import get_settings


@dataclass
class AuthUser:
    sub: str
    roles: list[str]


def decode_token(token: str) -> AuthUser | None:
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
    subject = payload.get("sub")
    if not subject:
        return None
    roles = payload.get("roles", [])
    if not isinstance(roles, list):
        roles = [roles]
    return AuthUser(sub=str(subject), roles=[str(role) for role in roles])


def issue_token(sub: str, roles: list[str]) -> str:
    settings = get_settings()
    return jwt.encode({"sub": sub, "roles": roles}, settings.jwt_secret, algorithm=settings.jwt_algorithm)


async def get_current_user(request: Request) -> AuthUser:
    auth_header = request.headers.get("authorization", "")
    token = auth_header.replace("Bearer ", "") if auth_header.startswith("Bearer ") else ""

    user = decode_token(token) if token else None
    if user is None:
        return AuthUser(sub="anonymous", roles=[])
    request.state.user_id = user.sub
    return user
