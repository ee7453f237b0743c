from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from backend.relay.settings import Settings

ADMIN_ROLE = "admin"
OPERATOR_ROLE = "operator"
RELAY_ROLES = frozenset({ADMIN_ROLE, OPERATOR_ROLE})

security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthContext:
    user_id: str
    roles: frozenset[str]


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def _decode(token: str, settings: Settings) -> dict[str, Any]:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError as exc:
        raise _unauthorized("auth token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise _unauthorized("invalid auth token") from exc


def _relay_roles(claim: Any) -> frozenset[str]:
    if not isinstance(claim, list):
        raise _unauthorized("token roles must be a list")
    # roles minted for other services are ignored
    return frozenset(str(role).strip() for role in claim) & RELAY_ROLES


def get_auth_context(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> AuthContext:
    settings = get_settings(request)
    if not settings.auth_enabled:
        return AuthContext(user_id="dev-local", roles=RELAY_ROLES)

    if not credentials or credentials.scheme.lower() != "bearer":
        raise _unauthorized("missing bearer token")

    payload = _decode(credentials.credentials, settings)
    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject.strip():
        raise _unauthorized("token missing subject")
    roles = _relay_roles(payload.get("roles", []))
    if not roles:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="token carries no relay role",
        )
    return AuthContext(user_id=subject.strip(), roles=roles)


def require_roles(*required_roles: str) -> Callable[[AuthContext], AuthContext]:
    required = frozenset(required_roles)

    def dependency(context: AuthContext = Depends(get_auth_context)) -> AuthContext:
        if context.roles.isdisjoint(required):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"insufficient role. required any of: {sorted(required)}",
            )
        return context

    return dependency
