"""
Bearer-token identities and role guards.

Tokens are issued by whatever identity service fronts the deployment; this
module only resolves them. ``IdentityProvider`` is the seam for swapping in a
different resolver (e.g. a hosted auth provider's JWKS).
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Literal, Optional, Protocol

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from verisure.config import Settings, get_settings

logger = logging.getLogger(__name__)

Role = Literal["admin", "manufacturer", "customer"]
ROLES = ("admin", "manufacturer", "customer")


@dataclass(frozen=True)
class Principal:
    subject: str
    email: str
    role: Role


class IdentityProvider(Protocol):
    def resolve(self, token: str) -> Optional[Principal]:
        ...


class JWTIdentityProvider:
    """Resolves HS256 tokens carrying ``sub``, ``email`` and ``role`` claims."""

    def __init__(self, secret: str, algorithm: str = "HS256"):
        self._secret = secret
        self._algorithm = algorithm

    @classmethod
    def from_settings(cls, settings: Settings) -> "JWTIdentityProvider":
        return cls(settings.JWT_SECRET.get_secret_value(), settings.JWT_ALGORITHM)

    def resolve(self, token: str) -> Optional[Principal]:
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"require": ["sub", "exp"]},
            )
        except jwt.PyJWTError as e:
            logger.info(f"Rejected bearer token: {e}")
            return None

        role = claims.get("role", "customer")
        if role not in ROLES:
            logger.info(f"Rejected bearer token with unknown role {role!r}")
            return None
        return Principal(subject=str(claims["sub"]), email=claims.get("email", ""), role=role)


def create_access_token(subject: str, role: Role, email: str = "", settings: Optional[Settings] = None) -> str:
    settings = settings or get_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": subject,
        "email": email,
        "role": role,
        "iat": now,
        "exp": now + timedelta(hours=settings.JWT_EXPIRATION_HOURS),
    }
    return jwt.encode(payload, settings.JWT_SECRET.get_secret_value(), algorithm=settings.JWT_ALGORITHM)


bearer_scheme = HTTPBearer(auto_error=False)


def get_identity_provider(request: Request) -> IdentityProvider:
    return request.app.state.identity_provider


def require_roles(*roles: Role):
    """FastAPI dependency: 401 without a valid token, 403 for any other role."""

    async def dependency(
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
        provider: IdentityProvider = Depends(get_identity_provider),
    ) -> Principal:
        if credentials is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Not authenticated",
                headers={"WWW-Authenticate": "Bearer"},
            )
        principal = provider.resolve(credentials.credentials)
        if principal is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or expired token",
                headers={"WWW-Authenticate": "Bearer"},
            )
        if principal.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role")
        return principal

    return dependency
