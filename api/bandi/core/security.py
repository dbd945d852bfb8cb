from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from functools import lru_cache
import logging
from typing import Any

from fastapi import Depends, Header, HTTPException, status
from jose import JWTError, jwt

from bandi.core.auth import AuthenticationError, Principal, Role, extract_token, parse_role
from bandi.core.config import get_settings
from bandi.services.repository import RepositoryError
from bandi.services.tables import UserRepository, get_user_repository

logger = logging.getLogger(__name__)

ACCESS_DENIED = "Access denied"
USER_NOT_FOUND = "User not found"


class JwtAuthenticator:
    def __init__(self, secret: str | None, algorithm: str = "HS256", expire_minutes: int = 120) -> None:
        self.secret = secret
        self.algorithm = algorithm
        self.expire_minutes = expire_minutes

    def verify(self, token: str) -> Principal:
        if not self.secret:
            raise AuthenticationError("token verification is not configured")
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except JWTError as exc:
            raise AuthenticationError("invalid token") from exc
        return self._principal_from_payload(payload)

    def issue(self, user_id: str, role: Role, expires_in: timedelta | None = None) -> str:
        if not self.secret:
            raise AuthenticationError("token signing is not configured")
        expire = datetime.now(timezone.utc) + (expires_in or timedelta(minutes=self.expire_minutes))
        claims = {"id": user_id, "role": role.value, "exp": expire}
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

    @staticmethod
    def _principal_from_payload(payload: dict[str, Any]) -> Principal:
        user_id = payload.get("id") or payload.get("sub")
        if not isinstance(user_id, str) or not user_id:
            raise AuthenticationError("token carries no identity")
        role = parse_role(payload.get("role"))
        if role is None:
            raise AuthenticationError("token carries no valid role")
        return Principal(id=user_id, role=role)


@lru_cache
def get_authenticator() -> JwtAuthenticator:
    settings = get_settings()
    return JwtAuthenticator(
        secret=settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
        expire_minutes=settings.jwt_expire_minutes,
    )


async def get_principal(
    authenticator: JwtAuthenticator = Depends(get_authenticator),
    users: UserRepository = Depends(get_user_repository),
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> Principal:
    token = extract_token(authorization)
    if token is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="authentication required")

    try:
        claimed = authenticator.verify(token)
    except AuthenticationError as exc:
        logger.info("rejected token: %s", exc)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc

    # The stored account decides: removed users lose access and role changes apply at once.
    try:
        user = await users.find_by_email(claimed.id)
    except RepositoryError as exc:
        logger.warning("token owner lookup failed user=%s error=%s", claimed.id, exc)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=USER_NOT_FOUND) from exc
    if user is None:
        logger.info("rejected token for unknown user=%s", claimed.id)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=USER_NOT_FOUND)
    return Principal(id=user.email, role=user.role)


def require_roles(*roles: Role) -> Callable[..., Awaitable[Principal]]:
    async def dependency(principal: Principal = Depends(get_principal)) -> Principal:
        try:
            principal.require_roles(*roles)
        except PermissionError as exc:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=ACCESS_DENIED) from exc
        return principal

    return dependency
