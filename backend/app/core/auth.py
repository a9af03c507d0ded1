"""Caller identity from HS256 bearer JWTs issued by the identity provider."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Literal
from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ValidationError

from app.core.config import settings
from app.core.logging import get_logger
from app.db.session import get_session
from app.models.users import User

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

logger = get_logger(__name__)
security = HTTPBearer(auto_error=False)
SECURITY_DEP = Depends(security)
SESSION_DEP = Depends(get_session)
DEFAULT_TOKEN_TTL = timedelta(hours=24)


class TokenPayload(BaseModel):
    """JWT claims payload shape required from caller tokens."""

    sub: UUID


@dataclass
class AuthContext:
    """Authenticated user context resolved from inbound auth headers.

    Role flags are deliberately absent; they are looked up per request.
    """

    actor_type: Literal["user"]
    user_id: UUID
    user: User | None = None


def create_access_token(
    *,
    user_id: UUID,
    expires_in: timedelta = DEFAULT_TOKEN_TTL,
    secret: str | None = None,
) -> str:
    """Mint a token for ``user_id``; used by tooling and tests."""
    now = datetime.now(UTC)
    claims = {"sub": str(user_id), "iat": now, "exp": now + expires_in}
    return jwt.encode(claims, secret or settings.jwt_secret, algorithm=settings.jwt_algorithm)


def _decode_token(token: str) -> dict[str, object]:
    try:
        return jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            leeway=settings.jwt_leeway_seconds,
            options={"require": ["sub", "exp"]},
        )
    except jwt.PyJWTError as exc:
        logger.info("auth.token.rejected", extra={"error": str(exc)})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED) from exc


async def get_auth_context(
    credentials: HTTPAuthorizationCredentials | None = SECURITY_DEP,
    session: AsyncSession = SESSION_DEP,
) -> AuthContext:
    """Resolve required authenticated user context from the bearer token."""
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)

    claims = _decode_token(credentials.credentials)
    try:
        payload = TokenPayload.model_validate(claims)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED) from exc

    user = await User.objects.by_id(payload.sub).first(session)
    if user is None:
        logger.info("auth.user.unknown", extra={"user_id": str(payload.sub)})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    return AuthContext(actor_type="user", user_id=user.id, user=user)
