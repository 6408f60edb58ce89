from dataclasses import dataclass, field
from typing import List, Optional
import logging
import secrets

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from newsroom.core.context import ServiceContext, get_context

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

# Tokens are issued by the external auth service; this module only verifies them
ALGORITHM = "HS256"


@dataclass
class AuthenticatedUser:
    id: str
    role: str
    permissions: List[str] = field(default_factory=list)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_token(token: str, secret_key: str) -> dict:
    """
    Decode and validate a bearer token.

    Raises:
        HTTPException: If the token is expired or invalid
    """
    try:
        return jwt.decode(token, secret_key, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.warning("Token expired")
        raise _unauthorized("Token has expired")
    except JWTError as e:
        logger.error(f"JWT decode error: {e}")
        raise _unauthorized("Could not validate credentials")


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    context: ServiceContext = Depends(get_context),
) -> AuthenticatedUser:
    """Resolve the tenant from a bearer token (cookie or Authorization header)."""
    token = request.cookies.get("auth_token")
    if not token and credentials:
        token = credentials.credentials

    if not token:
        raise _unauthorized("Not authenticated")

    payload = decode_token(token, context.settings.SECRET_KEY)

    user_id = payload.get("sub")
    if not user_id:
        raise _unauthorized("Could not validate credentials")

    user = context.repository.get_user_by_id(str(user_id))
    if user is None:
        raise _unauthorized("User not found")

    permissions = [
        name
        for name, enabled in (
            ("reader", user.has_reader),
            ("reporter", user.has_reporter),
            ("editor", user.has_editor),
        )
        if enabled
    ]
    return AuthenticatedUser(id=user.id, role=user.role, permissions=permissions)


def require_role(role: str):
    """Dependency factory: admins pass every role check."""

    async def checker(
        current_user: AuthenticatedUser = Depends(get_current_user),
    ) -> AuthenticatedUser:
        if current_user.role != role and current_user.role != "admin":
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"{role} role required",
            )
        return current_user

    return checker


async def verify_cron_secret(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    context: ServiceContext = Depends(get_context),
) -> None:
    """Cron triggers are open when CRON_SECRET is unset."""
    expected = context.settings.CRON_SECRET
    if not expected:
        return
    if not credentials or not secrets.compare_digest(credentials.credentials, expected):
        raise _unauthorized("Invalid cron secret")
