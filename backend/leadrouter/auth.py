"""Authentication and authorization utilities."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID
from jose import JWTError, jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import logging

from leadrouter.config import settings

logger = logging.getLogger(__name__)
security = HTTPBearer()


@dataclass
class CurrentUser:
    """Caller identity taken from the JWT claims."""
    user_id: str
    workspace_id: UUID
    role: str = "member"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token with specified expiration."""
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({
        "exp": expire,
        "iat": datetime.utcnow(),
        "type": "access"
    })

    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> CurrentUser:
    """Verify JWT token and return the caller."""

    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(
            credentials.credentials,
            settings.SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM]
        )
    except JWTError as e:
        logger.warning(f"JWT validation failed: {e}")
        raise credentials_exception

    user_id = payload.get("sub")
    workspace_id = payload.get("workspace_id")

    if user_id is None or workspace_id is None:
        raise credentials_exception

    try:
        workspace_uuid = UUID(str(workspace_id))
    except ValueError:
        logger.warning(f"JWT carries malformed workspace_id for user: {user_id}")
        raise credentials_exception

    return CurrentUser(
        user_id=str(user_id),
        workspace_id=workspace_uuid,
        role=payload.get("role", "member")
    )


async def get_current_admin_user(
    current_user: CurrentUser = Depends(get_current_user)
) -> CurrentUser:
    """Verify current user has admin role."""

    if not current_user.is_admin:
        logger.warning(f"Admin access denied for user: {current_user.user_id}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required"
        )

    return current_user
