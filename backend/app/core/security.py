"""Bearer-token verification.

Tokens are issued by the CRM auth service; this engine only verifies them
and extracts the caller's identity for reviewer metadata and role checks.
"""
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from app.core.config import settings

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")

REVIEWER_ROLES = ("admin", "manager")


@dataclass
class CurrentUser:
    id: int
    name: str
    role: str = "sales"

    @property
    def is_reviewer(self) -> bool:
        return (self.role or "").lower() in REVIEWER_ROLES


def decode_token(token: str) -> Optional[CurrentUser]:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None

    sub = payload.get("sub")
    if sub is None:
        return None
    try:
        user_id = int(sub)
    except (TypeError, ValueError):
        return None

    return CurrentUser(
        id=user_id,
        name=payload.get("name") or str(user_id),
        role=payload.get("role") or "sales",
    )


def get_current_user(token: str = Depends(oauth2_scheme)) -> CurrentUser:
    user = decode_token(token)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def require_reviewer(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    """Admins and managers configure rules and review settlements."""
    if not current_user.is_reviewer:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return current_user
