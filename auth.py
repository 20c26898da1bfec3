"""Authentication and role checks for PillNow Schedule Service.

Bearer tokens are HS256 JWTs carrying the user id (``sub``) and numeric role.
Every request re-reads the user so deactivated accounts lose access at once.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from fastapi import Depends, HTTPException, Request
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

import crud
import database
from config import settings
from database import Role, User

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

ROLE_MESSAGES = {
    frozenset({Role.ADMIN}): "Admin access required",
    frozenset({Role.ELDER}): "Elder access required",
    frozenset({Role.CAREGIVER}): "Caregiver access required",
    frozenset({Role.ADMIN, Role.CAREGIVER}): "Admin or caregiver access required",
    frozenset({Role.ADMIN, Role.ELDER}): "Admin or elder access required",
}


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def create_access_token(user_id: int, role: int, expires_delta: Optional[timedelta] = None) -> str:
    """Sign a bearer token for a user."""
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(days=settings.JWT_EXPIRE_DAYS))
    payload = {"sub": str(user_id), "role": int(role), "exp": expire}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Decode and verify a bearer token.

    Raises:
        JWTError: Signature, expiry or shape is invalid
    """
    payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    if "sub" not in payload:
        raise JWTError("token has no subject")
    return payload


def bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_current_user(request: Request, db: Session = Depends(database.get_db)) -> User:
    """FastAPI dependency resolving the bearer token to an active user."""
    token = bearer_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Access token required")

    try:
        payload = decode_access_token(token)
        user_id = int(payload["sub"])
    except (JWTError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    user = crud.get_user(db, user_id)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid token - user not found")
    return user


def require_roles(*roles: Role) -> Callable[..., User]:
    """Build a dependency that admits only the given roles."""
    allowed = frozenset(roles)
    message = ROLE_MESSAGES.get(allowed, "Access denied")

    def dependency(user: User = Depends(get_current_user)) -> User:
        if user.role not in allowed:
            raise HTTPException(status_code=403, detail=message)
        return user

    return dependency


def can_view_user(db: Session, viewer: User, owner_id: int) -> bool:
    """Elders see themselves, caregivers see connected elders, admins see all."""
    if viewer.role == Role.ADMIN or viewer.user_id == owner_id:
        return True
    if viewer.role == Role.CAREGIVER:
        return crud.get_active_connection(db, viewer.user_id, owner_id) is not None
    return False
