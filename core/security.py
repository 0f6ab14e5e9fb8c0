# core/security.py
from datetime import datetime, timedelta, timezone
from typing import Optional, Callable, Dict, Any
import logging

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlmodel import Session

from core.config import settings
from core.database import get_session
from core.errors import Unauthenticated, Forbidden
from models.models import User, UserRole

logger = logging.getLogger(__name__)


# ========================================
# 🔑 JWT / APP CONFIG
# ========================================
SECRET_KEY = settings.SECRET_KEY
ALGORITHM = settings.ALGORITHM or "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = settings.ACCESS_TOKEN_EXPIRE_MINUTES

# auto_error=False so a missing header goes through the same 401 path as a bad token
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


# ========================================
# 🔐 Password Hashing (Argon2)
# ========================================
pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


def hash_password(password: str) -> str:
    """Hash password using Argon2."""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify password using Argon2."""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        # Unrecognised hash format
        return False


# ========================================
# 🔑 Token Helpers
# ========================================
def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def create_token_for_user(user: User, expires_delta: Optional[timedelta] = None) -> str:
    return create_access_token({"sub": str(user.id), "role": user.role}, expires_delta)


def decode_token(token: str) -> dict:
    """Decode JWT and return payload. Expired, tampered or foreign-key tokens all fail here."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise Unauthenticated("Invalid or expired token.")


# ========================================
# 👤 Authentication & Role Checks
# ========================================
def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    session: Session = Depends(get_session),
) -> User:
    """Resolve the bearer token to a live, active user. Never extends the token."""
    if not token:
        raise Unauthenticated("No token, authorization denied.")

    payload = decode_token(token)
    subject = payload.get("sub")
    try:
        user_id = int(subject)
    except (TypeError, ValueError):
        raise Unauthenticated("Invalid token payload.")

    user = session.get(User, user_id)
    if not user or not user.is_active:
        raise Unauthenticated("User not found or inactive.")
    return user


def require_roles(*roles: UserRole) -> Callable[..., User]:
    """
    Build a dependency that admits only the listed roles.

    Roles are a flat allow-list: a route that should also admit superadmins
    must list ``UserRole.SUPER_ADMIN`` explicitly.
    """
    allowed = {role.value for role in roles}

    def dependency(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in allowed:
            logger.info(
                "Role %s denied, route allows %s (user_id=%s)",
                current_user.role, sorted(allowed), current_user.id,
            )
            raise Forbidden("Access denied.")
        return current_user

    return dependency


get_current_admin = require_roles(UserRole.ADMIN)
get_current_super_admin = require_roles(UserRole.SUPER_ADMIN)
