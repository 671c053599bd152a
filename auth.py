# auth.py
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

from config import APP_SECRET, TOKEN_ALGORITHM, TOKEN_TTL_MINUTES
from db import get_session
from errors import InvalidCredentials
from models import User

# pure-Python pbkdf2_sha256, no bcrypt wheel needed
pwd = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

bearer = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return pwd.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    return pwd.verify(password, password_hash)


def create_token(user: User, ttl: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (ttl or timedelta(minutes=TOKEN_TTL_MINUTES))
    claims = {"sub": user.id, "email": user.email, "role": user.role, "exp": expire}
    return jwt.encode(claims, APP_SECRET, algorithm=TOKEN_ALGORITHM)


def decode_token(token: str) -> Optional[str]:
    """Return the user id carried by a valid token, else None."""
    if not token or not isinstance(token, str):
        return None
    try:
        data = jwt.decode(token, APP_SECRET, algorithms=[TOKEN_ALGORITHM])
    except JWTError:
        return None
    sub = data.get("sub")
    return str(sub) if sub else None


def load_user(user_id: str) -> Optional[User]:
    with get_session() as s:
        user = s.get(User, user_id)
        if user is not None:
            s.expunge(user)
        return user


def current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
) -> User:
    if credentials is None:
        raise InvalidCredentials("Authentication required")
    uid = decode_token(credentials.credentials)
    if not uid:
        raise InvalidCredentials("Invalid or expired token")
    user = load_user(uid)
    if user is None:
        raise InvalidCredentials("Invalid or expired token")
    return user
