import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

from errors import AuthenticationError
from repositories import Repositories, get_repositories

logger = logging.getLogger(__name__)

# ---------- Auth setup ----------
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALG = "HS256"
ACCESS_TTL_MIN = int(os.getenv("ACCESS_TTL_MIN", "60"))
REFRESH_TTL_MIN = int(os.getenv("REFRESH_TTL_MIN", str(60 * 24 * 7)))

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
security = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    return pwd_context.verify(password, password_hash)


def _create_token(data: dict, token_type: str, expires_delta: timedelta) -> str:
    to_encode = data.copy()
    to_encode.update({"type": token_type, "exp": datetime.now(timezone.utc) + expires_delta})
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALG)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    return _create_token(data, "access", expires_delta or timedelta(minutes=ACCESS_TTL_MIN))


def create_refresh_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    return _create_token(data, "refresh", expires_delta or timedelta(minutes=REFRESH_TTL_MIN))


def issue_tokens(user: dict) -> dict:
    claims = {"sub": str(user["_id"]), "email": user["email"], "role": user.get("role", "user")}
    return {
        "access_token": create_access_token(claims),
        "refresh_token": create_refresh_token(claims),
        "token_type": "bearer",
    }


def decode_token(token: str, token_type: str = "access") -> dict:
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])
    except JWTError:
        raise AuthenticationError("Invalid or expired token")
    if payload.get("type") != token_type or not payload.get("sub"):
        raise AuthenticationError("Invalid token payload")
    return payload


def sanitize_user(user: dict) -> dict:
    safe = {k: v for k, v in user.items() if k != "password_hash"}
    created_at = user.get("created_at")
    if isinstance(created_at, datetime):
        safe["member_since"] = str(created_at.year)
    return safe


def current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    repos: Repositories = Depends(get_repositories),
):
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AuthenticationError("Not authorized, no token")
    payload = decode_token(credentials.credentials)
    user = repos.users.get(payload["sub"])
    if not user:
        logger.warning("Token for unknown user %s", payload["sub"])
        raise AuthenticationError("User not found")
    return user
