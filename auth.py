"""Password hashing, bearer tokens and the FastAPI auth dependencies."""

import os
from datetime import timedelta

import jwt
import structlog
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.hash import bcrypt
from pydantic import BaseModel
from pymongo.database import Database

from database import USERS, get_db, now, to_object_id
from errors import ForbiddenError, UnauthorizedError

logger = structlog.get_logger(__name__)

JWT_ALGORITHM = "HS256"

bearer_scheme = HTTPBearer(auto_error=False)


class CurrentUser(BaseModel):
    id: str
    username: str
    is_admin: bool = False


def hash_password(password: str) -> str:
    return bcrypt.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.verify(password, password_hash)
    except ValueError:
        # Malformed hash stored on the document
        return False


def _jwt_secret() -> str:
    secret = os.getenv("JWT_SECRET")
    if not secret:
        raise HTTPException(status_code=500, detail="JWT secret not configured")
    return secret


def generate_token(user_id: str, is_admin: bool = False) -> str:
    expires_days = int(os.getenv("JWT_EXPIRES_DAYS", 30))
    payload = {
        "id": str(user_id),
        "admin": bool(is_admin),
        "exp": now() + timedelta(days=expires_days),
    }
    return jwt.encode(payload, _jwt_secret(), algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, _jwt_secret(), algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Not authorized, token expired")
    except jwt.InvalidTokenError:
        raise UnauthorizedError("Not authorized, token failed")


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    db: Database = Depends(get_db),
) -> CurrentUser:
    """Resolve the bearer token to the user it was issued for."""
    if credentials is None:
        raise UnauthorizedError("Not authorized, no token")

    payload = decode_token(credentials.credentials)
    oid = to_object_id(payload.get("id"))
    user = db[USERS].find_one({"_id": oid}) if oid else None
    if not user:
        logger.info("auth.unknown_user", user_id=payload.get("id"))
        raise UnauthorizedError("Not authorized, user not found")

    return CurrentUser(
        id=str(user["_id"]),
        username=user.get("username", ""),
        is_admin=bool(user.get("is_admin", False)),
    )


def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_admin:
        raise ForbiddenError()
    return user
