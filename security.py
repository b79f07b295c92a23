import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

import jwt
from fastapi import Depends, Header
from passlib.context import CryptContext
from pymongo.database import Database

import config
from database import get_db, to_object_id
from errors import Forbidden, Unauthorized

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=config.BCRYPT_ROUNDS)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    if not password or not password_hash:
        return False
    return pwd_context.verify(password, password_hash)


def create_token(user_doc: Dict[str, Any]) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_doc.get("_id")),
        "role": user_doc.get("role", "user"),
        "exp": now + timedelta(minutes=config.JWT_EXP_MIN),
        "iat": now,
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def decode_token(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Token expired")
    except jwt.InvalidTokenError:
        raise Unauthorized("Invalid token")


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    """User payload safe to return to clients (never includes the password hash)."""
    return {
        "id": str(user["_id"]),
        "username": user.get("username"),
        "email": user.get("email"),
        "role": user.get("role", "user"),
        "active": user.get("active", True),
        "address": user.get("address"),
        "created_at": user.get("created_at"),
    }


def _principal_from_header(authorization: Optional[str], db: Database) -> Dict[str, Any]:
    if not authorization:
        raise Unauthorized()
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise Unauthorized("Invalid authorization header")
    payload = decode_token(token)
    user_id = to_object_id(payload.get("sub"))
    user = db["user"].find_one({"_id": user_id}) if user_id else None
    if not user or not user.get("active", True):
        raise Unauthorized("User not found or inactive")
    return user


def get_current_user(authorization: Optional[str] = Header(default=None),
                     db: Database = Depends(get_db)) -> Dict[str, Any]:
    return _principal_from_header(authorization, db)


def require_roles(*roles: str) -> Callable[..., Dict[str, Any]]:
    def checker(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
        if user.get("role") not in roles:
            logger.info("Denied %s for user %s with role %s", roles, user.get("_id"), user.get("role"))
            raise Forbidden()
        return user
    return checker


require_admin = require_roles("admin")
